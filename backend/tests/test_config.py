"""
Tests for application settings.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from storefront.core.config import DEVELOPMENT_SECRET_KEY, Settings, get_settings


class TestSettings:
    def test_test_environment_loaded(self):
        settings = get_settings()

        assert settings.is_test
        assert settings.notification_dispatch_mode == "inline"

    def test_pricing_defaults(self):
        settings = Settings()

        assert settings.tax_rate == Decimal("0.18")
        assert settings.free_shipping_threshold == Decimal("10000")
        assert settings.flat_shipping_fee == Decimal("500")

    def test_production_refuses_development_key(self):
        with pytest.raises(ValidationError):
            Settings(environment="production", secret_key=DEVELOPMENT_SECRET_KEY)

    def test_production_accepts_real_key(self):
        settings = Settings(environment="production", secret_key="x" * 48)

        assert settings.is_production

    def test_unsupported_database_rejected(self):
        with pytest.raises(ValidationError):
            Settings(database_url="mysql://root@localhost/shop")

    def test_cors_origins_from_comma_string(self):
        settings = Settings(cors_origins="https://shop.example, https://admin.example")

        assert settings.cors_origins == ["https://shop.example", "https://admin.example"]

    def test_order_prefix_normalised(self):
        assert Settings(order_number_prefix=" inv- ").order_number_prefix == "INV"
