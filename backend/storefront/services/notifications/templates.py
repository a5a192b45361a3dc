"""
Notification template rendering with Jinja2.

Templates live in ``storefront/templates/notifications``. Each notification
has a subject, a plain text body and optionally an HTML body:

- ``<name>_subject.txt``
- ``<name>.txt``
- ``<name>.html``
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.schemas.orders import OrderNotificationView
from storefront.services.notifications.channels import (
    Audience,
    NotificationKind,
    RenderedMessage,
)
from storefront.services.orders.enums import STATUS_LABELS, OrderStatus, describe_status

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates" / "notifications"

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}

TEMPLATE_NAMES = {
    (NotificationKind.ORDER_CREATED, Audience.CUSTOMER): "order_confirmation",
    (NotificationKind.STATUS_CHANGED, Audience.CUSTOMER): "status_update",
    (NotificationKind.ORDER_CREATED, Audience.ADMIN): "admin_new_order",
    (NotificationKind.STATUS_CHANGED, Audience.ADMIN): "admin_status_update",
}


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateEngine:
    """
    Renders order notifications for each audience.

    Args:
        template_dir: Directory containing the templates
        store_name: Store name used in the copy
        currency: ISO currency code for amount formatting
    """

    def __init__(
        self,
        template_dir: Optional[Union[str, Path]] = None,
        store_name: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        settings = get_settings()
        self.template_dir = Path(template_dir or DEFAULT_TEMPLATE_DIR)
        self.store_name = store_name or settings.store_name
        self.currency = currency or settings.currency

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = self._format_currency
        self.env.filters["date"] = self._format_date

    def render(
        self,
        kind: NotificationKind,
        audience: Audience,
        view: OrderNotificationView,
        status: Optional[OrderStatus] = None,
        note: Optional[str] = None,
    ) -> RenderedMessage:
        """
        Render a notification.

        Args:
            kind: Notification kind
            audience: Customer or admin copy
            view: Resolved order snapshot
            status: New status for status notifications
            note: Optional note from the status change

        Returns:
            Rendered subject and bodies

        Raises:
            TemplateEngineError: If a template is missing or fails to render
        """
        template_name = TEMPLATE_NAMES[(kind, audience)]
        context = self.build_context(view, status=status, note=note)

        try:
            subject = self._load(f"{template_name}_subject.txt").render(**context)
            text_body = self._load(f"{template_name}.txt").render(**context)
            html_body = None
            try:
                html_body = self._load(f"{template_name}.html").render(**context)
            except TemplateNotFound:
                logger.debug("HTML template not found, using text only", template_name=template_name)
        except TemplateNotFound as e:
            raise TemplateEngineError(
                f"Notification template not found: {e.name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            raise TemplateEngineError(
                f"Failed to render notification template: {e}",
                template_name=template_name,
            ) from e

        return RenderedMessage(
            subject=" ".join(subject.split()),
            text_body=text_body.strip() + "\n",
            html_body=html_body,
        )

    def build_context(
        self,
        view: OrderNotificationView,
        status: Optional[OrderStatus] = None,
        note: Optional[str] = None,
    ) -> dict[str, Any]:
        """Template variables for an order notification."""
        status = status or view.status
        return {
            "store_name": self.store_name,
            "order": view,
            "items": view.items,
            "address": view.shipping_address,
            "status": status.value,
            "status_label": STATUS_LABELS[status],
            "status_message": describe_status(status),
            "note": note or None,
        }

    def _load(self, template_path: str) -> Template:
        return self.env.get_template(template_path)

    def _format_currency(self, value: Union[Decimal, int, float, str]) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency, f"{self.currency} ")
        return f"{symbol}{Decimal(str(value)):,.2f}"

    @staticmethod
    def _format_date(value: Optional[datetime]) -> str:
        if value is None:
            return ""
        return value.strftime("%B %d, %Y")
