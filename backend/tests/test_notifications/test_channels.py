"""
Tests for the e-mail and webhook notification channels.
"""

import json
import time
from unittest.mock import ANY, Mock

import httpx
import pytest

from storefront.core.config import Settings
from storefront.services.notifications.aws_clients import SESClientError
from storefront.services.notifications.channels import (
    EmailChannel,
    NotificationDispatchError,
    NotificationKind,
    RenderedMessage,
    WebhookChannel,
    build_channels,
)

from conftest import make_view


@pytest.fixture
def message() -> RenderedMessage:
    return RenderedMessage(subject="Order Update", text_body="Your order shipped\n", html_body="<p>x</p>")


def webhook_with(handler, **kwargs) -> WebhookChannel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookChannel(
        url="https://hooks.example.com/send",
        token=kwargs.pop("token", "secret-token"),
        admin_number="+919000000000",
        client=client,
        **kwargs,
    )


# ============================================================================
# Email Channel Tests
# ============================================================================


class TestEmailChannel:
    """Tests for SES-backed e-mail."""

    async def test_sends_to_customer(self, message):
        client = Mock()
        client.send_email.return_value = {"message_id": "ses-1", "status": "sent"}
        channel = EmailChannel(client, "orders@aurum.example")

        result = await channel.send(message, "asha@example.com")

        assert result.success and result.message_id == "ses-1"
        client.send_email.assert_called_once_with(
            to_addresses=["asha@example.com"],
            subject="Order Update",
            body_text="Your order shipped\n",
            from_address="orders@aurum.example",
            body_html="<p>x</p>",
            deadline=ANY,
        )

    async def test_send_is_bounded_by_channel_timeout(self, message):
        client = Mock()
        client.send_email.return_value = {"message_id": "ses-1", "status": "sent"}
        channel = EmailChannel(client, "orders@aurum.example", timeout=4.0)

        before = time.monotonic()
        await channel.send(message, "asha@example.com")

        deadline = client.send_email.call_args.kwargs["deadline"]
        assert before + 4.0 <= deadline <= time.monotonic() + 4.0

    async def test_ses_error_becomes_dispatch_error(self, message):
        client = Mock()
        client.send_email.side_effect = SESClientError("throttled", error_code="Throttling")
        channel = EmailChannel(client, "orders@aurum.example")

        with pytest.raises(NotificationDispatchError) as exc_info:
            await channel.send(message, "asha@example.com")

        assert exc_info.value.channel == "email"
        assert exc_info.value.context["error_code"] == "Throttling"

    def test_recipient_is_customer_email(self):
        channel = EmailChannel(Mock(), "orders@aurum.example")

        assert channel.recipient_for(make_view()) == "asha@example.com"
        assert channel.recipient_for(make_view(customer_email=None)) is None


# ============================================================================
# Webhook Channel Tests
# ============================================================================


class TestWebhookChannel:
    """Tests for the admin messaging webhook."""

    async def test_posts_phone_and_message(self, message):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, headers={"x-message-id": "wa-9"})

        channel = webhook_with(handler)

        result = await channel.send(message, "+919000000000")

        assert result.success and result.message_id == "wa-9"
        assert captured["auth"] == "Bearer secret-token"
        assert captured["body"] == {"phone": "+919000000000", "message": "Your order shipped\n"}

    async def test_no_token_sends_no_auth_header(self, message):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200)

        await webhook_with(handler, token=None).send(message, "+919000000000")

        assert seen["auth"] is None

    async def test_error_status_raises_dispatch_error(self, message):
        channel = webhook_with(lambda request: httpx.Response(503))

        with pytest.raises(NotificationDispatchError) as exc_info:
            await channel.send(message, "+919000000000")

        assert exc_info.value.context["status_code"] == 503

    async def test_transport_error_raises_dispatch_error(self, message):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NotificationDispatchError):
            await webhook_with(handler).send(message, "+919000000000")

    def test_status_changes_only_when_enabled(self):
        quiet = WebhookChannel("https://hooks.example.com", None, "+91900")
        chatty = WebhookChannel(
            "https://hooks.example.com", None, "+91900", notify_status_changes=True
        )

        assert quiet.handles(NotificationKind.ORDER_CREATED)
        assert not quiet.handles(NotificationKind.STATUS_CHANGED)
        assert chatty.handles(NotificationKind.STATUS_CHANGED)


# ============================================================================
# Channel Configuration Tests
# ============================================================================


class TestBuildChannels:
    """Tests for building channels from settings."""

    def test_nothing_configured(self):
        assert build_channels(Settings(ses_from_email=None, webhook_url=None)) == []

    def test_webhook_needs_admin_number(self):
        settings = Settings(
            ses_from_email=None,
            webhook_url="https://hooks.example.com/send",
            webhook_admin_number=None,
        )

        assert build_channels(settings) == []

    def test_webhook_configured(self):
        settings = Settings(
            ses_from_email=None,
            webhook_url="https://hooks.example.com/send",
            webhook_admin_number="+919000000000",
            webhook_notify_status_changes=True,
        )

        [channel] = build_channels(settings)

        assert channel.name == "webhook"
        assert channel.handles(NotificationKind.STATUS_CHANGED)
