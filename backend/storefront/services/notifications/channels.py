"""
Notification delivery channels.

A channel knows whom it addresses for an order (the customer's e-mail, the
store admin's messaging number) and how to deliver a rendered message. The
gateway decides which channels run and isolates their failures.
"""

import asyncio
import enum
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger
from storefront.schemas.orders import OrderNotificationView
from storefront.services.notifications.aws_clients import SESClient, SESClientError

logger = get_logger(__name__)


class NotificationKind(str, enum.Enum):
    """Kinds of order notifications."""

    ORDER_CREATED = "order_created"
    STATUS_CHANGED = "status_changed"


class Audience(str, enum.Enum):
    """Who a channel writes to, which selects the template set."""

    CUSTOMER = "customer"
    ADMIN = "admin"


class NotificationDispatchError(Exception):
    """Raised by a channel when delivery fails. Never leaves the gateway."""

    def __init__(self, message: str, channel: str, **context: Any):
        super().__init__(message)
        self.channel = channel
        self.context = context


@dataclass(frozen=True)
class RenderedMessage:
    """Rendered notification content."""

    subject: str
    text_body: str
    html_body: Optional[str] = None


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one channel attempt."""

    channel: str
    success: bool
    recipient: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


class NotificationChannel(Protocol):
    """Delivery capability used by the gateway."""

    name: str
    audience: Audience

    def handles(self, kind: NotificationKind) -> bool:
        ...

    def recipient_for(self, view: OrderNotificationView) -> Optional[str]:
        ...

    async def send(self, message: RenderedMessage, recipient: str) -> DeliveryResult:
        ...


class EmailChannel:
    """Customer e-mail through AWS SES."""

    name = "email"
    audience = Audience.CUSTOMER

    def __init__(self, client: SESClient, from_address: str, timeout: float = 10.0):
        self.client = client
        self.from_address = from_address
        self.timeout = timeout

    def handles(self, kind: NotificationKind) -> bool:
        return True

    def recipient_for(self, view: OrderNotificationView) -> Optional[str]:
        return view.customer_email

    async def send(self, message: RenderedMessage, recipient: str) -> DeliveryResult:
        """
        Send the message to one address.

        SES retries stop in time for the whole send to finish within
        ``timeout``, so a send the gateway abandons is not delivered later.

        Raises:
            NotificationDispatchError: If SES rejects or cannot be reached
        """
        try:
            response = await asyncio.to_thread(
                self.client.send_email,
                to_addresses=[recipient],
                subject=message.subject,
                body_text=message.text_body,
                from_address=self.from_address,
                body_html=message.html_body,
                deadline=time.monotonic() + self.timeout,
            )
        except SESClientError as e:
            raise NotificationDispatchError(
                str(e), channel=self.name, recipient=recipient, **e.context
            ) from e

        return DeliveryResult(
            channel=self.name,
            success=True,
            recipient=recipient,
            message_id=response.get("message_id"),
        )


class WebhookChannel:
    """
    Messaging webhook (WhatsApp Business style) alerting the store admin.

    Posts ``{"phone": ..., "message": ...}`` with a bearer token. By default
    only new orders are announced.
    """

    name = "webhook"
    audience = Audience.ADMIN

    def __init__(
        self,
        url: str,
        token: Optional[str],
        admin_number: str,
        notify_status_changes: bool = False,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.token = token
        self.admin_number = admin_number
        self.notify_status_changes = notify_status_changes
        self.timeout = timeout
        self._client = client

    def handles(self, kind: NotificationKind) -> bool:
        if kind == NotificationKind.STATUS_CHANGED:
            return self.notify_status_changes
        return True

    def recipient_for(self, view: OrderNotificationView) -> Optional[str]:
        return self.admin_number

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        response = await client.post(self.url, json=payload, headers=self._headers())
        response.raise_for_status()
        return response

    async def send(self, message: RenderedMessage, recipient: str) -> DeliveryResult:
        """
        Post the message to the webhook.

        Raises:
            NotificationDispatchError: On transport errors or non-2xx responses
        """
        payload = {"phone": recipient, "message": message.text_body}
        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client, payload)
        except httpx.HTTPStatusError as e:
            raise NotificationDispatchError(
                f"Webhook returned {e.response.status_code}",
                channel=self.name,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDispatchError(
                f"Webhook request failed: {e}",
                channel=self.name,
            ) from e

        return DeliveryResult(
            channel=self.name,
            success=True,
            recipient=recipient,
            message_id=response.headers.get("x-message-id"),
        )


def build_channels(settings: Optional[Settings] = None) -> list[NotificationChannel]:
    """
    Create the channels whose configuration is present.

    E-mail needs a sender address; the webhook needs a URL and an admin
    number.
    """
    settings = settings or get_settings()
    channels: list[NotificationChannel] = []

    if settings.ses_from_email:
        timeout = settings.notification_timeout_seconds
        ses = SESClient(region_name=settings.aws_region, attempt_timeout=timeout / 3)
        channels.append(EmailChannel(ses, settings.ses_from_email, timeout=timeout))

    if settings.webhook_url and settings.webhook_admin_number:
        channels.append(
            WebhookChannel(
                url=settings.webhook_url,
                token=settings.webhook_token,
                admin_number=settings.webhook_admin_number,
                notify_status_changes=settings.webhook_notify_status_changes,
                timeout=settings.notification_timeout_seconds,
            )
        )

    logger.info(
        "Notification channels configured",
        channels=[channel.name for channel in channels],
    )
    return channels
