"""
Notification gateway for order events.

The gateway renders and delivers order-confirmation and status-update
messages through every configured channel. Delivery is best effort: each
channel attempt is bounded by a timeout and isolated from the others, and
neither public method ever raises.
"""

import asyncio
from typing import Optional, Sequence

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.schemas.orders import OrderNotificationView
from storefront.services.notifications.channels import (
    DeliveryResult,
    NotificationChannel,
    NotificationDispatchError,
    NotificationKind,
    build_channels,
)
from storefront.services.notifications.templates import TemplateEngine
from storefront.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class NotificationGateway:
    """
    Best-effort delivery of order notifications.

    Attributes:
        channels: Channels attempted in order
        templates: Template engine used to render messages
        timeout: Upper bound in seconds for a single channel attempt
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        templates: Optional[TemplateEngine] = None,
        timeout: Optional[float] = None,
    ):
        self.channels = list(channels)
        self.templates = templates or TemplateEngine()
        self.timeout = timeout or get_settings().notification_timeout_seconds

    async def notify_order_created(
        self, view: OrderNotificationView
    ) -> list[DeliveryResult]:
        """Send order confirmations. Never raises."""
        return await self._dispatch(NotificationKind.ORDER_CREATED, view)

    async def notify_status_changed(
        self,
        view: OrderNotificationView,
        new_status: OrderStatus,
        note: Optional[str] = None,
    ) -> list[DeliveryResult]:
        """Send status update messages. Never raises."""
        return await self._dispatch(
            NotificationKind.STATUS_CHANGED, view, status=new_status, note=note
        )

    async def _dispatch(
        self,
        kind: NotificationKind,
        view: OrderNotificationView,
        status: Optional[OrderStatus] = None,
        note: Optional[str] = None,
    ) -> list[DeliveryResult]:
        results: list[DeliveryResult] = []

        for channel in self.channels:
            try:
                result = await self._deliver(channel, kind, view, status, note)
            except Exception as e:
                # Anything a channel does must stay inside the gateway
                logger.error(
                    "Unexpected notification channel failure",
                    channel=getattr(channel, "name", type(channel).__name__),
                    kind=kind.value,
                    order_number=view.order_number,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = DeliveryResult(
                    channel=getattr(channel, "name", type(channel).__name__),
                    success=False,
                    error=str(e),
                )
            results.append(result)

        logger.info(
            "Order notification dispatched",
            kind=kind.value,
            order_number=view.order_number,
            delivered=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success and not r.skipped),
            skipped=sum(1 for r in results if r.skipped),
        )
        return results

    async def _deliver(
        self,
        channel: NotificationChannel,
        kind: NotificationKind,
        view: OrderNotificationView,
        status: Optional[OrderStatus],
        note: Optional[str],
    ) -> DeliveryResult:
        if not channel.handles(kind):
            return DeliveryResult(channel=channel.name, success=False, skipped=True)

        recipient = channel.recipient_for(view)
        if not recipient:
            logger.info(
                "No recipient for notification channel",
                channel=channel.name,
                order_number=view.order_number,
            )
            return DeliveryResult(channel=channel.name, success=False, skipped=True)

        message = self.templates.render(
            kind, channel.audience, view, status=status, note=note
        )

        try:
            result = await asyncio.wait_for(
                channel.send(message, recipient), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Notification channel timed out",
                channel=channel.name,
                kind=kind.value,
                order_number=view.order_number,
                timeout_seconds=self.timeout,
            )
            return DeliveryResult(
                channel=channel.name,
                success=False,
                recipient=recipient,
                error=f"timed out after {self.timeout}s",
            )
        except NotificationDispatchError as e:
            logger.warning(
                "Notification delivery failed",
                channel=channel.name,
                kind=kind.value,
                order_number=view.order_number,
                error=str(e),
                context=e.context,
            )
            return DeliveryResult(
                channel=channel.name,
                success=False,
                recipient=recipient,
                error=str(e),
            )

        logger.info(
            "Notification delivered",
            channel=channel.name,
            kind=kind.value,
            order_number=view.order_number,
            message_id=result.message_id,
        )
        return result


def build_gateway() -> NotificationGateway:
    """Create a gateway over the configured channels."""
    return NotificationGateway(build_channels())
