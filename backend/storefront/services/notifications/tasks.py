"""
Dispatch of order notifications after an order write has committed.

Three modes are supported, selected by ``notification_dispatch_mode``:

- ``inline``: await the gateway in the request, bounded by channel timeouts
- ``background``: run the gateway in a detached asyncio task
- ``celery``: enqueue the serialised view to the notification worker

In every mode a failure is logged and never reaches the caller.
"""

import asyncio
from typing import Any, Optional

from celery import Task, shared_task

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.schemas.orders import OrderNotificationView
from storefront.services.notifications.channels import NotificationKind
from storefront.services.notifications.gateway import NotificationGateway, build_gateway
from storefront.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class NotificationTask(Task):
    """
    Base task class for notification tasks.

    The gateway absorbs delivery failures itself, so these hooks only log.
    """

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.error(
            "Notification task failed",
            task_id=task_id,
            exception=str(exc),
            exc_info=einfo,
        )

    def on_success(
        self,
        retval: Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
    ) -> None:
        logger.info(
            "Notification task completed successfully",
            task_id=task_id,
            result=retval,
        )


async def run_notification(
    gateway: NotificationGateway,
    kind: NotificationKind,
    view: OrderNotificationView,
    status: Optional[OrderStatus] = None,
    note: Optional[str] = None,
) -> dict[str, Any]:
    """Run one notification through the gateway and summarise the results."""
    if kind == NotificationKind.ORDER_CREATED:
        results = await gateway.notify_order_created(view)
    else:
        results = await gateway.notify_status_changed(view, status or view.status, note)

    return {
        "order_number": view.order_number,
        "kind": kind.value,
        "delivered": [r.channel for r in results if r.success],
        "failed": [r.channel for r in results if not r.success and not r.skipped],
    }


@shared_task(
    bind=True,
    base=NotificationTask,
    name="notifications.send_order_notification",
    time_limit=120,
    soft_time_limit=90,
)
def send_order_notification_task(
    self: Task,
    kind: str,
    view: dict[str, Any],
    status: Optional[str] = None,
    note: Optional[str] = None,
) -> dict[str, Any]:
    """
    Deliver an order notification from the worker.

    Args:
        self: Task instance
        kind: Notification kind value
        view: Serialised OrderNotificationView
        status: New status value for status notifications
        note: Optional note from the status change

    Returns:
        Summary of delivered and failed channels
    """
    logger.info(
        "Processing notification task",
        task_id=self.request.id,
        kind=kind,
        order_number=view.get("order_number"),
    )

    order_view = OrderNotificationView.model_validate(view)
    return asyncio.run(
        run_notification(
            build_gateway(),
            NotificationKind(kind),
            order_view,
            status=OrderStatus(status) if status else None,
            note=note,
        )
    )


class NotificationDispatcher:
    """
    Hands committed order events to the gateway.

    Attributes:
        gateway: Gateway used for inline and background delivery
        mode: ``inline``, ``background`` or ``celery``
    """

    def __init__(
        self,
        gateway: Optional[NotificationGateway] = None,
        mode: Optional[str] = None,
    ):
        self.mode = mode or get_settings().notification_dispatch_mode
        self._gateway = gateway
        self._pending: set[asyncio.Task] = set()

        if self.mode == "celery":
            # Makes the configured Celery app current so .delay() uses its broker
            import storefront.worker  # noqa: F401

    @property
    def gateway(self) -> NotificationGateway:
        if self._gateway is None:
            self._gateway = build_gateway()
        return self._gateway

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def order_created(self, view: OrderNotificationView) -> None:
        await self.dispatch(NotificationKind.ORDER_CREATED, view)

    async def status_changed(
        self,
        view: OrderNotificationView,
        new_status: OrderStatus,
        note: Optional[str] = None,
    ) -> None:
        await self.dispatch(
            NotificationKind.STATUS_CHANGED, view, status=new_status, note=note
        )

    async def dispatch(
        self,
        kind: NotificationKind,
        view: OrderNotificationView,
        status: Optional[OrderStatus] = None,
        note: Optional[str] = None,
    ) -> None:
        """
        Dispatch a notification according to the configured mode.

        Never raises.
        """
        try:
            if self.mode == "celery":
                self._enqueue(kind, view, status, note)
            elif self.mode == "inline":
                await run_notification(self.gateway, kind, view, status, note)
            else:
                self._spawn(kind, view, status, note)
        except Exception as e:
            logger.error(
                "Failed to dispatch order notification",
                kind=kind.value,
                mode=self.mode,
                order_number=view.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _enqueue(
        self,
        kind: NotificationKind,
        view: OrderNotificationView,
        status: Optional[OrderStatus],
        note: Optional[str],
    ) -> None:
        result = send_order_notification_task.delay(
            kind.value,
            view.model_dump(mode="json"),
            status.value if status else None,
            note,
        )
        logger.info(
            "Order notification enqueued",
            kind=kind.value,
            order_number=view.order_number,
            task_id=result.id,
        )

    def _spawn(
        self,
        kind: NotificationKind,
        view: OrderNotificationView,
        status: Optional[OrderStatus],
        note: Optional[str],
    ) -> None:
        task = asyncio.create_task(
            run_notification(self.gateway, kind, view, status, note),
            name=f"notify-{kind.value}-{view.order_number}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Order notification task cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Order notification task failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for background notifications, e.g. at shutdown."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        logger.info(
            "Notification tasks drained",
            completed=len(done),
            cancelled=len(pending),
        )
