"""
Order notifications: which parties hear about a status change, and how jobs reach the provider.

Delivery providers (email/SMS/WhatsApp) are external; they sit behind the Notifier
protocol. Dispatch is best-effort: a failure is logged and counted, never raised
into the transition that triggered it.
"""
import asyncio
import logging
from typing import Any, Literal, Optional, Protocol

from pydantic import Field

from marketplace.metrics import notifications_dispatched_total, notifications_failed_total
from marketplace.order_state import OrderStatus
from marketplace.schemas import CamelModel, Order

logger = logging.getLogger(__name__)


class Recipient(CamelModel):
    kind: Literal["customer", "merchant"]
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class NotificationResult(CamelModel):
    success: bool
    channel_results: dict[str, bool] = Field(default_factory=dict)


class NotificationJob(CamelModel):
    order_id: str
    order_number: str
    template_type: str
    recipient: Recipient
    data: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0


class Notifier(Protocol):
    async def notify(self, recipient: Recipient, template_type: str, data: dict[str, Any]) -> NotificationResult: ...


class Dispatcher(Protocol):
    async def dispatch(self, job: NotificationJob) -> None: ...


# Status entered -> (template, recipients)
NOTIFICATION_PLAN: dict[OrderStatus, tuple[str, tuple[str, ...]]] = {
    OrderStatus.PENDING: ("order_placed", ("merchant",)),
    OrderStatus.CONFIRMED: ("order_confirmed", ("customer",)),
    OrderStatus.PREPARING: ("order_preparing", ("customer",)),
    OrderStatus.READY: ("order_ready", ("customer",)),
    OrderStatus.OUT_FOR_DELIVERY: ("order_out_for_delivery", ("customer",)),
    OrderStatus.DELIVERED: ("order_delivered", ("customer",)),
    OrderStatus.COMPLETED: ("order_completed", ("customer",)),
    OrderStatus.CANCELLED: ("order_cancelled", ("customer", "merchant")),
    OrderStatus.REFUNDED: ("order_refunded", ("customer",)),
}

SMS_TEMPLATES: dict[str, str] = {
    "order_placed": "New order #{order_number} received ({amount}).",
    "order_confirmed": "Order #{order_number} is confirmed and being prepared.",
    "order_preparing": "Order #{order_number} is being prepared.",
    "order_ready": "Order #{order_number} is ready for pickup!",
    "order_out_for_delivery": "Order #{order_number} is out for delivery!",
    "order_delivered": "Order #{order_number} has been delivered. Enjoy your meal!",
    "order_completed": "Order #{order_number} completed. Thank you for your order!",
    "order_cancelled": "Order #{order_number} has been cancelled. Reason: {reason}",
    "order_refunded": "Order #{order_number} has been refunded. Reason: {reason}",
}


def render_sms(template_type: str, data: dict[str, Any]) -> str:
    if template_type == "order_ready" and data.get("deliveryMethod") == "DELIVERY":
        return f"Order #{data['orderNumber']} is ready and will be out for delivery soon!"
    template = SMS_TEMPLATES[template_type]
    return template.format(
        order_number=data.get("orderNumber", ""),
        amount=f"${data.get('amount', 0):.2f}",
        reason=data.get("reason") or "not specified",
    )


def _recipient(order: Order, kind: str) -> Recipient:
    if kind == "merchant":
        return Recipient(kind="merchant", id=order.merchant_id)
    return Recipient(
        kind="customer",
        id=order.customer_id,
        name=order.customer_name,
        email=order.customer_email,
        phone=order.customer_phone,
    )


def build_jobs(order: Order, status: OrderStatus, reason: Optional[str] = None) -> list[NotificationJob]:
    """Jobs for an order that just entered status."""
    plan = NOTIFICATION_PLAN.get(status)
    if plan is None:
        return []
    template_type, recipients = plan
    data = {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "status": status.value,
        "deliveryMethod": order.delivery_method.value,
        "amount": order.total,
        "customerName": order.customer_name,
    }
    if reason:
        data["reason"] = reason
    return [
        NotificationJob(
            order_id=order.id,
            order_number=order.order_number,
            template_type=template_type,
            recipient=_recipient(order, kind),
            data=data,
        )
        for kind in recipients
    ]


class LoggingNotifier:
    """Stand-in provider: records the rendered message in the log."""

    async def notify(self, recipient: Recipient, template_type: str, data: dict[str, Any]) -> NotificationResult:
        message = render_sms(template_type, data)
        logger.info("Notify %s %s via in_app: %s", recipient.kind, recipient.id or recipient.phone, message)
        return NotificationResult(success=True, channel_results={"in_app": True})


class InlineDispatcher:
    """Sends from the API process as fire-and-forget tasks."""

    def __init__(self, notifier: Notifier):
        self._notifier = notifier
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, job: NotificationJob) -> None:
        t = asyncio.create_task(self._send(job))
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)

    async def _send(self, job: NotificationJob) -> None:
        try:
            result = await self._notifier.notify(job.recipient, job.template_type, job.data)
        except Exception:
            notifications_failed_total.labels(template_type=job.template_type).inc()
            logger.exception("Notification %s for order %s failed", job.template_type, job.order_id)
            return
        if not result.success:
            notifications_failed_total.labels(template_type=job.template_type).inc()
            logger.warning(
                "Notification %s for order %s not delivered: %s",
                job.template_type, job.order_id, result.channel_results,
            )

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


async def dispatch_best_effort(dispatcher: Dispatcher, jobs: list[NotificationJob]) -> int:
    """Hand jobs to the dispatcher. Failures are logged and absorbed. Returns jobs dispatched."""
    dispatched = 0
    for job in jobs:
        try:
            await dispatcher.dispatch(job)
        except Exception:
            notifications_failed_total.labels(template_type=job.template_type).inc()
            logger.exception("Failed to dispatch %s for order %s", job.template_type, job.order_id)
            continue
        notifications_dispatched_total.labels(template_type=job.template_type).inc()
        dispatched += 1
    return dispatched
