"""
Order status transitions: validated change, audit event, then best-effort notification.

The status change is the source of truth. Notification dispatch runs after the
transaction commits and can never undo it.
"""
import asyncio
import logging
from typing import Optional

from pydantic import Field

from marketplace.config import settings
from marketplace.db import Store
from marketplace.errors import InvalidTransitionError, MarketplaceError, ValidationFailed
from marketplace.metrics import order_transitions_rejected_total, order_transitions_total
from marketplace.notifications import Dispatcher, build_jobs, dispatch_best_effort
from marketplace.order_state import REASON_REQUIRED, OrderStatus
from marketplace.schemas import CamelModel, TransitionOutcome

logger = logging.getLogger(__name__)


class BulkItemResult(CamelModel):
    order_id: str
    success: bool
    status: Optional[OrderStatus] = None
    error: Optional[dict] = None


class BulkTransitionResult(CamelModel):
    success_count: int
    failed_count: int
    total_count: int
    results: list[BulkItemResult] = Field(default_factory=list)


def _clean_reason(target: OrderStatus, reason: Optional[str]) -> Optional[str]:
    reason = reason.strip() if reason else None
    if target in REASON_REQUIRED and not reason:
        raise ValidationFailed(
            f"A reason is required to move an order to {target.value}",
            {"requestedStatus": target.value},
            code="REASON_REQUIRED",
        )
    return reason or None


async def transition_order(
    store: Store,
    dispatcher: Dispatcher,
    order_id: str,
    target: OrderStatus,
    actor: str,
    reason: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> TransitionOutcome:
    """
    Move one order to target.
    Raises ValidationFailed (missing reason), NotFoundError, InvalidTransitionError
    or PersistenceError. A retried request with the same idempotency key returns the
    order unchanged with duplicate=True and sends nothing.
    """
    target = OrderStatus(target)
    reason = _clean_reason(target, reason)
    try:
        outcome = await store.apply_transition(order_id, target, actor, reason, idempotency_key)
    except InvalidTransitionError as e:
        order_transitions_rejected_total.labels(
            current_status=str(e.current_status), requested_status=e.requested_status
        ).inc()
        logger.info("Rejected transition order=%s %s -> %s", order_id, e.current_status, e.requested_status)
        raise

    if outcome.duplicate:
        return outcome

    from_status = outcome.event.from_status.value if outcome.event and outcome.event.from_status else "NONE"
    order_transitions_total.labels(from_status=from_status, to_status=target.value).inc()
    logger.info("Order %s transitioned %s -> %s by %s", order_id, from_status, target.value, actor)

    await dispatch_best_effort(dispatcher, build_jobs(outcome.order, target, reason))
    return outcome


async def bulk_transition(
    store: Store,
    dispatcher: Dispatcher,
    order_ids: list[str],
    target: OrderStatus,
    actor: str,
    reason: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> BulkTransitionResult:
    """
    Apply the same transition to each order independently. One order failing does
    not affect the others; each runs in its own transaction.
    """
    target = OrderStatus(target)
    reason = _clean_reason(target, reason)
    unique_ids = list(dict.fromkeys(order_ids))
    if len(unique_ids) > settings.bulk_transition_max_orders:
        raise ValidationFailed(
            f"At most {settings.bulk_transition_max_orders} orders can be updated at once",
            {"count": len(unique_ids)},
        )

    sem = asyncio.Semaphore(settings.bulk_transition_concurrency)

    async def _one(order_id: str) -> BulkItemResult:
        key = f"{idempotency_key}:{order_id}" if idempotency_key else None
        async with sem:
            try:
                outcome = await transition_order(store, dispatcher, order_id, target, actor, reason, key)
            except MarketplaceError as e:
                return BulkItemResult(order_id=order_id, success=False, error=e.to_dict())
            except Exception:
                logger.exception("Bulk transition of order %s to %s failed", order_id, target.value)
                error = MarketplaceError("Unexpected error updating order", {"orderId": order_id}, code="INTERNAL_ERROR")
                return BulkItemResult(order_id=order_id, success=False, error=error.to_dict())
        return BulkItemResult(order_id=order_id, success=True, status=outcome.order.status)

    results = await asyncio.gather(*(_one(order_id) for order_id in unique_ids))
    success_count = sum(1 for r in results if r.success)
    logger.info(
        "Bulk transition to %s: %d/%d succeeded", target.value, success_count, len(results),
    )
    return BulkTransitionResult(
        success_count=success_count,
        failed_count=len(results) - success_count,
        total_count=len(results),
        results=list(results),
    )
