from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import Field

from marketplace.config import settings
from marketplace.db import Store
from marketplace.deps import get_dispatcher, get_store
from marketplace.errors import NotFoundError
from marketplace.notifications import Dispatcher
from marketplace.order_state import OrderStatus, allowed_transitions, is_terminal
from marketplace.schemas import CamelModel, Order
from marketplace.transitions import bulk_transition, transition_order

router = APIRouter(prefix="/orders", tags=["orders"])


class StatusUpdateBody(CamelModel):
    status: OrderStatus = Field(..., description="Target status")
    notes: Optional[str] = Field(None, description="Reason; required for CANCELLED and REFUNDED")
    actor: str = Field("merchant", description="Who requested the change")


class BulkStatusUpdateBody(CamelModel):
    order_ids: list[str] = Field(..., min_length=1, max_length=settings.bulk_transition_max_orders)
    status: OrderStatus
    notes: Optional[str] = None
    actor: str = "merchant"


async def _order_or_404(store: Store, order_id: str) -> Order:
    order = await store.get_order(order_id)
    if order is None:
        raise NotFoundError("Order not found", {"orderId": order_id}, code="ORDER_NOT_FOUND")
    return order


@router.get("/{order_id}")
async def get_order(order_id: str, store: Store = Depends(get_store)) -> JSONResponse:
    order = await _order_or_404(store, order_id)
    return JSONResponse(status_code=200, content=order.model_dump(mode="json", by_alias=True))


@router.get("/{order_id}/events")
async def get_order_events(order_id: str, store: Store = Depends(get_store)) -> JSONResponse:
    """Audit trail, oldest first."""
    await _order_or_404(store, order_id)
    events = await store.list_order_events(order_id)
    return JSONResponse(
        status_code=200,
        content={"orderId": order_id, "events": [e.model_dump(mode="json", by_alias=True) for e in events]},
    )


@router.get("/{order_id}/actions")
async def get_order_actions(order_id: str, store: Store = Depends(get_store)) -> JSONResponse:
    """Statuses the order can move to next."""
    order = await _order_or_404(store, order_id)
    return JSONResponse(
        status_code=200,
        content={
            "orderId": order_id,
            "status": order.status.value,
            "terminal": is_terminal(order.status),
            "allowed": [s.value for s in allowed_transitions(order.status)],
        },
    )


@router.post("/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: StatusUpdateBody,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    store: Store = Depends(get_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """
    Move an order to a new status. Invalid transitions -> 409 naming both states.
    Retrying with the same Idempotency-Key returns the current order without a new event.
    """
    outcome = await transition_order(
        store, dispatcher, order_id, body.status, body.actor, body.notes, idempotency_key
    )
    return JSONResponse(
        status_code=200,
        content={
            "order": outcome.order.model_dump(mode="json", by_alias=True),
            "event": outcome.event.model_dump(mode="json", by_alias=True) if outcome.event else None,
            "duplicate": outcome.duplicate,
        },
    )


@router.post("/bulk-status")
async def bulk_update_order_status(
    body: BulkStatusUpdateBody,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    store: Store = Depends(get_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Per-order results; one failure does not stop the others."""
    result = await bulk_transition(
        store, dispatcher, body.order_ids, body.status, body.actor, body.notes, idempotency_key
    )
    return JSONResponse(status_code=200, content=result.model_dump(mode="json", by_alias=True))
