"""
Shared helpers for tests: in-memory store, expiring cache and dispatchers, plus
factories for merchants and orders. No Postgres or Redis needed.
"""
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from marketplace.errors import NotFoundError, PersistenceError
from marketplace.notifications import NotificationJob, NotificationResult, Recipient
from marketplace.order_state import STATUS_TIMESTAMPS, OrderStatus, assert_transition
from marketplace.schemas import MerchantDeliveryProfile, Order, OrderEvent, Product, TransitionOutcome

ZONE_RATES = {"sameZone": 5, "adjacentZone": 7, "crossZone": 10, "specialArea": 15}


def make_merchant(**overrides: Any) -> MerchantDeliveryProfile:
    fields = {
        "id": "m-1",
        "business_name": "Ah Seng Chicken Rice",
        "postal_code": "238874",
        "delivery_enabled": True,
        "pickup_enabled": True,
        "delivery_fee": 5.0,
        "minimum_order": 0,
        "preparation_time": 30,
    }
    fields.update(overrides)
    return MerchantDeliveryProfile(**fields)


def make_order(order_id: Optional[str] = None, status: OrderStatus = OrderStatus.PENDING, **overrides: Any) -> Order:
    order_id = order_id or f"ord-{uuid.uuid4().hex[:8]}"
    fields = {
        "id": order_id,
        "order_number": f"ORD{order_id[-6:].upper()}",
        "merchant_id": "m-1",
        "status": status,
        "customer_name": "Tan Wei Ling",
        "customer_email": "weiling@example.com",
        "customer_phone": "+6591234567",
        "subtotal": 20.0,
        "total": 20.0,
    }
    fields.update(overrides)
    return Order(**fields)


class FakeStore:
    """Store backed by dicts. Per-order locking mirrors SELECT ... FOR UPDATE."""

    def __init__(self, merchants=(), products=(), orders=()):
        self.merchants = {m.id: m for m in merchants}
        self.products = {p.id: p for p in products}
        self.orders = {o.id: o for o in orders}
        self.events: list[OrderEvent] = []
        self.fail_transitions_for: set[str] = set()
        self.fail_create = False
        self._locks: dict[str, asyncio.Lock] = {}
        self._keys: set[tuple[str, str]] = set()

    async def get_merchant(self, merchant_id: str) -> Optional[MerchantDeliveryProfile]:
        return self.merchants.get(merchant_id)

    async def get_products(self, merchant_id: str, product_ids: list[str]) -> list[Product]:
        return [
            p for pid in product_ids
            if (p := self.products.get(pid)) is not None and p.merchant_id == merchant_id and p.active
        ]

    async def create_order(self, order: Order, actor: str) -> Order:
        if self.fail_create:
            raise PersistenceError()
        now = datetime.now(timezone.utc)
        order = order.model_copy(update={"status": OrderStatus.PENDING, "created_at": now, "updated_at": now})
        self.orders[order.id] = order
        self.events.append(OrderEvent(
            id=str(uuid.uuid4()), order_id=order.id, to_status=OrderStatus.PENDING, actor=actor, created_at=now,
        ))
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    async def list_order_events(self, order_id: str) -> list[OrderEvent]:
        return [e for e in self.events if e.order_id == order_id]

    async def apply_transition(self, order_id, target, actor, reason=None, idempotency_key=None) -> TransitionOutcome:
        if order_id in self.fail_transitions_for:
            raise PersistenceError()
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        async with lock:
            order = self.orders.get(order_id)
            if order is None:
                raise NotFoundError("Order not found", {"orderId": order_id}, code="ORDER_NOT_FOUND")
            if idempotency_key is not None and (order_id, idempotency_key) in self._keys:
                return TransitionOutcome(order=order, duplicate=True)
            assert_transition(order.status, target)

            now = datetime.now(timezone.utc)
            update = {"status": target, "updated_at": now}
            if target in STATUS_TIMESTAMPS:
                update[STATUS_TIMESTAMPS[target]] = now
            if target is OrderStatus.CANCELLED:
                update["cancellation_reason"] = reason
            event = OrderEvent(
                id=str(uuid.uuid4()),
                order_id=order_id,
                from_status=order.status,
                to_status=target,
                actor=actor,
                reason=reason,
                idempotency_key=idempotency_key,
                created_at=now,
            )
            self.orders[order_id] = order.model_copy(update=update)
            self.events.append(event)
            if idempotency_key is not None:
                self._keys.add((order_id, idempotency_key))
            return TransitionOutcome(order=self.orders[order_id], event=event)


class FakeCache:
    """Expiring cache without a clock; expiry is driven by the session's own expires_at."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def add(self, key: str, value: str, ttl_seconds: int) -> bool:
        if key in self.data:
            return False
        await self.set(key, value, ttl_seconds)
        return True

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)


class RecordingDispatcher:
    def __init__(self):
        self.jobs: list[NotificationJob] = []

    async def dispatch(self, job: NotificationJob) -> None:
        self.jobs.append(job)


class FailingDispatcher:
    async def dispatch(self, job: NotificationJob) -> None:
        raise ConnectionError("notification provider unreachable")


class FlakyNotifier:
    """Fails the first `failures` sends, then succeeds."""

    def __init__(self, failures: int = 0, success: bool = True):
        self.failures = failures
        self.success = success
        self.sent: list[tuple[Recipient, str, dict]] = []

    async def notify(self, recipient: Recipient, template_type: str, data: dict) -> NotificationResult:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("provider timeout")
        self.sent.append((recipient, template_type, data))
        return NotificationResult(success=self.success, channel_results={"sms": self.success})


class FakeRedis:
    """Just the list commands the worker and queue use."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}

    async def lpush(self, key: str, value: str) -> int:
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def rpop(self, key: str) -> Optional[str]:
        items = self.lists.get(key) or []
        return items.pop() if items else None

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key) or [])
