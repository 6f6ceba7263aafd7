"""
Async Postgres: merchants, products, orders (current state) + order_events (audit log).
Each status change runs in a single transaction: lock order row, insert event, validate, update state.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Protocol

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from marketplace.config import settings
from marketplace.errors import NotFoundError, PersistenceError
from marketplace.order_state import STATUS_TIMESTAMPS, OrderStatus, assert_transition
from marketplace.schemas import MerchantDeliveryProfile, Order, OrderEvent, OrderItem, Product, TransitionOutcome

logger = logging.getLogger(__name__)

# Driver failures surfaced to callers as PersistenceError.
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_pool: asyncpg.Pool | None = None


class DuplicateTransitionError(Exception):
    """Raised when the idempotency key already exists (UniqueViolation). Transaction will roll back."""


class Store(Protocol):
    async def get_merchant(self, merchant_id: str) -> Optional[MerchantDeliveryProfile]: ...

    async def get_products(self, merchant_id: str, product_ids: list[str]) -> list[Product]: ...

    async def create_order(self, order: Order, actor: str) -> Order: ...

    async def get_order(self, order_id: str) -> Optional[Order]: ...

    async def list_order_events(self, order_id: str) -> list[OrderEvent]: ...

    async def apply_transition(
        self,
        order_id: str,
        target: OrderStatus,
        actor: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> TransitionOutcome: ...


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS merchants (
                id VARCHAR(64) PRIMARY KEY,
                business_name VARCHAR(255) NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
                email VARCHAR(255),
                phone VARCHAR(32),
                postal_code VARCHAR(6),
                latitude DOUBLE PRECISION,
                longitude DOUBLE PRECISION,
                delivery_enabled BOOLEAN NOT NULL DEFAULT TRUE,
                pickup_enabled BOOLEAN NOT NULL DEFAULT TRUE,
                delivery_fee NUMERIC(10, 2),
                delivery_radius DOUBLE PRECISION,
                minimum_order NUMERIC(10, 2) NOT NULL DEFAULT 0,
                preparation_time INT,
                delivery_settings JSONB,
                operating_hours JSONB,
                paynow_number VARCHAR(32),
                deleted_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id VARCHAR(64) PRIMARY KEY,
                merchant_id VARCHAR(64) NOT NULL REFERENCES merchants(id),
                name VARCHAR(255) NOT NULL,
                price NUMERIC(10, 2) NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
                deleted_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                order_number VARCHAR(32) NOT NULL UNIQUE,
                merchant_id VARCHAR(64) NOT NULL REFERENCES merchants(id),
                status VARCHAR(32) NOT NULL,
                delivery_method VARCHAR(16) NOT NULL,
                delivery_postal_code VARCHAR(6),
                delivery_address TEXT,
                customer_id VARCHAR(64),
                customer_name VARCHAR(255),
                customer_email VARCHAR(255),
                customer_phone VARCHAR(32),
                subtotal NUMERIC(10, 2) NOT NULL,
                delivery_fee NUMERIC(10, 2) NOT NULL DEFAULT 0,
                total NUMERIC(10, 2) NOT NULL,
                payment_reference VARCHAR(32),
                delivery_notes TEXT,
                cancellation_reason TEXT,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                confirmed_at TIMESTAMPTZ,
                prepared_at TIMESTAMPTZ,
                ready_at TIMESTAMPTZ,
                delivered_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                cancelled_at TIMESTAMPTZ,
                refunded_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id UUID PRIMARY KEY,
                order_id VARCHAR(64) NOT NULL REFERENCES orders(id),
                product_id VARCHAR(64) NOT NULL,
                product_name VARCHAR(255) NOT NULL,
                product_price NUMERIC(10, 2) NOT NULL,
                quantity INT NOT NULL,
                total NUMERIC(10, 2) NOT NULL,
                notes TEXT
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_events (
                id UUID PRIMARY KEY,
                order_id VARCHAR(64) NOT NULL REFERENCES orders(id),
                idempotency_key VARCHAR(255),
                from_status VARCHAR(32),
                to_status VARCHAR(32) NOT NULL,
                actor VARCHAR(255) NOT NULL,
                reason TEXT,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                UNIQUE(order_id, idempotency_key)
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_events_order_id
            ON order_events(order_id);
        """)


def _num(value) -> Optional[float]:
    return float(value) if value is not None else None


def _dec(value: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _json(value) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _merchant_from_row(row) -> MerchantDeliveryProfile:
    data = dict(row)
    for key in ("delivery_fee", "minimum_order"):
        data[key] = _num(data[key])
    data["minimum_order"] = data["minimum_order"] or 0
    for key in ("delivery_settings", "operating_hours"):
        data[key] = _json(data[key])
    return MerchantDeliveryProfile.model_validate(data)


def _order_from_row(row, items) -> Order:
    data = dict(row)
    for key in ("subtotal", "delivery_fee", "total"):
        data[key] = _num(data[key])
    data["items"] = [
        OrderItem(
            product_id=item["product_id"],
            product_name=item["product_name"],
            product_price=_num(item["product_price"]),
            quantity=item["quantity"],
            total=_num(item["total"]),
            notes=item["notes"],
        )
        for item in items
    ]
    return Order.model_validate(data)


def _event_from_row(row) -> OrderEvent:
    data = dict(row)
    data["id"] = str(data["id"])
    return OrderEvent.model_validate(data)


_MERCHANT_COLUMNS = """
    id, business_name, email, phone, postal_code, latitude, longitude, delivery_enabled,
    pickup_enabled, delivery_fee, delivery_radius, minimum_order, preparation_time,
    delivery_settings, operating_hours, paynow_number
"""


class PostgresStore:
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_merchant(self, merchant_id: str) -> Optional[MerchantDeliveryProfile]:
        """Active, non-deleted merchant or None."""
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_MERCHANT_COLUMNS} FROM merchants "
                    "WHERE id = $1 AND status = 'ACTIVE' AND deleted_at IS NULL;",
                    merchant_id,
                )
        except DB_ERRORS as e:
            logger.exception("Failed to load merchant %s", merchant_id)
            raise PersistenceError() from e
        return _merchant_from_row(row) if row else None

    async def get_products(self, merchant_id: str, product_ids: list[str]) -> list[Product]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, merchant_id, name, price FROM products
                    WHERE id = ANY($1::varchar[]) AND merchant_id = $2
                      AND status = 'ACTIVE' AND deleted_at IS NULL;
                    """,
                    product_ids,
                    merchant_id,
                )
        except DB_ERRORS as e:
            logger.exception("Failed to load products for merchant %s", merchant_id)
            raise PersistenceError() from e
        return [
            Product(id=r["id"], merchant_id=r["merchant_id"], name=r["name"], price=float(r["price"]))
            for r in rows
        ]

    async def create_order(self, order: Order, actor: str) -> Order:
        """Insert order, items and the creation event in one transaction."""
        now = datetime.now(timezone.utc)
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO orders (
                            id, order_number, merchant_id, status, delivery_method, delivery_postal_code,
                            delivery_address, customer_id, customer_name, customer_email, customer_phone,
                            subtotal, delivery_fee, total, payment_reference, delivery_notes,
                            created_at, updated_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $17);
                        """,
                        order.id,
                        order.order_number,
                        order.merchant_id,
                        OrderStatus.PENDING.value,
                        order.delivery_method.value,
                        order.delivery_postal_code,
                        order.delivery_address,
                        order.customer_id,
                        order.customer_name,
                        order.customer_email,
                        order.customer_phone,
                        _dec(order.subtotal),
                        _dec(order.delivery_fee),
                        _dec(order.total),
                        order.payment_reference,
                        order.delivery_notes,
                        now,
                    )
                    await conn.executemany(
                        """
                        INSERT INTO order_items (id, order_id, product_id, product_name, product_price, quantity, total, notes)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8);
                        """,
                        [
                            (uuid.uuid4(), order.id, i.product_id, i.product_name, _dec(i.product_price), i.quantity, _dec(i.total), i.notes)
                            for i in order.items
                        ],
                    )
                    await conn.execute(
                        """
                        INSERT INTO order_events (id, order_id, from_status, to_status, actor, created_at)
                        VALUES ($1, $2, NULL, $3, $4, $5);
                        """,
                        uuid.uuid4(),
                        order.id,
                        OrderStatus.PENDING.value,
                        actor,
                        now,
                    )
        except DB_ERRORS as e:
            logger.exception("Failed to create order %s", order.order_number)
            raise PersistenceError() from e
        return order.model_copy(update={"status": OrderStatus.PENDING, "created_at": now, "updated_at": now})

    async def _fetch_order(self, conn, order_id: str) -> Optional[Order]:
        row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        if row is None:
            return None
        items = await conn.fetch("SELECT * FROM order_items WHERE order_id = $1;", order_id)
        return _order_from_row(row, items)

    async def get_order(self, order_id: str) -> Optional[Order]:
        try:
            async with self._pool.acquire() as conn:
                return await self._fetch_order(conn, order_id)
        except DB_ERRORS as e:
            logger.exception("Failed to load order %s", order_id)
            raise PersistenceError() from e

    async def list_order_events(self, order_id: str) -> list[OrderEvent]:
        """Events for order_id, oldest first."""
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, order_id, idempotency_key, from_status, to_status, actor, reason, created_at
                    FROM order_events WHERE order_id = $1
                    ORDER BY created_at ASC;
                    """,
                    order_id,
                )
        except DB_ERRORS as e:
            logger.exception("Failed to load events for order %s", order_id)
            raise PersistenceError() from e
        return [_event_from_row(r) for r in rows]

    async def apply_transition(
        self,
        order_id: str,
        target: OrderStatus,
        actor: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Change one order's status in a single transaction.
        - SELECT order FOR UPDATE so concurrent transitions on the same order serialize.
        - Insert into order_events (UNIQUE on order_id + idempotency_key = retried request is a no-op).
        - Validate against the state machine; update status + entry timestamp.
        Raises NotFoundError, InvalidTransitionError (both roll back) or PersistenceError.
        """
        event_id = uuid.uuid4()
        now = datetime.now(timezone.utc)
        timestamp_column = STATUS_TIMESTAMPS.get(target)

        try:
            async with self._pool.acquire() as conn:
                try:
                    async with conn.transaction():
                        row = await conn.fetchrow(
                            "SELECT status FROM orders WHERE id = $1 FOR UPDATE;",
                            order_id,
                        )
                        if row is None:
                            raise NotFoundError("Order not found", {"orderId": order_id}, code="ORDER_NOT_FOUND")
                        current = OrderStatus(row["status"])

                        try:
                            await conn.execute(
                                """
                                INSERT INTO order_events (id, order_id, idempotency_key, from_status, to_status, actor, reason, created_at)
                                VALUES ($1, $2, $3, $4, $5, $6, $7, $8);
                                """,
                                event_id,
                                order_id,
                                idempotency_key,
                                current.value,
                                target.value,
                                actor,
                                reason,
                                now,
                            )
                        except UniqueViolationError:
                            raise DuplicateTransitionError()

                        assert_transition(current, target)

                        assignments = ["status = $1", "updated_at = $2"]
                        if timestamp_column:
                            assignments.append(f"{timestamp_column} = $2")
                        if target is OrderStatus.CANCELLED:
                            assignments.append("cancellation_reason = $4")
                        await conn.execute(
                            f"UPDATE orders SET {', '.join(assignments)} WHERE id = $3;",
                            *([target.value, now, order_id] + ([reason] if target is OrderStatus.CANCELLED else [])),
                        )
                        order = await self._fetch_order(conn, order_id)
                except DuplicateTransitionError:
                    logger.info("Duplicate transition key=%s for order %s, skipped", idempotency_key, order_id)
                    order = await self._fetch_order(conn, order_id)
                    return TransitionOutcome(order=order, duplicate=True)
        except DB_ERRORS as e:
            logger.exception("Transition of order %s to %s failed", order_id, target.value)
            raise PersistenceError() from e

        event = OrderEvent(
            id=str(event_id),
            order_id=order_id,
            from_status=current,
            to_status=target,
            actor=actor,
            reason=reason,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        return TransitionOutcome(order=order, event=event)
