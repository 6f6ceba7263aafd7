"""
Checkout: session creation (cart snapshot), delivery quote, completion into a PENDING order.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from marketplace.db import Store
from marketplace.errors import (
    BusinessRuleError,
    MinimumOrderNotMetError,
    NotFoundError,
    SessionCompletedError,
    SessionExpiredError,
    ValidationFailed,
)
from marketplace.metrics import checkout_sessions_created_total, orders_created_total
from marketplace.notifications import Dispatcher, build_jobs, dispatch_best_effort
from marketplace.operating_hours import is_open, next_opening_time
from marketplace.order_state import OrderStatus
from marketplace.pricing import DeliveryQuote, money, quote
from marketplace.schemas import CamelModel, DeliveryMethod, MerchantDeliveryProfile, Order, OrderItem
from marketplace.sessions import CheckoutSession, CheckoutSessionStore

logger = logging.getLogger(__name__)

PHONE_PATTERN = r"^(\+65)?[689]\d{7}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
POSTAL_CODE_PATTERN = r"^\d{6}$"


class LineItem(CamelModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = None


class ContactInfo(CamelModel):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., pattern=PHONE_PATTERN)


class DeliveryAddress(CamelModel):
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    postal_code: str = Field(..., pattern=POSTAL_CODE_PATTERN)


class CheckoutCompletion(CamelModel):
    order_id: str
    order_number: str
    subtotal: float
    delivery_fee: float
    total: float
    quote: Optional[DeliveryQuote] = None


async def _active_merchant(store: Store, merchant_id: str) -> MerchantDeliveryProfile:
    merchant = await store.get_merchant(merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found or inactive", {"merchantId": merchant_id}, code="MERCHANT_NOT_FOUND")
    return merchant


async def create_session(
    store: Store,
    sessions: CheckoutSessionStore,
    merchant_id: str,
    items: list[LineItem],
    now: Optional[datetime] = None,
) -> CheckoutSession:
    """Validate merchant and products, lock line pricing, enforce the minimum order."""
    if not items:
        raise ValidationFailed("At least one item is required", {"merchantId": merchant_id})
    merchant = await _active_merchant(store, merchant_id)
    if not is_open(merchant.operating_hours, now):
        opening = next_opening_time(merchant.operating_hours, now)
        raise BusinessRuleError(
            "Merchant is currently closed",
            {"merchantId": merchant_id, "nextOpening": opening.isoformat() if opening else None},
            code="MERCHANT_CLOSED",
        )

    requested = list(dict.fromkeys(i.product_id for i in items))
    products = {p.id: p for p in await store.get_products(merchant_id, requested)}
    missing = [pid for pid in requested if pid not in products]
    if missing:
        raise BusinessRuleError(
            "Some products are not available", {"productIds": missing}, code="PRODUCTS_UNAVAILABLE"
        )

    session_items = []
    for item in items:
        product = products[item.product_id]
        session_items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            product_price=product.price,
            quantity=item.quantity,
            total=money(product.price * item.quantity),
            notes=item.notes,
        ))
    subtotal = money(sum(i.total for i in session_items))

    if subtotal < merchant.minimum_order:
        logger.info("Minimum order not met for merchant %s: %.2f < %.2f", merchant_id, subtotal, merchant.minimum_order)
        raise MinimumOrderNotMetError(merchant.minimum_order, subtotal)

    session = await sessions.create(merchant, session_items, subtotal, now)
    checkout_sessions_created_total.inc()
    return session


async def quote_for_session(
    sessions: CheckoutSessionStore,
    session_id: str,
    postal_code: str,
    now: Optional[datetime] = None,
) -> DeliveryQuote:
    session = await sessions.get(session_id, now)
    return quote(session.merchant, postal_code, session.subtotal)


async def complete_checkout(
    store: Store,
    sessions: CheckoutSessionStore,
    dispatcher: Dispatcher,
    session_id: str,
    contact: ContactInfo,
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP,
    address: Optional[DeliveryAddress] = None,
    delivery_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CheckoutCompletion:
    """
    Turn a pending session into a PENDING order. Delivery orders are priced with a
    fresh quote against the current merchant profile; a rejected quote aborts checkout.
    """
    session = await sessions.get(session_id, now)
    if session.status == "completed":
        raise SessionCompletedError(session_id)

    merchant = await _active_merchant(store, session.merchant_id)
    delivery_quote = None
    delivery_method = DeliveryMethod(delivery_method)
    if delivery_method is DeliveryMethod.DELIVERY:
        if address is None:
            raise ValidationFailed("A delivery address is required for delivery orders", {"sessionId": session_id})
        delivery_quote = quote(merchant, address.postal_code, session.subtotal)
    elif not merchant.pickup_enabled:
        raise BusinessRuleError("Pickup not available", {"merchantId": merchant.id}, code="PICKUP_DISABLED")

    await sessions.claim_completion(session, now)
    delivery_fee = delivery_quote.fee if delivery_quote else 0.0
    order = Order(
        id=str(uuid.uuid4()),
        order_number=f"ORD{uuid.uuid4().hex[:10].upper()}",
        merchant_id=merchant.id,
        status=OrderStatus.PENDING,
        delivery_method=delivery_method,
        delivery_postal_code=address.postal_code if address else None,
        delivery_address=", ".join(p for p in (address.line1, address.line2) if p) if address else None,
        customer_name=contact.name,
        customer_email=contact.email,
        customer_phone=contact.phone,
        subtotal=session.subtotal,
        delivery_fee=delivery_fee,
        total=money(session.subtotal + delivery_fee),
        payment_reference=session.payment_reference,
        delivery_notes=delivery_notes,
        items=session.items,
    )
    try:
        order = await store.create_order(order, actor=f"customer:{contact.email}")
    except Exception:
        await sessions.release_completion(session_id)
        raise

    session.status = "completed"
    session.order_id = order.id
    try:
        await sessions.save(session, now)
    except SessionExpiredError:
        # Order is committed; the completion claim still blocks a second checkout.
        logger.warning("Session %s expired before it could be marked completed", session_id)
    except Exception:
        logger.exception("Order %s committed but session %s could not be updated", order.id, session_id)
    orders_created_total.labels(delivery_method=delivery_method.value).inc()
    logger.info("Order %s created from session %s (total=%.2f)", order.order_number, session_id, order.total)

    await dispatch_best_effort(dispatcher, build_jobs(order, OrderStatus.PENDING))
    return CheckoutCompletion(
        order_id=order.id,
        order_number=order.order_number,
        subtotal=order.subtotal,
        delivery_fee=order.delivery_fee,
        total=order.total,
        quote=delivery_quote,
    )
