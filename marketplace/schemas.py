"""
Domain schemas shared by the store, the services and the HTTP layer.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from marketplace.order_state import OrderStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeliveryMethod(str, Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class MerchantDeliveryProfile(CamelModel):
    id: str
    business_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    delivery_enabled: bool = True
    pickup_enabled: bool = True
    delivery_fee: Optional[float] = Field(None, ge=0)
    delivery_radius: Optional[float] = Field(None, ge=0, description="km ceiling for delivery")
    minimum_order: float = Field(0, ge=0)
    preparation_time: Optional[int] = Field(None, ge=0, description="minutes")
    delivery_settings: Optional[dict[str, Any]] = Field(None, description="Stored pricing blob")
    operating_hours: Optional[dict[str, Any]] = None
    paynow_number: Optional[str] = None

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


class Product(CamelModel):
    id: str
    merchant_id: str
    name: str
    price: float = Field(..., ge=0)
    active: bool = True


class OrderItem(CamelModel):
    product_id: str
    product_name: str
    product_price: float
    quantity: int = Field(..., gt=0)
    total: float
    notes: Optional[str] = None


class Order(CamelModel):
    id: str
    order_number: str
    merchant_id: str
    status: OrderStatus = OrderStatus.PENDING
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP
    delivery_postal_code: Optional[str] = None
    delivery_address: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    subtotal: float = 0
    delivery_fee: float = 0
    total: float = 0
    payment_reference: Optional[str] = None
    delivery_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class OrderEvent(CamelModel):
    """Immutable audit record of one status change."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    order_id: str
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    actor: str
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: datetime


class TransitionOutcome(CamelModel):
    order: Order
    event: Optional[OrderEvent] = None
    duplicate: bool = False
