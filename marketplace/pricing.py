"""
Delivery quote engine.

quote() is a pure function of the merchant profile, the destination postal code and
the order total. Quotes are computed fresh on every call; nothing is cached or stored.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from marketplace.config import settings
from marketplace.delivery_settings import (
    DistanceSettings,
    FlatSettings,
    FreeSettings,
    ZoneSettings,
    effective_settings,
    resolve_flat_rate,
    resolve_free_delivery_minimum,
    resolve_special_area_surcharge,
)
from marketplace.errors import DeliveryDisabledError, OutOfRangeError, ValidationFailed
from marketplace.geo import (
    DistanceResult,
    GeoZone,
    are_adjacent,
    distance_between,
    is_within_radius,
    validate_postal_code,
    zone_of,
)
from marketplace.metrics import delivery_quotes_rejected_total, delivery_quotes_total
from marketplace.schemas import CamelModel, MerchantDeliveryProfile

logger = logging.getLogger(__name__)


class DeliveryQuote(CamelModel):
    fee: float
    estimated_time: int  # minutes
    distance: float  # km, 0 when unknown
    zone: GeoZone
    message: str
    pricing_model: str
    is_special_area: bool
    rule: str  # which pricing rule produced the fee


def money(value: float) -> float:
    """Round to cents, half up."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def merchant_zone(merchant: MerchantDeliveryProfile) -> GeoZone:
    """Merchant zone from its postal code; central when missing or malformed."""
    try:
        return zone_of(merchant.postal_code) if merchant.postal_code else GeoZone.CENTRAL
    except ValidationFailed:
        logger.warning("Merchant %s has malformed postal code %r, assuming central", merchant.id, merchant.postal_code)
        return GeoZone.CENTRAL


def estimate_delivery_time(
    preparation_time: Optional[int],
    distance: DistanceResult,
    crosses_zone: bool,
) -> int:
    """Preparation time plus travel time at average speed, or a flat penalty across zones."""
    minutes = preparation_time if preparation_time is not None else settings.default_preparation_time
    if distance.resolved:
        minutes += distance.km / settings.average_speed_kmh * 60
    elif crosses_zone:
        minutes += settings.cross_zone_time_penalty
    return round(minutes)


def _flat_fee(pricing, merchant, is_special_area) -> tuple[float, str, str]:
    fee = resolve_flat_rate(pricing, merchant)
    if is_special_area:
        fee += resolve_special_area_surcharge(pricing)
        return fee, "Standard delivery fee + special area surcharge", "special_area"
    return fee, "Standard delivery fee", "flat"


def _distance_fee(pricing: DistanceSettings, merchant, distance: DistanceResult, is_special_area) -> tuple[float, str, str]:
    if not distance.resolved:
        # No coordinates: never price base/tier math against a zero distance.
        fee = resolve_flat_rate(None, merchant)
        message, rule = "Standard delivery fee (distance unavailable)", "distance_unresolved"
    else:
        fee = pricing.base_rate
        tier = next((t for t in pricing.tiers if t.min_km <= distance.km <= t.max_km), None)
        if tier is not None:
            fee += tier.additional_fee
            message, rule = f"Distance-based fee ({distance.km} km, {tier.min_km}-{tier.max_km} km tier)", "distance_tier"
        else:
            message, rule = f"Distance-based fee ({distance.km} km)", "distance_base"
    if is_special_area:
        fee += resolve_special_area_surcharge(pricing)
        message += " + special area surcharge"
    return fee, message, rule


def _zone_fee(pricing: ZoneSettings, origin: GeoZone, destination: GeoZone) -> tuple[float, str, str]:
    if destination is GeoZone.SPECIAL:
        return pricing.special_area, "Special area delivery", "special_area"
    if destination is origin:
        return pricing.same_zone, "Same zone delivery", "same_zone"
    if are_adjacent(origin, destination):
        return pricing.adjacent_zone, "Adjacent zone delivery", "adjacent_zone"
    return pricing.cross_zone, "Cross-zone delivery", "cross_zone"


def quote(
    merchant: MerchantDeliveryProfile,
    postal_code: str,
    order_total: Optional[float] = None,
) -> DeliveryQuote:
    """
    Compute a delivery quote.
    Raises DeliveryDisabledError, OutOfRangeError (business rejections) and
    ValidationFailed for a malformed postal code.
    """
    validate_postal_code(postal_code)
    if not merchant.delivery_enabled:
        delivery_quotes_rejected_total.labels(reason="DELIVERY_DISABLED").inc()
        raise DeliveryDisabledError(merchant.id)

    destination = zone_of(postal_code)
    origin = merchant_zone(merchant)
    is_special_area = destination is GeoZone.SPECIAL
    distance = distance_between(merchant.postal_code, postal_code, merchant.coordinates)
    if not distance.resolved:
        logger.warning("Distance unresolved for merchant %s -> %s", merchant.id, postal_code)

    if not is_within_radius(distance, merchant.delivery_radius):
        delivery_quotes_rejected_total.labels(reason="OUT_OF_RANGE").inc()
        raise OutOfRangeError(distance.km, merchant.delivery_radius, postal_code)

    pricing = effective_settings(merchant)
    threshold = resolve_free_delivery_minimum(pricing, merchant)

    if order_total is not None and threshold is not None and order_total >= threshold:
        fee, message, rule = 0.0, f"Free delivery on orders above ${threshold:.2f}", "free_minimum"
    elif isinstance(pricing, FreeSettings):
        fee, message, rule = 0.0, "Free delivery", "free_model"
    elif isinstance(pricing, FlatSettings):
        fee, message, rule = _flat_fee(pricing, merchant, is_special_area)
    elif isinstance(pricing, DistanceSettings):
        fee, message, rule = _distance_fee(pricing, merchant, distance, is_special_area)
    elif isinstance(pricing, ZoneSettings):
        fee, message, rule = _zone_fee(pricing, origin, destination)
    else:
        raise TypeError(f"Unhandled pricing model {pricing!r}")

    result = DeliveryQuote(
        fee=money(max(fee, 0.0)),
        estimated_time=estimate_delivery_time(merchant.preparation_time, distance, destination is not origin),
        distance=distance.km,
        zone=destination,
        message=message,
        pricing_model=pricing.pricing_model,
        is_special_area=is_special_area,
        rule=rule,
    )
    delivery_quotes_total.labels(pricing_model=result.pricing_model).inc()
    logger.info(
        "Quote merchant=%s postal=%s model=%s rule=%s fee=%.2f distance=%.1f",
        merchant.id, postal_code, result.pricing_model, rule, result.fee, result.distance,
    )
    return result
