"""
Delivery pricing configuration: one validated variant per pricing model.

Merchants store their settings as a JSON blob. The blob is parsed once at the
boundary into a tagged variant so the quote engine can dispatch on the model
instead of probing optional fields. Fallbacks for unset values are resolved
through explicit precedence lists.
"""
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError, model_validator

from marketplace.config import settings
from marketplace.schemas import CamelModel, MerchantDeliveryProfile

logger = logging.getLogger(__name__)


class _PricingBase(CamelModel):
    free_delivery_minimum: Optional[float] = Field(None, ge=0, le=500)


class FlatSettings(_PricingBase):
    pricing_model: Literal["FLAT"] = "FLAT"
    flat_rate: Optional[float] = Field(None, ge=0, le=50)
    special_area_surcharge: Optional[float] = Field(None, ge=0, le=50)


class DistanceTier(CamelModel):
    min_km: float = Field(..., ge=0)
    max_km: float = Field(..., le=50)
    additional_fee: float = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def _ordered_bounds(self):
        if self.max_km < self.min_km:
            raise ValueError("maxKm must not be below minKm")
        return self


class DistanceSettings(_PricingBase):
    pricing_model: Literal["DISTANCE"] = "DISTANCE"
    base_rate: float = Field(..., ge=0, le=50)
    # Stored with the tier table; fees come from base rate plus the matching tier.
    per_km_rate: float = Field(0, ge=0, le=10)
    tiers: list[DistanceTier] = Field(default_factory=list, max_length=5)
    special_area_surcharge: Optional[float] = Field(None, ge=0, le=50)


class ZoneSettings(_PricingBase):
    pricing_model: Literal["ZONE"] = "ZONE"
    same_zone: float = Field(..., ge=0, le=50)
    adjacent_zone: float = Field(..., ge=0, le=50)
    cross_zone: float = Field(..., ge=0, le=50)
    special_area: float = Field(..., ge=0, le=100)


class FreeSettings(_PricingBase):
    pricing_model: Literal["FREE"] = "FREE"


DeliverySettings = Annotated[
    Union[FlatSettings, DistanceSettings, ZoneSettings, FreeSettings],
    Field(discriminator="pricing_model"),
]
_settings_adapter: TypeAdapter = TypeAdapter(DeliverySettings)

# Stored blobs nest the model-specific rates under these keys.
_NESTED_RATE_KEYS = {"ZONE": "zoneRates", "DISTANCE": "distanceRates"}


def _flatten(raw: dict[str, Any]) -> dict[str, Any]:
    data = dict(raw)
    model = data.pop("pricing_model", None)
    model = data.setdefault("pricingModel", model)
    nested_key = _NESTED_RATE_KEYS.get(model)
    if nested_key and isinstance(data.get(nested_key), dict):
        data = {**data[nested_key], **{k: v for k, v in data.items() if k != nested_key}}
    return data


def parse_delivery_settings(raw: Any) -> Optional[Union[FlatSettings, DistanceSettings, ZoneSettings, FreeSettings]]:
    """Validate a stored settings blob. Missing or invalid blobs return None."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Ignoring delivery settings of type %s", type(raw).__name__)
        return None
    try:
        return _settings_adapter.validate_python(_flatten(raw))
    except ValidationError as e:
        logger.warning("Invalid delivery settings, falling back to flat rate: %s", e.errors())
        return None


def first_set(*candidates: Optional[float]) -> Optional[float]:
    for value in candidates:
        if value is not None:
            return value
    return None


def resolve_flat_rate(pricing, merchant: MerchantDeliveryProfile) -> float:
    """settings.flat_rate -> merchant.delivery_fee -> default_delivery_fee"""
    return first_set(
        getattr(pricing, "flat_rate", None),
        merchant.delivery_fee,
        settings.default_delivery_fee,
    )


def resolve_special_area_surcharge(pricing) -> float:
    """settings.special_area_surcharge -> default_special_area_surcharge"""
    return first_set(
        getattr(pricing, "special_area_surcharge", None),
        settings.default_special_area_surcharge,
    )


def resolve_free_delivery_minimum(pricing, merchant: MerchantDeliveryProfile) -> Optional[float]:
    """settings.free_delivery_minimum -> merchant.minimum_order; <= 0 disables free delivery."""
    threshold = first_set(
        getattr(pricing, "free_delivery_minimum", None),
        merchant.minimum_order or None,
    )
    if threshold is None or threshold <= 0:
        return None
    return threshold


def effective_settings(merchant: MerchantDeliveryProfile):
    """Parsed settings, or a flat-rate default derived from the merchant's delivery fee."""
    parsed = parse_delivery_settings(merchant.delivery_settings)
    if parsed is None:
        return FlatSettings(flat_rate=resolve_flat_rate(None, merchant))
    return parsed
