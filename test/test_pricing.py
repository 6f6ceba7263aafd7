"""
Delivery quotes: each pricing model, rejections, free-delivery threshold, time estimate.
"""
import os
import sys

import pytest

_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from _helper import ZONE_RATES, make_merchant

from marketplace.errors import DeliveryDisabledError, OutOfRangeError, ValidationFailed
from marketplace.geo import DistanceResult, GeoZone
from marketplace.pricing import estimate_delivery_time, money, quote

TIERS = [
    {"minKm": 0, "maxKm": 2, "additionalFee": 1},
    {"minKm": 2, "maxKm": 5, "additionalFee": 3},
    {"minKm": 5, "maxKm": 10, "additionalFee": 6},
]


def zone_merchant(**overrides):
    return make_merchant(
        delivery_settings={"pricingModel": "ZONE", "zoneRates": ZONE_RATES, "freeDeliveryMinimum": 100},
        **overrides,
    )


def test_same_zone_quote():
    result = quote(zone_merchant(), "018956", order_total=30)
    assert result.fee == 5.0
    assert "Same zone" in result.message
    assert result.zone is GeoZone.CENTRAL
    assert result.pricing_model == "ZONE"
    assert result.is_special_area is False


def test_adjacent_and_cross_zone_quotes():
    assert quote(zone_merchant(), "650123", 30).fee == 7.0
    west = zone_merchant(postal_code="650123")
    cross = quote(west, "520123", 30)
    assert cross.fee == 10.0
    assert cross.rule == "cross_zone"


def test_zone_special_area():
    result = quote(zone_merchant(), "098123", 30)
    assert result.fee == 15.0
    assert result.is_special_area is True
    assert result.zone is GeoZone.SPECIAL


def test_flat_special_area_surcharge():
    merchant = make_merchant(
        delivery_settings={"pricingModel": "FLAT", "flatRate": 5, "specialAreaSurcharge": 5},
    )
    result = quote(merchant, "098123")
    assert result.fee == 10.0
    assert result.is_special_area is True
    assert "special area" in result.message


def test_flat_without_settings_uses_merchant_fee():
    result = quote(make_merchant(delivery_fee=4.5), "018956")
    assert result.fee == 4.5
    assert result.pricing_model == "FLAT"
    assert result.rule == "flat"


def test_malformed_settings_fall_back_to_flat():
    merchant = make_merchant(delivery_fee=4.0, delivery_settings={"pricingModel": "DISTANCE"})
    result = quote(merchant, "018956")
    assert result.pricing_model == "FLAT"
    assert result.fee == 4.0


def test_free_model():
    result = quote(make_merchant(delivery_settings={"pricingModel": "FREE"}), "098123")
    assert result.fee == 0.0
    assert result.message == "Free delivery"


@pytest.mark.parametrize("order_total, free", [(99.99, False), (100, True), (150, True), (None, False)])
def test_free_delivery_threshold(order_total, free):
    result = quote(zone_merchant(), "098123", order_total)
    if free:
        assert result.fee == 0.0
        assert "Free delivery" in result.message
        assert result.rule == "free_minimum"
    else:
        assert result.fee == 15.0


def test_distance_tier_pricing():
    merchant = make_merchant(
        delivery_settings={"pricingModel": "DISTANCE", "distanceRates": {"baseRate": 3, "tiers": TIERS}},
    )
    result = quote(merchant, "018956")
    assert result.distance > 2
    assert result.fee == 6.0
    assert result.rule == "distance_tier"


def test_distance_zero_km_uses_first_tier():
    merchant = make_merchant(
        latitude=1.2830,
        longitude=103.8510,
        delivery_settings={"pricingModel": "DISTANCE", "distanceRates": {"baseRate": 3, "tiers": TIERS}},
    )
    result = quote(merchant, "018956")
    assert result.distance == 0.0
    assert result.fee == 4.0
    assert result.rule == "distance_tier"


def test_distance_beyond_tiers_charges_base_only():
    merchant = make_merchant(
        delivery_settings={"pricingModel": "DISTANCE", "distanceRates": {"baseRate": 3, "tiers": TIERS[:1]}},
    )
    result = quote(merchant, "018956")
    assert result.fee == 3.0
    assert result.rule == "distance_base"


def test_distance_unresolved_uses_flat_fallback():
    merchant = make_merchant(
        delivery_fee=4.0,
        delivery_radius=1,
        delivery_settings={"pricingModel": "DISTANCE", "distanceRates": {"baseRate": 3, "tiers": TIERS}},
    )
    result = quote(merchant, "740123")
    assert result.rule == "distance_unresolved"
    assert result.fee == 4.0
    assert result.distance == 0.0


def test_out_of_range_rejected():
    merchant = make_merchant(latitude=1.2836, longitude=103.8515, delivery_radius=0.11)
    with pytest.raises(OutOfRangeError) as exc:
        quote(merchant, "289899")
    err = exc.value
    assert err.code == "OUT_OF_RANGE"
    assert "not available to this area" in err.message
    assert err.context["deliveryRadius"] == 0.11
    assert err.context["distance"] > 0.11
    assert err.context["postalCode"] == "289899"


def test_out_of_range_checked_before_free_delivery():
    merchant = zone_merchant(latitude=1.2836, longitude=103.8515, delivery_radius=1)
    with pytest.raises(OutOfRangeError):
        quote(merchant, "289899", order_total=500)


def test_delivery_disabled_rejected():
    with pytest.raises(DeliveryDisabledError) as exc:
        quote(make_merchant(delivery_enabled=False), "018956")
    assert exc.value.code == "DELIVERY_DISABLED"


def test_invalid_destination_rejected():
    with pytest.raises(ValidationFailed):
        quote(make_merchant(), "12345")


def test_malformed_merchant_postal_assumes_central():
    result = quote(zone_merchant(postal_code="N/A"), "018956", 30)
    assert result.fee == 5.0


def test_estimate_delivery_time():
    assert estimate_delivery_time(20, DistanceResult(15.0, True), True) == 50
    assert estimate_delivery_time(30, DistanceResult(0.0, False), True) == 50
    assert estimate_delivery_time(30, DistanceResult(0.0, False), False) == 30
    assert estimate_delivery_time(None, DistanceResult(0.0, False), False) == 30


def test_quote_estimated_time_includes_travel():
    result = quote(make_merchant(preparation_time=10), "018956")
    assert result.estimated_time > 10


def test_money_rounds_half_up():
    assert money(2.675) == 2.68
    assert money(0.125) == 0.13
    assert money(10) == 10.0
