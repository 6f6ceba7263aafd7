from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import Field

from marketplace.db import Store
from marketplace.deps import get_store
from marketplace.errors import NotFoundError
from marketplace.geo import GEO_TABLE_VERSION, special_area_name, validate_postal_code, zone_of
from marketplace.pricing import quote
from marketplace.schemas import CamelModel

router = APIRouter(prefix="/delivery", tags=["delivery"])

QUOTE_FIELDS = {"fee", "estimated_time", "distance", "zone", "message", "pricing_model", "is_special_area"}


class QuoteRequest(CamelModel):
    merchant_id: str = Field(..., min_length=1, description="Merchant to deliver from")
    postal_code: str = Field(..., pattern=r"^\d{6}$", description="6-digit destination postal code")
    order_total: Optional[float] = Field(None, ge=0, description="Order subtotal, enables free-delivery threshold")


@router.post("/quote")
async def delivery_quote(body: QuoteRequest, store: Store = Depends(get_store)) -> JSONResponse:
    """
    Quote delivery fee and time for a merchant and destination. Computed fresh on every call.
    Rejections (DELIVERY_DISABLED, OUT_OF_RANGE) come back as 400 with context.
    """
    merchant = await store.get_merchant(body.merchant_id)
    if merchant is None:
        raise NotFoundError("Merchant not found", {"merchantId": body.merchant_id}, code="MERCHANT_NOT_FOUND")
    result = quote(merchant, body.postal_code, body.order_total)
    return JSONResponse(
        status_code=200,
        content=result.model_dump(mode="json", by_alias=True, include=QUOTE_FIELDS),
    )


@router.get("/zones/{postal_code}")
async def postal_zone(postal_code: str) -> JSONResponse:
    validate_postal_code(postal_code)
    return JSONResponse(
        status_code=200,
        content={
            "postalCode": postal_code,
            "zone": zone_of(postal_code).value,
            "specialArea": special_area_name(postal_code),
            "tableVersion": GEO_TABLE_VERSION,
        },
    )
