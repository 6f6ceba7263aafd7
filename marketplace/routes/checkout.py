from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import Field

from marketplace.checkout import ContactInfo, DeliveryAddress, LineItem, complete_checkout, create_session, quote_for_session
from marketplace.db import Store
from marketplace.deps import get_dispatcher, get_sessions, get_store
from marketplace.notifications import Dispatcher
from marketplace.routes.delivery import QUOTE_FIELDS
from marketplace.schemas import CamelModel, DeliveryMethod
from marketplace.sessions import CheckoutSessionStore

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CreateSessionBody(CamelModel):
    merchant_id: str = Field(..., min_length=1)
    items: list[LineItem] = Field(..., min_length=1)


class SessionQuoteBody(CamelModel):
    postal_code: str = Field(..., pattern=r"^\d{6}$")


class CompleteBody(CamelModel):
    contact_info: ContactInfo
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP
    delivery_address: Optional[DeliveryAddress] = None
    delivery_notes: Optional[str] = None


@router.post("/sessions")
async def create_checkout_session(
    body: CreateSessionBody,
    store: Store = Depends(get_store),
    sessions: CheckoutSessionStore = Depends(get_sessions),
) -> JSONResponse:
    session = await create_session(store, sessions, body.merchant_id, body.items)
    return JSONResponse(status_code=201, content=session.model_dump(mode="json", by_alias=True))


@router.get("/sessions/{session_id}")
async def get_checkout_session(
    session_id: str,
    sessions: CheckoutSessionStore = Depends(get_sessions),
) -> JSONResponse:
    session = await sessions.get(session_id)
    return JSONResponse(status_code=200, content=session.model_dump(mode="json", by_alias=True))


@router.post("/sessions/{session_id}/quote")
async def quote_checkout_session(
    session_id: str,
    body: SessionQuoteBody,
    sessions: CheckoutSessionStore = Depends(get_sessions),
) -> JSONResponse:
    result = await quote_for_session(sessions, session_id, body.postal_code)
    return JSONResponse(status_code=200, content=result.model_dump(mode="json", by_alias=True, include=QUOTE_FIELDS))


@router.post("/sessions/{session_id}/complete")
async def complete_checkout_session(
    session_id: str,
    body: CompleteBody,
    store: Store = Depends(get_store),
    sessions: CheckoutSessionStore = Depends(get_sessions),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Create the order in PENDING. Delivery orders must pass a fresh delivery quote."""
    result = await complete_checkout(
        store,
        sessions,
        dispatcher,
        session_id,
        body.contact_info,
        body.delivery_method,
        body.delivery_address,
        body.delivery_notes,
    )
    return JSONResponse(status_code=201, content=result.model_dump(mode="json", by_alias=True))
