"""
Checkout sessions: a quote/cart snapshot held for the lifetime of a checkout flow.

Sessions live in an injected expiring cache (redis in production). Every session
records its own expiry; an expired session is rejected and deleted, never revived,
and updates keep the remaining TTL instead of extending it.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional, Protocol

import redis.asyncio as redis

from marketplace.errors import NotFoundError, SessionCompletedError, SessionExpiredError
from marketplace.schemas import CamelModel, MerchantDeliveryProfile, OrderItem

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "checkout:session:"
COMPLETION_KEY_PREFIX = "checkout:complete:"


class ExpiringCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def add(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set only if absent. True if this call stored the value."""
        ...

    async def delete(self, key: str) -> None: ...


class RedisExpiringCache:
    def __init__(self, client: redis.Redis):
        self._client = client

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def add(self, key: str, value: str, ttl_seconds: int) -> bool:
        # SETNX: if we set it, we're first
        return bool(await self._client.set(key, value, nx=True, ex=ttl_seconds))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)


class CheckoutSession(CamelModel):
    session_id: str
    merchant_id: str
    merchant: MerchantDeliveryProfile
    items: list[OrderItem]
    subtotal: float
    payment_reference: str
    status: Literal["pending", "completed"] = "pending"
    created_at: datetime
    expires_at: datetime
    order_id: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutSessionStore:
    def __init__(self, cache: ExpiringCache, ttl_seconds: int):
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    async def create(
        self,
        merchant: MerchantDeliveryProfile,
        items: list[OrderItem],
        subtotal: float,
        now: Optional[datetime] = None,
    ) -> CheckoutSession:
        now = now or _utcnow()
        session_id = secrets.token_urlsafe(24)
        session = CheckoutSession(
            session_id=session_id,
            merchant_id=merchant.id,
            merchant=merchant,
            items=items,
            subtotal=subtotal,
            payment_reference=f"PAY-{session_id[:8].upper()}",
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
        )
        await self._cache.set(SESSION_KEY_PREFIX + session_id, session.model_dump_json(), self._ttl_seconds)
        logger.info("Checkout session %s created for merchant %s (subtotal=%.2f)", session_id, merchant.id, subtotal)
        return session

    async def get(self, session_id: str, now: Optional[datetime] = None) -> CheckoutSession:
        raw = await self._cache.get(SESSION_KEY_PREFIX + session_id)
        if raw is None:
            raise NotFoundError("Session not found or expired", {"sessionId": session_id}, code="SESSION_NOT_FOUND")
        session = CheckoutSession.model_validate_json(raw)
        if session.is_expired(now or _utcnow()):
            await self._cache.delete(SESSION_KEY_PREFIX + session_id)
            logger.info("Checkout session %s expired at %s", session_id, session.expires_at.isoformat())
            raise SessionExpiredError(session_id)
        return session

    def _remaining_ttl(self, session: CheckoutSession, now: datetime) -> int:
        remaining = int((session.expires_at - now).total_seconds())
        if remaining <= 0:
            raise SessionExpiredError(session.session_id)
        return remaining

    async def save(self, session: CheckoutSession, now: Optional[datetime] = None) -> None:
        """Persist changes without extending the session's lifetime."""
        ttl = self._remaining_ttl(session, now or _utcnow())
        await self._cache.set(SESSION_KEY_PREFIX + session.session_id, session.model_dump_json(), ttl)

    async def claim_completion(self, session: CheckoutSession, now: Optional[datetime] = None) -> None:
        """Guard against two concurrent completions of the same session."""
        if session.status == "completed":
            raise SessionCompletedError(session.session_id)
        ttl = self._remaining_ttl(session, now or _utcnow())
        if not await self._cache.add(COMPLETION_KEY_PREFIX + session.session_id, "1", ttl):
            raise SessionCompletedError(session.session_id)

    async def release_completion(self, session_id: str) -> None:
        await self._cache.delete(COMPLETION_KEY_PREFIX + session_id)
