import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from marketplace.config import settings
from marketplace.db import PostgresStore, close_pool, get_pool, init_schema
from marketplace.errors import MarketplaceError
from marketplace.metrics import get_metrics_bytes, get_metrics_content_type, notification_queue_messages_waiting
from marketplace.notifications import InlineDispatcher, LoggingNotifier
from marketplace.queue import NOTIFICATION_QUEUE_KEY, QueueDispatcher
from marketplace.redis_client import close_redis, get_redis, queue_length
from marketplace.routes import admin, checkout, delivery, orders
from marketplace.sessions import CheckoutSessionStore, RedisExpiringCache

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    r = await get_redis()
    pool = await get_pool()
    await init_schema(pool)
    app.state.store = PostgresStore(pool)
    app.state.sessions = CheckoutSessionStore(RedisExpiringCache(r), settings.checkout_session_ttl_seconds)
    if settings.notification_mode == "inline":
        app.state.dispatcher = InlineDispatcher(LoggingNotifier())
    else:
        app.state.dispatcher = QueueDispatcher()
    logger.info("Marketplace API ready (notification_mode=%s)", settings.notification_mode)
    yield
    if isinstance(app.state.dispatcher, InlineDispatcher):
        await app.state.dispatcher.drain()
    await close_pool()
    await close_redis()


app = FastAPI(title="Marketplace Delivery & Orders", lifespan=lifespan)
app.include_router(delivery.router)
app.include_router(checkout.router)
app.include_router(orders.router)
app.include_router(admin.router)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: quotes, transitions, notifications, queue depth."""
    try:
        notification_queue_messages_waiting.set(await queue_length(NOTIFICATION_QUEUE_KEY))
    except Exception:
        logger.warning("Could not read notification queue depth", exc_info=True)
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
