"""
Notification worker: pull jobs from Redis, hand them to the notifier.
- Exponential backoff + manual DLQ after worker_max_retries attempts.
- Prometheus /metrics on worker_metrics_port (worker metrics).
- Graceful shutdown on SIGTERM.
Run: python -m marketplace.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time

import redis.asyncio as redis
from pydantic import ValidationError

from marketplace.config import settings
from marketplace.metrics import (
    messages_dlq_total,
    messages_failed_total,
    messages_processed_total,
    notifications_failed_total,
)
from marketplace.notifications import LoggingNotifier, NotificationJob, Notifier
from marketplace.queue import NOTIFICATION_DLQ_KEY, NOTIFICATION_QUEUE_KEY

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30


class NotificationFailed(Exception):
    pass


def _start_metrics_server() -> None:
    from prometheus_client import start_http_server
    start_http_server(settings.worker_metrics_port)


def backoff_seconds(attempts: int) -> int:
    return 2 ** attempts


async def process_one(
    r: redis.Redis,
    notifier: Notifier,
    raw: str,
    sem: asyncio.Semaphore,
    sleep=asyncio.sleep,
) -> None:
    try:
        job = NotificationJob.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Unreadable notification job from queue, skipping: %s", e)
        return
    attempts = job.attempts

    async with sem:
        try:
            result = await notifier.notify(job.recipient, job.template_type, job.data)
            if not result.success:
                raise NotificationFailed(f"no channel delivered: {result.channel_results}")
            logger.info("Sent %s for order %s to %s", job.template_type, job.order_number, job.recipient.kind)
            messages_processed_total.inc()
        except Exception as e:
            messages_failed_total.inc()
            notifications_failed_total.labels(template_type=job.template_type).inc()
            logger.exception("Failed to send %s for order %s (attempt %d): %s", job.template_type, job.order_id, attempts + 1, e)
            job.attempts = attempts + 1
            if job.attempts >= settings.worker_max_retries:
                dlq_message = json.dumps({
                    "job": job.model_dump(mode="json", by_alias=True),
                    "attempts": job.attempts,
                    "last_error": str(e),
                    "failed_at": time.time(),
                })
                await r.lpush(NOTIFICATION_DLQ_KEY, dlq_message)
                messages_dlq_total.inc()
                logger.warning("Moved %s for order %s to DLQ after %d attempts", job.template_type, job.order_id, job.attempts)
            else:
                backoff_sec = backoff_seconds(attempts)
                logger.info(
                    "Re-queuing %s for order %s in %ds (attempt %d/%d)",
                    job.template_type, job.order_id, backoff_sec, job.attempts, settings.worker_max_retries,
                )
                await sleep(backoff_sec)
                await r.lpush(NOTIFICATION_QUEUE_KEY, job.model_dump_json())


async def run_worker(shutdown_event: asyncio.Event, notifier: Notifier | None = None) -> None:
    notifier = notifier or LoggingNotifier()
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Listening on %s (concurrency=%d, max_retries=%d) ...",
        NOTIFICATION_QUEUE_KEY,
        settings.worker_concurrency,
        settings.worker_max_retries,
    )
    r = redis.from_url(settings.redis_url, decode_responses=True)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(NOTIFICATION_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if result is None:
                continue
            _key, raw = result
            t = asyncio.create_task(process_one(r, notifier, raw, sem))
            tasks.add(t)
            t.add_done_callback(tasks.discard)
    finally:
        if tasks:
            logger.info("Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...", len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
            _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC, return_when=asyncio.ALL_COMPLETED)
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        await r.aclose()
        logger.info("Worker stopped.")


def main() -> None:
    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", settings.worker_metrics_port)

    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_worker(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
