"""
Notification job queue on redis. The API pushes jobs (LPUSH), the worker pops them (BRPOP).
"""
import json
import logging

from marketplace.notifications import NotificationJob
from marketplace.redis_client import get_redis

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE_KEY = "queue:notifications"
NOTIFICATION_DLQ_KEY = "queue:notifications:dlq"


async def push_to_queue(job: NotificationJob) -> None:
    r = await get_redis()
    await r.lpush(NOTIFICATION_QUEUE_KEY, job.model_dump_json())


class QueueDispatcher:
    """Dispatcher that hands jobs to the notification worker."""

    async def dispatch(self, job: NotificationJob) -> None:
        await push_to_queue(job)


async def replay_dlq_to_main(limit: int = 100) -> int:
    """
    Move jobs from the DLQ back to the main queue with attempts reset.
    Unparseable entries are dropped. Returns number of entries taken off the DLQ.
    """
    r = await get_redis()
    replayed = 0
    while replayed < limit:
        raw = await r.rpop(NOTIFICATION_DLQ_KEY)
        if raw is None:
            break
        replayed += 1
        try:
            data = json.loads(raw)
            job = NotificationJob.model_validate(data.get("job") or data)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Dropping unreadable DLQ entry: %s", e)
            continue
        job.attempts = 0
        await r.lpush(NOTIFICATION_QUEUE_KEY, job.model_dump_json())
    return replayed
