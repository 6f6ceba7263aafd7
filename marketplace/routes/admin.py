from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from marketplace.queue import NOTIFICATION_DLQ_KEY, NOTIFICATION_QUEUE_KEY, replay_dlq_to_main
from marketplace.redis_client import queue_length

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/dlq/replay")
async def dlq_replay(limit: int = Query(default=100, ge=1, le=1000)) -> JSONResponse:
    """
    Replay notification jobs from the DLQ to the main queue, attempts reset.
    Returns number of entries taken off the DLQ.
    """
    replayed = await replay_dlq_to_main(limit=limit)
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "replayed": replayed},
    )


@router.get("/queues")
async def queue_depths() -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={
            "notifications": await queue_length(NOTIFICATION_QUEUE_KEY),
            "dlq": await queue_length(NOTIFICATION_DLQ_KEY),
        },
    )
