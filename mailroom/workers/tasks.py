"""
Celery Tasks for the delivery queue

Periodic alternative to the long-running delivery worker: beat schedules a
bounded drain of the queue every few seconds. Both can run at the same time.
"""
import asyncio
from contextlib import contextmanager

from mailroom.core.config import settings
from mailroom.core.logging import get_logger, set_correlation_id
from mailroom.db.database import get_task_session_factory
from mailroom.domain.services.delivery_queue_service import DeliveryQueueService
from mailroom.domain.services.email_client import EmailClient
from mailroom.workers.celery_app import DRAIN_TASK, celery_app
from mailroom.workers.delivery_worker import drain_queue

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """A private event loop for one task, closed with anything still scheduled on it"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        leftovers = asyncio.all_tasks(loop)
        for task in leftovers:
            task.cancel()
        try:
            if leftovers:
                loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            asyncio.set_event_loop(None)
            loop.close()


def run_async(coro):
    """Run a coroutine to completion from a synchronous Celery task"""
    set_correlation_id()
    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name=DRAIN_TASK)
def drain_delivery_queue(max_tasks: int | None = None) -> dict:
    """Deliver up to max_tasks queued emails (DELIVERY_DRAIN_BATCH by default)"""
    batch = max_tasks or settings.DELIVERY_DRAIN_BATCH

    async def _drain() -> dict:
        async with get_task_session_factory() as session_factory:
            async with EmailClient.from_settings() as email_client:
                processed = await drain_queue(session_factory, email_client, max_tasks=batch)
            async with session_factory() as session:
                remaining = await DeliveryQueueService(session).pending_count()
        return {"processed": processed, "remaining": remaining}

    result = run_async(_drain())
    if result["processed"]:
        logger.info("Delivery queue drained", extra_data=result)
    return result
