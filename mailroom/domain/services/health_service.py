"""
Readiness checks.

Each check answers "ok" or a fixed error string; the exception behind a
failure is logged, never returned to the caller.
"""
import asyncio
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from mailroom.core.config import settings
from mailroom.core.logging import get_logger
from mailroom.db.database import AsyncSessionLocal
from mailroom.domain.services.delivery_queue_service import DeliveryQueueService

logger = get_logger(__name__)

OK = "ok"
DB_UNAVAILABLE = "error: db_unavailable"
CELERY_UNAVAILABLE = "error: celery_unavailable"


async def _check_db() -> tuple[str, int | None]:
    """(status, pending deliveries); the count is None when the database is down"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            return OK, await DeliveryQueueService(session).pending_count()
    except Exception as e:
        logger.warning("Database readiness check failed", extra_data={"error": str(e)})
        return DB_UNAVAILABLE, None


async def _check_celery() -> str:
    try:
        broker = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await broker.ping()
        finally:
            await broker.aclose()
    except Exception as e:
        logger.warning("Broker readiness check failed", extra_data={"error": str(e)})
        return CELERY_UNAVAILABLE
    return OK


async def check_readiness() -> dict[str, Any]:
    (db, pending), celery = await asyncio.gather(_check_db(), _check_celery())

    healthy = db == OK and celery == OK
    if not healthy:
        logger.warning("Service not ready", extra_data={"db": db, "celery": celery})

    return {
        "status": "healthy" if healthy else "degraded",
        "db": db,
        "celery": celery,
        "pending_deliveries": pending,
    }
