"""
Celery application for the periodic queue drain.

    celery -A mailroom.workers.celery_app worker --beat
"""
from celery import Celery

from mailroom.core.config import settings

DRAIN_TASK = "mailroom.workers.tasks.drain_delivery_queue"

celery_app = Celery(
    "mailroom",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["mailroom.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A drain is a bounded batch; the hard limit only catches a hung process
    task_time_limit=300,
    # One drain at a time per worker process, acknowledged once it finishes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "drain-delivery-queue": {
        "task": DRAIN_TASK,
        "schedule": settings.DELIVERY_DRAIN_INTERVAL_SECONDS,
        # A drain still waiting after one interval is superseded by the next
        "options": {"expires": settings.DELIVERY_DRAIN_INTERVAL_SECONDS},
    },
}
