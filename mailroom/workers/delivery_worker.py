"""
Delivery Worker - drains the issue delivery queue.

Each task leases one queue row, sends the issue to that subscriber once and
removes the row, whatever the outcome of the send. Run it as a long-lived
process:

    python -m mailroom.workers.delivery_worker

Any number of workers can run side by side; the queue lease keeps them off
each other's rows.
"""
from __future__ import annotations

import asyncio
import signal
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailroom.core.config import settings
from mailroom.core.exceptions import NewsletterIssueNotFoundError
from mailroom.core.logging import (
    bound_log_context,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from mailroom.core.validation import EmailValidator
from mailroom.db.database import engine, get_session_factory
from mailroom.domain.services.delivery_queue_service import DeliveryQueueService, Lease
from mailroom.domain.services.email_client import EmailClient
from mailroom.domain.services.newsletter_service import NewsletterService

logger = get_logger(__name__)


class ExecutionOutcome(str, Enum):
    TASK_COMPLETED = "task_completed"
    EMPTY_QUEUE = "empty_queue"


async def try_execute_task(
    session_factory: async_sessionmaker[AsyncSession],
    email_client: EmailClient,
    *,
    send_timeout: float | None = None,
) -> ExecutionOutcome:
    """
    Lease one queue row and make a single delivery attempt for it.

    Send failures are logged and the row is removed anyway. Store errors
    propagate; the row stays leased and is picked up again once the lease
    expires.
    """
    send_timeout = send_timeout or settings.EMAIL_SEND_TIMEOUT_SECONDS

    async with session_factory() as session:
        queue = DeliveryQueueService(session)
        lease = await queue.dequeue_one()
        if lease is None:
            return ExecutionOutcome.EMPTY_QUEUE

        set_correlation_id()
        with bound_log_context(
            newsletter_issue_id=lease.newsletter_issue_id,
            subscriber_email=EmailValidator.mask(lease.subscriber_email),
        ):
            await _attempt_delivery(session, lease, email_client, send_timeout)
            await queue.complete(lease)
        return ExecutionOutcome.TASK_COMPLETED


async def _attempt_delivery(
    session: AsyncSession,
    lease: Lease,
    email_client: EmailClient,
    send_timeout: float,
) -> None:
    """Single send attempt for a leased row; every outcome is logged, none raised"""
    if not EmailValidator.validate(lease.subscriber_email):
        logger.warning("Skipping a confirmed subscriber, their details are invalid")
        return

    try:
        issue = await NewsletterService(session).get_issue(lease.newsletter_issue_id)
    except NewsletterIssueNotFoundError:
        logger.warning("Skipping delivery of a missing issue")
        return
    finally:
        # Nothing stays open on the connection while the email is in flight
        await session.commit()

    try:
        await asyncio.wait_for(
            email_client.send_email(
                lease.subscriber_email,
                issue.title,
                issue.html_content,
                issue.text_content,
            ),
            timeout=send_timeout,
        )
    except asyncio.TimeoutError:
        logger.error(
            "Failed to deliver newsletter to a confirmed subscriber, skipping",
            extra_data={"error": f"send timed out after {send_timeout}s"},
        )
    except Exception as e:
        logger.error(
            "Failed to deliver newsletter to a confirmed subscriber, skipping",
            extra_data={"error": str(e)},
            exc_info=True,
        )
    else:
        logger.info("Newsletter delivered")


async def drain_queue(
    session_factory: async_sessionmaker[AsyncSession],
    email_client: EmailClient,
    max_tasks: int | None = None,
) -> int:
    """Run tasks until the queue is empty or max_tasks is reached; returns tasks run"""
    completed = 0
    while max_tasks is None or completed < max_tasks:
        outcome = await try_execute_task(session_factory, email_client)
        if outcome is ExecutionOutcome.EMPTY_QUEUE:
            break
        completed += 1
    return completed


async def _sleep_or_stop(seconds: float, stop_event: asyncio.Event) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def worker_loop(
    session_factory: async_sessionmaker[AsyncSession],
    email_client: EmailClient,
    *,
    stop_event: asyncio.Event | None = None,
    empty_backoff: float | None = None,
    error_backoff: float | None = None,
) -> None:
    """
    Drain the queue until stop_event is set.

    Backs off when the queue is empty and after any error; no single task can
    end the loop.
    """
    stop_event = stop_event or asyncio.Event()
    empty_backoff = settings.WORKER_EMPTY_BACKOFF_SECONDS if empty_backoff is None else empty_backoff
    error_backoff = settings.WORKER_ERROR_BACKOFF_SECONDS if error_backoff is None else error_backoff

    logger.info("Delivery worker started")
    while not stop_event.is_set():
        try:
            outcome = await try_execute_task(session_factory, email_client)
        except Exception as e:
            logger.error(
                "Delivery task failed",
                extra_data={"error": str(e)},
                exc_info=True,
            )
            await _sleep_or_stop(error_backoff, stop_event)
            continue

        if outcome is ExecutionOutcome.EMPTY_QUEUE:
            await _sleep_or_stop(empty_backoff, stop_event)
    logger.info("Delivery worker stopped")


async def run_worker_until_stopped() -> None:
    """Run the worker loop with the configured store and email API until SIGINT/SIGTERM"""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        async with EmailClient.from_settings() as email_client:
            await worker_loop(get_session_factory(), email_client, stop_event=stop_event)
    finally:
        await engine.dispose()


def main() -> None:
    setup_logging(
        level="DEBUG" if settings.DEBUG else "INFO",
        json_format=not settings.DEBUG,
        app_name=f"{settings.APP_NAME.lower()}-worker",
    )
    asyncio.run(run_worker_until_stopped())


if __name__ == "__main__":
    main()
