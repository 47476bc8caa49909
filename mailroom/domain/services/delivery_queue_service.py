"""
Delivery Queue Service - durable fan-out of newsletter issues to subscribers.

One row per (issue, confirmed subscriber) is inserted in the same transaction as
the issue. Workers lease one row at a time: the dequeue transaction selects a row
with FOR UPDATE SKIP LOCKED, stamps it with a claim token and commits straight
away, so no lock is held while the email is being sent. The row is deleted once
the single send attempt is over. A claim older than the lease duration belongs
to a worker that died and the row becomes available again.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, func, insert, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.core.config import settings
from mailroom.core.logging import get_logger
from mailroom.core.validation import EmailValidator
from mailroom.db.database import utcnow
from mailroom.db.models.issue_delivery_queue import IssueDeliveryQueue
from mailroom.db.models.subscription import Subscription, SubscriptionStatus

logger = get_logger(__name__)

# Candidates tried per dequeue when another worker claims our pick first
# (only happens on databases without SKIP LOCKED)
_MAX_CLAIM_ATTEMPTS = 5


@dataclass(frozen=True)
class Lease:
    """A claimed queue row, owned by one worker until complete() is called"""

    newsletter_issue_id: str
    subscriber_email: str
    token: str
    claimed_at: datetime


class DeliveryQueueService:
    """Service for the issue delivery queue"""

    def __init__(self, db: AsyncSession, *, lease_seconds: int | None = None):
        self.db = db
        self.lease_seconds = lease_seconds or settings.DELIVERY_LEASE_SECONDS

    async def enqueue_all_confirmed(self, newsletter_issue_id: str) -> int:
        """
        Queue the issue for every currently confirmed subscriber.

        A single INSERT ... SELECT in the caller's transaction; nothing is
        committed here. Returns the number of rows queued.
        """
        result = await self.db.execute(
            insert(IssueDeliveryQueue).from_select(
                ["newsletter_issue_id", "subscriber_email"],
                select(literal(newsletter_issue_id), Subscription.email).where(
                    Subscription.status == SubscriptionStatus.CONFIRMED
                ),
            )
        )
        queued = result.rowcount
        logger.info(
            "Newsletter issue queued for delivery",
            extra_data={"newsletter_issue_id": newsletter_issue_id, "queued": queued},
        )
        return queued

    async def dequeue_one(self) -> Lease | None:
        """
        Claim one available row and commit the claim.

        Returns None when every row is either absent or claimed by a live worker.
        """
        try:
            for _ in range(_MAX_CLAIM_ATTEMPTS):
                now = utcnow()
                result = await self.db.execute(
                    select(
                        IssueDeliveryQueue.newsletter_issue_id,
                        IssueDeliveryQueue.subscriber_email,
                        IssueDeliveryQueue.claimed_by,
                    )
                    .where(self._available(now))
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                row = result.one_or_none()
                if row is None:
                    await self.db.commit()
                    return None

                token = str(uuid.uuid4())
                claimed = await self.db.execute(
                    update(IssueDeliveryQueue)
                    .where(
                        IssueDeliveryQueue.newsletter_issue_id == row.newsletter_issue_id,
                        IssueDeliveryQueue.subscriber_email == row.subscriber_email,
                        self._available(now),
                    )
                    .values(claimed_by=token, claimed_at=now)
                )
                await self.db.commit()

                if claimed.rowcount == 1:
                    if row.claimed_by is not None:
                        logger.warning(
                            "Reclaimed delivery with expired lease",
                            extra_data={
                                "newsletter_issue_id": row.newsletter_issue_id,
                                "subscriber_email": EmailValidator.mask(row.subscriber_email),
                                "previous_claim": row.claimed_by,
                            },
                        )
                    return Lease(
                        newsletter_issue_id=row.newsletter_issue_id,
                        subscriber_email=row.subscriber_email,
                        token=token,
                        claimed_at=now,
                    )
        except Exception:
            await self.db.rollback()
            raise

        logger.debug("Lost every claim race, reporting queue as empty")
        return None

    async def complete(self, lease: Lease) -> bool:
        """
        Delete the leased row and commit.

        Returns False (and deletes nothing) if the lease expired and another
        worker has claimed the row since.
        """
        try:
            result = await self.db.execute(
                delete(IssueDeliveryQueue).where(
                    IssueDeliveryQueue.newsletter_issue_id == lease.newsletter_issue_id,
                    IssueDeliveryQueue.subscriber_email == lease.subscriber_email,
                    IssueDeliveryQueue.claimed_by == lease.token,
                )
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if result.rowcount != 1:
            logger.warning(
                "Delivery lease lost before completion",
                extra_data={
                    "newsletter_issue_id": lease.newsletter_issue_id,
                    "subscriber_email": EmailValidator.mask(lease.subscriber_email),
                    "lease": lease.token,
                },
            )
            return False
        return True

    async def pending_count(self, newsletter_issue_id: str | None = None) -> int:
        """Number of rows still queued, optionally for a single issue"""
        query = select(func.count()).select_from(IssueDeliveryQueue)
        if newsletter_issue_id is not None:
            query = query.where(IssueDeliveryQueue.newsletter_issue_id == newsletter_issue_id)
        result = await self.db.execute(query)
        return result.scalar_one()

    def _available(self, now: datetime):
        """Unclaimed, or claimed by a worker whose lease ran out"""
        expired_before = now - timedelta(seconds=self.lease_seconds)
        return or_(
            IssueDeliveryQueue.claimed_at.is_(None),
            and_(
                IssueDeliveryQueue.claimed_at.is_not(None),
                IssueDeliveryQueue.claimed_at < expired_before,
            ),
        )
