"""
Issue Delivery Queue Model - one row per (issue, subscriber) still to be attempted
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index

from mailroom.db.database import Base


class IssueDeliveryQueue(Base):
    """
    Pending delivery of an issue to one subscriber.

    A row exists until a worker has made its single send attempt. There is no
    status column: claimed_by/claimed_at mark a row leased by a worker, and a
    claim older than DELIVERY_LEASE_SECONDS is treated as abandoned.
    """

    __tablename__ = "issue_delivery_queue"

    newsletter_issue_id = Column(
        String(36),
        ForeignKey("newsletter_issues.id", ondelete="CASCADE"),
        primary_key=True,
    )
    subscriber_email = Column(String(254), primary_key=True)

    claimed_by = Column(String(36), nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_issue_delivery_queue_claimed_at", "claimed_at"),
    )
