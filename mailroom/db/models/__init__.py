"""
Database Models
"""
from mailroom.db.models.user import User
from mailroom.db.models.subscription import Subscription, SubscriptionStatus
from mailroom.db.models.newsletter_issue import NewsletterIssue
from mailroom.db.models.issue_delivery_queue import IssueDeliveryQueue
from mailroom.db.models.idempotency import IdempotencyRecord

__all__ = [
    "User",
    "Subscription",
    "SubscriptionStatus",
    "NewsletterIssue",
    "IssueDeliveryQueue",
    "IdempotencyRecord",
]
