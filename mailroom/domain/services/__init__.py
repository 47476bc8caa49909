"""
Domain Services
"""
from mailroom.domain.services.idempotency_service import IdempotencyService
from mailroom.domain.services.newsletter_service import NewsletterService
from mailroom.domain.services.delivery_queue_service import DeliveryQueueService
from mailroom.domain.services.email_client import EmailClient

__all__ = [
    "IdempotencyService",
    "NewsletterService",
    "DeliveryQueueService",
    "EmailClient",
]
