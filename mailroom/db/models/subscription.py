"""
Subscription Model - Newsletter subscribers
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum

from mailroom.db.database import Base, utcnow


class SubscriptionStatus(str, enum.Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"


class Subscription(Base):
    """A subscriber. Only confirmed subscriptions receive newsletter issues."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    # Stored as submitted; the delivery worker re-validates before sending
    email = Column(String(254), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    status = Column(
        SQLEnum(
            SubscriptionStatus,
            name="subscription_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x]  # stores 'confirmed', not 'CONFIRMED'
        ),
        default=SubscriptionStatus.PENDING_CONFIRMATION,
        nullable=False,
        index=True
    )

    subscribed_at = Column(DateTime, default=utcnow)
