"""
Idempotency Model - saved HTTP responses keyed by (user, idempotency key).

A row is inserted with a NULL response when a request is admitted and updated
exactly once with the response the request produced. A row with a NULL response
is a request still in flight (or one that crashed before completing).
"""
from sqlalchemy import Column, Integer, String, SmallInteger, LargeBinary, JSON, DateTime, ForeignKey

from mailroom.db.database import Base, utcnow


class IdempotencyRecord(Base):
    """Saved response for a (user_id, idempotency_key) pair"""

    __tablename__ = "idempotency"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    idempotency_key = Column(String(100), primary_key=True)

    response_status_code = Column(SmallInteger, nullable=True)
    # List of [name, value] pairs - keeps duplicates and order
    response_headers = Column(JSON, nullable=True)
    response_body = Column(LargeBinary, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def is_completed(self) -> bool:
        return self.response_status_code is not None
