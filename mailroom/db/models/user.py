"""
User Model - Newsletter publishers
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from mailroom.db.database import Base, utcnow


class User(Base):
    """A user allowed to publish newsletter issues"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
