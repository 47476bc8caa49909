"""
Newsletter Issue Model
"""
from sqlalchemy import Column, String, Text, DateTime

from mailroom.db.database import Base, utcnow


class NewsletterIssue(Base):
    """Published newsletter content. Written once, read by the delivery worker."""

    __tablename__ = "newsletter_issues"

    id = Column(String(36), primary_key=True)  # uuid4 string
    title = Column(Text, nullable=False)
    text_content = Column(Text, nullable=False)
    html_content = Column(Text, nullable=False)

    published_at = Column(DateTime, default=utcnow, nullable=False)
