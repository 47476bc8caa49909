"""
Newsletter Service - stores and loads newsletter issues
"""
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.core.exceptions import NewsletterIssueNotFoundError
from mailroom.core.logging import get_logger
from mailroom.db.database import utcnow
from mailroom.db.models.newsletter_issue import NewsletterIssue

logger = get_logger(__name__)

# Enforced on the publish request; the column itself is unbounded
TITLE_MAX_LENGTH = 500


class NewsletterService:
    """Service for newsletter issues"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_issue(
        self,
        title: str,
        text_content: str,
        html_content: str,
    ) -> str:
        """
        Add a new issue to the session's transaction and return its id.

        Flushes but does not commit - the caller commits the issue together with
        its delivery rows.
        """
        issue_id = str(uuid.uuid4())
        issue = NewsletterIssue(
            id=issue_id,
            title=title,
            text_content=text_content,
            html_content=html_content,
            published_at=utcnow(),
        )
        self.db.add(issue)
        await self.db.flush()

        logger.info("Newsletter issue stored", extra_data={"newsletter_issue_id": issue_id})
        return issue_id

    async def get_issue(self, issue_id: str) -> NewsletterIssue:
        """Get issue by id, raising NewsletterIssueNotFoundError if it's gone"""
        result = await self.db.execute(
            select(NewsletterIssue).where(NewsletterIssue.id == issue_id)
        )
        issue = result.scalar_one_or_none()
        if issue is None:
            raise NewsletterIssueNotFoundError(issue_id)
        return issue
