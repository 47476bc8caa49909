"""
Newsletter API Routes
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.api.dependencies.auth import get_current_user_id
from mailroom.core.exceptions import (
    IdempotencyConflictError,
    NewsletterAlreadyPublishedError,
    TransientStoreError,
)
from mailroom.core.logging import get_logger
from mailroom.db.database import get_db
from mailroom.domain.services.delivery_queue_service import DeliveryQueueService
from mailroom.domain.services.idempotency_service import (
    IdempotencyKey,
    IdempotencyService,
    ReturnSaved,
)
from mailroom.domain.services.newsletter_service import TITLE_MAX_LENGTH, NewsletterService

logger = get_logger(__name__)

router = APIRouter()


class NewsletterContent(BaseModel):
    html: str = Field(min_length=1)
    text: str = Field(min_length=1)


class NewsletterPublish(BaseModel):
    """Schema for publishing a newsletter issue"""
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    content: NewsletterContent
    # Format is checked by IdempotencyKey.parse (400, not 422)
    idempotency_key: str


class PublishResponse(BaseModel):
    newsletter_issue_id: str
    queued_deliveries: int


class NewsletterIssueResponse(BaseModel):
    id: str
    title: str
    text_content: str
    html_content: str
    published_at: datetime

    class Config:
        from_attributes = True


@router.post("", response_model=PublishResponse)
async def publish_newsletter(
    body: NewsletterPublish,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """
    Publish a newsletter issue to every confirmed subscriber.

    The issue, its delivery rows and the saved response are committed together.
    Retrying with the same idempotency key never publishes twice.
    """
    key = IdempotencyKey.parse(body.idempotency_key)
    guard = IdempotencyService(db)

    try:
        action = await guard.begin_or_reuse(user_id, key)
    except IdempotencyConflictError as exc:
        raise NewsletterAlreadyPublishedError(key.value) from exc
    except OperationalError as exc:
        raise TransientStoreError("publish") from exc

    if isinstance(action, ReturnSaved):
        raise NewsletterAlreadyPublishedError(key.value)

    try:
        issue_id = await NewsletterService(action.session).insert_issue(
            title=body.title,
            text_content=body.content.text,
            html_content=body.content.html,
        )
        queued = await DeliveryQueueService(action.session).enqueue_all_confirmed(issue_id)

        response = JSONResponse(
            status_code=200,
            content={"newsletter_issue_id": issue_id, "queued_deliveries": queued},
        )
        response = await guard.complete(user_id, key, response)
    except OperationalError as exc:
        await guard.abort()
        raise TransientStoreError("publish") from exc
    except Exception:
        await guard.abort()
        raise

    logger.info(
        "Newsletter published",
        extra_data={
            "user_id": user_id,
            "newsletter_issue_id": issue_id,
            "queued_deliveries": queued,
        },
    )
    return response


@router.get("/{issue_id}", response_model=NewsletterIssueResponse)
async def get_newsletter(
    issue_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> NewsletterIssueResponse:
    """Get a published issue"""
    issue = await NewsletterService(db).get_issue(issue_id)
    return NewsletterIssueResponse.model_validate(issue)
