"""
Idempotency Service - deduplicates client-retried requests.

A request is admitted by inserting a (user_id, idempotency_key) row with a NULL
response. The insert stays inside the caller's open transaction together with
the request's own work; `complete` stores the response and commits everything at
once, `abort` rolls everything back so the key can be used again.

The primary key is the only mutex: of two concurrent inserts exactly one wins.
The loser either sees the winner's saved response (the winner committed first)
or a pending row / a lock wait that exceeds the lock timeout, which is reported
as a conflict rather than waiting for the winner.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Union

from sqlalchemy import insert, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from mailroom.core.config import settings
from mailroom.core.exceptions import IdempotencyConflictError, ValidationException
from mailroom.core.logging import get_logger
from mailroom.core.validation import ValidationPatterns
from mailroom.db.database import utcnow
from mailroom.db.models.idempotency import IdempotencyRecord

logger = get_logger(__name__)

# Postgres lock_not_available
_PG_LOCK_NOT_AVAILABLE = "55P03"


@dataclass(frozen=True)
class IdempotencyKey:
    """Caller-chosen key, scoped per user"""

    value: str

    @classmethod
    def parse(cls, raw: str | None, max_length: int | None = None) -> "IdempotencyKey":
        max_length = max_length or settings.IDEMPOTENCY_KEY_MAX_LENGTH
        if raw is None or not raw.strip():
            raise ValidationException(
                "The idempotency key cannot be empty", field="idempotency_key"
            )
        if len(raw) > max_length:
            raise ValidationException(
                f"The idempotency key must be at most {max_length} characters long",
                field="idempotency_key",
            )
        if not ValidationPatterns.IDEMPOTENCY_KEY.fullmatch(raw):
            raise ValidationException(
                "The idempotency key contains control characters",
                field="idempotency_key",
            )
        return cls(raw)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SavedResponse:
    """The exact status, header list and body produced by the first request"""

    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @classmethod
    def from_response(cls, response: Response) -> "SavedResponse":
        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in response.raw_headers
        ]
        return cls(status_code=response.status_code, headers=headers, body=bytes(response.body))

    @classmethod
    def from_record(cls, record: IdempotencyRecord) -> "SavedResponse":
        return cls(
            status_code=record.response_status_code,
            headers=[(name, value) for name, value in (record.response_headers or [])],
            body=record.response_body or b"",
        )

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status_code)
        # raw_headers keeps duplicates and order; the Response ctor would merge them
        response.raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in self.headers
        ]
        return response


@dataclass
class StartProcessing:
    """Admitted: the caller owns `session` and must call complete() or abort()"""

    session: AsyncSession


@dataclass(frozen=True)
class ReturnSaved:
    """Already completed: replay `response`"""

    response: SavedResponse


NextAction = Union[StartProcessing, ReturnSaved]


def _is_lock_timeout(exc: DBAPIError) -> bool:
    """Postgres lock_timeout or SQLite busy timeout"""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == _PG_LOCK_NOT_AVAILABLE:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(exc)


class IdempotencyService:
    """
    Guard around a request's side effects.

    Bound to one session, which becomes the transaction handle shared with the
    work done after StartProcessing.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        pending_ttl_seconds: int | None = None,
        lock_timeout_ms: int | None = None,
    ):
        self.db = db
        self.pending_ttl_seconds = (
            settings.IDEMPOTENCY_PENDING_TTL_SECONDS
            if pending_ttl_seconds is None
            else pending_ttl_seconds
        )
        self.lock_timeout_ms = (
            settings.IDEMPOTENCY_LOCK_TIMEOUT_MILLISECONDS
            if lock_timeout_ms is None
            else lock_timeout_ms
        )

    @property
    def _is_postgres(self) -> bool:
        return self.db.get_bind().dialect.name == "postgresql"

    async def begin_or_reuse(self, user_id: int, key: IdempotencyKey) -> NextAction:
        """
        Admit the request or return the response saved by an earlier one.

        Raises:
            IdempotencyConflictError: the key is held by a request still in flight
        """
        if await self._try_insert(user_id, key):
            logger.info(
                "Idempotency key admitted",
                extra_data={"user_id": user_id, "idempotency_key": key.value},
            )
            return StartProcessing(self.db)

        record = await self._load(user_id, key)
        if record is None:
            # The holder rolled back between our insert and our read
            await self.db.rollback()
            raise IdempotencyConflictError(user_id, key.value)

        if record.is_completed:
            logger.info(
                "Replaying saved response",
                extra_data={
                    "user_id": user_id,
                    "idempotency_key": key.value,
                    "status_code": record.response_status_code,
                },
            )
            saved = SavedResponse.from_record(record)
            await self.db.rollback()
            return ReturnSaved(saved)

        if await self._try_reclaim_stale(user_id, key, record):
            logger.warning(
                "Reclaimed stale pending idempotency record",
                extra_data={
                    "user_id": user_id,
                    "idempotency_key": key.value,
                    "created_at": record.created_at,
                },
            )
            return StartProcessing(self.db)

        await self.db.rollback()
        logger.info(
            "Request already in flight",
            extra_data={"user_id": user_id, "idempotency_key": key.value},
        )
        raise IdempotencyConflictError(user_id, key.value)

    async def complete(self, user_id: int, key: IdempotencyKey, response: Response) -> Response:
        """Save the response into the pending record and commit the whole transaction"""
        saved = SavedResponse.from_response(response)
        try:
            await self.db.execute(
                update(IdempotencyRecord)
                .where(
                    IdempotencyRecord.user_id == user_id,
                    IdempotencyRecord.idempotency_key == key.value,
                )
                .values(
                    response_status_code=saved.status_code,
                    response_headers=[list(pair) for pair in saved.headers],
                    response_body=saved.body,
                )
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(
            "Idempotent request completed",
            extra_data={
                "user_id": user_id,
                "idempotency_key": key.value,
                "status_code": saved.status_code,
            },
        )
        return response

    async def abort(self) -> None:
        """Roll back the admitted transaction - the pending row goes with it"""
        await self.db.rollback()

    async def _try_insert(self, user_id: int, key: IdempotencyKey) -> bool:
        try:
            if self._is_postgres:
                # Waiting on a concurrent holder of the same key is bounded
                await self.db.execute(
                    text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout_ms)}ms'")
                )
            await self.db.execute(
                insert(IdempotencyRecord).values(
                    user_id=user_id,
                    idempotency_key=key.value,
                    created_at=utcnow(),
                )
            )
            if self._is_postgres:
                await self.db.execute(text("SET LOCAL lock_timeout = DEFAULT"))
            return True
        except IntegrityError:
            await self.db.rollback()
            return False
        except DBAPIError as exc:
            await self.db.rollback()
            if _is_lock_timeout(exc):
                logger.info(
                    "Timed out waiting for concurrent request with the same key",
                    extra_data={"user_id": user_id, "idempotency_key": key.value},
                )
                raise IdempotencyConflictError(user_id, key.value) from exc
            raise

    async def _load(self, user_id: int, key: IdempotencyKey) -> IdempotencyRecord | None:
        result = await self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.user_id == user_id,
                IdempotencyRecord.idempotency_key == key.value,
            )
        )
        return result.scalar_one_or_none()

    async def _try_reclaim_stale(
        self, user_id: int, key: IdempotencyKey, record: IdempotencyRecord
    ) -> bool:
        """
        Take over a committed pending record older than the TTL.

        This service never commits a pending row on its own: the row is
        committed together with its saved response, or rolled back. A
        committed pending row therefore only exists if it was written
        outside this service, for example by hand or by an older deployment.
        The UPDATE is conditional on the created_at we read, so two retries
        can't both win.
        """
        if not self.pending_ttl_seconds:
            return False

        now = utcnow()
        if record.created_at > now - timedelta(seconds=self.pending_ttl_seconds):
            return False

        result = await self.db.execute(
            update(IdempotencyRecord)
            .where(
                IdempotencyRecord.user_id == user_id,
                IdempotencyRecord.idempotency_key == key.value,
                IdempotencyRecord.response_status_code.is_(None),
                IdempotencyRecord.created_at == record.created_at,
            )
            .values(created_at=now)
        )
        return result.rowcount == 1
