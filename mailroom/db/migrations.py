"""
Schema changes create_all cannot make on an existing PostgreSQL database.

Applied in order on every startup (see mailroom.main). Each statement is
idempotent; SQLite databases get the full schema from create_all and skip
this module.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from mailroom.core.logging import get_logger

logger = get_logger(__name__)

MIGRATIONS: list[tuple[str, list[str]]] = [
    (
        "delivery queue lease columns",
        [
            """
            ALTER TABLE issue_delivery_queue
                ADD COLUMN IF NOT EXISTS claimed_by VARCHAR(36),
                ADD COLUMN IF NOT EXISTS claimed_at TIMESTAMP
            """,
            """
            CREATE INDEX IF NOT EXISTS ix_issue_delivery_queue_claimed_at
                ON issue_delivery_queue (claimed_at)
            """,
        ],
    ),
    (
        "confirmed subscriber index for the fan-out",
        [
            """
            CREATE INDEX IF NOT EXISTS idx_subscriptions_confirmed_email
                ON subscriptions (email) WHERE status = 'confirmed'
            """,
        ],
    ),
    (
        "saved responses are all-or-nothing",
        [
            """
            DO $$ BEGIN
                ALTER TABLE idempotency ADD CONSTRAINT ck_idempotency_response_complete CHECK (
                    (response_status_code IS NULL
                        AND response_headers IS NULL AND response_body IS NULL)
                    OR (response_status_code IS NOT NULL
                        AND response_headers IS NOT NULL AND response_body IS NOT NULL)
                );
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$
            """,
        ],
    ),
    (
        "pending idempotency records by age",
        [
            """
            CREATE INDEX IF NOT EXISTS idx_idempotency_pending_created_at
                ON idempotency (created_at) WHERE response_status_code IS NULL
            """,
        ],
    ),
]


async def run_all_migrations(conn: AsyncConnection) -> None:
    for number, (name, statements) in enumerate(MIGRATIONS, start=1):
        logger.info(f"Applying migration {number:03d}: {name}")
        for statement in statements:
            await conn.execute(text(statement))
