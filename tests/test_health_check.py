"""
Tests for the health endpoints - liveness and readiness.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from mailroom.domain.services import health_service
from mailroom.domain.services.delivery_queue_service import DeliveryQueueService
from mailroom.domain.services.newsletter_service import NewsletterService


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestReadinessProbe:

    @pytest.mark.unit
    async def test_readiness_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        with patch(
            "mailroom.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value=("ok", 7),
        ), patch(
            "mailroom.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="ok",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "db": "ok",
            "celery": "ok",
            "pending_deliveries": 7,
        }

    @pytest.mark.unit
    async def test_readiness_db_down_is_503(self, test_client: httpx.AsyncClient) -> None:
        with patch(
            "mailroom.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value=("error: db_unavailable", None),
        ), patch(
            "mailroom.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="ok",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["db"] == "error: db_unavailable"
        assert data["pending_deliveries"] is None

    @pytest.mark.unit
    async def test_readiness_broker_down_is_503(self, test_client: httpx.AsyncClient) -> None:
        with patch(
            "mailroom.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value=("ok", 0),
        ), patch(
            "mailroom.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="error: celery_unavailable",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["celery"] == "error: celery_unavailable"


class TestDependencyChecks:

    @pytest.mark.integration
    async def test_check_db_reports_queue_depth(self, db_session, session_factory) -> None:
        from mailroom.db.models.subscription import Subscription, SubscriptionStatus

        for email in ("a@example.com", "b@example.com"):
            db_session.add(Subscription(email=email, name="s", status=SubscriptionStatus.CONFIRMED))
        await db_session.commit()
        issue_id = await NewsletterService(db_session).insert_issue("t", "x", "<p>x</p>")
        await DeliveryQueueService(db_session).enqueue_all_confirmed(issue_id)
        await db_session.commit()

        with patch.object(health_service, "AsyncSessionLocal", session_factory):
            status, pending = await health_service._check_db()

        assert status == "ok"
        assert pending == 2

    @pytest.mark.unit
    async def test_check_db_failure_hides_details(self) -> None:
        broken = MagicMock(side_effect=RuntimeError("password authentication failed"))

        with patch.object(health_service, "AsyncSessionLocal", broken):
            status, pending = await health_service._check_db()

        assert status == "error: db_unavailable"
        assert pending is None

    @pytest.mark.unit
    async def test_check_celery_ok(self) -> None:
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()

        with patch.object(health_service.aioredis, "from_url", return_value=client):
            assert await health_service._check_celery() == "ok"

        client.aclose.assert_awaited_once()

    @pytest.mark.unit
    async def test_check_celery_unreachable(self) -> None:
        client = MagicMock()
        client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        client.aclose = AsyncMock()

        with patch.object(health_service.aioredis, "from_url", return_value=client):
            assert await health_service._check_celery() == "error: celery_unavailable"
