"""Tests for the API endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from apps.api.main import app
from packages.common.config import Settings, get_settings
from packages.common.exceptions import DatabaseError
from packages.learning.service import ReviewService
from packages.learning.store import InMemoryCardStore
from packages.quota.service import QuotaManager
from packages.quota.store import InMemoryQuotaStore
from tests.conftest import FrozenClock

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def services(
    monkeypatch: pytest.MonkeyPatch,
    seeded_card_store: InMemoryCardStore,
    clock: FrozenClock,
    settings: Settings,
) -> tuple[ReviewService, QuotaManager]:
    """Patch the API to use in-memory services."""
    review = ReviewService(seeded_card_store, clock=clock, settings=settings)
    quota = QuotaManager(InMemoryQuotaStore(), clock=clock, settings=settings)
    monkeypatch.setattr("apps.api.main.get_review_service", lambda: review)
    monkeypatch.setattr("apps.api.main.get_quota_manager", lambda: quota)
    return review, quota


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_healthy_status(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["services"]["storage"]["backend"] in ("postgres", "memory")

    def test_ready_reports_postgres(
        self,
        client: TestClient,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test /ready returns 200 even when not ready."""
        monkeypatch.setattr("apps.api.main.check_connection", AsyncMock(return_value=False))
        response = client.get("/ready")
        assert response.status_code == 200
        data = response.json()
        expected = "ok" if get_settings().storage_backend == "memory" else "failed"
        assert data["checks"]["postgres"] == expected
        assert data["status"] in ("ready", "not_ready")

    def test_request_id_is_echoed(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"

    def test_request_id_is_generated(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.headers["X-Request-Id"]


@pytest.mark.usefixtures("services")
class TestReviewEndpoint:
    """Tests for POST /learning/review."""

    def test_review_new_card(self, client: TestClient) -> None:
        response = client.post(
            "/learning/review",
            json={"card_id": "card-0", "rating": "good"},
            headers=USER,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["rating"] == "good"
        assert data["previous_state"] == "new"
        assert data["new_state"] == "learning"
        assert data["reps"] == 1
        assert data["level"] == "troisieme"

    def test_numeric_rating_and_level(self, client: TestClient) -> None:
        response = client.post(
            "/learning/review",
            json={"card_id": "card-0", "rating": 4, "level": "cp"},
            headers=USER,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["new_state"] == "review"
        assert data["level"] == "cp"
        assert 1 <= data["interval_days"] <= 30

    def test_invalid_rating(self, client: TestClient) -> None:
        response = client.post(
            "/learning/review",
            json={"card_id": "card-0", "rating": 7},
            headers=USER,
        )
        assert response.status_code == 422
        assert "Invalid rating" in response.json()["detail"]

    def test_unknown_level(self, client: TestClient) -> None:
        response = client.post(
            "/learning/review",
            json={"card_id": "card-0", "rating": 3, "level": "master"},
            headers=USER,
        )
        assert response.status_code == 422

    def test_requires_user_header(self, client: TestClient) -> None:
        response = client.post("/learning/review", json={"card_id": "card-0", "rating": 3})
        assert response.status_code == 422

    def test_foreign_and_missing_cards_look_alike(self, client: TestClient) -> None:
        foreign = client.post(
            "/learning/review",
            json={"card_id": "card-0", "rating": 3},
            headers=OTHER_USER,
        )
        missing = client.post(
            "/learning/review",
            json={"card_id": "card-404", "rating": 3},
            headers=USER,
        )
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json() == {"detail": "Not found"}


@pytest.mark.usefixtures("services")
class TestDeckEndpoints:
    """Tests for the deck routes."""

    def test_due_cards(self, client: TestClient) -> None:
        response = client.get("/learning/decks/deck-1/due", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["deck_id"] == "deck-1"
        assert [c["id"] for c in data["cards"]] == ["card-0", "card-1", "card-2"]
        assert data["cards"][0]["state"] == "new"
        assert data["cards"][0]["content"] == {"front": "Q0", "back": "A0"}
        assert data["cards"][0]["overdue"] is False

    def test_due_cards_without_new(self, client: TestClient) -> None:
        response = client.get(
            "/learning/decks/deck-1/due",
            params={"include_new": "false"},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["cards"] == []

    def test_due_cards_limit(self, client: TestClient) -> None:
        response = client.get("/learning/decks/deck-1/due", params={"limit": 1}, headers=USER)
        assert len(response.json()["cards"]) == 1

    def test_negative_limit(self, client: TestClient) -> None:
        response = client.get("/learning/decks/deck-1/due", params={"limit": -1}, headers=USER)
        assert response.status_code == 422

    def test_foreign_deck(self, client: TestClient) -> None:
        response = client.get("/learning/decks/deck-2/due", headers=USER)
        assert response.status_code == 404

    def test_stats(self, client: TestClient) -> None:
        client.post("/learning/review", json={"card_id": "card-1", "rating": 3}, headers=USER)
        response = client.get("/learning/decks/deck-1/stats", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["total_cards"] == 3
        assert data["new_cards"] == 2
        assert data["learning_cards"] == 1

    def test_reset(self, client: TestClient) -> None:
        client.post("/learning/review", json={"card_id": "card-1", "rating": 4}, headers=USER)
        response = client.post("/learning/decks/deck-1/reset", headers=USER)
        assert response.status_code == 200
        assert response.json() == {"deck_id": "deck-1", "cards_reset": 3}

    def test_preview(self, client: TestClient) -> None:
        response = client.get("/learning/cards/card-0/preview", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"again", "hard", "good", "easy"}
        assert data["easy"]["interval_days"] >= 1
        assert data["again"]["interval_days"] == 0

    def test_store_failure_is_503(
        self,
        client: TestClient,
        monkeypatch: pytest.MonkeyPatch,
        clock: FrozenClock,
        settings: Settings,
    ) -> None:
        store = AsyncMock()
        store.get_deck.side_effect = DatabaseError("Database operation failed: get_deck")
        broken = ReviewService(store, clock=clock, settings=settings)
        monkeypatch.setattr("apps.api.main.get_review_service", lambda: broken)

        response = client.get("/learning/decks/deck-1/due", headers=USER)
        assert response.status_code == 503
        assert response.json() == {"detail": "Service temporarily unavailable"}


@pytest.mark.usefixtures("services")
class TestQuotaEndpoints:
    """Tests for the quota routes."""

    def test_check_quota(self, client: TestClient) -> None:
        response = client.get("/quota", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["plan"] == "free"
        assert data["mode"] == "normal"
        assert data["binding_limit"] == "window"
        assert data["degraded"] is False

    def test_record_usage(self, client: TestClient) -> None:
        response = client.post("/quota/usage", json={"tokens_used": 3600}, headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["window_tokens_used"] == 3600
        assert data["mode"] == "warning"
        assert data["message"] is not None

        quota = client.get("/quota", headers=USER).json()
        assert quota["window_usage_percent"] == 72

    def test_negative_usage_rejected(self, client: TestClient) -> None:
        response = client.post("/quota/usage", json={"tokens_used": -1}, headers=USER)
        assert response.status_code == 422

    def test_usage_stats(self, client: TestClient) -> None:
        client.post("/quota/usage", json={"tokens_used": 100}, headers=USER)
        client.post("/quota/usage", json={"tokens_used": 50}, headers=USER)
        response = client.get("/quota/stats", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["total_tokens_used"] == 150
        assert data["total_messages_count"] == 2
        assert data["weekly_tokens_used"] == 150
        assert data["quota"]["window_tokens_used"] == 150

    def test_users_are_isolated(self, client: TestClient) -> None:
        client.post("/quota/usage", json={"tokens_used": 5000}, headers=USER)
        assert client.get("/quota", headers=USER).json()["allowed"] is False
        assert client.get("/quota", headers=OTHER_USER).json()["allowed"] is True

    def test_deck_quota_free_plan(self, client: TestClient) -> None:
        response = client.get("/quota/decks", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is False
        assert data["message"] == "Deck generation is a Premium feature."

    async def test_deck_usage(
        self,
        client: TestClient,
        services: tuple[ReviewService, QuotaManager],
    ) -> None:
        _, quota = services
        await quota.change_plan("user-1", "premium")

        response = client.post("/quota/decks/usage", headers=USER)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["decks_generated_today"] == 1
        assert data["decks_remaining_today"] == 4
