"""
Unit tests for the FastAPI ASGI application — REST endpoints.

Tests the manual sync endpoints (/trigger, /sync/download, /sync/status),
the /validate endpoint, and the /health, /ready, /info probes.

Uses FastAPI's TestClient with mocked controller and scheduler state.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dgc_verifier import asgi
from dgc_verifier.adapters.memory import InMemoryProgressRepository, InMemoryRevocationStore
from dgc_verifier.domain.models import SyncResult, SyncState, hash_uvci
from dgc_verifier.validation.engine import ValidationEngine
from tests.support import make_catalog

UVCI = "URN:UVCI:01:IT:8F4A2C#Q"

EXEMPTION = {
    "extended_type": "vaccine_exemption",
    "country_code": "IT",
    "uvci": UVCI,
    "exemption": {"valid_from": "2022-01-01"},
}


@pytest.fixture(autouse=True)
def _reset_asgi_state() -> None:
    """Reset ASGI module-level state before each test."""
    asgi._scheduler_thread = None
    asgi._scheduler_started = False
    asgi._scheduler_ready = False
    asgi._error_message = None
    asgi._controller = None
    asgi._engine = None
    asgi._recent = asgi.RecentResults()


@pytest.fixture()
def client() -> TestClient:
    """Create a TestClient without running the lifespan (no real startup)."""
    return TestClient(asgi.app, raise_server_exceptions=False)


@pytest.fixture()
def controller() -> MagicMock:
    controller = MagicMock()
    controller.last_result = SyncResult.COMPLETED
    controller.state = SyncState.IDLE
    asgi._controller = controller
    return controller


def _engine(revoked: list[str] | None = None, synced: bool = True) -> ValidationEngine:
    progress = InMemoryProgressRepository()
    if synced:
        progress.mark_fetched(datetime(2022, 3, 1, tzinfo=UTC))
    return ValidationEngine(make_catalog(), InMemoryRevocationStore(revoked or []), progress)


# ─────────────────────── POST /trigger ───────────────────────


class TestTriggerEndpoint:
    """Tests for the POST /trigger endpoint — manual synchronization."""

    def test_trigger_returns_503_when_controller_not_initialized(self, client: TestClient) -> None:
        """
        GIVEN the application has not completed startup (no controller)
        WHEN POST /trigger is called
        THEN it returns 503 with an unavailable status.
        """
        response = client.post("/trigger")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unavailable"
        assert "not initialized" in body["reason"]

    def test_trigger_returns_outcome(self, client: TestClient, controller: MagicMock) -> None:
        """
        GIVEN an idle controller whose attempt completes
        WHEN POST /trigger is called
        THEN it returns 200 with the last reported result and state.
        """
        controller.start.return_value = True

        response = client.post("/trigger")

        assert response.status_code == 200
        assert response.json() == {"status": "done", "result": "completed", "state": "idle"}
        controller.start.assert_called_once_with()

    def test_trigger_returns_409_when_busy(self, client: TestClient, controller: MagicMock) -> None:
        controller.start.return_value = False

        response = client.post("/trigger")

        assert response.status_code == 409
        assert response.json()["status"] == "busy"

    def test_trigger_returns_500_on_unexpected_exception(
        self, client: TestClient, controller: MagicMock
    ) -> None:
        controller.start.side_effect = RuntimeError("Unexpected kaboom")

        response = client.post("/trigger")

        assert response.status_code == 500
        body = response.json()
        assert body["status"] == "error"
        assert "kaboom" in body["error"]


# ─────────────────────── Sync control ───────────────────────


class TestSyncEndpoints:
    def test_download_confirms_pending_version(self, client: TestClient, controller: MagicMock) -> None:
        """
        GIVEN a controller waiting for user interaction
        WHEN POST /sync/download is called
        THEN the download is started regardless of size.
        """
        controller.start_download.return_value = True

        response = client.post("/sync/download")

        assert response.status_code == 200
        controller.start_download.assert_called_once_with()

    def test_status_includes_recent_results(self, client: TestClient, controller: MagicMock) -> None:
        controller.snapshot.return_value = {"state": "paused", "in_flight": False}
        asgi._recent.status_did_change(SyncResult.USER_INTERACTION_REQUIRED)

        response = client.get("/sync/status")

        body = response.json()
        assert response.status_code == 200
        assert body["state"] == "paused"
        assert [entry["result"] for entry in body["recent"]] == ["userInteractionRequired"]

    def test_status_returns_503_without_controller(self, client: TestClient) -> None:
        assert client.get("/sync/status").status_code == 503


class TestRecentResults:
    def test_keeps_only_latest(self) -> None:
        recent = asgi.RecentResults(size=2)

        for result in (SyncResult.DOWNLOADING, SyncResult.DOWNLOADING, SyncResult.COMPLETED):
            recent.status_did_change(result)

        assert [entry["result"] for entry in recent.as_list()] == ["downloading", "completed"]


# ─────────────────────── POST /validate ───────────────────────


class TestValidateEndpoint:
    def test_returns_decision(self, client: TestClient) -> None:
        asgi._engine = _engine()

        response = client.post("/validate", json=EXEMPTION)

        assert response.status_code == 200
        assert response.json() == {"status": "valid", "reason": None}

    def test_revoked_certificate(self, client: TestClient) -> None:
        asgi._engine = _engine(revoked=[hash_uvci(UVCI)])

        response = client.post("/validate", params={"scan_mode": "reinforced"}, json=EXEMPTION)

        assert response.json() == {"status": "not_valid", "reason": "revoked"}

    def test_locked_until_first_synchronization(self, client: TestClient) -> None:
        """
        GIVEN no synchronization has ever completed
        WHEN POST /validate is called
        THEN it returns 423 and no decision.
        """
        asgi._engine = _engine(synced=False)

        response = client.post("/validate", json=EXEMPTION)

        assert response.status_code == 423
        assert response.json()["status"] == "locked"

    def test_rejects_unknown_scan_mode(self, client: TestClient) -> None:
        asgi._engine = _engine()

        response = client.post("/validate", params={"scan_mode": "strict"}, json=EXEMPTION)

        assert response.status_code == 422

    def test_returns_503_without_engine(self, client: TestClient) -> None:
        assert client.post("/validate", json=EXEMPTION).status_code == 503


# ─────────────────────── GET /health ───────────────────────


class TestHealthEndpoint:
    """Tests for the GET /health liveness probe."""

    def test_health_returns_503_when_no_scheduler_thread(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 503

    def test_health_returns_503_on_error(self, client: TestClient) -> None:
        """
        GIVEN a startup error occurred
        WHEN GET /health is called
        THEN it returns 503 with the error message.
        """
        asgi._error_message = "Config broken"

        response = client.get("/health")

        assert response.status_code == 503
        assert "Config broken" in response.json()["error"]

    def test_health_returns_200_with_alive_thread(self, client: TestClient) -> None:
        mock_thread = MagicMock()
        mock_thread.is_alive.return_value = True
        asgi._scheduler_thread = mock_thread

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# ─────────────────────── GET /ready ───────────────────────


class TestReadyEndpoint:
    """Tests for the GET /ready readiness probe."""

    def test_ready_returns_202_when_not_started(self, client: TestClient) -> None:
        response = client.get("/ready")
        assert response.status_code == 202

    def test_ready_reports_scan_gate(self, client: TestClient) -> None:
        """
        GIVEN the scheduler is started but nothing was synchronized yet
        WHEN GET /ready is called
        THEN it returns 200 with scans_allowed false.
        """
        mock_thread = MagicMock()
        mock_thread.is_alive.return_value = True
        asgi._scheduler_thread = mock_thread
        asgi._scheduler_started = True
        asgi._scheduler_ready = True
        asgi._engine = _engine(synced=False)

        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["scans_allowed"] is False


# ─────────────────────── GET /info ───────────────────────


class TestInfoEndpoint:
    def test_info_returns_metadata(self, client: TestClient) -> None:
        response = client.get("/info")

        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "dgc-verifier"
        assert body["version"] == "0.1.0"
        assert "scheduler_running" in body
