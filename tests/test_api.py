"""Tests for API endpoints (router layer).

Tests the FastAPI routes by calling the service layer through dependency
injection overrides. Does not test service logic — that is in
test_change_sets.py and test_safe_mode.py.

Tests verify:
- Request validation (Pydantic schema enforcement)
- HTTP status codes
- Response schema shapes
- Application startup wiring (lifespan)
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from changeset_engine.api.router import get_change_set_manager, router
from changeset_engine.core.models import (
    BaselineMetadata,
    ChangeSetFinishResult,
    ChangeSetRecord,
    RollbackResult,
)
from changeset_engine.errors import NotFoundError
from changeset_engine.main import create_app
from changeset_engine.settings import Settings
from tests.conftest import make_validation_result


def make_fake_record(change_set_id: str = "cs-1", status: str = "active") -> ChangeSetRecord:
    """Create a fake ChangeSetRecord for mock service return values."""
    return ChangeSetRecord(
        id=change_set_id,
        scope="manual",
        agent_type="self_mod",
        status=status,
        started_at=1_000,
        baseline_id="snap-1",
        baseline_snapshot_path="/state/changesets/cs-1/baseline.snapshot.json",
    )


@pytest.fixture()
def manager_mock() -> AsyncMock:
    """Create a mock ChangeSetManager."""
    mock = AsyncMock()
    mock.start_change_set.return_value = make_fake_record()
    mock.finish_change_set.return_value = ChangeSetFinishResult(
        ok=True,
        status="completed",
        change_set=make_fake_record(status="completed"),
    )
    mock.record_validation_results.return_value = make_fake_record()
    mock.get_active_change_set.return_value = None
    mock.get_change_set.return_value = make_fake_record()
    mock.list_change_sets.return_value = ["cs-1", "cs-2"]
    mock.get_safe_mode_trigger.return_value = None
    mock.get_baseline.return_value = BaselineMetadata(baseline_id="snap-1", created_at=1, snapshot_path="/s.json")
    mock.rollback_to_last_known_good.return_value = RollbackResult(ok=True, baseline_id="snap-1")
    mock.rollback_change_set.return_value = RollbackResult(ok=True, change_set_id="cs-1")
    return mock


@pytest.fixture()
def test_app(manager_mock: AsyncMock) -> FastAPI:
    """Create a FastAPI test app with the manager dependency overridden.

    Args:
        manager_mock: The mock ChangeSetManager.

    Returns:
        FastAPI app with mocked dependencies.
    """
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.dependency_overrides[get_change_set_manager] = lambda: manager_mock
    return app


class TestLifecycleEndpoints:
    """Tests for start, finish, validations and rollback endpoints."""

    @pytest.mark.asyncio()
    async def test_start_returns_record(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        """POST /changesets/start returns 200 and the active record."""
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/changesets/start",
                json={"scope": "self_mod", "agent_type": "self_mod", "conversation_id": "c-1"},
            )

        assert response.status_code == 200
        assert response.json()["id"] == "cs-1"
        context = manager_mock.start_change_set.await_args.args[0]
        assert context.scope == "self_mod"
        assert context.conversation_id == "c-1"

    @pytest.mark.asyncio()
    async def test_start_rejects_unknown_scope(self, test_app: FastAPI) -> None:
        """POST /changesets/start with an invalid scope returns 422."""
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/start", json={"scope": "nightly", "agent_type": "x"})

        assert response.status_code == 422

    @pytest.mark.asyncio()
    async def test_finish_returns_result(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        """POST /changesets/finish passes guard flags and validations through."""
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/changesets/finish",
                json={
                    "title": "Add settings screen",
                    "validations": [{"name": "lint", "command": "npm run lint", "cwd": "/project"}],
                    "skip_default_validations": True,
                },
            )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["change_set"]["status"] == "completed"
        finish_input = manager_mock.finish_change_set.await_args.args[0]
        assert finish_input.summary == ""
        assert finish_input.skip_default_validations is True
        assert finish_input.validations[0].name == "lint"

    @pytest.mark.asyncio()
    async def test_finish_rejection_is_reported_in_body(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        """A rolled-back finish is a 200 with ok=false."""
        manager_mock.finish_change_set.return_value = ChangeSetFinishResult(
            ok=False,
            status="failed",
            rollback_applied=True,
            reason="Validation failed and changes were rolled back.",
        )

        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/finish", json={"title": "t"})

        assert response.status_code == 200
        assert response.json()["ok"] is False
        assert response.json()["rollback_applied"] is True

    @pytest.mark.asyncio()
    async def test_finish_missing_title_returns_422(self, test_app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/finish", json={"summary": "no title"})

        assert response.status_code == 422

    @pytest.mark.asyncio()
    async def test_record_validations(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        payload = {"results": [make_validation_result().model_dump(mode="json")]}

        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/validations", json=payload)

        assert response.status_code == 200
        assert manager_mock.record_validation_results.await_args.args[0][0].name == "lint"

    @pytest.mark.asyncio()
    async def test_record_validations_without_active_returns_404(
        self,
        test_app: FastAPI,
        manager_mock: AsyncMock,
    ) -> None:
        manager_mock.record_validation_results.return_value = None

        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/validations", json={"results": []})

        assert response.status_code == 404

    @pytest.mark.asyncio()
    async def test_rollback_to_baseline_default_reason(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/rollback-to-baseline", json={})

        assert response.status_code == 200
        assert response.json()["baseline_id"] == "snap-1"
        manager_mock.rollback_to_last_known_good.assert_awaited_once_with("Manual rollback requested.")

    @pytest.mark.asyncio()
    async def test_rollback_change_set(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.post("/api/v1/changesets/cs-1/rollback", json={"reason": "broke the build"})

        assert response.status_code == 200
        manager_mock.rollback_change_set.assert_awaited_once_with("cs-1", "broke the build")


class TestReadEndpoints:
    """Tests for the read-only endpoints."""

    @pytest.mark.asyncio()
    async def test_active_returns_null(self, test_app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.get("/api/v1/changesets/active")

        assert response.status_code == 200
        assert response.json() is None

    @pytest.mark.asyncio()
    async def test_list_change_sets(self, test_app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.get("/api/v1/changesets")

        assert response.status_code == 200
        assert response.json() == {"ids": ["cs-1", "cs-2"], "total": 2}

    @pytest.mark.asyncio()
    async def test_get_change_set_not_found_returns_404(self, test_app: FastAPI, manager_mock: AsyncMock) -> None:
        manager_mock.get_change_set.side_effect = NotFoundError("ChangeSet not found: nope")

        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            response = await client.get("/api/v1/changesets/nope")

        assert response.status_code == 404
        assert response.json()["detail"] == "ChangeSet not found: nope"

    @pytest.mark.asyncio()
    async def test_baseline_and_safe_mode(self, test_app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
            baseline = await client.get("/api/v1/changesets/baseline")
            safe_mode = await client.get("/api/v1/changesets/safe-mode")

        assert baseline.json()["baseline_id"] == "snap-1"
        assert safe_mode.json() is None


class TestApplication:
    """End-to-end tests through create_app() and its lifespan."""

    def test_lifespan_builds_engine_and_serves_lifecycle(self, settings: Settings, project_root: Path) -> None:
        app = create_app(settings)

        with TestClient(app) as client:
            assert client.get("/api/v1/changesets/baseline").json() is not None

            started = client.post("/api/v1/changesets/start", json={"scope": "manual", "agent_type": "self_mod"})
            assert started.status_code == 200

            (project_root / "src" / "app.ts").write_text("export const answer = 7;\n", encoding="utf-8")
            finished = client.post(
                "/api/v1/changesets/finish",
                json={"title": "Change answer", "skip_default_validations": True},
            )

            assert finished.status_code == 200
            body = finished.json()
            assert body["ok"] is True
            assert body["change_set"]["changed_files"][0]["virtual_path"] == "/ui/app.ts"
            assert client.get("/api/v1/changesets").json()["ids"] == [started.json()["id"]]
            assert client.get("/api/v1/changesets/active").json() is None

    def test_lifespan_runs_startup_checks(self, settings: Settings) -> None:
        app = create_app(settings.model_copy(update={"startup_checks_enabled": True}))

        with TestClient(app):
            result = app.state.startup_check

        assert result.safe_mode_applied is False
        assert result.smoke_passed is True
