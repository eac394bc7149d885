"""Tests for JsonStateStore durable state."""

from pathlib import Path

import pytest

from changeset_engine.adapters.state_store import JsonStateStore
from changeset_engine.core.models import (
    ActiveChangeSet,
    BaselineMetadata,
    ChangeSetRecord,
    SafeModeTrigger,
    Snapshot,
)
from tests.conftest import make_validation_result


def make_record(change_set_id: str = "cs-1") -> ChangeSetRecord:
    return ChangeSetRecord(
        id=change_set_id,
        scope="manual",
        agent_type="self_mod",
        status="active",
        started_at=1_000,
        baseline_id="snap-1",
        baseline_snapshot_path="/tmp/baseline.snapshot.json",
        validations=[make_validation_result()],
    )


def make_metadata(baseline_id: str) -> BaselineMetadata:
    return BaselineMetadata(baseline_id=baseline_id, created_at=1_000, snapshot_path=f"/tmp/{baseline_id}.json")


class TestJsonStateStore:
    """Tests for the JSON-backed state store."""

    @pytest.mark.asyncio()
    async def test_ensure_structure_creates_layout(self, state_store: JsonStateStore, home_dir: Path) -> None:
        await state_store.ensure_structure()
        await state_store.ensure_structure()

        state = home_dir / "state"
        for relative in ("changesets", "baseline/snapshots", "safe-mode", "startup"):
            assert (state / relative).is_dir()

    @pytest.mark.asyncio()
    async def test_record_round_trip_and_listing(self, state_store: JsonStateStore) -> None:
        await state_store.save_change_set_record(make_record("cs-b"))
        await state_store.save_change_set_record(make_record("cs-a"))

        loaded = await state_store.load_change_set_record("cs-b")

        assert loaded == make_record("cs-b")
        assert await state_store.list_change_set_ids() == ["cs-a", "cs-b"]
        assert await state_store.load_change_set_record("missing") is None

    @pytest.mark.asyncio()
    async def test_change_set_baseline_round_trip(self, state_store: JsonStateStore) -> None:
        snapshot = Snapshot(id="snap-1", created_at=5, zones=["ui"])

        await state_store.save_change_set_baseline("cs-1", snapshot)

        assert await state_store.load_change_set_baseline("cs-1") == snapshot
        assert state_store.get_change_set_baseline_path("cs-1").endswith("changesets/cs-1/baseline.snapshot.json")

    @pytest.mark.asyncio()
    async def test_active_pointer_set_and_clear(self, state_store: JsonStateStore) -> None:
        pointer = ActiveChangeSet(id="cs-1", scope="self_mod", started_at=1, agent_type="self_mod")

        await state_store.set_active_change_set(pointer)
        assert await state_store.get_active_change_set() == pointer

        await state_store.set_active_change_set(None)
        assert await state_store.get_active_change_set() is None

    @pytest.mark.asyncio()
    async def test_baseline_history_newest_first_and_bounded(self, state_store: JsonStateStore) -> None:
        for index in range(7):
            await state_store.save_baseline_metadata(make_metadata(f"b{index}"))

        current = await state_store.load_baseline_metadata()
        history = await state_store.load_baseline_history()

        assert current is not None
        assert current.baseline_id == "b6"
        assert [entry.baseline_id for entry in history] == ["b6", "b5", "b4", "b3", "b2"]

    @pytest.mark.asyncio()
    async def test_corrupt_file_reads_as_missing(self, state_store: JsonStateStore, home_dir: Path) -> None:
        await state_store.set_safe_mode_trigger(SafeModeTrigger(reason="x", created_at=1))
        trigger_path = home_dir / "state" / "safe-mode" / "trigger.json"
        trigger_path.write_text("{not json", encoding="utf-8")

        assert await state_store.get_safe_mode_trigger() is None

    @pytest.mark.asyncio()
    async def test_invalid_shape_reads_as_missing(self, state_store: JsonStateStore, home_dir: Path) -> None:
        await state_store.ensure_structure()
        (home_dir / "state" / "changesets" / "active.json").write_text('{"id": 3}', encoding="utf-8")

        assert await state_store.get_active_change_set() is None

    @pytest.mark.asyncio()
    async def test_writes_leave_no_temp_files(self, state_store: JsonStateStore, home_dir: Path) -> None:
        await state_store.save_change_set_record(make_record())
        await state_store.save_change_set_record(make_record())

        assert [path.name for path in (home_dir / "state" / "changesets" / "cs-1").iterdir()] == ["record.json"]

    @pytest.mark.asyncio()
    async def test_boot_lifecycle(self, state_store: JsonStateStore) -> None:
        boot = await state_store.start_boot()
        assert boot.status == "starting"

        await state_store.mark_boot_failed(boot.boot_id, "smoke failed", True)
        failed = await state_store.get_last_boot_status()
        assert failed is not None
        assert failed.status == "failed"
        assert failed.failure_reason == "smoke failed"
        assert failed.safe_mode_applied is True

        next_boot = await state_store.start_boot()
        await state_store.mark_boot_healthy(next_boot.boot_id)
        healthy = await state_store.get_last_boot_status()
        assert healthy is not None
        assert healthy.boot_id == next_boot.boot_id
        assert healthy.status == "healthy"
        assert healthy.healthy_at is not None

    @pytest.mark.asyncio()
    async def test_marking_stale_boot_is_ignored(self, state_store: JsonStateStore) -> None:
        boot = await state_store.start_boot()

        await state_store.mark_boot_healthy("other-boot")

        current = await state_store.get_last_boot_status()
        assert current is not None
        assert current.boot_id == boot.boot_id
        assert current.status == "starting"
