"""Durable JSON state for change-sets, baselines, safe mode and boots.

Layout under the state directory:

    changesets/active.json                   active change-set pointer
    changesets/<id>/record.json              change-set record
    changesets/<id>/baseline.snapshot.json   snapshot taken at start
    baseline/last_known_good.json            current baseline metadata
    baseline/history.json                    previous baselines, newest first
    baseline/snapshots/<id>.snapshot.json    global baseline snapshots
    safe-mode/trigger.json                   safe-mode trigger
    startup/boot.json                        last boot status

Every write goes to a temp file in the target directory, is fsynced and then
renamed over the target. Missing or unreadable files read as None.
"""

import asyncio
import json
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from changeset_engine.core.models import (
    ActiveChangeSet,
    BaselineMetadata,
    BootStatus,
    ChangeSetRecord,
    SafeModeTrigger,
    Snapshot,
    now_ms,
)
from changeset_engine.errors import StateStoreError
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _read_json(path: Path) -> Any | None:
    try:
        with path.open(encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable state file", path=str(path), error=str(exc))
        return None


class JsonStateStore:
    """File-backed implementation of IStateStore.

    Args:
        state_dir: Root of the state layout.
        packs_dir: Pack bundle directory, created alongside the state layout.
        history_limit: Number of previous baselines kept in history.json.
    """

    def __init__(self, state_dir: str | Path, packs_dir: str | Path | None = None, history_limit: int = 50) -> None:
        """Initialize JsonStateStore.

        Args:
            state_dir: Root of the state layout.
            packs_dir: Optional pack bundle directory.
            history_limit: Baseline history length.
        """
        self._state_dir = Path(state_dir)
        self._packs_dir = Path(packs_dir) if packs_dir is not None else None
        self._history_limit = history_limit

    # ---------------------------------------------------------------------------
    # Paths
    # ---------------------------------------------------------------------------

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def _changesets_dir(self) -> Path:
        return self._state_dir / "changesets"

    @property
    def _baseline_dir(self) -> Path:
        return self._state_dir / "baseline"

    @property
    def _active_path(self) -> Path:
        return self._changesets_dir / "active.json"

    @property
    def _baseline_metadata_path(self) -> Path:
        return self._baseline_dir / "last_known_good.json"

    @property
    def _baseline_history_path(self) -> Path:
        return self._baseline_dir / "history.json"

    @property
    def _safe_mode_path(self) -> Path:
        return self._state_dir / "safe-mode" / "trigger.json"

    @property
    def _boot_path(self) -> Path:
        return self._state_dir / "startup" / "boot.json"

    def _record_path(self, change_set_id: str) -> Path:
        return self._changesets_dir / change_set_id / "record.json"

    def get_change_set_baseline_path(self, change_set_id: str) -> str:
        return str(self._changesets_dir / change_set_id / "baseline.snapshot.json")

    def get_baseline_snapshot_path(self, baseline_id: str) -> str:
        return str(self._baseline_dir / "snapshots" / f"{baseline_id}.snapshot.json")

    # ---------------------------------------------------------------------------
    # Generic read/write
    # ---------------------------------------------------------------------------

    async def _write(self, path: Path, payload: Any) -> None:
        try:
            await asyncio.to_thread(_write_json_atomic, path, payload)
        except OSError as exc:
            raise StateStoreError(f"Failed to write {path}: {exc}") from exc

    async def _write_model(self, path: Path, model: BaseModel | None) -> None:
        await self._write(path, model.model_dump(mode="json") if model is not None else None)

    async def _read_model(self, path: Path, model_type: type[ModelT]) -> ModelT | None:
        raw = await asyncio.to_thread(_read_json, path)
        if raw is None:
            return None
        try:
            return model_type.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Invalid state file", path=str(path), model=model_type.__name__, error=str(exc))
            return None

    # ---------------------------------------------------------------------------
    # Layout
    # ---------------------------------------------------------------------------

    def _ensure_structure_sync(self) -> None:
        for directory in (
            self._changesets_dir,
            self._baseline_dir / "snapshots",
            self._state_dir / "safe-mode",
            self._state_dir / "startup",
        ):
            directory.mkdir(parents=True, exist_ok=True)
        if self._packs_dir is not None:
            self._packs_dir.mkdir(parents=True, exist_ok=True)

    async def ensure_structure(self) -> None:
        """Create the state directory layout. Safe to call repeatedly."""
        try:
            await asyncio.to_thread(self._ensure_structure_sync)
        except OSError as exc:
            raise StateStoreError(f"Failed to create state layout in {self._state_dir}: {exc}") from exc

    # ---------------------------------------------------------------------------
    # Change-sets
    # ---------------------------------------------------------------------------

    async def save_change_set_record(self, record: ChangeSetRecord) -> None:
        await self._write_model(self._record_path(record.id), record)

    async def load_change_set_record(self, change_set_id: str) -> ChangeSetRecord | None:
        return await self._read_model(self._record_path(change_set_id), ChangeSetRecord)

    async def list_change_set_ids(self) -> list[str]:
        """Return stored change-set ids, sorted."""

        def _list() -> list[str]:
            if not self._changesets_dir.is_dir():
                return []
            return sorted(
                entry.name
                for entry in self._changesets_dir.iterdir()
                if entry.is_dir() and (entry / "record.json").is_file()
            )

        return await asyncio.to_thread(_list)

    async def save_change_set_baseline(self, change_set_id: str, snapshot: Snapshot) -> None:
        await self._write_model(Path(self.get_change_set_baseline_path(change_set_id)), snapshot)

    async def load_change_set_baseline(self, change_set_id: str) -> Snapshot | None:
        return await self._read_model(Path(self.get_change_set_baseline_path(change_set_id)), Snapshot)

    async def set_active_change_set(self, value: ActiveChangeSet | None) -> None:
        await self._write_model(self._active_path, value)

    async def get_active_change_set(self) -> ActiveChangeSet | None:
        return await self._read_model(self._active_path, ActiveChangeSet)

    # ---------------------------------------------------------------------------
    # Baselines
    # ---------------------------------------------------------------------------

    async def save_baseline_metadata(self, metadata: BaselineMetadata) -> None:
        """Replace the current baseline and prepend it to the bounded history."""
        await self._write_model(self._baseline_metadata_path, metadata)
        history = await self.load_baseline_history()
        history = [metadata] + [entry for entry in history if entry.baseline_id != metadata.baseline_id]
        await self._write(
            self._baseline_history_path,
            [entry.model_dump(mode="json") for entry in history[: self._history_limit]],
        )

    async def load_baseline_metadata(self) -> BaselineMetadata | None:
        return await self._read_model(self._baseline_metadata_path, BaselineMetadata)

    async def load_baseline_history(self) -> list[BaselineMetadata]:
        raw = await asyncio.to_thread(_read_json, self._baseline_history_path)
        if not isinstance(raw, list):
            return []
        history: list[BaselineMetadata] = []
        for entry in raw:
            try:
                history.append(BaselineMetadata.model_validate(entry))
            except ValidationError:
                logger.warning("Skipping invalid baseline history entry", path=str(self._baseline_history_path))
        return history

    async def save_baseline_snapshot(self, baseline_id: str, snapshot: Snapshot) -> None:
        await self._write_model(Path(self.get_baseline_snapshot_path(baseline_id)), snapshot)

    async def load_baseline_snapshot(self, baseline_id: str) -> Snapshot | None:
        return await self._read_model(Path(self.get_baseline_snapshot_path(baseline_id)), Snapshot)

    # ---------------------------------------------------------------------------
    # Safe mode and boots
    # ---------------------------------------------------------------------------

    async def set_safe_mode_trigger(self, trigger: SafeModeTrigger | None) -> None:
        await self._write_model(self._safe_mode_path, trigger)

    async def get_safe_mode_trigger(self) -> SafeModeTrigger | None:
        return await self._read_model(self._safe_mode_path, SafeModeTrigger)

    async def start_boot(self) -> BootStatus:
        """Record the start of a new boot, replacing the previous boot record."""
        status = BootStatus(boot_id=str(uuid.uuid4()), started_at=now_ms(), status="starting")
        await self._write_model(self._boot_path, status)
        return status

    async def get_last_boot_status(self) -> BootStatus | None:
        return await self._read_model(self._boot_path, BootStatus)

    async def _update_boot(self, boot_id: str, **changes: Any) -> None:
        current = await self.get_last_boot_status()
        if current is None or current.boot_id != boot_id:
            logger.warning("Boot record not found", boot_id=boot_id)
            return
        await self._write_model(self._boot_path, current.model_copy(update=changes))

    async def mark_boot_healthy(self, boot_id: str) -> None:
        await self._update_boot(boot_id, status="healthy", healthy_at=now_ms())

    async def mark_boot_failed(self, boot_id: str, reason: str, safe_mode_applied: bool) -> None:
        await self._update_boot(boot_id, status="failed", failure_reason=reason, safe_mode_applied=safe_mode_applied)
