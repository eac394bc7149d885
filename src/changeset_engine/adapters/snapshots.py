"""Snapshot engine — capture, diff and restore zone file trees.

A snapshot stores the full content of every file in the selected zones, keyed
by virtual path, so it can be replayed without any other source of truth.
Text files are stored as UTF-8; anything that does not decode is stored as
base64 so restores are byte-for-byte.

Filesystem walks and restores block, so the public coroutines hand the work
to a worker thread.
"""

import asyncio
import base64
import hashlib
import os
import stat
import tempfile
import uuid

from changeset_engine.adapters.zones import ZoneManager
from changeset_engine.core.models import (
    RestoreResult,
    Snapshot,
    SnapshotDiffEntry,
    SnapshotFile,
    Zone,
    ZoneClassification,
    ZoneKind,
    now_ms,
)
from changeset_engine.errors import SnapshotRestoreError
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

IGNORED_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "dist-electron",
        "release",
        "coverage",
        "bundles",
        "cache",
        "__pycache__",
    }
)


def _walk_files(base_path: str) -> list[str]:
    results: list[str] = []
    stack = [base_path]
    while stack:
        current = stack.pop()
        try:
            entries = list(os.scandir(current))
        except OSError:
            continue
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                if entry.name not in IGNORED_DIRS:
                    stack.append(entry.path)
            elif entry.is_file(follow_symlinks=False):
                results.append(entry.path)
    return results


def _read_snapshot_file(path: str, classification: ZoneClassification, zone: Zone) -> SnapshotFile:
    with open(path, "rb") as handle:
        data = handle.read()
    digest = hashlib.sha256(data).hexdigest()
    try:
        content = data.decode("utf-8")
        encoding = "utf8"
    except UnicodeDecodeError:
        content = base64.b64encode(data).decode("ascii")
        encoding = "base64"
    return SnapshotFile(
        virtual_path=classification.virtual_path,
        absolute_path=classification.absolute_path,
        zone=zone.name,
        zone_relative_path=classification.zone_relative_path,
        project_relative_path=classification.project_relative_path,
        size=len(data),
        hash=digest,
        encoding=encoding,
        content=content,
    )


def _should_include_zone(
    zone: Zone,
    zone_kinds: list[ZoneKind] | None,
    zone_names: list[str] | None,
) -> bool:
    if zone_names:
        return zone.name in zone_names
    if zone_kinds:
        return zone.kind in zone_kinds
    return True


def _write_atomic(path: str, data: bytes) -> None:
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{os.path.basename(path)}.", suffix=".restore")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        try:
            os.chmod(tmp_path, stat.S_IMODE(os.stat(path).st_mode))
        except FileNotFoundError:
            pass
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass
        raise


def _file_bytes(file: SnapshotFile) -> bytes:
    if file.encoding == "utf8":
        return file.content.encode("utf-8")
    return base64.b64decode(file.content)


class SnapshotEngine:
    """Captures, compares and restores zone file trees.

    Args:
        zone_manager: Supplies the zone layout and path classification.
    """

    def __init__(self, zone_manager: ZoneManager) -> None:
        """Initialize SnapshotEngine.

        Args:
            zone_manager: Zone layout and classifier.
        """
        self._zone_manager = zone_manager

    def _subset_virtual_paths(self, subset_paths: list[str] | None) -> set[str] | None:
        if not subset_paths:
            return None
        return {self._zone_manager.classify_path(item).virtual_path for item in subset_paths}

    def _create_snapshot_sync(
        self,
        zone_kinds: list[ZoneKind] | None,
        zone_names: list[str] | None,
        subset_paths: list[str] | None,
    ) -> Snapshot:
        zones = [
            zone
            for zone in self._zone_manager.get_zones()
            if _should_include_zone(zone, zone_kinds, zone_names)
        ]
        subset_virtuals = self._subset_virtual_paths(subset_paths)
        if subset_paths:
            subset_zone_names = {
                classification.zone.name
                for classification in (self._zone_manager.classify_path(item) for item in subset_paths)
                if classification.zone is not None
            }
            zones = [zone for zone in zones if zone.name in subset_zone_names]

        files: dict[str, SnapshotFile] = {}
        for zone in zones:
            for root in zone.roots:
                if not os.path.isdir(root):
                    continue
                for entry in _walk_files(root):
                    classification = self._zone_manager.classify_absolute_path(entry)
                    if classification.zone is None:
                        continue
                    if subset_virtuals is not None and classification.virtual_path not in subset_virtuals:
                        continue
                    try:
                        record = _read_snapshot_file(entry, classification, classification.zone)
                    except OSError as exc:
                        logger.debug("Skipping unreadable file", path=entry, error=str(exc))
                        continue
                    files[record.virtual_path] = record

        return Snapshot(
            id=str(uuid.uuid4()),
            created_at=now_ms(),
            zones=[zone.name for zone in zones],
            zone_roots=self._zone_manager.get_zone_roots(),
            files=files,
        )

    async def create_snapshot(
        self,
        zone_kinds: list[ZoneKind] | None = None,
        zone_names: list[str] | None = None,
        subset_paths: list[str] | None = None,
    ) -> Snapshot:
        """Capture the current content of every file in the selected zones.

        Args:
            zone_kinds: Restrict to zones of these kinds.
            zone_names: Restrict to these zone names (takes precedence over kinds).
            subset_paths: Restrict to these individual paths.

        Returns:
            A new Snapshot with a fresh id.
        """
        snapshot = await asyncio.to_thread(self._create_snapshot_sync, zone_kinds, zone_names, subset_paths)
        logger.debug("Snapshot created", snapshot_id=snapshot.id, files=len(snapshot.files), zones=snapshot.zones)
        return snapshot

    def diff_snapshots(self, before: Snapshot, after: Snapshot) -> list[SnapshotDiffEntry]:
        """Return added/modified/deleted entries sorted by virtual path.

        Args:
            before: The earlier snapshot.
            after: The later snapshot.

        Returns:
            Diff entries; modification is detected by content hash.
        """
        diffs: list[SnapshotDiffEntry] = []
        for key in sorted(set(before.files) | set(after.files)):
            prev = before.files.get(key)
            nxt = after.files.get(key)
            if prev is None and nxt is not None:
                diffs.append(SnapshotDiffEntry(virtual_path=key, zone=nxt.zone, change_type="added", after=nxt))
            elif prev is not None and nxt is None:
                diffs.append(SnapshotDiffEntry(virtual_path=key, zone=prev.zone, change_type="deleted", before=prev))
            elif prev is not None and nxt is not None and prev.hash != nxt.hash:
                diffs.append(
                    SnapshotDiffEntry(
                        virtual_path=key,
                        zone=nxt.zone,
                        change_type="modified",
                        before=prev,
                        after=nxt,
                    )
                )
        return diffs

    def _apply_restore(self, diffs: list[SnapshotDiffEntry]) -> None:
        for diff in diffs:
            if diff.change_type == "added":
                target = diff.after.absolute_path if diff.after else None
                if target is None:
                    continue
                try:
                    os.remove(target)
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    raise SnapshotRestoreError(f"Failed to remove {target}: {exc}", path=target) from exc
                continue
            if diff.before is None:
                continue
            try:
                _write_atomic(diff.before.absolute_path, _file_bytes(diff.before))
            except OSError as exc:
                raise SnapshotRestoreError(
                    f"Failed to restore {diff.before.absolute_path}: {exc}",
                    path=diff.before.absolute_path,
                ) from exc

    async def restore_snapshot(
        self,
        snapshot: Snapshot,
        zone_names: list[str] | None = None,
        subset_paths: list[str] | None = None,
    ) -> RestoreResult:
        """Make the live filesystem match a snapshot.

        Files added since the snapshot are deleted; modified and deleted files
        are rewritten from the snapshot through a staging file and rename.

        Args:
            snapshot: The snapshot to restore.
            zone_names: Only restore files in these zones. Defaults to the
                zones the snapshot captured.
            subset_paths: Only restore these paths.

        Returns:
            RestoreResult listing the applied diffs.

        Raises:
            SnapshotRestoreError: If a file cannot be written or removed.
        """
        effective_zones = zone_names or snapshot.zones or None
        current = await self.create_snapshot(zone_names=effective_zones, subset_paths=subset_paths)
        subset_virtuals = self._subset_virtual_paths(subset_paths)

        to_apply = [
            diff
            for diff in self.diff_snapshots(snapshot, current)
            if (not effective_zones or diff.zone in effective_zones)
            and (subset_virtuals is None or diff.virtual_path in subset_virtuals)
        ]
        await asyncio.to_thread(self._apply_restore, to_apply)
        logger.info("Snapshot restored", snapshot_id=snapshot.id, restored_count=len(to_apply))
        return RestoreResult(restored_count=len(to_apply), diffs=to_apply)
