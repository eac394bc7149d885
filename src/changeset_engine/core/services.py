"""Core business logic services for the change-set engine.

Two service classes:
- ChangeSetManager: Change-set lifecycle — start, validate, finish, roll back
- SafeModeService: Startup health check and automatic recovery to the last
  known-good baseline

Both services are async-first. They accept injected collaborators through
their constructors (see core/interfaces.py), contain no framework code, and
notify the control plane after every state-changing operation. Notifications
are best-effort: a failing notifier is logged and never changes a result.
"""

import asyncio
import uuid
from typing import Any

from changeset_engine.adapters.path_utils import ensure_within_root, relative_to_root
from changeset_engine.core.interfaces import (
    IChangeSetNotifier,
    IGitHelper,
    IInstructionManager,
    ISnapshotEngine,
    IStateStore,
    IValidationRunner,
    IZoneManager,
)
from changeset_engine.core.models import (
    ActiveChangeSet,
    BaselineMetadata,
    ChangedFile,
    ChangeSetFinishInput,
    ChangeSetFinishResult,
    ChangeSetRecord,
    ChangeSetStartContext,
    ChangeSetValidationSummary,
    DiffStat,
    GuardContext,
    RequiredFailure,
    RollbackResult,
    SafeModeTrigger,
    Snapshot,
    SnapshotDiffEntry,
    StartupCheckResult,
    ValidationResult,
    ValidationSummary,
    now_ms,
)
from changeset_engine.errors import NotFoundError
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

MAX_DIFF_PATCH_CHARS = 300_000
DIFF_TRUNCATION_MARKER = "\n\n... (diff truncated)"

NO_ACTIVE_CHANGE_SET = "No active ChangeSet to finish."
BASELINE_MISSING = "Baseline snapshot missing for active ChangeSet."
VALIDATION_FAILED = "Validation failed and changes were rolled back."


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def truncate_patch(value: str, limit: int = MAX_DIFF_PATCH_CHARS) -> tuple[str, bool]:
    """Cap a diff patch at limit characters.

    Args:
        value: The raw patch.
        limit: Maximum stored length; a patch of exactly this length is kept.

    Returns:
        Tuple of (patch, truncated).
    """
    if len(value) <= limit:
        return value, False
    return value[:limit] + DIFF_TRUNCATION_MARKER, True


def dedupe_validations(
    existing: list[ValidationResult],
    new: list[ValidationResult],
) -> list[ValidationResult]:
    """Merge validation results keyed by (name, command, cwd).

    Later entries replace earlier ones with the same key. The merged list is
    ordered by started_at.
    """
    merged: dict[tuple[str, str, str], ValidationResult] = {}
    for result in [*existing, *new]:
        merged[result.dedup_key] = result
    return sorted(merged.values(), key=lambda result: result.started_at)


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _to_record_summary(summary: ValidationSummary) -> ChangeSetValidationSummary:
    return ChangeSetValidationSummary(
        ok=summary.ok,
        required_failures=[
            RequiredFailure(name=failure.name, status=failure.status, exit_code=failure.exit_code)
            for failure in summary.required_failures
        ],
    )


# ---------------------------------------------------------------------------
# ChangeSetManager
# ---------------------------------------------------------------------------


class ChangeSetManager:
    """Transactional lifecycle for agent-driven edits to platform zones.

    A change-set captures a baseline snapshot when it starts. Finishing it
    diffs the live tree against that baseline, checks every changed file
    against the zone guards and instruction files, runs validations, and
    either commits (the post-change tree becomes the new baseline) or restores
    the baseline and sets the safe-mode trigger.

    At most one change-set is active at a time; the active pointer lives in
    the state store so it survives restarts.

    Args:
        zone_manager: Zone classification and edit guards.
        snapshot_engine: Snapshot capture, diff and restore.
        instruction_manager: Directory-scoped instruction lookup.
        git_helper: Optional git metadata.
        validation_runner: Validation command runner.
        state_store: Durable state.
        notifier: Optional control plane notifier.
        max_diff_patch_chars: Cap applied to stored diff patches.
    """

    def __init__(
        self,
        zone_manager: IZoneManager,
        snapshot_engine: ISnapshotEngine,
        instruction_manager: IInstructionManager,
        git_helper: IGitHelper,
        validation_runner: IValidationRunner,
        state_store: IStateStore,
        notifier: IChangeSetNotifier | None = None,
        max_diff_patch_chars: int = MAX_DIFF_PATCH_CHARS,
    ) -> None:
        """Initialize ChangeSetManager with injected dependencies.

        Args:
            zone_manager: Implementation of IZoneManager.
            snapshot_engine: Implementation of ISnapshotEngine.
            instruction_manager: Implementation of IInstructionManager.
            git_helper: Implementation of IGitHelper.
            validation_runner: Implementation of IValidationRunner.
            state_store: Implementation of IStateStore.
            notifier: Implementation of IChangeSetNotifier, or None.
            max_diff_patch_chars: Diff patch cap.
        """
        self._zone_manager = zone_manager
        self._snapshot_engine = snapshot_engine
        self._instruction_manager = instruction_manager
        self._git = git_helper
        self._validation_runner = validation_runner
        self._state_store = state_store
        self._notifier = notifier
        self._max_diff_patch_chars = max_diff_patch_chars
        self._lock = asyncio.Lock()

    def set_notifier(self, notifier: IChangeSetNotifier | None) -> None:
        """Replace the control plane notifier (None disables notifications)."""
        self._notifier = notifier

    async def _call_mutation(self, name: str, args: dict[str, Any]) -> Any:
        if self._notifier is None:
            return None
        try:
            return await self._notifier.call_mutation(name, args)
        except Exception as exc:
            logger.warning("Control plane notification failed", mutation=name, error=str(exc))
            return None

    # -----------------------------------------------------------------------
    # Baseline
    # -----------------------------------------------------------------------

    async def _snapshot_platform_zones(self) -> Snapshot:
        return await self._snapshot_engine.create_snapshot(zone_kinds=["platform"])

    async def _update_baseline_from_snapshot(
        self,
        snapshot: Snapshot,
        source_change_set_id: str | None = None,
        source_scope: str | None = None,
    ) -> BaselineMetadata:
        git_head = await self._git.get_git_head(self._zone_manager.project_root)
        await self._state_store.save_baseline_snapshot(snapshot.id, snapshot)
        metadata = BaselineMetadata(
            baseline_id=snapshot.id,
            created_at=snapshot.created_at,
            snapshot_path=self._state_store.get_baseline_snapshot_path(snapshot.id),
            git_head=git_head,
            source_change_set_id=source_change_set_id,
            source_scope=source_scope,
        )
        await self._state_store.save_baseline_metadata(metadata)
        logger.info(
            "Baseline updated",
            baseline_id=metadata.baseline_id,
            source_change_set_id=source_change_set_id,
            source_scope=source_scope,
        )
        return metadata

    async def _ensure_baseline(self) -> tuple[BaselineMetadata, Snapshot]:
        await self._state_store.ensure_structure()
        existing = await self._state_store.load_baseline_metadata()
        if existing is not None:
            snapshot = await self._state_store.load_baseline_snapshot(existing.baseline_id)
            if snapshot is not None:
                return existing, snapshot
            logger.warning("Baseline snapshot unreadable, recapturing", baseline_id=existing.baseline_id)

        snapshot = await self._snapshot_platform_zones()
        metadata = await self._update_baseline_from_snapshot(snapshot, source_scope="manual")
        return metadata, snapshot

    async def ensure_baseline(self) -> tuple[BaselineMetadata, Snapshot]:
        """Return the current baseline, capturing one from the platform zones if absent.

        Returns:
            Tuple of (metadata, snapshot).
        """
        async with self._lock:
            return await self._ensure_baseline()

    # -----------------------------------------------------------------------
    # Start
    # -----------------------------------------------------------------------

    async def _load_active_record(self) -> ChangeSetRecord | None:
        pointer = await self._state_store.get_active_change_set()
        if pointer is None:
            return None
        record = await self._state_store.load_change_set_record(pointer.id)
        if record is None:
            logger.warning("Active change set pointer references a missing record", change_set_id=pointer.id)
            return None
        if record.status != "active":
            return None
        return record

    async def start_change_set(self, context: ChangeSetStartContext) -> ChangeSetRecord:
        """Open a change-set, or return the one already active.

        Captures an isolated baseline snapshot of the platform zones and
        persists it before the record and the active pointer.

        Args:
            context: Scope, agent and attribution of the change-set.

        Returns:
            The new or pre-existing active ChangeSetRecord.
        """
        async with self._lock:
            await self._ensure_baseline()

            active = await self._load_active_record()
            if active is not None:
                logger.debug("Change set already active", change_set_id=active.id)
                return active

            git_root = await self._git.resolve_git_root(self._zone_manager.project_root)
            git_head_at_start = await self._git.get_git_head(git_root) if git_root else None

            baseline_snapshot = await self._snapshot_platform_zones()
            change_set_id = str(uuid.uuid4())
            await self._state_store.save_change_set_baseline(change_set_id, baseline_snapshot)

            record = ChangeSetRecord(
                id=change_set_id,
                scope=context.scope,
                agent_type=context.agent_type,
                status="active",
                started_at=now_ms(),
                baseline_id=baseline_snapshot.id,
                baseline_snapshot_path=self._state_store.get_change_set_baseline_path(change_set_id),
                git_head_at_start=git_head_at_start,
                conversation_id=context.conversation_id,
                device_id=context.device_id,
            )
            await self._state_store.save_change_set_record(record)
            await self._state_store.set_active_change_set(
                ActiveChangeSet(
                    id=record.id,
                    scope=record.scope,
                    started_at=record.started_at,
                    agent_type=record.agent_type,
                )
            )

            logger.info(
                "Change set started",
                change_set_id=record.id,
                scope=record.scope,
                agent_type=record.agent_type,
                baseline_files=len(baseline_snapshot.files),
            )

            await self._call_mutation(
                "changesets.start",
                {
                    "change_set_id": record.id,
                    "scope": record.scope,
                    "agent_type": record.agent_type,
                    "started_at": record.started_at,
                    "baseline_id": record.baseline_id,
                    "git_head_at_start": record.git_head_at_start,
                    "reason": context.reason,
                    "conversation_id": record.conversation_id,
                    "device_id": record.device_id,
                },
            )
            return record

    # -----------------------------------------------------------------------
    # Validations
    # -----------------------------------------------------------------------

    async def record_validation_results(self, results: list[ValidationResult]) -> ChangeSetRecord | None:
        """Merge externally run validation results into the active change-set.

        Args:
            results: Results to merge; same (name, command, cwd) replaces.

        Returns:
            The updated record, or None when no change-set is active.
        """
        async with self._lock:
            active = await self._load_active_record()
            if active is None:
                return None
            active.validations = dedupe_validations(active.validations, results)
            await self._state_store.save_change_set_record(active)
            return active

    # -----------------------------------------------------------------------
    # Finish
    # -----------------------------------------------------------------------

    async def _compute_git_metadata(
        self,
        absolute_paths: list[str],
    ) -> tuple[str | None, str, bool, dict[str, DiffStat], str | None]:
        git_root = await self._git.resolve_git_root(self._zone_manager.project_root)
        if not git_root:
            return None, "", False, {}, None

        git_paths = [
            relative_to_root(git_root, path) for path in absolute_paths if ensure_within_root(git_root, path)
        ]
        if git_paths:
            raw_patch = await self._git.get_git_diff(git_root, git_paths)
            numstat = await self._git.get_git_numstat(git_root, git_paths)
        else:
            raw_patch, numstat = "", {}
        patch, truncated = truncate_patch(raw_patch, self._max_diff_patch_chars)
        head = await self._git.get_git_head(git_root)
        return head, patch, truncated, numstat, git_root

    async def _evaluate_diffs(
        self,
        diffs: list[SnapshotDiffEntry],
        guard_context: GuardContext,
        numstat: dict[str, DiffStat],
        git_root: str | None,
    ) -> tuple[list[ChangedFile], list[str], list[str], list[str], list[str]]:
        changed_files: list[ChangedFile] = []
        guard_failures: list[str] = []
        block_reasons: list[str] = []
        invariants: list[str] = []
        compatibility_notes: list[str] = []

        for diff in diffs:
            file = diff.file
            if file is None:
                continue

            guard = self._zone_manager.enforce_guard_absolute(file.absolute_path, guard_context)
            instructions = await self._instruction_manager.get_instructions_for_absolute_path(file.absolute_path)

            diff_stat = None
            if git_root and ensure_within_root(git_root, file.absolute_path):
                diff_stat = numstat.get(relative_to_root(git_root, file.absolute_path))

            invariants.extend(instructions.invariants)
            compatibility_notes.extend(instructions.compatibility_notes)
            if not guard.ok and guard.reason:
                guard_failures.append(guard.reason)
            if instructions.blocked:
                block_reasons.extend(instructions.block_reasons)

            changed_files.append(
                ChangedFile(
                    virtual_path=file.virtual_path,
                    zone=file.zone,
                    change_type=diff.change_type,
                    project_relative_path=file.project_relative_path,
                    diff_stat=diff_stat,
                    instruction_files=[item.file_path for item in instructions.instruction_files],
                    invariants=instructions.invariants,
                    compatibility_notes=instructions.compatibility_notes,
                    blocked=instructions.blocked,
                    block_reasons=instructions.block_reasons,
                    guard_reason=None if guard.ok else guard.reason,
                )
            )

        changed_files.sort(key=lambda item: item.virtual_path)
        return changed_files, guard_failures, block_reasons, _unique(invariants), _unique(compatibility_notes)

    async def _rollback_to_snapshot(self, snapshot: Snapshot) -> None:
        platform_zones = [zone.name for zone in self._zone_manager.get_platform_zones()]
        await self._snapshot_engine.restore_snapshot(snapshot, zone_names=platform_zones)

    def _completion_args(self, record: ChangeSetRecord) -> dict[str, Any]:
        data = record.model_dump(mode="json")
        return {
            "change_set_id": record.id,
            "status": record.status,
            "title": record.title,
            "summary": record.summary,
            "changed_files": data["changed_files"],
            "diff_patch": record.diff_patch,
            "diff_patch_truncated": record.diff_patch_truncated,
            "validations": data["validations"],
            "validation_summary": data["validation_summary"],
            "block_reasons": record.block_reasons,
            "guard_failures": record.guard_failures,
            "rollback_applied": record.rollback_applied,
            "completed_at": record.completed_at,
            "conversation_id": record.conversation_id,
            "device_id": record.device_id,
        }

    async def _rollback_and_fail(
        self,
        record: ChangeSetRecord,
        baseline_snapshot: Snapshot,
        safe_mode_reason: str,
        result_reason: str,
    ) -> ChangeSetFinishResult:
        await self._rollback_to_snapshot(baseline_snapshot)
        record.status = "failed"
        record.rollback_applied = True
        record.completed_at = now_ms()
        await self._state_store.save_change_set_record(record)
        await self._state_store.set_active_change_set(None)
        await self._state_store.set_safe_mode_trigger(SafeModeTrigger(reason=safe_mode_reason, created_at=now_ms()))

        logger.warning(
            "Change set rolled back",
            change_set_id=record.id,
            reason=result_reason,
            changed_files=len(record.changed_files),
        )

        await self._call_mutation("changesets.complete", self._completion_args(record))
        return ChangeSetFinishResult(
            ok=False,
            status=record.status,
            change_set=record,
            rollback_applied=True,
            reason=result_reason,
        )

    async def finish_change_set(self, finish_input: ChangeSetFinishInput) -> ChangeSetFinishResult:
        """Evaluate, validate and commit or roll back the active change-set.

        Steps:
        1. Diff the platform zones against the change-set baseline.
        2. Collect git metadata for the changed paths inside the git root.
        3. Run zone guards and instruction checks on every changed file.
           Any failure restores the baseline and sets safe mode.
        4. Run default (unless skipped) and caller validations, merged into
           the record's history. A required failure restores the baseline
           and sets safe mode.
        5. Otherwise mark completed, promote the post-change snapshot to the
           global baseline and clear safe mode.

        Args:
            finish_input: Title, summary, extra validations and guard flags.

        Returns:
            ChangeSetFinishResult. Precondition failures return ok=False with
            no change_set and no side effects.
        """
        async with self._lock:
            active = await self._load_active_record()
            if active is None:
                return ChangeSetFinishResult(ok=False, status="failed", reason=NO_ACTIVE_CHANGE_SET)

            baseline_snapshot = await self._state_store.load_change_set_baseline(active.id)
            if baseline_snapshot is None:
                logger.warning("Change set baseline missing", change_set_id=active.id)
                return ChangeSetFinishResult(ok=False, status="failed", reason=BASELINE_MISSING)

            current_snapshot = await self._snapshot_platform_zones()
            diffs = self._snapshot_engine.diff_snapshots(baseline_snapshot, current_snapshot)

            project_root = self._zone_manager.project_root
            project_paths = [
                diff.file.absolute_path
                for diff in diffs
                if diff.file is not None and ensure_within_root(project_root, diff.file.absolute_path)
            ]
            git_head_at_end, diff_patch, diff_patch_truncated, numstat, git_root = await self._compute_git_metadata(
                project_paths
            )

            guard_context = GuardContext(
                agent_type=active.agent_type,
                operation=active.scope,
                user_confirmed=finish_input.user_confirmed,
                override_guard=finish_input.override_guard,
            )
            (
                changed_files,
                guard_failures,
                block_reasons,
                invariants,
                compatibility_notes,
            ) = await self._evaluate_diffs(diffs, guard_context, numstat, git_root)

            active.title = finish_input.title.strip()
            active.summary = finish_input.summary.strip()
            active.changed_files = changed_files
            active.instruction_invariants = invariants
            active.instruction_notes = compatibility_notes
            active.block_reasons = block_reasons
            active.guard_failures = guard_failures
            active.diff_patch = diff_patch
            active.diff_patch_truncated = diff_patch_truncated
            active.git_head_at_end = git_head_at_end

            if guard_failures:
                return await self._rollback_and_fail(
                    active,
                    baseline_snapshot,
                    safe_mode_reason="Zone guard blocked platform edits: " + " | ".join(guard_failures),
                    result_reason=guard_failures[0],
                )
            if block_reasons:
                return await self._rollback_and_fail(
                    active,
                    baseline_snapshot,
                    safe_mode_reason="Instructions blocked edits: " + " | ".join(block_reasons),
                    result_reason=block_reasons[0],
                )

            specs = (
                []
                if finish_input.skip_default_validations
                else self._validation_runner.default_validation_specs(project_root)
            )
            specs = [*specs, *finish_input.validations]
            new_results = await self._validation_runner.run_validations(specs) if specs else []

            active.validations = dedupe_validations(active.validations, new_results)
            summary = self._validation_runner.summarize_validation_results(active.validations)
            active.validation_summary = _to_record_summary(summary)

            if not summary.ok:
                failures = ", ".join(f"{failure.name} ({failure.status})" for failure in summary.required_failures)
                return await self._rollback_and_fail(
                    active,
                    baseline_snapshot,
                    safe_mode_reason=f"Validation failed: {failures}",
                    result_reason=VALIDATION_FAILED,
                )

            active.status = "completed"
            active.rollback_applied = False
            active.completed_at = now_ms()
            await self._state_store.save_change_set_record(active)
            await self._update_baseline_from_snapshot(
                current_snapshot,
                source_change_set_id=active.id,
                source_scope=active.scope,
            )
            await self._state_store.set_active_change_set(None)
            await self._state_store.set_safe_mode_trigger(None)

            logger.info(
                "Change set completed",
                change_set_id=active.id,
                changed_files=len(active.changed_files),
                validations=len(active.validations),
            )

            await self._call_mutation("changesets.complete", self._completion_args(active))
            return ChangeSetFinishResult(ok=True, status="completed", change_set=active, rollback_applied=False)

    # -----------------------------------------------------------------------
    # Manual recovery
    # -----------------------------------------------------------------------

    async def rollback_to_last_known_good(self, reason: str) -> RollbackResult:
        """Restore the global baseline and set safe mode.

        Args:
            reason: Recorded as the safe-mode trigger reason.

        Returns:
            RollbackResult with the restored baseline id, or ok=False when no
            baseline is stored.
        """
        async with self._lock:
            metadata = await self._state_store.load_baseline_metadata()
            if metadata is None:
                return RollbackResult(ok=False, reason="No baseline metadata found.")
            snapshot = await self._state_store.load_baseline_snapshot(metadata.baseline_id)
            if snapshot is None:
                return RollbackResult(ok=False, reason="Baseline snapshot missing.")

            await self._rollback_to_snapshot(snapshot)
            await self._state_store.set_safe_mode_trigger(SafeModeTrigger(reason=reason, created_at=now_ms()))
            logger.warning("Rolled back to last known good baseline", baseline_id=metadata.baseline_id, reason=reason)

            await self._call_mutation(
                "changesets.rollback_to_baseline",
                {"baseline_id": metadata.baseline_id, "reason": reason, "created_at": now_ms()},
            )
            return RollbackResult(ok=True, baseline_id=metadata.baseline_id)

    async def rollback_change_set(self, change_set_id: str, reason: str) -> RollbackResult:
        """Restore a change-set's start snapshot and mark it rolled back.

        The restored snapshot becomes the new global baseline.

        Args:
            change_set_id: The change-set to undo.
            reason: Reported to the control plane.

        Returns:
            RollbackResult, or ok=False when the record or its snapshot is missing.
        """
        async with self._lock:
            record = await self._state_store.load_change_set_record(change_set_id)
            if record is None:
                return RollbackResult(ok=False, reason=f"ChangeSet not found: {change_set_id}")
            baseline_snapshot = await self._state_store.load_change_set_baseline(change_set_id)
            if baseline_snapshot is None:
                return RollbackResult(ok=False, reason="ChangeSet baseline snapshot missing.")

            await self._rollback_to_snapshot(baseline_snapshot)
            record.status = "rolled_back"
            record.rollback_applied = True
            record.completed_at = now_ms()
            await self._state_store.save_change_set_record(record)
            await self._state_store.set_active_change_set(None)
            await self._update_baseline_from_snapshot(
                baseline_snapshot,
                source_change_set_id=change_set_id,
                source_scope="manual",
            )
            logger.warning("Change set rolled back manually", change_set_id=change_set_id, reason=reason)

            await self._call_mutation(
                "changesets.mark_rolled_back",
                {"change_set_id": change_set_id, "reason": reason, "rolled_back_at": record.completed_at},
            )
            return RollbackResult(ok=True, change_set_id=change_set_id)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get_active_change_set(self) -> ChangeSetRecord | None:
        return await self._load_active_record()

    async def get_change_set(self, change_set_id: str) -> ChangeSetRecord:
        """Load a change-set record.

        Raises:
            NotFoundError: If no record exists for change_set_id.
        """
        record = await self._state_store.load_change_set_record(change_set_id)
        if record is None:
            raise NotFoundError(f"ChangeSet not found: {change_set_id}")
        return record

    async def list_change_sets(self) -> list[str]:
        return await self._state_store.list_change_set_ids()

    async def get_safe_mode_trigger(self) -> SafeModeTrigger | None:
        return await self._state_store.get_safe_mode_trigger()

    async def get_baseline(self) -> BaselineMetadata | None:
        return await self._state_store.load_baseline_metadata()


# ---------------------------------------------------------------------------
# SafeModeService
# ---------------------------------------------------------------------------


class SafeModeService:
    """Startup health check with automatic rollback to the last known-good baseline.

    Safe mode is entered when a safe-mode trigger is set, the previous boot
    did not reach healthy, or the smoke validations fail. Recovery restores
    the global baseline and re-runs the smoke validations.

    Args:
        change_set_manager: Provides baseline creation and rollback.
        state_store: Boot records and the safe-mode trigger.
        validation_runner: Runs the smoke validations.
        project_root: Working directory for smoke validations.
        notifier: Optional control plane notifier.
    """

    def __init__(
        self,
        change_set_manager: ChangeSetManager,
        state_store: IStateStore,
        validation_runner: IValidationRunner,
        project_root: str,
        notifier: IChangeSetNotifier | None = None,
    ) -> None:
        """Initialize SafeModeService with injected dependencies.

        Args:
            change_set_manager: The ChangeSetManager.
            state_store: Implementation of IStateStore.
            validation_runner: Implementation of IValidationRunner.
            project_root: Smoke validation working directory.
            notifier: Implementation of IChangeSetNotifier, or None.
        """
        self._manager = change_set_manager
        self._state_store = state_store
        self._validation_runner = validation_runner
        self._project_root = project_root
        self._notifier = notifier

    def set_notifier(self, notifier: IChangeSetNotifier | None) -> None:
        self._notifier = notifier

    async def _call_mutation(self, name: str, args: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.call_mutation(name, args)
        except Exception as exc:
            logger.warning("Control plane notification failed", mutation=name, error=str(exc))

    async def _run_smoke(self) -> tuple[list[ValidationResult], ValidationSummary]:
        specs = self._validation_runner.smoke_validation_specs(self._project_root)
        results = await self._validation_runner.run_validations(specs)
        return results, self._validation_runner.summarize_validation_results(results)

    async def run_startup_checks(self) -> StartupCheckResult:
        """Check boot health and recover to the last known-good baseline if needed.

        Returns:
            StartupCheckResult describing whether safe mode was applied and
            whether the final smoke run passed.
        """
        await self._state_store.ensure_structure()
        await self._manager.ensure_baseline()

        last_boot = await self._state_store.get_last_boot_status()
        trigger = await self._state_store.get_safe_mode_trigger()
        boot = await self._state_store.start_boot()

        previous_unhealthy = last_boot is not None and last_boot.status != "healthy"
        needs_safe_mode = trigger is not None or previous_unhealthy

        initial_results, initial_summary = await self._run_smoke()
        if not needs_safe_mode and initial_summary.ok:
            await self._state_store.mark_boot_healthy(boot.boot_id)
            logger.info("Startup checks passed", boot_id=boot.boot_id)
            await self._call_mutation(
                "changesets.safe_mode_status",
                {
                    "status": "healthy",
                    "boot_id": boot.boot_id,
                    "safe_mode_applied": False,
                    "smoke_passed": True,
                    "checked_at": now_ms(),
                },
            )
            return StartupCheckResult(safe_mode_applied=False, smoke_passed=True, smoke=initial_results)

        reason_parts: list[str] = []
        if trigger is not None and trigger.reason:
            reason_parts.append(trigger.reason)
        if not initial_summary.ok:
            names = ", ".join(failure.name for failure in initial_summary.required_failures)
            reason_parts.append(f"Smoke check failed: {names}")
        if last_boot is not None and previous_unhealthy:
            reason_parts.append(f"Previous boot was {last_boot.status}.")
        reason = " | ".join(reason_parts) or "Startup health check failed."

        logger.warning("Entering safe mode", boot_id=boot.boot_id, reason=reason)
        rollback = await self._manager.rollback_to_last_known_good(reason)
        if not rollback.ok:
            logger.error("Safe mode rollback failed", boot_id=boot.boot_id, reason=rollback.reason)

        post_results, post_summary = await self._run_smoke()
        smoke_passed = post_summary.ok
        if smoke_passed:
            await self._state_store.set_safe_mode_trigger(None)
            await self._state_store.mark_boot_healthy(boot.boot_id)
            logger.info("Safe mode recovery succeeded", boot_id=boot.boot_id)
        else:
            await self._state_store.mark_boot_failed(boot.boot_id, reason, True)
            logger.error("Safe mode recovery failed", boot_id=boot.boot_id, reason=reason)

        await self._call_mutation(
            "changesets.safe_mode_status",
            {
                "status": "recovered" if smoke_passed else "failed",
                "boot_id": boot.boot_id,
                "safe_mode_applied": True,
                "smoke_passed": smoke_passed,
                "reason": reason,
                "checked_at": now_ms(),
                "smoke_failures": [failure.name for failure in post_summary.required_failures],
            },
        )
        return StartupCheckResult(safe_mode_applied=True, smoke_passed=smoke_passed, reason=reason, smoke=post_results)
