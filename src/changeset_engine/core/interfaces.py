"""Abstract interfaces (Protocol classes) for the change-set engine.

Defines the contracts between the Change-Set Manager and its collaborators
using Python's typing.Protocol. Services depend on these protocols, never on
concrete adapter implementations. This enables testing with mock adapters.

Protocols defined:
- ISnapshotEngine
- IZoneManager
- IInstructionManager
- IGitHelper
- IValidationRunner
- IStateStore
- IChangeSetNotifier
"""

from typing import Any, Protocol

from changeset_engine.core.models import (
    ActiveChangeSet,
    BaselineMetadata,
    BootStatus,
    ChangeSetRecord,
    DiffStat,
    GuardContext,
    GuardResult,
    InstructionEvaluation,
    RestoreResult,
    SafeModeTrigger,
    Snapshot,
    SnapshotDiffEntry,
    ValidationResult,
    ValidationSpec,
    ValidationSummary,
    Zone,
    ZoneClassification,
    ZoneKind,
)


class ISnapshotEngine(Protocol):
    """Captures, compares and replays file-tree state for a set of zones."""

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
        ...

    def diff_snapshots(self, before: Snapshot, after: Snapshot) -> list[SnapshotDiffEntry]:
        """Return added/modified/deleted entries sorted by virtual path.

        Args:
            before: The earlier snapshot.
            after: The later snapshot.

        Returns:
            Diff entries; empty when both snapshots hold identical content.
        """
        ...

    async def restore_snapshot(
        self,
        snapshot: Snapshot,
        zone_names: list[str] | None = None,
        subset_paths: list[str] | None = None,
    ) -> RestoreResult:
        """Make the live filesystem match a snapshot.

        Args:
            snapshot: The snapshot to restore.
            zone_names: Only restore files in these zones.
            subset_paths: Only restore these paths.

        Returns:
            RestoreResult listing the applied diffs.

        Raises:
            SnapshotRestoreError: If a file cannot be written or removed.
        """
        ...


class IZoneManager(Protocol):
    """Classifies paths into zones and approves or denies edits."""

    @property
    def project_root(self) -> str:
        """Absolute, normalized project root."""
        ...

    def classify_path(self, input_path: str) -> ZoneClassification:
        """Map a virtual, absolute or project-relative path onto the zone layout."""
        ...

    def classify_absolute_path(self, absolute_path: str) -> ZoneClassification:
        """Map a filesystem path onto the zone layout without virtual-path resolution."""
        ...

    def enforce_guard(self, input_path: str, context: GuardContext) -> GuardResult:
        """Decide whether an edit to input_path is permitted.

        Args:
            input_path: The path being edited.
            context: Agent type, operation and confirmation flags.

        Returns:
            GuardResult with ok=False and a reason when denied.
        """
        ...

    def enforce_guard_absolute(self, absolute_path: str, context: GuardContext) -> GuardResult:
        """Like enforce_guard, but absolute_path is never interpreted as a virtual path."""
        ...

    def get_zones(self) -> list[Zone]:
        """Return all configured zones."""
        ...

    def get_platform_zones(self) -> list[Zone]:
        """Return the zones of kind "platform"."""
        ...

    def get_zone_roots(self) -> dict[str, list[str]]:
        """Return zone name → root directories."""
        ...


class IInstructionManager(Protocol):
    """Resolves directory-scoped instructions for a path."""

    async def get_instructions_for_path(self, input_path: str) -> InstructionEvaluation:
        """Collect invariants, compatibility notes and blocks applying to a path.

        Args:
            input_path: Absolute, virtual or project-relative path.

        Returns:
            InstructionEvaluation combining every INSTRUCTIONS.md from the
            project root down to the file's directory.
        """
        ...

    async def get_instructions_for_absolute_path(self, absolute_path: str) -> InstructionEvaluation:
        """Like get_instructions_for_path for a filesystem path, skipping virtual-path resolution."""
        ...


class IGitHelper(Protocol):
    """Git metadata helpers. Every method degrades to None/empty without a repository."""

    async def resolve_git_root(self, cwd: str) -> str | None:
        """Return the repository top-level directory, or None."""
        ...

    async def get_git_head(self, cwd: str) -> str | None:
        """Return the HEAD commit hash, or None."""
        ...

    async def get_git_diff(self, cwd: str, paths: list[str] | None = None) -> str:
        """Return the unified working-tree diff for paths (may be empty)."""
        ...

    async def get_git_numstat(self, cwd: str, paths: list[str] | None = None) -> dict[str, DiffStat]:
        """Return relative path → added/removed line counts."""
        ...


class IValidationRunner(Protocol):
    """Runs build/test commands as subprocesses."""

    def default_validation_specs(self, cwd: str) -> list[ValidationSpec]:
        """Return the validations run on every finish unless skipped."""
        ...

    def smoke_validation_specs(self, cwd: str) -> list[ValidationSpec]:
        """Return the validations run by the startup health check."""
        ...

    async def run_validations(self, specs: list[ValidationSpec]) -> list[ValidationResult]:
        """Run specs sequentially, each bounded by its own timeout."""
        ...

    def summarize_validation_results(self, results: list[ValidationResult]) -> ValidationSummary:
        """Compute ok/required_failures for a batch of results."""
        ...


class IStateStore(Protocol):
    """Durable key-value persistence for change-set state.

    Reads of missing or unreadable entries return None; writes are durable
    before the call returns.
    """

    async def ensure_structure(self) -> None:
        """Create the state directory layout (idempotent)."""
        ...

    def get_change_set_baseline_path(self, change_set_id: str) -> str:
        """Return where a change-set's baseline snapshot is stored."""
        ...

    def get_baseline_snapshot_path(self, baseline_id: str) -> str:
        """Return where a global baseline snapshot is stored."""
        ...

    async def save_change_set_record(self, record: ChangeSetRecord) -> None:
        """Persist a change-set record."""
        ...

    async def load_change_set_record(self, change_set_id: str) -> ChangeSetRecord | None:
        """Load a change-set record by id."""
        ...

    async def list_change_set_ids(self) -> list[str]:
        """Return the ids of every stored change-set."""
        ...

    async def save_change_set_baseline(self, change_set_id: str, snapshot: Snapshot) -> None:
        """Persist the snapshot taken when a change-set started."""
        ...

    async def load_change_set_baseline(self, change_set_id: str) -> Snapshot | None:
        """Load the snapshot taken when a change-set started."""
        ...

    async def set_active_change_set(self, value: ActiveChangeSet | None) -> None:
        """Set or clear the active change-set pointer."""
        ...

    async def get_active_change_set(self) -> ActiveChangeSet | None:
        """Return the active change-set pointer."""
        ...

    async def save_baseline_metadata(self, metadata: BaselineMetadata) -> None:
        """Replace the current baseline metadata and prepend it to the history."""
        ...

    async def load_baseline_metadata(self) -> BaselineMetadata | None:
        """Return the current baseline metadata."""
        ...

    async def load_baseline_history(self) -> list[BaselineMetadata]:
        """Return previous baselines, newest first."""
        ...

    async def save_baseline_snapshot(self, baseline_id: str, snapshot: Snapshot) -> None:
        """Persist a global baseline snapshot."""
        ...

    async def load_baseline_snapshot(self, baseline_id: str) -> Snapshot | None:
        """Load a global baseline snapshot."""
        ...

    async def set_safe_mode_trigger(self, trigger: SafeModeTrigger | None) -> None:
        """Set or clear the safe-mode trigger."""
        ...

    async def get_safe_mode_trigger(self) -> SafeModeTrigger | None:
        """Return the safe-mode trigger."""
        ...

    async def start_boot(self) -> BootStatus:
        """Record the start of a new application boot."""
        ...

    async def get_last_boot_status(self) -> BootStatus | None:
        """Return the most recent boot record."""
        ...

    async def mark_boot_healthy(self, boot_id: str) -> None:
        """Mark a boot healthy."""
        ...

    async def mark_boot_failed(self, boot_id: str, reason: str, safe_mode_applied: bool) -> None:
        """Mark a boot failed."""
        ...


class IChangeSetNotifier(Protocol):
    """Outbound, best-effort channel to the remote control plane."""

    async def call_mutation(self, name: str, args: dict[str, Any]) -> Any:
        """Send a named mutation with arguments.

        Args:
            name: Mutation name, e.g. "changesets.start".
            args: JSON-serializable arguments.

        Returns:
            Whatever the control plane answered; callers ignore it.
        """
        ...
