"""Domain records for the change-set engine.

Every record here is persisted as JSON by the state store or returned through
the control API, so all of them are pydantic models that round-trip
losslessly through model_dump(mode="json") / model_validate(). Timestamps are
Unix epoch milliseconds.

Record groups:
- Zones and guards — Zone, ZoneClassification, GuardContext, GuardResult
- Snapshots — SnapshotFile, Snapshot, SnapshotDiffEntry, RestoreResult
- Instructions — InstructionPolicy, InstructionFile, InstructionEvaluation
- Validations — ValidationCommand, ValidationSpec, ValidationResult, ValidationSummary
- Change-sets — ChangedFile, ChangeSetRecord, start/finish inputs and results
- Durable singletons — BaselineMetadata, ActiveChangeSet, SafeModeTrigger, BootStatus
"""

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ChangeSetScope = Literal[
    "self_mod",
    "pack_publish",
    "pack_install",
    "pack_uninstall",
    "update_apply",
    "manual",
    "unknown",
]
ChangeSetStatus = Literal["active", "completed", "failed", "rolled_back"]
ChangeType = Literal["added", "modified", "deleted"]
ZoneKind = Literal["platform", "user"]
ValidationStatus = Literal["passed", "failed", "timed_out"]
BootState = Literal["starting", "healthy", "failed"]


def now_ms() -> int:
    """Return the current Unix time in milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Zones and guards
# ---------------------------------------------------------------------------


class Zone(BaseModel):
    """A named group of filesystem roots sharing one edit-permission policy.

    Attributes:
        name: Unique zone name, e.g. "core-host".
        kind: "platform" zones are snapshotted and guarded; "user" zones are not.
        description: Human-readable purpose of the zone.
        virtual_root: Virtual prefix for paths in this zone, e.g. "/core-host".
        roots: Absolute directory roots belonging to the zone.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ZoneKind
    description: str = ""
    virtual_root: str
    roots: list[str]


class ZoneClassification(BaseModel):
    """Result of mapping an absolute path onto the zone layout."""

    model_config = ConfigDict(frozen=True)

    zone: Zone | None = None
    absolute_path: str
    zone_relative_path: str
    virtual_path: str
    project_relative_path: str


class GuardContext(BaseModel):
    """Who is editing and why; the input to a zone guard decision."""

    model_config = ConfigDict(frozen=True)

    agent_type: str
    operation: str
    user_confirmed: bool = False
    override_guard: bool = False


class GuardResult(BaseModel):
    """Outcome of a zone guard check for one path."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: str | None = None
    classification: ZoneClassification | None = None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class SnapshotFile(BaseModel):
    """Captured state of a single file.

    Attributes:
        virtual_path: Zone-qualified virtual path, the snapshot key.
        absolute_path: Absolute location on disk.
        zone: Name of the owning zone.
        zone_relative_path: Posix path relative to the zone root.
        project_relative_path: Posix path relative to the project root (or
            the zone root when the file lives outside the project).
        size: File size in bytes.
        hash: sha256 hex digest of the raw bytes.
        encoding: "utf8" when content is the decoded text, "base64" otherwise.
        content: File content in the given encoding.
    """

    model_config = ConfigDict(frozen=True)

    virtual_path: str
    absolute_path: str
    zone: str
    zone_relative_path: str
    project_relative_path: str
    size: int
    hash: str
    encoding: Literal["utf8", "base64"]
    content: str


class Snapshot(BaseModel):
    """Full capture of one or more zones at a point in time.

    Attributes:
        id: Unique snapshot id.
        created_at: Capture time.
        zones: Names of the zones that were walked. A restore without an
            explicit zone filter only touches these zones.
        zone_roots: Zone name → roots at capture time.
        files: Virtual path → captured file.
    """

    id: str
    created_at: int
    zones: list[str] = Field(default_factory=list)
    zone_roots: dict[str, list[str]] = Field(default_factory=dict)
    files: dict[str, SnapshotFile] = Field(default_factory=dict)


class SnapshotDiffEntry(BaseModel):
    """One structural difference between two snapshots."""

    model_config = ConfigDict(frozen=True)

    virtual_path: str
    zone: str
    change_type: ChangeType
    before: SnapshotFile | None = None
    after: SnapshotFile | None = None

    @property
    def file(self) -> SnapshotFile | None:
        """The post-change file descriptor, or the pre-change one for deletions."""
        return self.after or self.before


class RestoreResult(BaseModel):
    """Summary of a snapshot restore."""

    restored_count: int
    diffs: list[SnapshotDiffEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------


class InstructionPolicy(BaseModel):
    """Front-matter policy declared by an INSTRUCTIONS.md file."""

    block_paths: list[str] = Field(default_factory=list)
    allow_paths: list[str] = Field(default_factory=list)
    invariants: list[str] = Field(default_factory=list)
    compatibility_notes: list[str] = Field(default_factory=list)


class InstructionFile(BaseModel):
    """A parsed INSTRUCTIONS.md file."""

    file_path: str
    directory: str
    markdown: str
    policy: InstructionPolicy = Field(default_factory=InstructionPolicy)


class InstructionEvaluation(BaseModel):
    """Instructions that apply to one path, combined from root to leaf."""

    blocked: bool = False
    block_reasons: list[str] = Field(default_factory=list)
    invariants: list[str] = Field(default_factory=list)
    compatibility_notes: list[str] = Field(default_factory=list)
    instruction_files: list[InstructionFile] = Field(default_factory=list)
    classification: ZoneClassification | None = None


# ---------------------------------------------------------------------------
# Validations
# ---------------------------------------------------------------------------


class ValidationCommand(BaseModel):
    """A configured validation, not yet bound to a working directory."""

    name: str
    command: str
    timeout_s: float | None = None
    required: bool = True


class ValidationSpec(BaseModel):
    """A validation command to run in a specific directory.

    Attributes:
        name: Short identifier, e.g. "lint".
        command: Shell command line.
        cwd: Working directory for the command.
        timeout_s: Optional timeout in seconds; the runner clamps it to its minimum.
        required: When True a non-passing result fails the change-set.
    """

    name: str
    command: str
    cwd: str
    timeout_s: float | None = None
    required: bool = True


class ValidationResult(BaseModel):
    """Outcome of running one ValidationSpec."""

    name: str
    command: str
    cwd: str
    started_at: int
    completed_at: int
    duration_ms: int
    exit_code: int | None
    status: ValidationStatus
    output: str = ""
    required: bool = True

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        """Identity of a validation within a change-set's history."""
        return (self.name, self.command, self.cwd)


class ValidationSummary(BaseModel):
    """Aggregate of a batch of validation results."""

    ok: bool
    required_failures: list[ValidationResult] = Field(default_factory=list)
    results: list[ValidationResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Change-sets
# ---------------------------------------------------------------------------


class DiffStat(BaseModel):
    """Added/removed line counts for one path."""

    added: int = 0
    removed: int = 0


class ChangedFile(BaseModel):
    """Evaluation of one changed file inside a change-set."""

    virtual_path: str
    zone: str
    change_type: ChangeType
    project_relative_path: str
    diff_stat: DiffStat | None = None
    instruction_files: list[str] = Field(default_factory=list)
    invariants: list[str] = Field(default_factory=list)
    compatibility_notes: list[str] = Field(default_factory=list)
    blocked: bool = False
    block_reasons: list[str] = Field(default_factory=list)
    guard_reason: str | None = None


class RequiredFailure(BaseModel):
    """A required validation that did not pass."""

    name: str
    status: ValidationStatus
    exit_code: int | None = None


class ChangeSetValidationSummary(BaseModel):
    """Validation verdict stored on a change-set record."""

    ok: bool = True
    required_failures: list[RequiredFailure] = Field(default_factory=list)


class ChangeSetRecord(BaseModel):
    """The unit of transactional work.

    Mutable: the manager fills evaluation fields in place during finish and
    persists the record after every transition.
    """

    id: str
    scope: ChangeSetScope
    agent_type: str
    status: ChangeSetStatus
    started_at: int
    completed_at: int | None = None
    title: str | None = None
    summary: str | None = None
    baseline_id: str
    baseline_snapshot_path: str
    git_head_at_start: str | None = None
    git_head_at_end: str | None = None
    diff_patch: str = ""
    diff_patch_truncated: bool = False
    changed_files: list[ChangedFile] = Field(default_factory=list)
    instruction_invariants: list[str] = Field(default_factory=list)
    instruction_notes: list[str] = Field(default_factory=list)
    block_reasons: list[str] = Field(default_factory=list)
    guard_failures: list[str] = Field(default_factory=list)
    validations: list[ValidationResult] = Field(default_factory=list)
    validation_summary: ChangeSetValidationSummary = Field(default_factory=ChangeSetValidationSummary)
    rollback_applied: bool = False
    conversation_id: str | None = None
    device_id: str | None = None


class ChangeSetStartContext(BaseModel):
    """Input to start_change_set."""

    scope: ChangeSetScope
    agent_type: str
    conversation_id: str | None = None
    device_id: str | None = None
    reason: str | None = None
    user_confirmed: bool = False
    override_guard: bool = False


class ChangeSetFinishInput(BaseModel):
    """Input to finish_change_set."""

    title: str
    summary: str
    validations: list[ValidationSpec] = Field(default_factory=list)
    skip_default_validations: bool = False
    user_confirmed: bool = False
    override_guard: bool = False


class ChangeSetFinishResult(BaseModel):
    """Outcome of finish_change_set."""

    ok: bool
    status: ChangeSetStatus
    change_set: ChangeSetRecord | None = None
    rollback_applied: bool = False
    reason: str | None = None


class RollbackResult(BaseModel):
    """Outcome of a manual rollback."""

    ok: bool
    reason: str | None = None
    baseline_id: str | None = None
    change_set_id: str | None = None


# ---------------------------------------------------------------------------
# Durable singletons
# ---------------------------------------------------------------------------


class BaselineMetadata(BaseModel):
    """The last known-good reference point."""

    baseline_id: str
    created_at: int
    snapshot_path: str
    git_head: str | None = None
    source_change_set_id: str | None = None
    source_scope: str | None = None


class ActiveChangeSet(BaseModel):
    """The mutual-exclusion pointer to the open change-set."""

    id: str
    scope: ChangeSetScope
    started_at: int
    agent_type: str


class SafeModeTrigger(BaseModel):
    """Persisted halt signal for autonomous edits."""

    reason: str
    created_at: int


class BootStatus(BaseModel):
    """Health record for one application start."""

    boot_id: str
    started_at: int
    healthy_at: int | None = None
    status: BootState = "starting"
    failure_reason: str | None = None
    safe_mode_applied: bool | None = None


class StartupCheckResult(BaseModel):
    """Outcome of the safe-mode startup health check."""

    safe_mode_applied: bool
    smoke_passed: bool
    reason: str | None = None
    smoke: list[ValidationResult] = Field(default_factory=list)
