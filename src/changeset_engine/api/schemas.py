"""Pydantic request and response schemas for the change-set control API.

All API inputs and outputs use Pydantic models — never raw dicts. Response
bodies reuse the domain records from core/models.py where they already are
the wire shape.

Resources:
- ChangeSet — start, finish, validation recording and rollback
- Baseline / safe mode — read-only status
"""

from pydantic import BaseModel, Field

from changeset_engine.core.models import (
    ChangeSetFinishInput,
    ChangeSetScope,
    ChangeSetStartContext,
    ValidationResult,
    ValidationSpec,
)


# ---------------------------------------------------------------------------
# ChangeSet schemas
# ---------------------------------------------------------------------------


class ChangeSetStartRequest(BaseModel):
    """Request body for opening a change-set."""

    scope: ChangeSetScope = Field(default="manual", description="Why the change-set is opened")
    agent_type: str = Field(description="Agent that will perform the edits, e.g. self_mod", min_length=1)
    conversation_id: str | None = Field(default=None, description="Originating conversation")
    device_id: str | None = Field(default=None, description="Originating device")
    reason: str | None = Field(default=None, description="Free-text reason, forwarded to the control plane")
    user_confirmed: bool = Field(default=False, description="The user confirmed this operation")
    override_guard: bool = Field(default=False, description="Request a guard override (needs user_confirmed)")

    def to_context(self) -> ChangeSetStartContext:
        return ChangeSetStartContext(**self.model_dump())


class ChangeSetFinishRequest(BaseModel):
    """Request body for finishing the active change-set."""

    title: str = Field(description="Short title of the change", min_length=1)
    summary: str = Field(default="", description="Longer description of the change")
    validations: list[ValidationSpec] = Field(
        default_factory=list,
        description="Extra validation commands run after the defaults",
    )
    skip_default_validations: bool = Field(default=False, description="Skip the configured default validations")
    user_confirmed: bool = Field(default=False, description="The user confirmed these edits")
    override_guard: bool = Field(default=False, description="Request a guard override (needs user_confirmed)")

    def to_input(self) -> ChangeSetFinishInput:
        return ChangeSetFinishInput(**self.model_dump())


class RecordValidationsRequest(BaseModel):
    """Request body for merging externally run validation results."""

    results: list[ValidationResult] = Field(description="Results to merge into the active change-set")


class RollbackRequest(BaseModel):
    """Request body for a manual rollback."""

    reason: str = Field(default="Manual rollback requested.", description="Reason recorded for the rollback")


class ChangeSetListResponse(BaseModel):
    """Response schema for the change-set id listing."""

    ids: list[str] = Field(default_factory=list, description="Stored change-set ids, sorted")
    total: int = Field(description="Number of stored change-sets")
