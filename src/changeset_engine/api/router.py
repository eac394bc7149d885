"""API router for changeset-engine.

All change-set endpoints are registered here and included in main.py under
the /api/v1 prefix. Routes are thin — all business logic lives in the
service layer.

Endpoints:
- POST   /changesets/start                 — Open a change-set (idempotent)
- POST   /changesets/finish                — Evaluate, validate, commit or roll back
- POST   /changesets/validations           — Merge validation results into the active change-set
- GET    /changesets/active                — The active change-set, or null
- GET    /changesets                       — Stored change-set ids
- GET    /changesets/{id}                  — Change-set record
- POST   /changesets/{id}/rollback         — Roll back a change-set to its start snapshot
- POST   /changesets/rollback-to-baseline  — Restore the last known-good baseline
- GET    /changesets/safe-mode             — Safe-mode trigger, or null
- GET    /changesets/baseline              — Current baseline metadata, or null
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request

from changeset_engine.api.schemas import (
    ChangeSetFinishRequest,
    ChangeSetListResponse,
    ChangeSetStartRequest,
    RecordValidationsRequest,
    RollbackRequest,
)
from changeset_engine.core.models import (
    BaselineMetadata,
    ChangeSetFinishResult,
    ChangeSetRecord,
    RollbackResult,
    SafeModeTrigger,
)
from changeset_engine.core.services import ChangeSetManager
from changeset_engine.errors import NotFoundError
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/changesets", tags=["changesets"])


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_change_set_manager(request: Request) -> ChangeSetManager:
    """Return the ChangeSetManager of the core host built at startup.

    Args:
        request: The incoming request.

    Returns:
        The shared ChangeSetManager instance.
    """
    return request.app.state.core_host.change_set_manager


ManagerDep = Annotated[ChangeSetManager, Depends(get_change_set_manager)]


# ---------------------------------------------------------------------------
# Lifecycle endpoints
# ---------------------------------------------------------------------------


@router.post("/start", response_model=ChangeSetRecord)
async def start_change_set(request: ChangeSetStartRequest, manager: ManagerDep) -> ChangeSetRecord:
    """Open a change-set, or return the one already active.

    Args:
        request: Scope, agent and attribution.
        manager: Injected ChangeSetManager.

    Returns:
        The active ChangeSetRecord.
    """
    return await manager.start_change_set(request.to_context())


@router.post("/finish", response_model=ChangeSetFinishResult)
async def finish_change_set(request: ChangeSetFinishRequest, manager: ManagerDep) -> ChangeSetFinishResult:
    """Finish the active change-set.

    Policy and validation failures are reported in the body (ok=false) with
    status 200; the engine has already rolled the edits back.

    Args:
        request: Title, summary, validations and guard flags.
        manager: Injected ChangeSetManager.

    Returns:
        ChangeSetFinishResult.
    """
    result = await manager.finish_change_set(request.to_input())
    if not result.ok:
        logger.info("Finish rejected", reason=result.reason, rollback_applied=result.rollback_applied)
    return result


@router.post("/validations", response_model=ChangeSetRecord)
async def record_validations(request: RecordValidationsRequest, manager: ManagerDep) -> ChangeSetRecord:
    """Merge validation results into the active change-set.

    Raises:
        HTTPException: 404 when no change-set is active.
    """
    record = await manager.record_validation_results(request.results)
    if record is None:
        raise HTTPException(status_code=404, detail="No active ChangeSet.")
    return record


@router.post("/rollback-to-baseline", response_model=RollbackResult)
async def rollback_to_baseline(request: RollbackRequest, manager: ManagerDep) -> RollbackResult:
    """Restore the last known-good baseline and enter safe mode."""
    return await manager.rollback_to_last_known_good(request.reason)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get("/active", response_model=ChangeSetRecord | None)
async def get_active_change_set(manager: ManagerDep) -> ChangeSetRecord | None:
    return await manager.get_active_change_set()


@router.get("/safe-mode", response_model=SafeModeTrigger | None)
async def get_safe_mode(manager: ManagerDep) -> SafeModeTrigger | None:
    return await manager.get_safe_mode_trigger()


@router.get("/baseline", response_model=BaselineMetadata | None)
async def get_baseline(manager: ManagerDep) -> BaselineMetadata | None:
    return await manager.get_baseline()


@router.get("", response_model=ChangeSetListResponse)
async def list_change_sets(manager: ManagerDep) -> ChangeSetListResponse:
    ids = await manager.list_change_sets()
    return ChangeSetListResponse(ids=ids, total=len(ids))


@router.get("/{change_set_id}", response_model=ChangeSetRecord)
async def get_change_set(change_set_id: str, manager: ManagerDep) -> ChangeSetRecord:
    """Return a stored change-set record.

    Raises:
        HTTPException: 404 when the change-set does not exist.
    """
    try:
        return await manager.get_change_set(change_set_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc


@router.post("/{change_set_id}/rollback", response_model=RollbackResult)
async def rollback_change_set(change_set_id: str, request: RollbackRequest, manager: ManagerDep) -> RollbackResult:
    """Roll back a change-set to its start snapshot.

    The restored snapshot becomes the new baseline.
    """
    return await manager.rollback_change_set(change_set_id, request.reason)
