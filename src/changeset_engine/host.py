"""Core host — wires the change-set engine from Settings.

create_core_host() builds every adapter and service once; the API layer keeps
the resulting CoreHost on app.state and resolves services from it.
"""

from dataclasses import dataclass

from changeset_engine.adapters.git import GitHelper
from changeset_engine.adapters.instructions import InstructionManager
from changeset_engine.adapters.notifier import build_notifier
from changeset_engine.adapters.snapshots import SnapshotEngine
from changeset_engine.adapters.state_store import JsonStateStore
from changeset_engine.adapters.validations import ValidationRunner
from changeset_engine.adapters.zones import SELF_MOD_AGENT, ZoneManager, build_default_zones, load_zones_file
from changeset_engine.core.interfaces import IChangeSetNotifier
from changeset_engine.core.models import ChangeSetStartContext
from changeset_engine.core.services import ChangeSetManager, SafeModeService
from changeset_engine.observability import get_logger
from changeset_engine.settings import Settings

logger = get_logger(__name__)


@dataclass
class CoreHost:
    """The assembled engine."""

    settings: Settings
    zone_manager: ZoneManager
    state_store: JsonStateStore
    snapshot_engine: SnapshotEngine
    instruction_manager: InstructionManager
    git_helper: GitHelper
    validation_runner: ValidationRunner
    change_set_manager: ChangeSetManager
    safe_mode_service: SafeModeService

    def set_notifier(self, notifier: IChangeSetNotifier | None) -> None:
        """Swap the control plane notifier on every service."""
        self.change_set_manager.set_notifier(notifier)
        self.safe_mode_service.set_notifier(notifier)

    async def ensure_self_mod_change_set(
        self,
        agent_type: str,
        device_id: str | None = None,
        conversation_id: str | None = None,
    ) -> str | None:
        """Auto-start a self_mod change-set for the self-modification agent.

        Args:
            agent_type: The agent about to run.
            device_id: Device attribution; defaults to the configured device id.
            conversation_id: Conversation attribution.

        Returns:
            The active change-set id, or None for any other agent.
        """
        if agent_type != SELF_MOD_AGENT:
            return None
        record = await self.change_set_manager.start_change_set(
            ChangeSetStartContext(
                scope="self_mod",
                agent_type=agent_type,
                conversation_id=conversation_id,
                device_id=device_id or self.settings.device_id,
                reason="Auto-start ChangeSet for self-modification.",
            )
        )
        return record.id


def create_core_host(settings: Settings, notifier: IChangeSetNotifier | None = None) -> CoreHost:
    """Build a CoreHost from settings.

    Args:
        settings: Engine settings.
        notifier: Optional notifier; when None one is built from the
            notifier_* settings (a no-op notifier if no URL is set).

    Returns:
        The assembled CoreHost.
    """
    project_root = str(settings.project_root)
    if settings.zones_file is not None:
        zones = load_zones_file(settings.zones_file, project_root)
    else:
        zones = build_default_zones(project_root, settings.home_dir)

    if notifier is None:
        notifier = build_notifier(
            settings.notifier_url,
            token=settings.notifier_token,
            timeout_s=settings.notifier_timeout_s,
        )

    zone_manager = ZoneManager(project_root, zones)
    state_store = JsonStateStore(
        settings.state_dir,
        packs_dir=settings.packs_dir,
        history_limit=settings.baseline_history_limit,
    )
    snapshot_engine = SnapshotEngine(zone_manager)
    instruction_manager = InstructionManager(zone_manager)
    git_helper = GitHelper(
        timeout_s=settings.git_timeout_s,
        diff_timeout_s=settings.git_diff_timeout_s,
        max_paths=settings.git_max_paths,
    )
    validation_runner = ValidationRunner(
        default_commands=settings.default_validations,
        smoke_commands=settings.smoke_validations,
        default_timeout_s=settings.validation_default_timeout_s,
        min_timeout_s=settings.validation_min_timeout_s,
        max_output_chars=settings.validation_max_output_chars,
    )
    change_set_manager = ChangeSetManager(
        zone_manager=zone_manager,
        snapshot_engine=snapshot_engine,
        instruction_manager=instruction_manager,
        git_helper=git_helper,
        validation_runner=validation_runner,
        state_store=state_store,
        notifier=notifier,
        max_diff_patch_chars=settings.max_diff_patch_chars,
    )
    safe_mode_service = SafeModeService(
        change_set_manager=change_set_manager,
        state_store=state_store,
        validation_runner=validation_runner,
        project_root=zone_manager.project_root,
        notifier=notifier,
    )

    logger.info(
        "Core host created",
        project_root=zone_manager.project_root,
        state_dir=str(settings.state_dir),
        zones=[zone.name for zone in zones],
    )
    return CoreHost(
        settings=settings,
        zone_manager=zone_manager,
        state_store=state_store,
        snapshot_engine=snapshot_engine,
        instruction_manager=instruction_manager,
        git_helper=git_helper,
        validation_runner=validation_runner,
        change_set_manager=change_set_manager,
        safe_mode_service=safe_mode_service,
    )
