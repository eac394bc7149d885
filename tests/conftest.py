"""Test fixtures for changeset-engine.

Provides:
- project_root / home_dir: A temporary host application tree and engine home
- settings: Settings pointing at the temporary tree, with no default validations
- shadowed_zone_manager: Zones where a virtual root shadows the tmp_path prefix
- zone_manager, snapshot_engine, instruction_manager, state_store,
  validation_runner: Real adapters over the temporary tree
- mock_git: An IGitHelper mock reporting "not a repository"
- mock_notifier: An IChangeSetNotifier mock that captures mutations
- manager: A ChangeSetManager wired from the fixtures above
"""

import shlex
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from changeset_engine.adapters.instructions import InstructionManager
from changeset_engine.adapters.snapshots import SnapshotEngine
from changeset_engine.adapters.state_store import JsonStateStore
from changeset_engine.adapters.validations import ValidationRunner
from changeset_engine.adapters.zones import ZoneManager, build_default_zones
from changeset_engine.core.models import ValidationResult, Zone
from changeset_engine.core.services import ChangeSetManager
from changeset_engine.settings import Settings

APP_SOURCE = "export const answer = 42;\n"
SCREEN_SOURCE = "export const Home = () => null;\n"
HOST_SOURCE = "module.exports = { start() {} };\n"


def python_command(code: str) -> str:
    """Return a shell command line running code with the current interpreter.

    Args:
        code: Python source passed to -c.

    Returns:
        A shell-quoted command line.
    """
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def make_validation_result(
    name: str = "lint",
    command: str = "npm run lint",
    cwd: str = "/project",
    status: str = "passed",
    started_at: int = 1_000,
    exit_code: int | None = 0,
    required: bool = True,
) -> ValidationResult:
    """Create a ValidationResult for tests.

    Args:
        name: Validation name.
        command: Command line.
        cwd: Working directory.
        status: passed | failed | timed_out.
        started_at: Start timestamp in ms.
        exit_code: Process exit code.
        required: Whether the validation gates the change-set.

    Returns:
        ValidationResult instance.
    """
    return ValidationResult(
        name=name,
        command=command,
        cwd=cwd,
        started_at=started_at,
        completed_at=started_at + 10,
        duration_ms=10,
        exit_code=exit_code,
        status=status,
        output="ok",
        required=required,
    )


@pytest.fixture()
def project_root(tmp_path: Path) -> Path:
    """Create a minimal host application tree.

    Returns:
        Path to the project root containing src/, src/screens/,
        electron/local-host/ and instructions/.
    """
    root = tmp_path / "project"
    (root / "src" / "screens").mkdir(parents=True)
    (root / "electron" / "local-host").mkdir(parents=True)
    (root / "instructions").mkdir(parents=True)
    (root / "src" / "app.ts").write_text(APP_SOURCE, encoding="utf-8")
    (root / "src" / "screens" / "home.tsx").write_text(SCREEN_SOURCE, encoding="utf-8")
    (root / "electron" / "local-host" / "main.js").write_text(HOST_SOURCE, encoding="utf-8")
    (root / "instructions" / "README.md").write_text("# Platform rules\n", encoding="utf-8")
    return root


@pytest.fixture()
def home_dir(tmp_path: Path) -> Path:
    """Create the engine home with packs and workspace directories."""
    home = tmp_path / "home"
    (home / "packs").mkdir(parents=True)
    (home / "workspace").mkdir(parents=True)
    return home


@pytest.fixture()
def settings(project_root: Path, home_dir: Path) -> Settings:
    """Settings pointing at the temporary tree, with no default or smoke validations."""
    return Settings(
        project_root=project_root,
        home_dir=home_dir,
        default_validations=[],
        smoke_validations=[],
        validation_min_timeout_s=1.0,
        startup_checks_enabled=False,
    )


@pytest.fixture()
def zone_manager(project_root: Path, home_dir: Path) -> ZoneManager:
    return ZoneManager(project_root, build_default_zones(project_root, home_dir))


@pytest.fixture()
def shadowed_zone_manager(project_root: Path, home_dir: Path, tmp_path: Path) -> ZoneManager:
    """ZoneManager with a user zone whose virtual root equals the first segment of tmp_path.

    Absolute paths under the project then also parse as virtual paths into
    that user zone.
    """
    shadow = Zone(
        name="shadow",
        kind="user",
        virtual_root=f"/{tmp_path.parts[1]}",
        roots=[str(home_dir / "shadow")],
    )
    return ZoneManager(project_root, [shadow, *build_default_zones(project_root, home_dir)])


@pytest.fixture()
def snapshot_engine(zone_manager: ZoneManager) -> SnapshotEngine:
    return SnapshotEngine(zone_manager)


@pytest.fixture()
def instruction_manager(zone_manager: ZoneManager) -> InstructionManager:
    return InstructionManager(zone_manager)


@pytest.fixture()
def state_store(home_dir: Path) -> JsonStateStore:
    return JsonStateStore(home_dir / "state", packs_dir=home_dir / "packs", history_limit=5)


@pytest.fixture()
def validation_runner() -> ValidationRunner:
    """ValidationRunner with no default commands and a short minimum timeout."""
    return ValidationRunner(default_commands=[], smoke_commands=[], default_timeout_s=30.0, min_timeout_s=1.0)


@pytest.fixture()
def mock_git() -> AsyncMock:
    """Create a mock GitHelper for a project that is not under git.

    Returns:
        AsyncMock whose helpers return None / empty values.
    """
    git = AsyncMock()
    git.resolve_git_root.return_value = None
    git.get_git_head.return_value = None
    git.get_git_diff.return_value = ""
    git.get_git_numstat.return_value = {}
    return git


@pytest.fixture()
def mock_notifier() -> AsyncMock:
    """Create a mock notifier that records every mutation.

    Returns:
        AsyncMock with call_mutation returning None.
    """
    notifier = AsyncMock()
    notifier.call_mutation.return_value = None
    return notifier


@pytest.fixture()
def manager(
    zone_manager: ZoneManager,
    snapshot_engine: SnapshotEngine,
    instruction_manager: InstructionManager,
    mock_git: AsyncMock,
    validation_runner: ValidationRunner,
    state_store: JsonStateStore,
    mock_notifier: AsyncMock,
) -> ChangeSetManager:
    """ChangeSetManager over the temporary tree with mocked git and notifier."""
    return ChangeSetManager(
        zone_manager=zone_manager,
        snapshot_engine=snapshot_engine,
        instruction_manager=instruction_manager,
        git_helper=mock_git,
        validation_runner=validation_runner,
        state_store=state_store,
        notifier=mock_notifier,
    )
