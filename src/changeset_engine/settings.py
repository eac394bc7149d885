"""Service settings for changeset-engine.

All settings use the CHANGESET_ environment prefix and cover:
- Project and home directory layout (where zones and durable state live)
- Diff patch and git subprocess limits
- Validation and smoke-check command sets and their timeouts
- The optional outbound control-plane notifier
- Logging
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from changeset_engine.core.models import ValidationCommand


def _default_validations() -> list[ValidationCommand]:
    return [
        ValidationCommand(name="lint", command="npm run lint", timeout_s=240.0, required=True),
        ValidationCommand(name="build", command="npm run build", timeout_s=300.0, required=True),
    ]


def _default_smoke_validations() -> list[ValidationCommand]:
    return [
        ValidationCommand(name="smoke_build", command="npm run build", timeout_s=180.0, required=True),
    ]


class Settings(BaseSettings):
    """Settings for changeset-engine.

    Environment variable prefix: CHANGESET_
    """

    service_name: str = "changeset-engine"

    # -------------------------------------------------------------------------
    # Filesystem layout
    # -------------------------------------------------------------------------

    project_root: Path = Field(
        default_factory=Path.cwd,
        description="Root of the host application tree. Platform zones live beneath it.",
    )
    home_dir: Path = Field(
        default_factory=lambda: Path.home() / ".changeset-engine",
        description="Engine home directory. Holds durable state, packs and user zones.",
    )
    zones_file: Path | None = Field(
        default=None,
        description="Optional YAML file replacing the built-in zone definitions.",
    )
    device_id: str = Field(
        default="local",
        description="Identifier of this device, attached to change-sets started by the host.",
    )

    # -------------------------------------------------------------------------
    # Diff and git limits
    # -------------------------------------------------------------------------

    max_diff_patch_chars: int = Field(
        default=300_000,
        description="Maximum stored length of a change-set diff patch before truncation.",
    )
    git_timeout_s: float = Field(
        default=20.0,
        description="Timeout for short git commands (rev-parse).",
    )
    git_diff_timeout_s: float = Field(
        default=60.0,
        description="Timeout for git diff and numstat.",
    )
    git_max_paths: int = Field(
        default=300,
        description="Maximum number of paths passed to a single git diff invocation.",
    )

    # -------------------------------------------------------------------------
    # Validations
    # -------------------------------------------------------------------------

    validation_default_timeout_s: float = Field(
        default=240.0,
        description="Timeout applied to validation commands that do not declare one.",
    )
    validation_min_timeout_s: float = Field(
        default=30.0,
        description="Lower bound applied to every validation timeout.",
    )
    validation_max_output_chars: int = Field(
        default=80_000,
        description="Captured validation output is truncated beyond this length.",
    )
    default_validations: list[ValidationCommand] = Field(
        default_factory=_default_validations,
        description="Validations run by finish_change_set unless skipped. Executed in the project root.",
    )
    smoke_validations: list[ValidationCommand] = Field(
        default_factory=_default_smoke_validations,
        description="Validations run by the startup health check.",
    )

    # -------------------------------------------------------------------------
    # Baseline and startup
    # -------------------------------------------------------------------------

    baseline_history_limit: int = Field(
        default=50,
        description="Number of previous baselines kept in baseline/history.json.",
    )
    startup_checks_enabled: bool = Field(
        default=True,
        description="Run the safe-mode startup health check when the API starts.",
    )

    # -------------------------------------------------------------------------
    # Outbound notifier (remote control plane)
    # -------------------------------------------------------------------------

    notifier_url: str = Field(
        default="",
        description="Control plane base URL. Leave empty to disable outbound notifications.",
    )
    notifier_token: str = Field(
        default="",
        description="Bearer token sent with control plane mutations.",
    )
    notifier_timeout_s: float = Field(
        default=10.0,
        description="Timeout for a single control plane mutation call.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Root log level.")
    log_json: bool = Field(default=False, description="Emit JSON log lines instead of console output.")

    model_config = SettingsConfigDict(env_prefix="CHANGESET_")

    @property
    def state_dir(self) -> Path:
        """Directory holding change-set records, baselines and safe-mode state."""
        return self.home_dir / "state"

    @property
    def packs_dir(self) -> Path:
        """Directory holding pack bundles (a platform zone)."""
        return self.home_dir / "packs"
