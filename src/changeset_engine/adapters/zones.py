"""Zone classification and edit guards.

A zone groups filesystem roots under one permission policy and exposes them
through a virtual prefix (``/core-host/tools.ts``). Platform zones hold the
host application itself and are what change-sets snapshot and guard; user
zones hold workspace output.

Guard policy:
- Platform zones: only the self-modification agent, or a user-confirmed
  override, may write.
- User zones: every agent except the read-only explore agent may write.
- Paths outside all zones: refused unless the self-modification agent runs a
  user-confirmed override.
"""

import os
from pathlib import Path
from typing import Any

import yaml

from changeset_engine.adapters.path_utils import (
    ensure_within_root,
    join_root,
    normalize_absolute_path,
    relative_to_root,
    to_posix,
)
from changeset_engine.core.models import GuardContext, GuardResult, Zone, ZoneClassification
from changeset_engine.errors import ChangeSetEngineError
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

SELF_MOD_AGENT = "self_mod"
EXPLORE_AGENT = "explore"


def build_default_zones(project_root: str | Path, home_dir: str | Path) -> list[Zone]:
    """Return the built-in zone layout of the host application.

    Args:
        project_root: Host application root.
        home_dir: Engine home directory (packs, workspace and user data).

    Returns:
        Platform zones first, then user zones.
    """
    project = normalize_absolute_path(project_root)
    home = normalize_absolute_path(home_dir)
    ui_root = os.path.join(project, "src")
    return [
        Zone(
            name="ui",
            kind="platform",
            description="Renderer UI and shared frontend logic.",
            virtual_root="/ui",
            roots=[ui_root],
        ),
        Zone(
            name="screens",
            kind="platform",
            description="Right-panel screens and screen host wiring.",
            virtual_root="/screens",
            roots=[os.path.join(ui_root, "screens")],
        ),
        Zone(
            name="packs",
            kind="platform",
            description="Pack bundles, manifests, and pack state.",
            virtual_root="/packs",
            roots=[os.path.join(home, "packs")],
        ),
        Zone(
            name="core-host",
            kind="platform",
            description="Local host, tool runner, and safety rails.",
            virtual_root="/core-host",
            roots=[os.path.join(project, "electron", "local-host")],
        ),
        Zone(
            name="instructions",
            kind="platform",
            description="Folder-local instruction files and platform rules.",
            virtual_root="/instructions",
            roots=[os.path.join(project, "instructions")],
        ),
        Zone(
            name="workspace",
            kind="user",
            description="User workspace outputs and artifacts.",
            virtual_root="/workspace",
            roots=[os.path.join(home, "workspace")],
        ),
        Zone(
            name="user",
            kind="user",
            description="User-owned data and artifacts.",
            virtual_root="/user",
            roots=[os.path.join(home, "user")],
        ),
    ]


def load_zones_file(path: str | Path, project_root: str | Path) -> list[Zone]:
    """Load zone definitions from a YAML file.

    The file holds a list (or a mapping with a ``zones`` list) of entries with
    ``name``, ``kind``, ``description``, ``virtual_root`` and ``roots``.
    Relative roots are resolved against the project root.

    Args:
        path: YAML file path.
        project_root: Base for relative roots.

    Returns:
        The parsed zones.

    Raises:
        ChangeSetEngineError: If the file is not a list of zone entries.
    """
    raw: Any = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("zones")
    if not isinstance(raw, list):
        raise ChangeSetEngineError(f"Zone file {path} must contain a list of zones")

    zones: list[Zone] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ChangeSetEngineError(f"Invalid zone entry in {path}: {entry!r}")
        roots = entry.get("roots") or []
        if isinstance(roots, str):
            roots = [roots]
        resolved = [
            (
                normalize_absolute_path(root)
                if os.path.isabs(os.path.expanduser(str(root)))
                else join_root(project_root, str(root))
            )
            for root in roots
        ]
        name = str(entry["name"])
        zones.append(
            Zone(
                name=name,
                kind=entry.get("kind", "platform"),
                description=str(entry.get("description", "")),
                virtual_root=str(entry.get("virtual_root") or f"/{name}"),
                roots=resolved,
            )
        )
    return zones


def _guard_platform_zone(zone: Zone, context: GuardContext) -> GuardResult:
    if context.agent_type == SELF_MOD_AGENT:
        return GuardResult(ok=True)
    if context.override_guard and context.user_confirmed:
        return GuardResult(ok=True)
    return GuardResult(
        ok=False,
        reason=(
            "Platform zones may only be modified by the Self-Modification agent "
            "(or user-confirmed system operations). "
            f"Blocked zone: {zone.virtual_root}."
        ),
    )


def _guard_user_zone(zone: Zone, context: GuardContext) -> GuardResult:
    if context.agent_type == EXPLORE_AGENT:
        return GuardResult(
            ok=False,
            reason=f"Explore agent is read-only and may not write to user zones. Blocked zone: {zone.virtual_root}.",
        )
    return GuardResult(ok=True)


def _guard_unknown_zone(context: GuardContext) -> GuardResult:
    if context.agent_type == SELF_MOD_AGENT and context.override_guard and context.user_confirmed:
        return GuardResult(ok=True)
    return GuardResult(
        ok=False,
        reason=(
            "Path is outside all known zones. Refuse to modify it unless explicitly "
            "routed through a user-confirmed system operation."
        ),
    )


class ZoneManager:
    """Classifies paths into zones and enforces zone guards.

    Args:
        project_root: Host application root.
        zones: Zone layout; see build_default_zones() and load_zones_file().
    """

    def __init__(self, project_root: str | Path, zones: list[Zone]) -> None:
        """Initialize ZoneManager.

        Args:
            project_root: Host application root.
            zones: Zone layout.
        """
        self._project_root = normalize_absolute_path(project_root)
        self._zones = list(zones)

    @property
    def project_root(self) -> str:
        """Absolute, normalized project root."""
        return self._project_root

    def _pick_best_zone(self, absolute_path: str) -> tuple[Zone, str] | None:
        # Nested roots (ui contains screens): the longest matching root wins.
        matches = [
            (zone, root)
            for zone in self._zones
            for root in zone.roots
            if ensure_within_root(root, absolute_path)
        ]
        if not matches:
            return None
        return max(matches, key=lambda match: len(match[1]))

    def _virtual_to_absolute(self, virtual_path: str) -> tuple[Zone, str] | None:
        segments = [segment for segment in to_posix(virtual_path).split("/") if segment]
        if not segments:
            return None
        zone = next((z for z in self._zones if z.virtual_root == f"/{segments[0]}"), None)
        if zone is None or not zone.roots:
            return None
        return zone, join_root(zone.roots[0], "/".join(segments[1:]))

    def classify_absolute_path(self, absolute_path: str) -> ZoneClassification:
        """Classify a filesystem path, skipping virtual-path resolution."""
        normalized = normalize_absolute_path(absolute_path)
        best = self._pick_best_zone(normalized)
        if best is None:
            zone = None
            zone_relative = to_posix(normalized)
            virtual_path = to_posix(normalized)
        else:
            zone, root = best
            zone_relative = relative_to_root(root, normalized)
            virtual_path = f"{zone.virtual_root}/{zone_relative}" if zone_relative else zone.virtual_root
        if ensure_within_root(self._project_root, normalized):
            project_relative = relative_to_root(self._project_root, normalized)
        else:
            project_relative = zone_relative
        return ZoneClassification(
            zone=zone,
            absolute_path=normalized,
            zone_relative_path=zone_relative,
            virtual_path=virtual_path,
            project_relative_path=project_relative,
        )

    def resolve_path(self, input_path: str) -> str:
        """Resolve a virtual, absolute or project-relative path to an absolute one.

        Args:
            input_path: The path as supplied by an agent.

        Returns:
            Absolute normalized path.

        Raises:
            ChangeSetEngineError: If input_path is empty.
        """
        trimmed = str(input_path or "").strip()
        if not trimmed:
            raise ChangeSetEngineError("Path is required.")
        if os.path.isabs(trimmed) and self._is_filesystem_location(normalize_absolute_path(trimmed)):
            return normalize_absolute_path(trimmed)
        if trimmed.startswith("/"):
            virtual = self._virtual_to_absolute(trimmed)
            if virtual is not None:
                return virtual[1]
        if os.path.isabs(trimmed):
            return normalize_absolute_path(trimmed)
        return join_root(self._project_root, trimmed)

    def _is_filesystem_location(self, absolute_path: str) -> bool:
        # A real path under the project or a zone root wins over a virtual prefix of the same name.
        if ensure_within_root(self._project_root, absolute_path):
            return True
        return self._pick_best_zone(absolute_path) is not None

    def classify_path(self, input_path: str) -> ZoneClassification:
        """Map a path onto the zone layout.

        Args:
            input_path: Virtual, absolute or project-relative path.

        Returns:
            ZoneClassification; zone is None outside every zone.
        """
        return self.classify_absolute_path(self.resolve_path(input_path))

    def enforce_guard(self, input_path: str, context: GuardContext) -> GuardResult:
        """Decide whether an edit to input_path is permitted.

        Args:
            input_path: The path being edited.
            context: Agent type, operation and confirmation flags.

        Returns:
            GuardResult carrying the classification and, when denied, a reason.
        """
        return self._guard(self.classify_path(input_path), context)

    def enforce_guard_absolute(self, absolute_path: str, context: GuardContext) -> GuardResult:
        """Guard a filesystem path without trying it as a virtual path first.

        Change-set evaluation uses this for snapshot paths, which are always
        absolute.
        """
        return self._guard(self.classify_absolute_path(absolute_path), context)

    def _guard(self, classification: ZoneClassification, context: GuardContext) -> GuardResult:
        zone = classification.zone
        if zone is None:
            result = _guard_unknown_zone(context)
        elif zone.kind == "platform":
            result = _guard_platform_zone(zone, context)
        else:
            result = _guard_user_zone(zone, context)
        if not result.ok:
            logger.debug(
                "Zone guard denied edit",
                path=classification.virtual_path,
                agent_type=context.agent_type,
                operation=context.operation,
            )
        return result.model_copy(update={"classification": classification})

    def get_zones(self) -> list[Zone]:
        return list(self._zones)

    def get_platform_zones(self) -> list[Zone]:
        return [zone for zone in self._zones if zone.kind == "platform"]

    def get_user_zones(self) -> list[Zone]:
        return [zone for zone in self._zones if zone.kind == "user"]

    def get_zone_roots(self) -> dict[str, list[str]]:
        return {zone.name: list(zone.roots) for zone in self._zones}
