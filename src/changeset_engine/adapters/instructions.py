"""Directory-scoped instruction files.

Any directory may hold an ``INSTRUCTIONS.md`` whose YAML front matter
declares policy for the files beneath it:

    ---
    blockPaths: ["generated/**"]
    allowPaths: ["*.ts", "**/*.ts"]
    invariants:
      - IPC channel names are part of the public contract.
    compatibilityNotes: |
      Keep the preload bridge backwards compatible.
    ---

Instructions are collected from the project root down to the file's
directory. Every matching ``blockPaths`` glob, and every ``allowPaths`` list
the path is not on, adds a block reason; invariants and compatibility notes
accumulate in root-to-leaf order.
"""

import asyncio
import os
import re
from functools import lru_cache
from typing import Any

import yaml

from changeset_engine.adapters.path_utils import normalize_absolute_path, relative_to_root, to_posix
from changeset_engine.adapters.zones import ZoneManager
from changeset_engine.core.models import (
    InstructionEvaluation,
    InstructionFile,
    InstructionPolicy,
    ZoneClassification,
)
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

INSTRUCTIONS_FILE = "INSTRUCTIONS.md"

_FRONT_MATTER = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


def _coerce_string_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        items = [item if isinstance(item, str) else str(item) for item in value]
    elif isinstance(value, str):
        items = value.split("\n")
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a path glob: ``**`` spans directories, ``*`` does not, ``?`` is one char."""
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "*":
            if pattern[i : i + 2] == "**":
                parts.append(".*")
                i += 2
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(parts) + "$")


def match_any_glob(patterns: list[str], relative_path: str) -> bool:
    normalized = to_posix(relative_path)
    return any(glob_to_regex(to_posix(pattern)).match(normalized) for pattern in patterns)


def parse_front_matter(markdown: str) -> InstructionPolicy:
    """Extract the instruction policy from a markdown document.

    Missing or malformed front matter yields an empty policy.

    Args:
        markdown: Full INSTRUCTIONS.md content.

    Returns:
        The parsed InstructionPolicy.
    """
    match = _FRONT_MATTER.match(markdown)
    if not match:
        return InstructionPolicy()
    try:
        parsed = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("Invalid instruction front matter", error=str(exc))
        return InstructionPolicy()
    if not isinstance(parsed, dict):
        return InstructionPolicy()
    return InstructionPolicy(
        block_paths=_coerce_string_list(parsed.get("blockPaths")),
        allow_paths=_coerce_string_list(parsed.get("allowPaths")),
        invariants=_coerce_string_list(parsed.get("invariants")),
        compatibility_notes=_coerce_string_list(parsed.get("compatibilityNotes")),
    )


def _load_instruction_file(file_path: str) -> InstructionFile | None:
    try:
        with open(file_path, encoding="utf-8") as handle:
            markdown = handle.read()
    except (OSError, UnicodeDecodeError):
        return None
    return InstructionFile(
        file_path=file_path,
        directory=os.path.dirname(file_path),
        markdown=markdown,
        policy=parse_front_matter(markdown),
    )


def collect_instruction_files(absolute_file_path: str, project_root: str) -> list[InstructionFile]:
    """Return INSTRUCTIONS.md files from the project root down to the file's directory."""
    instructions: list[InstructionFile] = []
    root = normalize_absolute_path(project_root)
    current = normalize_absolute_path(os.path.dirname(absolute_file_path))
    visited: set[str] = set()

    while current not in visited:
        visited.add(current)
        loaded = _load_instruction_file(os.path.join(current, INSTRUCTIONS_FILE))
        if loaded is not None:
            instructions.append(loaded)
        if current == root:
            break
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent

    instructions.reverse()
    return instructions


def evaluate_policies(
    instruction_files: list[InstructionFile],
    classification: ZoneClassification,
) -> InstructionEvaluation:
    """Apply each instruction file's policy to one classified path."""
    block_reasons: list[str] = []
    invariants: list[str] = []
    compatibility_notes: list[str] = []

    for file in instruction_files:
        rel = relative_to_root(file.directory, classification.absolute_path)
        rel_posix = to_posix(classification.zone_relative_path if rel.startswith("..") else rel)
        source = os.path.join(file.directory, INSTRUCTIONS_FILE)

        if file.policy.block_paths and match_any_glob(file.policy.block_paths, rel_posix):
            block_reasons.append(f'Blocked by {source} (blockPaths matched "{rel_posix}").')
        if file.policy.allow_paths and not match_any_glob(file.policy.allow_paths, rel_posix):
            block_reasons.append(f'Blocked by {source} (path not allowlisted: "{rel_posix}").')

        invariants.extend(file.policy.invariants)
        compatibility_notes.extend(file.policy.compatibility_notes)

    return InstructionEvaluation(
        blocked=bool(block_reasons),
        block_reasons=block_reasons,
        invariants=invariants,
        compatibility_notes=compatibility_notes,
        instruction_files=instruction_files,
        classification=classification,
    )


class InstructionManager:
    """Resolves instructions for paths inside the zone layout.

    Args:
        zone_manager: Supplies the project root and path classification.
    """

    def __init__(self, zone_manager: ZoneManager) -> None:
        self._zone_manager = zone_manager

    async def get_instructions_for_path(self, input_path: str) -> InstructionEvaluation:
        """Collect the instructions that apply to a path.

        Args:
            input_path: Absolute, virtual or project-relative path.

        Returns:
            InstructionEvaluation for the path.
        """
        return await self._evaluate(self._zone_manager.classify_path(input_path))

    async def get_instructions_for_absolute_path(self, absolute_path: str) -> InstructionEvaluation:
        """Collect the instructions for a filesystem path, never read as a virtual path."""
        return await self._evaluate(self._zone_manager.classify_absolute_path(absolute_path))

    async def _evaluate(self, classification: ZoneClassification) -> InstructionEvaluation:
        instruction_files = await asyncio.to_thread(
            collect_instruction_files,
            classification.absolute_path,
            self._zone_manager.project_root,
        )
        return evaluate_policies(instruction_files, classification)
