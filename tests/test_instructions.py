"""Tests for INSTRUCTIONS.md parsing and policy evaluation."""

from pathlib import Path

import pytest

from changeset_engine.adapters.instructions import (
    InstructionManager,
    glob_to_regex,
    match_any_glob,
    parse_front_matter,
)

ROOT_INSTRUCTIONS = """---
invariants:
  - Renderer and host communicate only over IPC.
compatibilityNotes: |
  Keep preload exports stable.
  Never rename IPC channels.
---

# Project rules
"""

SRC_INSTRUCTIONS = """---
blockPaths: ["generated/**"]
invariants: Components stay pure.
---
"""


class TestFrontMatter:
    """Tests for parse_front_matter."""

    def test_parses_lists_and_multiline_strings(self) -> None:
        policy = parse_front_matter(ROOT_INSTRUCTIONS)

        assert policy.invariants == ["Renderer and host communicate only over IPC."]
        assert policy.compatibility_notes == ["Keep preload exports stable.", "Never rename IPC channels."]
        assert policy.block_paths == []

    def test_missing_front_matter_is_empty_policy(self) -> None:
        policy = parse_front_matter("# Just markdown\n\nblockPaths: ['**']\n")

        assert policy.block_paths == []
        assert policy.invariants == []

    def test_invalid_yaml_is_empty_policy(self) -> None:
        policy = parse_front_matter("---\nblockPaths: [unclosed\n---\n")

        assert policy.block_paths == []


class TestGlobs:
    """Tests for the path glob dialect."""

    def test_single_star_does_not_cross_directories(self) -> None:
        assert glob_to_regex("*.ts").match("app.ts")
        assert not glob_to_regex("*.ts").match("lib/app.ts")

    def test_double_star_crosses_directories(self) -> None:
        assert glob_to_regex("**/*.ts").match("lib/deep/app.ts")
        assert glob_to_regex("generated/**").match("generated/a/b.ts")

    def test_question_mark_and_literal_dots(self) -> None:
        assert glob_to_regex("v?.json").match("v1.json")
        assert not glob_to_regex("v?.json").match("v10.json")
        assert not glob_to_regex("a.ts").match("abts")

    def test_match_any_glob_normalizes_backslashes(self) -> None:
        assert match_any_glob(["generated/**"], "generated\\x.ts")


class TestInstructionManager:
    """Tests for InstructionManager.get_instructions_for_path."""

    @pytest.fixture()
    def instructed_project(self, project_root: Path) -> Path:
        (project_root / "INSTRUCTIONS.md").write_text(ROOT_INSTRUCTIONS, encoding="utf-8")
        (project_root / "src" / "INSTRUCTIONS.md").write_text(SRC_INSTRUCTIONS, encoding="utf-8")
        (project_root / "src" / "generated").mkdir()
        return project_root

    @pytest.mark.asyncio()
    async def test_collects_root_to_leaf(
        self,
        instruction_manager: InstructionManager,
        instructed_project: Path,
    ) -> None:
        evaluation = await instruction_manager.get_instructions_for_path(str(instructed_project / "src" / "app.ts"))

        assert [file.file_path for file in evaluation.instruction_files] == [
            str(instructed_project / "INSTRUCTIONS.md"),
            str(instructed_project / "src" / "INSTRUCTIONS.md"),
        ]
        assert evaluation.invariants == [
            "Renderer and host communicate only over IPC.",
            "Components stay pure.",
        ]
        assert not evaluation.blocked

    @pytest.mark.asyncio()
    async def test_block_paths_relative_to_instruction_directory(
        self,
        instruction_manager: InstructionManager,
        instructed_project: Path,
    ) -> None:
        target = instructed_project / "src" / "generated" / "api.ts"

        evaluation = await instruction_manager.get_instructions_for_path(str(target))

        assert evaluation.blocked
        assert evaluation.block_reasons == [
            f'Blocked by {instructed_project / "src" / "INSTRUCTIONS.md"} (blockPaths matched "generated/api.ts").'
        ]

    @pytest.mark.asyncio()
    async def test_allow_paths_block_everything_else(
        self,
        instruction_manager: InstructionManager,
        project_root: Path,
    ) -> None:
        (project_root / "electron" / "local-host" / "INSTRUCTIONS.md").write_text(
            "---\nallowPaths:\n  - '*.js'\n---\n",
            encoding="utf-8",
        )

        allowed = await instruction_manager.get_instructions_for_path("/core-host/main.js")
        denied = await instruction_manager.get_instructions_for_path("/core-host/main.ts")

        assert not allowed.blocked
        assert denied.blocked
        assert 'path not allowlisted: "main.ts"' in denied.block_reasons[0]

    @pytest.mark.asyncio()
    async def test_no_instruction_files(self, instruction_manager: InstructionManager, project_root: Path) -> None:
        evaluation = await instruction_manager.get_instructions_for_path(str(project_root / "src" / "app.ts"))

        assert evaluation.instruction_files == []
        assert not evaluation.blocked
        assert evaluation.classification is not None
        assert evaluation.classification.virtual_path == "/ui/app.ts"
