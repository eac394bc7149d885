"""Validation runner — build, lint and test commands as subprocesses.

Commands run through the shell one after another, each with its own timeout.
A command that exceeds its timeout is killed and reported as ``timed_out``;
any non-zero exit is ``failed``.
"""

import asyncio
import os
import signal
import time

from changeset_engine.core.models import (
    ValidationCommand,
    ValidationResult,
    ValidationSpec,
    ValidationSummary,
    now_ms,
)
from changeset_engine.observability import get_logger

logger = get_logger(__name__)

TRUNCATION_MARKER = "\n\n... (truncated)"
NO_OUTPUT_MESSAGE = "Command completed successfully (no output)."


def truncate_output(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + TRUNCATION_MARKER


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    # The shell may have spawned children; kill the whole session.
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


def _format_seconds(value: float) -> str:
    return f"{value:g}s"


class ValidationRunner:
    """Runs validation commands and summarizes their results.

    Args:
        default_commands: Validations run on every finish unless skipped.
        smoke_commands: Validations run by the startup health check.
        default_timeout_s: Timeout for specs that do not declare one.
        min_timeout_s: Lower bound applied to every timeout.
        max_output_chars: Captured output beyond this length is truncated.
    """

    def __init__(
        self,
        default_commands: list[ValidationCommand] | None = None,
        smoke_commands: list[ValidationCommand] | None = None,
        default_timeout_s: float = 240.0,
        min_timeout_s: float = 30.0,
        max_output_chars: int = 80_000,
    ) -> None:
        """Initialize ValidationRunner.

        Args:
            default_commands: Default validation commands.
            smoke_commands: Smoke-check commands.
            default_timeout_s: Fallback timeout in seconds.
            min_timeout_s: Minimum timeout in seconds.
            max_output_chars: Output cap per command.
        """
        self._default_commands = list(default_commands or [])
        self._smoke_commands = list(smoke_commands or [])
        self._default_timeout_s = default_timeout_s
        self._min_timeout_s = min_timeout_s
        self._max_output_chars = max_output_chars

    @staticmethod
    def _bind(commands: list[ValidationCommand], cwd: str) -> list[ValidationSpec]:
        return [
            ValidationSpec(
                name=command.name,
                command=command.command,
                cwd=cwd,
                timeout_s=command.timeout_s,
                required=command.required,
            )
            for command in commands
        ]

    def default_validation_specs(self, cwd: str) -> list[ValidationSpec]:
        return self._bind(self._default_commands, cwd)

    def smoke_validation_specs(self, cwd: str) -> list[ValidationSpec]:
        return self._bind(self._smoke_commands, cwd)

    def effective_timeout(self, spec: ValidationSpec) -> float:
        """Return the spec timeout (or the default) clamped to the minimum."""
        return max(self._min_timeout_s, spec.timeout_s or self._default_timeout_s)

    async def run_validation(self, spec: ValidationSpec) -> ValidationResult:
        """Run one validation command.

        Args:
            spec: The command, working directory and timeout.

        Returns:
            ValidationResult; never raises for command failures.
        """
        timeout_s = self.effective_timeout(spec)
        started_at = now_ms()
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                spec.command,
                cwd=spec.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Validation could not start", name=spec.name, cwd=spec.cwd, error=str(exc))
            return ValidationResult(
                name=spec.name,
                command=spec.command,
                cwd=spec.cwd,
                started_at=started_at,
                completed_at=now_ms(),
                duration_ms=duration_ms,
                exit_code=None,
                status="failed",
                output=truncate_output(f"Command failed to start: {exc}", self._max_output_chars),
                required=spec.required,
            )

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            _kill_process_group(process)
            await process.wait()
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Validation timed out", name=spec.name, timeout_s=timeout_s)
            return ValidationResult(
                name=spec.name,
                command=spec.command,
                cwd=spec.cwd,
                started_at=started_at,
                completed_at=now_ms(),
                duration_ms=duration_ms,
                exit_code=None,
                status="timed_out",
                output=f"Command timed out after {_format_seconds(timeout_s)}.",
                required=spec.required,
            )

        exit_code = process.returncode
        duration_ms = int((time.monotonic() - start) * 1000)
        output = stdout.decode("utf-8", errors="replace").strip()

        if exit_code == 0:
            status = "passed"
            output = output or NO_OUTPUT_MESSAGE
        else:
            status = "failed"
            output = f"Command exited with code {exit_code}.\n\n{output}".rstrip()

        logger.info("Validation finished", name=spec.name, status=status, exit_code=exit_code, duration_ms=duration_ms)
        return ValidationResult(
            name=spec.name,
            command=spec.command,
            cwd=spec.cwd,
            started_at=started_at,
            completed_at=now_ms(),
            duration_ms=duration_ms,
            exit_code=exit_code,
            status=status,
            output=truncate_output(output, self._max_output_chars),
            required=spec.required,
        )

    async def run_validations(self, specs: list[ValidationSpec]) -> list[ValidationResult]:
        """Run specs sequentially in the given order."""
        results: list[ValidationResult] = []
        for spec in specs:
            results.append(await self.run_validation(spec))
        return results

    def summarize_validation_results(self, results: list[ValidationResult]) -> ValidationSummary:
        """Required results that did not pass make the batch fail."""
        required_failures = [result for result in results if result.required and result.status != "passed"]
        return ValidationSummary(ok=not required_failures, required_failures=required_failures, results=list(results))
