"""Post-iteration hook loading and execution."""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

from agent_loop.config import STATE_DIR_NAME
from agent_loop.orchestrator.errors import HookConfigError, describe_error
from agent_loop.orchestrator.models import HookResult

logger = logging.getLogger(__name__)

HOOKS_FILE_NAME = "hooks.json"


def load_hooks(project_root: Path, *, state_dir_name: str = STATE_DIR_NAME) -> list[str]:
    """Read hook commands from ``<root>/<state dir>/hooks.json``; missing file means none."""

    hooks_path = project_root / state_dir_name / HOOKS_FILE_NAME
    if not hooks_path.exists():
        return []
    try:
        parsed = json.loads(hooks_path.read_text("utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
        raise HookConfigError(f"Cannot read {hooks_path}: {describe_error(error)}") from error
    if not isinstance(parsed, list):
        raise HookConfigError(f"{HOOKS_FILE_NAME} must contain a JSON array")
    if not all(isinstance(item, str) for item in parsed):
        raise HookConfigError(f"every element in {HOOKS_FILE_NAME} must be a string")
    return [item for item in parsed if item.strip()]


class HookExecutor:
    """Runs hook commands sequentially and reports the first failure."""

    def __init__(
        self,
        commands: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: int = 600,
    ) -> None:
        self.commands = tuple(commands)
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def __bool__(self) -> bool:
        return bool(self.commands)

    def run(self) -> HookResult:
        combined_output = ""
        for command in self.commands:
            logger.info("Running hook: %s", command)
            try:
                completed = subprocess.run(  # noqa: S603
                    ["sh", "-c", command],  # noqa: S607
                    cwd=self.cwd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except subprocess.TimeoutExpired as error:
                combined_output += _decode(error.stdout) + _decode(error.stderr)
                logger.warning("Hook timed out after %ds: %s", self.timeout_seconds, command)
                return HookResult(
                    passed=False,
                    output=combined_output,
                    failed_command=command,
                    exit_code=None,
                    detail=f"timed out after {self.timeout_seconds}s",
                )
            except OSError as error:
                logger.warning("Hook could not start: %s (%s)", command, error)
                return HookResult(
                    passed=False,
                    output=combined_output,
                    failed_command=command,
                    exit_code=None,
                    detail=f"could not run: {describe_error(error)}",
                )

            combined_output += completed.stdout + completed.stderr
            if completed.returncode != 0:
                logger.warning("Hook failed with exit code %d: %s", completed.returncode, command)
                return HookResult(
                    passed=False,
                    output=combined_output,
                    failed_command=command,
                    exit_code=completed.returncode,
                    detail=_tail(completed.stdout + completed.stderr)
                    or f"exited with code {completed.returncode}",
                )

        return HookResult(passed=True, output=combined_output)


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _tail(text: str, *, lines: int = 20) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])
