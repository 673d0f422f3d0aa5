"""Job completion checks based on markdown task lists."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol

from agent_loop.orchestrator.errors import CompletionCheckError, describe_error

_PENDING_MARKER = re.compile(r"^\s*[-*+]\s+\[ \]", re.MULTILINE)
_DONE_MARKER = re.compile(r"^\s*[-*+]\s+\[[xX]\]", re.MULTILINE)


class CompletionOracle(Protocol):
    """Reports how much work remains for a job."""

    def remaining(self) -> int:
        """Return the number of pending tasks, read fresh."""


class TaskListOracle:
    """Counts unchecked ``- [ ]`` items in a job's task file on every call."""

    def __init__(self, tasks_path: Path) -> None:
        self.tasks_path = tasks_path

    def remaining(self) -> int:
        return len(_PENDING_MARKER.findall(self._read()))

    def done(self) -> int:
        return len(_DONE_MARKER.findall(self._read()))

    def _read(self) -> str:
        try:
            return self.tasks_path.read_text("utf-8")
        except (OSError, UnicodeDecodeError) as error:
            raise CompletionCheckError(
                f"Cannot read task list {self.tasks_path}: {describe_error(error)}",
            ) from error
