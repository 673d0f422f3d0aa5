"""Domain models for conversations, iterations, and loop results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class MessageRole(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    AGENT = "agent"


class IterationOutcome(str, Enum):
    """Result of one loop iteration."""

    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    HOOK_FAILED = "hook_failed"
    CANCELED = "canceled"

    @property
    def is_failure(self) -> bool:
        return self in {
            IterationOutcome.FAILURE,
            IterationOutcome.ERROR,
            IterationOutcome.HOOK_FAILED,
        }


class LoopMode(str, Enum):
    """Iteration strategy selected by the caller."""

    SINGLE = "single"
    FIXED_COUNT = "fixed_count"
    FOREVER = "forever"
    UNTIL_DONE = "until_done"
    INTERACTIVE = "interactive"


class LoopStatus(str, Enum):
    """Terminal state of a loop run."""

    COMPLETED = "completed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    CANCELED = "canceled"


@dataclass(frozen=True, slots=True)
class RunResult:
    """Structured result reported by the agent runtime for one turn."""

    success: bool
    error_subtype: str | None = None
    errors: tuple[str, ...] = ()
    input_tokens: int = 0
    output_tokens: int = 0
    num_turns: int = 0
    duration_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class Message:
    """One entry of a conversation history."""

    role: MessageRole
    content: str
    result: RunResult | None = None


@dataclass(frozen=True, slots=True)
class AgentResponse:
    """Full history and result returned by the agent runtime."""

    messages: tuple[Message, ...]
    result: RunResult

    @property
    def text(self) -> str:
        """Content of the last agent message, or empty string."""

        for message in reversed(self.messages):
            if message.role == MessageRole.AGENT:
                return message.content
        return ""


@dataclass(frozen=True, slots=True)
class HookResult:
    """Outcome of running the configured hook commands."""

    passed: bool
    output: str = ""
    failed_command: str | None = None
    exit_code: int | None = None
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class IterationRecord:
    """Per-iteration record used for progress reporting."""

    index: int
    total: int | None
    outcome: IterationOutcome
    hook_failure: str | None = None
    error: str | None = None
    remaining: int | None = None
    result: RunResult | None = None


@dataclass(slots=True)
class LoopSummary:
    """Aggregate counters for CLI reporting."""

    mode: LoopMode
    status: LoopStatus = LoopStatus.COMPLETED
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    remaining: int | None = None
    records: list[IterationRecord] = field(default_factory=list)
    error: str | None = None

    def add(self, record: IterationRecord) -> None:
        self.records.append(record)
        if record.outcome == IterationOutcome.CANCELED:
            return
        self.attempted += 1
        if record.outcome.is_failure:
            self.failed += 1
        else:
            self.succeeded += 1

    @property
    def exit_code(self) -> int:
        """Process exit code for this summary."""

        if self.status in {LoopStatus.COMPLETED, LoopStatus.CANCELED}:
            return 0
        return 1
