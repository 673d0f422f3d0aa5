"""Error taxonomy for agent runs and the message normalization rule."""

from __future__ import annotations


class AgentLoopError(Exception):
    """Base class for all errors raised by agent-loop."""


class InputValidationError(AgentLoopError, ValueError):
    """Caller input is invalid; raised before any iteration starts."""


class HookConfigError(InputValidationError):
    """Hook configuration file is malformed."""


class AgentUnavailableError(AgentLoopError):
    """Required external agent capability is missing."""


class AgentRuntimeError(AgentLoopError):
    """Agent runtime invocation failed, with retryability hint."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class CompletionCheckError(AgentLoopError):
    """Job task list could not be read; completion is indeterminate."""


class SessionClosedError(AgentLoopError):
    """A closed session or controller was used."""


def describe_error(value: object) -> str:
    """Convert any raised or reported failure value into a displayable message."""

    if value is None:
        return "unknown error"
    if isinstance(value, BaseExceptionGroup):
        inner = "; ".join(describe_error(item) for item in value.exceptions)
        head = str(value.message).strip() or type(value).__name__
        return f"{head}: {inner}" if inner else head
    if isinstance(value, BaseException):
        text = str(value).strip()
        if not text:
            return type(value).__name__
        return text
    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="replace").strip()
        return text or "unknown error"
    if isinstance(value, str):
        return value.strip() or "unknown error"
    try:
        text = str(value).strip()
    except Exception:  # noqa: BLE001
        text = ""
    return text or type(value).__name__
