"""Agent runtime interface consumed by session runners."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from agent_loop.orchestrator.models import AgentResponse, Message


class AgentRuntime(Protocol):
    """Protocol implemented by agent runtimes.

    One runtime instance serves one conversation. ``generate`` receives the
    complete history (ending with the new user message) and returns the
    complete updated history; ``close`` cancels an in-flight call and releases
    resources, and must be safe to call more than once.
    """

    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_steps: int,
        model: str | None = None,
    ) -> AgentResponse:
        """Run one turn and return the full updated history."""

    def close(self) -> None:
        """Cancel any in-flight call and release resources."""


RuntimeFactory = Callable[[], AgentRuntime]
