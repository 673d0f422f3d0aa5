"""Stateful conversation wrapper over one agent runtime."""

from __future__ import annotations

import logging

from agent_loop.orchestrator.backend.base import AgentRuntime
from agent_loop.orchestrator.errors import SessionClosedError
from agent_loop.orchestrator.models import AgentResponse, Message, MessageRole

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 50


class SessionRunner:
    """Owns one conversation history and sends turns through the runtime.

    The stored history is only ever replaced wholesale by the history the
    runtime returns, so runtime-side pruning or compaction is respected and
    a failed call leaves the conversation exactly as it was.
    """

    def __init__(
        self,
        *,
        runtime: AgentRuntime,
        max_steps: int = DEFAULT_MAX_STEPS,
        model: str | None = None,
    ) -> None:
        self.runtime = runtime
        self.max_steps = max_steps
        self.model = model
        self._history: tuple[Message, ...] = ()
        self._closed = False

    @property
    def history(self) -> tuple[Message, ...]:
        return self._history

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, user_content: str | None) -> AgentResponse | None:
        """Send one user message; blank input is a no-op returning ``None``."""

        text = (user_content or "").strip()
        if not text:
            return None
        if self._closed:
            raise SessionClosedError("Session is closed.")

        request = (*self._history, Message(role=MessageRole.USER, content=text))
        response = self.runtime.generate(request, max_steps=self.max_steps, model=self.model)
        self._history = tuple(response.messages)
        logger.debug("Session history now has %d messages", len(self._history))
        return response

    def close(self) -> None:
        """Release runtime resources; safe to call repeatedly."""

        if self._closed:
            return
        self._closed = True
        self.runtime.close()
