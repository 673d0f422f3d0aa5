"""Multi-turn conversation driven by user input."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from enum import Enum

import rich_click as click

from agent_loop.orchestrator.cancellation import CancellationCoordinator
from agent_loop.orchestrator.errors import SessionClosedError, describe_error
from agent_loop.orchestrator.models import (
    AgentResponse,
    IterationOutcome,
    IterationRecord,
    LoopMode,
    LoopStatus,
    LoopSummary,
)
from agent_loop.orchestrator.prompt import build_prompt
from agent_loop.orchestrator.session import SessionRunner

logger = logging.getLogger(__name__)

InputReader = Callable[[], str | None]
OutputCallback = Callable[[AgentResponse], None]
ErrorCallback = Callable[[str], None]

PROMPT_MARKER = "> "


class InteractiveState(str, Enum):
    """Lifecycle of an interactive conversation."""

    AWAITING_FIRST_INPUT = "awaiting_first_input"
    TURN_IN_FLIGHT = "turn_in_flight"
    AWAITING_FOLLOWUP = "awaiting_followup"
    CLOSED = "closed"


def read_stdin_line() -> str | None:
    """Prompt on stderr and read one line from stdin; ``None`` at end of input."""

    click.echo(PROMPT_MARKER, nl=False, err=True)
    line = sys.stdin.readline()
    if not line:
        return None
    return line.rstrip("\n")


class InteractiveController:
    """Keeps one session open across user turns until the user stops.

    Empty input, end of input, or a signal closes the conversation. A failed
    turn is reported and the conversation waits for the next input.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        session: SessionRunner,
        read_input: InputReader = read_stdin_line,
        context_paths: Sequence[str] = (),
        coordinator: CancellationCoordinator | None = None,
        on_output: OutputCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.session = session
        self.read_input = read_input
        self.context_paths = tuple(context_paths)
        self.coordinator = coordinator or CancellationCoordinator()
        self.on_output = on_output
        self.on_error = on_error
        self._state = InteractiveState.AWAITING_FIRST_INPUT

    @property
    def state(self) -> InteractiveState:
        return self._state

    def run(self, first_prompt: str | None = None) -> LoopSummary:
        """Converse until the user stops; ``first_prompt`` skips the first read."""

        if self._state == InteractiveState.CLOSED:
            raise SessionClosedError("Interactive session is closed.")

        summary = LoopSummary(mode=LoopMode.INTERACTIVE)
        with self.coordinator.activate(self.session) as token:
            self.coordinator.on_cancel(self._interrupt_input)
            try:
                pending = first_prompt.strip() if first_prompt else ""
                index = 0
                while not token.cancelled:
                    text = pending or self._read()
                    pending = ""
                    if not text:
                        break
                    index += 1
                    summary.add(self._turn(text, index=index))
            finally:
                self.close()

        summary.status = LoopStatus.CANCELED if token.cancelled else LoopStatus.COMPLETED
        return summary

    def close(self) -> None:
        """Close the session exactly once; later calls are no-ops."""

        if self._state == InteractiveState.CLOSED:
            return
        self._state = InteractiveState.CLOSED
        self.session.close()
        logger.info("Interactive session closed")

    def _read(self) -> str:
        try:
            raw = self.read_input()
        except (EOFError, KeyboardInterrupt):
            return ""
        return (raw or "").strip()

    def _turn(self, text: str, *, index: int) -> IterationRecord:
        first = self._state == InteractiveState.AWAITING_FIRST_INPUT
        message = build_prompt(text, self.context_paths) if first else text
        self._state = InteractiveState.TURN_IN_FLIGHT
        try:
            response = self.session.send(message)
        except Exception as error:  # noqa: BLE001
            if self.coordinator.token.cancelled:
                return IterationRecord(index=index, total=None, outcome=IterationOutcome.CANCELED)
            detail = describe_error(error)
            logger.warning("Interactive turn %d failed: %s", index, detail)
            if self.on_error is not None:
                self.on_error(detail)
            return IterationRecord(
                index=index,
                total=None,
                outcome=IterationOutcome.ERROR,
                error=detail,
            )
        finally:
            if self._state == InteractiveState.TURN_IN_FLIGHT:
                self._state = InteractiveState.AWAITING_FOLLOWUP

        if response is not None and self.on_output is not None:
            self.on_output(response)
        result = response.result if response is not None else None
        if result is not None and not result.success:
            return IterationRecord(
                index=index,
                total=None,
                outcome=IterationOutcome.FAILURE,
                error=result.error_subtype or "agent reported failure",
                result=result,
            )
        return IterationRecord(
            index=index,
            total=None,
            outcome=IterationOutcome.SUCCESS,
            result=result,
        )

    def _interrupt_input(self) -> None:
        # Unblock a pending read; an in-flight turn is aborted by closing the session.
        if self._state in {
            InteractiveState.AWAITING_FIRST_INPUT,
            InteractiveState.AWAITING_FOLLOWUP,
        }:
            raise KeyboardInterrupt
