"""Fake runtimes, signal registries and result builders shared by the tests."""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable, Sequence

from agent_loop.orchestrator.errors import AgentRuntimeError
from agent_loop.orchestrator.models import AgentResponse, Message, MessageRole, RunResult
from agent_loop.orchestrator.session import SessionRunner

ECHO_AGENT = f"{sys.executable} -m agent_loop.orchestrator.backend.echo_agent"
ECHO_AGENT_COMMAND_TEMPLATE = f"{ECHO_AGENT} --prompt-file {{prompt_file}}"


def ok_result(**overrides) -> RunResult:
    values = {
        "success": True,
        "input_tokens": 10,
        "output_tokens": 5,
        "num_turns": 1,
        "duration_ms": 1200,
    }
    values.update(overrides)
    return RunResult(**values)


def failed_result(subtype: str = "error_during_execution") -> RunResult:
    return RunResult(success=False, error_subtype=subtype, errors=("boom",))


Step = object  # RunResult, an exception instance, or a callable(history) -> RunResult


class FakeRuntime:
    """Scripted runtime: each ``generate`` call consumes the next step.

    A step is a ``RunResult`` to reply with, an exception to raise, or a
    callable receiving the history and returning a ``RunResult``. Once the
    script runs out every call succeeds.
    """

    def __init__(self, steps: Sequence[Step] = ()) -> None:
        self.steps = list(steps)
        self.requests: list[tuple[Message, ...]] = []
        self.close_calls = 0

    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_steps: int,
        model: str | None = None,
    ) -> AgentResponse:
        history = tuple(messages)
        self.requests.append(history)
        step = self.steps.pop(0) if self.steps else ok_result()
        if isinstance(step, BaseException):
            raise step
        result = step(history) if callable(step) else step
        reply = Message(
            role=MessageRole.AGENT,
            content=f"reply {len(self.requests)}",
            result=result,
        )
        return AgentResponse(messages=(*history, reply), result=result)

    def close(self) -> None:
        self.close_calls += 1


class SessionRecorder:
    """Session factory that hands out fresh sessions over fresh fake runtimes."""

    def __init__(self, steps_per_session: Sequence[Sequence[Step]] = ()) -> None:
        self.steps_per_session = [list(steps) for steps in steps_per_session]
        self.runtimes: list[FakeRuntime] = []
        self.sessions: list[SessionRunner] = []

    def __call__(self) -> SessionRunner:
        steps = self.steps_per_session.pop(0) if self.steps_per_session else []
        runtime = FakeRuntime(steps)
        session = SessionRunner(runtime=runtime)
        self.runtimes.append(runtime)
        self.sessions.append(session)
        return session


class FakeSignalRegistry:
    """Signal registry that records handlers instead of touching the process."""

    def __init__(self) -> None:
        self.handlers: dict[int, Callable] = {}
        self.installs = 0
        self.restores = 0

    def install(self, signum: int, handler: Callable) -> object:
        self.handlers[signum] = handler
        self.installs += 1
        return signal.SIG_DFL

    def restore(self, signum: int, previous: object) -> None:
        self.handlers.pop(signum, None)
        self.restores += 1

    def fire(self, signum: int = signal.SIGINT) -> None:
        handler = self.handlers.get(signum)
        assert handler is not None, "no handler installed"
        handler(signum, None)


def interrupt_during_call(registry: FakeSignalRegistry, result: RunResult | None = None):
    """Step that fires SIGINT while the agent call is in flight."""

    def step(_history: Sequence[Message]) -> RunResult:
        registry.fire(signal.SIGINT)
        if result is not None:
            return result
        raise AgentRuntimeError("Agent run canceled.")

    return step

