from __future__ import annotations

import allure
import pytest
from helpers import FakeRuntime, failed_result, interrupt_during_call

from agent_loop.orchestrator.errors import AgentRuntimeError, SessionClosedError
from agent_loop.orchestrator.interactive import InteractiveController, InteractiveState
from agent_loop.orchestrator.models import IterationOutcome, LoopMode, LoopStatus
from agent_loop.orchestrator.session import SessionRunner

pytestmark = [
    allure.epic("Agent Loop"),
    allure.feature("Interactive Controller"),
]


class ScriptedInput:
    """Input reader returning queued lines; exceptions in the queue are raised."""

    def __init__(self, *items, on_read=None) -> None:
        self.items = list(items)
        self.reads = 0
        self.on_read = on_read

    def __call__(self) -> str | None:
        self.reads += 1
        if self.on_read is not None:
            self.on_read(self.reads)
        if not self.items:
            return None
        item = self.items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def _controller(runtime, reader, coordinator, **kwargs) -> InteractiveController:
    return InteractiveController(
        session=SessionRunner(runtime=runtime),
        read_input=reader,
        coordinator=coordinator,
        **kwargs,
    )


def test_conversation_keeps_history_until_empty_input(coordinator) -> None:
    runtime = FakeRuntime()
    reader = ScriptedInput("first question", "follow up", "")
    outputs = []
    controller = _controller(runtime, reader, coordinator, on_output=outputs.append)

    summary = controller.run()

    assert summary.mode == LoopMode.INTERACTIVE
    assert summary.status == LoopStatus.COMPLETED
    assert summary.exit_code == 0
    assert summary.attempted == 2
    assert [response.text for response in outputs] == ["reply 1", "reply 2"]
    assert [message.content for message in runtime.requests[1]] == [
        "first question",
        "reply 1",
        "follow up",
    ]
    assert controller.state == InteractiveState.CLOSED
    assert runtime.close_calls == 1


def test_first_prompt_from_caller_skips_first_read(coordinator) -> None:
    runtime = FakeRuntime()
    reader = ScriptedInput(None)
    controller = _controller(runtime, reader, coordinator)

    controller.run("from argv")

    assert runtime.requests[0][-1].content == "from argv"
    assert reader.reads == 1


def test_context_is_attached_to_first_turn_only(coordinator) -> None:
    runtime = FakeRuntime()
    reader = ScriptedInput("second", "")
    controller = _controller(runtime, reader, coordinator, context_paths=("src/app.py",))

    controller.run("first")

    assert runtime.requests[0][-1].content == "Context: src/app.py\n\nfirst"
    assert runtime.requests[1][-1].content == "second"


@pytest.mark.parametrize("end", [None, EOFError(), KeyboardInterrupt()])
def test_end_of_input_closes_exactly_once(coordinator, end) -> None:
    runtime = FakeRuntime()
    controller = _controller(runtime, ScriptedInput("hello", end), coordinator)

    summary = controller.run()
    controller.close()

    assert summary.exit_code == 0
    assert controller.state == InteractiveState.CLOSED
    assert runtime.close_calls == 1


def test_turn_error_is_reported_and_conversation_continues(coordinator) -> None:
    runtime = FakeRuntime([AgentRuntimeError("agent crashed")])
    states = []
    errors = []
    reader = ScriptedInput("first", "second", "")
    controller = _controller(runtime, reader, coordinator, on_error=errors.append)
    reader.on_read = lambda _count: states.append(controller.state)

    summary = controller.run()

    assert errors == ["agent crashed"]
    assert states == [
        InteractiveState.AWAITING_FIRST_INPUT,
        InteractiveState.AWAITING_FOLLOWUP,
        InteractiveState.AWAITING_FOLLOWUP,
    ]
    assert [record.outcome for record in summary.records] == [
        IterationOutcome.ERROR,
        IterationOutcome.SUCCESS,
    ]
    # The failed turn left no trace in the history sent next.
    assert [message.content for message in runtime.requests[1]] == ["second"]
    assert summary.exit_code == 0


def test_failed_result_is_recorded_but_not_fatal(coordinator) -> None:
    runtime = FakeRuntime([failed_result("rate_limited")])
    controller = _controller(runtime, ScriptedInput("hi", ""), coordinator)

    summary = controller.run()

    assert summary.records[0].outcome == IterationOutcome.FAILURE
    assert summary.records[0].error == "rate_limited"
    assert summary.exit_code == 0


def test_run_on_closed_controller_raises(coordinator) -> None:
    controller = _controller(FakeRuntime(), ScriptedInput(""), coordinator)
    controller.run()

    with pytest.raises(SessionClosedError):
        controller.run()


def test_signal_while_waiting_for_input_closes_session(coordinator, registry) -> None:
    runtime = FakeRuntime()

    def fire_on_second_read(count: int) -> None:
        if count == 2:
            registry.fire()

    reader = ScriptedInput("hello", "never sent", on_read=fire_on_second_read)
    controller = _controller(runtime, reader, coordinator)

    summary = controller.run()

    assert len(runtime.requests) == 1
    assert summary.status == LoopStatus.CANCELED
    assert summary.exit_code == 0
    assert runtime.close_calls == 1
    assert registry.handlers == {}


def test_signal_during_turn_abandons_it_and_closes_once(coordinator, registry) -> None:
    runtime = FakeRuntime([interrupt_during_call(registry)])
    reader = ScriptedInput("never sent")
    controller = _controller(runtime, reader, coordinator)

    summary = controller.run("long task")

    assert [record.outcome for record in summary.records] == [IterationOutcome.CANCELED]
    assert summary.attempted == 0
    assert summary.status == LoopStatus.CANCELED
    assert summary.exit_code == 0
    assert reader.reads == 0
    assert runtime.close_calls == 1
    assert controller.state == InteractiveState.CLOSED
