"""Iteration strategies over session runners: single, fixed-count, forever, until-done."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from agent_loop.orchestrator.cancellation import CancellationCoordinator, CancellationToken
from agent_loop.orchestrator.completion import CompletionOracle
from agent_loop.orchestrator.errors import InputValidationError, describe_error
from agent_loop.orchestrator.hooks import HookExecutor
from agent_loop.orchestrator.models import (
    AgentResponse,
    HookResult,
    IterationOutcome,
    IterationRecord,
    LoopMode,
    LoopStatus,
    LoopSummary,
)
from agent_loop.orchestrator.prompt import hook_correction_message
from agent_loop.orchestrator.session import SessionRunner

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], SessionRunner]
ProgressCallback = Callable[[IterationRecord], None]
OutputCallback = Callable[[AgentResponse], None]
IterationStartCallback = Callable[[int, int | None], None]
HookFailureCallback = Callable[[HookResult, int, int], None]

DEFAULT_CONTINUATION_MESSAGE = (
    "Continue with the next pending task. Stop once it is done and the task list is updated."
)


class LoopRunner:
    """Drives session runners turn by turn and decides whether to go on.

    Cancellation is cooperative: the token is checked between iterations,
    and the coordinator closes the active session to abort an in-flight turn.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        coordinator: CancellationCoordinator | None = None,
        on_output: OutputCallback | None = None,
        on_iteration_start: IterationStartCallback | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.coordinator = coordinator or CancellationCoordinator()
        self.on_output = on_output
        self.on_iteration_start = on_iteration_start

    @property
    def token(self) -> CancellationToken:
        return self.coordinator.token

    def run_single(self, message: str) -> LoopSummary:
        """Run one turn; any failure fails the run."""

        _require_message(message)
        summary = LoopSummary(mode=LoopMode.SINGLE)
        session = self.session_factory()
        with self.coordinator.activate(session):
            try:
                record = self._run_turn(session, message, index=1, total=1)
            finally:
                session.close()
        summary.add(record)
        summary.status = _final_status(summary, self.token)
        return summary

    def run_fixed_count(
        self,
        *,
        message: str,
        iterations: int,
        on_progress: ProgressCallback | None = None,
    ) -> LoopSummary:
        """Run exactly ``iterations`` independent sessions, whatever each one's outcome."""

        if isinstance(iterations, bool) or not isinstance(iterations, int):
            raise InputValidationError("iterations must be an integer")
        if iterations < 0:
            raise InputValidationError("iterations must not be negative")
        _require_message(message)
        summary = LoopSummary(mode=LoopMode.FIXED_COUNT)
        self._run_fresh_sessions(
            summary=summary,
            message=message,
            total=iterations,
            on_progress=on_progress,
        )
        summary.status = _final_status(summary, self.token)
        return summary

    def run_forever(
        self,
        *,
        message: str,
        on_progress: ProgressCallback | None = None,
    ) -> LoopSummary:
        """Run fresh sessions until cancelled; per-iteration failures never stop it."""

        _require_message(message)
        summary = LoopSummary(mode=LoopMode.FOREVER)
        self._run_fresh_sessions(
            summary=summary,
            message=message,
            total=None,
            on_progress=on_progress,
        )
        summary.status = LoopStatus.CANCELED if self.token.cancelled else LoopStatus.COMPLETED
        return summary

    def run_until_done(  # noqa: PLR0913
        self,
        *,
        initial_message: str,
        oracle: CompletionOracle,
        max_iterations: int,
        continuation_message: str = DEFAULT_CONTINUATION_MESSAGE,
        hooks: HookExecutor | None = None,
        max_hook_retries: int = 3,
        on_progress: ProgressCallback | None = None,
        on_hook_failure: HookFailureCallback | None = None,
    ) -> LoopSummary:
        """Iterate one persistent session until no tasks remain or the safety limit is hit.

        Raises:
            InputValidationError: bounds are out of range or a message is blank.
            CompletionCheckError: the task list cannot be read; completion is
                indeterminate so the loop stops.
        """

        if max_iterations < 1:
            raise InputValidationError("max_iterations must be at least 1")
        if max_hook_retries < 0:
            raise InputValidationError("max_hook_retries must not be negative")
        _require_message(initial_message)
        _require_message(continuation_message)

        summary = LoopSummary(mode=LoopMode.UNTIL_DONE)
        summary.remaining = oracle.remaining()
        if summary.remaining == 0:
            logger.info("No pending tasks; nothing to do")
            return summary

        session = self.session_factory()
        with self.coordinator.activate(session) as token:
            try:
                for index in range(1, max_iterations + 1):
                    if token.cancelled:
                        break
                    message = initial_message if index == 1 else continuation_message
                    record = self._run_turn(session, message, index=index, total=max_iterations)
                    if record.outcome == IterationOutcome.SUCCESS and hooks:
                        hook_failure = self._run_hooks_with_retries(
                            session=session,
                            hooks=hooks,
                            max_retries=max_hook_retries,
                            on_hook_failure=on_hook_failure,
                        )
                        if hook_failure is not None:
                            record = replace(
                                record,
                                outcome=IterationOutcome.HOOK_FAILED,
                                hook_failure=hook_failure,
                            )

                    if token.cancelled:
                        if record.outcome != IterationOutcome.SUCCESS:
                            record = replace(record, outcome=IterationOutcome.CANCELED)
                        _emit(summary, record, on_progress)
                        break

                    remaining = oracle.remaining()
                    summary.remaining = remaining
                    _emit(summary, replace(record, remaining=remaining), on_progress)
                    if remaining == 0:
                        logger.info("All tasks done after %d iteration(s)", index)
                        summary.status = LoopStatus.COMPLETED
                        return summary
            finally:
                session.close()

        if self.token.cancelled:
            summary.status = LoopStatus.CANCELED
        else:
            logger.warning(
                "Safety limit of %d iterations reached with %s task(s) pending",
                max_iterations,
                summary.remaining,
            )
            summary.status = LoopStatus.EXHAUSTED
        return summary

    def _run_fresh_sessions(
        self,
        *,
        summary: LoopSummary,
        message: str,
        total: int | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        index = 0
        with self.coordinator.activate() as token:
            while total is None or index < total:
                if token.cancelled:
                    return
                index += 1
                session = self.session_factory()
                self.coordinator.track(session)
                try:
                    # A signal during session setup had nothing to close yet.
                    if token.cancelled:
                        return
                    record = self._run_turn(session, message, index=index, total=total)
                finally:
                    session.close()
                    self.coordinator.track(None)
                _emit(summary, record, on_progress)

    def _run_turn(
        self,
        session: SessionRunner,
        message: str,
        *,
        index: int,
        total: int | None,
    ) -> IterationRecord:
        if self.on_iteration_start is not None:
            self.on_iteration_start(index, total)
        try:
            response = session.send(message)
        except Exception as error:  # noqa: BLE001
            if self.token.cancelled:
                logger.info("Iteration %d abandoned after cancellation", index)
                return IterationRecord(index=index, total=total, outcome=IterationOutcome.CANCELED)
            logger.warning("Iteration %d failed: %s", index, describe_error(error))
            return IterationRecord(
                index=index,
                total=total,
                outcome=IterationOutcome.ERROR,
                error=describe_error(error),
            )
        if response is None:
            raise InputValidationError("message must not be blank")

        if self.on_output is not None:
            self.on_output(response)
        result = response.result
        if result.success:
            return IterationRecord(
                index=index,
                total=total,
                outcome=IterationOutcome.SUCCESS,
                result=result,
            )
        return IterationRecord(
            index=index,
            total=total,
            outcome=IterationOutcome.FAILURE,
            error=result.error_subtype or "agent reported failure",
            result=result,
        )

    def _run_hooks_with_retries(
        self,
        *,
        session: SessionRunner,
        hooks: HookExecutor,
        max_retries: int,
        on_hook_failure: HookFailureCallback | None,
    ) -> str | None:
        result = hooks.run()
        failures = 0
        while not result.passed:
            failures += 1
            if on_hook_failure is not None:
                on_hook_failure(result, failures, max_retries)
            if failures > max_retries or self.token.cancelled:
                return describe_hook_failure(result)
            try:
                response = session.send(
                    hook_correction_message(result, attempt=failures, max_retries=max_retries),
                )
            except Exception as error:  # noqa: BLE001
                if self.token.cancelled:
                    return describe_hook_failure(result)
                logger.warning("Hook correction turn failed: %s", describe_error(error))
            else:
                if response is not None and self.on_output is not None:
                    self.on_output(response)
            result = hooks.run()
        return None


def describe_hook_failure(result: HookResult) -> str:
    """One-line description of a failed hook run."""

    command = result.failed_command or "<hook>"
    if result.exit_code is not None:
        return f"{command} exited with code {result.exit_code}"
    return f"{command}: {result.detail or 'failed'}"


def _emit(
    summary: LoopSummary,
    record: IterationRecord,
    on_progress: ProgressCallback | None,
) -> None:
    summary.add(record)
    if on_progress is not None:
        on_progress(record)


def _final_status(summary: LoopSummary, token: CancellationToken) -> LoopStatus:
    if token.cancelled:
        return LoopStatus.CANCELED
    if summary.failed:
        return LoopStatus.FAILED
    return LoopStatus.COMPLETED


def _require_message(message: str) -> None:
    if not isinstance(message, str) or not message.strip():
        raise InputValidationError("message must not be blank")
