"""Controllers for agent-loop CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import rich_click as click

from agent_loop.config import AgentSettings, Settings
from agent_loop.orchestrator import reporting
from agent_loop.orchestrator.backend import AgentRuntime, CliAgentRuntime
from agent_loop.orchestrator.cancellation import CancellationCoordinator
from agent_loop.orchestrator.completion import TaskListOracle
from agent_loop.orchestrator.errors import InputValidationError, describe_error
from agent_loop.orchestrator.hooks import HookExecutor, load_hooks
from agent_loop.orchestrator.interactive import (
    InputReader,
    InteractiveController,
    read_stdin_line,
)
from agent_loop.orchestrator.jobs import (
    BUILD_CONTINUATION_MESSAGE,
    JobPaths,
    JobPipeline,
    build_message,
    plan_message,
    resolve_job,
)
from agent_loop.orchestrator.loop import LoopRunner, SessionFactory
from agent_loop.orchestrator.models import (
    AgentResponse,
    HookResult,
    IterationOutcome,
    IterationRecord,
    LoopMode,
    LoopStatus,
    LoopSummary,
)
from agent_loop.orchestrator.prompt import build_prompt
from agent_loop.orchestrator.session import SessionRunner

logger = logging.getLogger(__name__)

RuntimeBuilder = Callable[[AgentSettings, Path, str], AgentRuntime]
LineWriter = Callable[[str], None]


def build_cli_runtime(settings: AgentSettings, cwd: Path, model: str) -> AgentRuntime:
    return CliAgentRuntime(
        command_template=settings.command_template,
        default_model=model,
        timeout_seconds=settings.timeout_seconds,
        graceful_shutdown_seconds=settings.graceful_shutdown_seconds,
        cwd=cwd,
    )


@dataclass(slots=True)
class RunCommand:
    """CLI input for free-form runs; ``count`` is the raw ``--count`` value."""

    prompt: str | None
    model: str | None = None
    context_paths: tuple[str, ...] = ()
    count: str | None = None
    forever: bool = False
    interactive: bool = False
    cwd: Path | None = None


@dataclass(slots=True)
class PlanCommand:
    """CLI input for the planning phase of a job."""

    codebase: Path | None
    job: str | None
    iterations: str | None = None
    model: str | None = None


@dataclass(slots=True)
class BuildCommand:
    """CLI input for the build phase of a job."""

    codebase: Path | None
    job: str | None
    max_iterations: str | None = None
    max_hook_retries: str | None = None
    model: str | None = None


@dataclass(slots=True)
class JobCommand:
    """CLI input for the full plan-then-build pipeline."""

    codebase: Path | None
    job: str | None
    iterations: str | None = None
    max_iterations: str | None = None
    max_hook_retries: str | None = None
    model: str | None = None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for job task counts."""

    codebase: Path | None
    job: str | None


@dataclass(slots=True)
class CommandReport:
    """What to print once a command finishes.

    ``output`` goes to stdout, ``lines`` to stderr; a non-zero ``exit_code``
    comes with a ``failure`` message.
    """

    lines: list[str] = field(default_factory=list)
    output: list[str] = field(default_factory=list)
    exit_code: int = 0
    failure: str | None = None


class LoopCliController:
    """Wires settings, agent runtimes and loop strategies for CLI commands.

    Agent content is written through ``out`` as it arrives; progress and
    per-turn summaries go through ``err``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        runtime_builder: RuntimeBuilder = build_cli_runtime,
        read_input: InputReader = read_stdin_line,
        coordinator_factory: Callable[[], CancellationCoordinator] = CancellationCoordinator,
        out: LineWriter | None = None,
        err: LineWriter | None = None,
    ) -> None:
        self.runtime_builder = runtime_builder
        self.read_input = read_input
        self.coordinator_factory = coordinator_factory
        self.out = out or click.echo
        self.err = err or _echo_err

    def run(self, command: RunCommand) -> CommandReport:  # noqa: C901
        settings = _load_settings()
        count = _parse_int("--count", command.count, minimum=1)
        prompt = (command.prompt or "").strip()
        if command.interactive and (count is not None or command.forever):
            raise InputValidationError("--interactive cannot be combined with --count or --forever")
        if command.forever and count is not None:
            raise InputValidationError("--forever and --count cannot be used together")
        if not prompt and not command.interactive:
            raise InputValidationError("A prompt is required unless --interactive is given")
        model = command.model or settings.agent.model

        if settings.dry_run:
            payload = {
                "prompt": prompt or None,
                "model": model,
                "context": list(command.context_paths),
                "count": count,
                "forever": command.forever,
                "interactive": command.interactive,
            }
            return CommandReport(output=[json.dumps(payload, indent=2)])

        cwd = (command.cwd or Path.cwd()).resolve()
        self._ensure_available(settings, cwd, model)
        session_factory = self._session_factory(settings, cwd, model)
        coordinator = self.coordinator_factory()

        if command.interactive:
            controller = InteractiveController(
                session=session_factory(),
                read_input=self.read_input,
                context_paths=command.context_paths,
                coordinator=coordinator,
                on_output=self._print_response,
                on_error=self._print_error,
            )
            try:
                summary = controller.run(prompt or None)
            except KeyboardInterrupt:
                controller.close()
                summary = LoopSummary(mode=LoopMode.INTERACTIVE, status=LoopStatus.CANCELED)
            return _report(summary, failure="Interactive session failed.", with_summary=False)

        message = build_prompt(prompt, command.context_paths)
        looping = command.forever or count is not None
        runner = LoopRunner(
            session_factory=session_factory,
            coordinator=coordinator,
            on_output=self._print_response,
            on_iteration_start=self._print_header if looping else None,
        )
        if command.forever:
            summary = runner.run_forever(message=message, on_progress=self._print_turn_error)
        elif count is not None:
            summary = runner.run_fixed_count(
                message=message,
                iterations=count,
                on_progress=self._print_turn_error,
            )
        else:
            summary = runner.run_single(message)
            for record in summary.records:
                self._print_turn_error(record)
        return _report(summary, failure="Agent run failed.", with_summary=looping)

    def plan(self, command: PlanCommand) -> CommandReport:
        settings = _load_settings()
        iterations = _parse_int("--iterations", command.iterations, minimum=1, default=1)
        paths = _job_paths(settings, command.codebase, command.job)
        model = command.model or settings.agent.model
        self._ensure_available(settings, paths.codebase, model)

        runner = self._loop_runner(settings, paths.codebase, model, self.coordinator_factory())
        summary = runner.run_fixed_count(
            message=plan_message(paths),
            iterations=iterations,
            on_progress=self._print_turn_error,
        )
        return _report(summary, failure="Planning failed.")

    def build(self, command: BuildCommand) -> CommandReport:
        settings = _load_settings()
        max_iterations = _parse_int(
            "--max-iterations",
            command.max_iterations,
            minimum=1,
            default=settings.loop.until_done_max_iterations,
        )
        max_hook_retries = _parse_int(
            "--max-hook-retries",
            command.max_hook_retries,
            minimum=0,
            default=settings.loop.max_hook_retries,
        )
        paths = _job_paths(settings, command.codebase, command.job)
        hooks = _hook_executor(settings, paths)
        model = command.model or settings.agent.model
        self._ensure_available(settings, paths.codebase, model)

        runner = self._loop_runner(settings, paths.codebase, model, self.coordinator_factory())
        summary = runner.run_until_done(
            initial_message=build_message(paths),
            continuation_message=BUILD_CONTINUATION_MESSAGE,
            oracle=TaskListOracle(paths.tasks_path),
            max_iterations=max_iterations,
            hooks=hooks,
            max_hook_retries=max_hook_retries,
            on_progress=self._print_build_progress,
            on_hook_failure=self._print_hook_failure,
        )
        return _report(summary, failure="Build did not finish all tasks.")

    def job(self, command: JobCommand) -> CommandReport:
        settings = _load_settings()
        iterations = _parse_int("--iterations", command.iterations, minimum=1, default=1)
        max_iterations = _parse_int(
            "--max-iterations",
            command.max_iterations,
            minimum=1,
            default=settings.loop.until_done_max_iterations,
        )
        max_hook_retries = _parse_int(
            "--max-hook-retries",
            command.max_hook_retries,
            minimum=0,
            default=settings.loop.max_hook_retries,
        )
        paths = _job_paths(settings, command.codebase, command.job)
        hooks = _hook_executor(settings, paths)
        model = command.model or settings.agent.model
        self._ensure_available(settings, paths.codebase, model)

        coordinator = self.coordinator_factory()
        pipeline = JobPipeline(
            paths=paths,
            planner=self._loop_runner(settings, paths.codebase, model, coordinator),
            builder=self._loop_runner(settings, paths.codebase, model, coordinator),
            plan_iterations=iterations,
            build_max_iterations=max_iterations,
            hooks=hooks,
            max_hook_retries=max_hook_retries,
        )
        result = pipeline.run(
            on_phase=self.err,
            on_plan_progress=self._print_turn_error,
            on_build_progress=self._print_build_progress,
            on_hook_failure=self._print_hook_failure,
        )

        lines = reporting.render_summary_lines(result.plan)
        if result.build is None:
            lines.append("Build phase skipped.")
        else:
            lines.extend(reporting.render_summary_lines(result.build))
            if result.build.exit_code == 0 and result.build.status == LoopStatus.COMPLETED:
                lines.append(f'Job "{paths.slug}" complete. All tasks done.')
        exit_code = result.exit_code
        return CommandReport(
            lines=lines,
            exit_code=exit_code,
            failure="Job pipeline failed." if exit_code else None,
        )

    def status(self, command: StatusCommand) -> CommandReport:
        settings = _load_settings()
        paths = _job_paths(settings, command.codebase, command.job)
        oracle = TaskListOracle(paths.tasks_path)
        pending = oracle.remaining()
        done = oracle.done()
        return CommandReport(
            output=[
                f"Job: {paths.slug}",
                f"Tasks file: {paths.tasks_path}",
                f"Pending tasks: {pending}",
                f"Done tasks: {done}",
            ],
        )

    def _ensure_available(self, settings: Settings, cwd: Path, model: str) -> None:
        runtime = self.runtime_builder(settings.agent, cwd, model)
        try:
            if isinstance(runtime, CliAgentRuntime):
                runtime.ensure_available()
        finally:
            runtime.close()

    def _session_factory(self, settings: Settings, cwd: Path, model: str) -> SessionFactory:
        def factory() -> SessionRunner:
            return SessionRunner(
                runtime=self.runtime_builder(settings.agent, cwd, model),
                max_steps=settings.agent.max_steps,
                model=model,
            )

        return factory

    def _loop_runner(
        self,
        settings: Settings,
        cwd: Path,
        model: str,
        coordinator: CancellationCoordinator,
    ) -> LoopRunner:
        return LoopRunner(
            session_factory=self._session_factory(settings, cwd, model),
            coordinator=coordinator,
            on_output=self._print_response,
            on_iteration_start=self._print_header,
        )

    def _print_response(self, response: AgentResponse) -> None:
        text = response.text.rstrip()
        if text:
            self.out(text)
        for line in reporting.format_result(response.result):
            self.err(line)

    def _print_header(self, index: int, total: int | None) -> None:
        self.err(reporting.format_loop_header(index, total))

    def _print_error(self, message: str) -> None:
        self.err(f"error: {message}")

    def _print_turn_error(self, record: IterationRecord) -> None:
        # Agent-reported failures were already printed with the response.
        if record.outcome == IterationOutcome.ERROR:
            self._print_error(record.error or "unknown error")

    def _print_build_progress(self, record: IterationRecord) -> None:
        self._print_turn_error(record)
        self.err(reporting.format_record(record))

    def _print_hook_failure(self, result: HookResult, attempt: int, max_retries: int) -> None:
        self.err(reporting.format_hook_failure(result, attempt, max_retries))


def _echo_err(line: str) -> None:
    click.echo(line, err=True)


def _report(summary: LoopSummary, *, failure: str, with_summary: bool = True) -> CommandReport:
    lines = reporting.render_summary_lines(summary) if with_summary else []
    if summary.status == LoopStatus.CANCELED and not with_summary:
        lines.append("Stopped by signal.")
    exit_code = summary.exit_code
    return CommandReport(
        lines=lines,
        exit_code=exit_code,
        failure=failure if exit_code else None,
    )


def _load_settings() -> Settings:
    try:
        settings = Settings.from_env()
        settings.validate()
    except ValueError as error:
        raise InputValidationError(describe_error(error)) from error
    return settings


def _parse_int(
    option: str,
    raw: str | None,
    *,
    minimum: int,
    default: int | None = None,
) -> int | None:
    if raw is None:
        return default
    text = raw.strip()
    try:
        value = int(text)
    except ValueError:
        value = None
    if value is None or value < minimum:
        kind = "a positive integer" if minimum == 1 else f"an integer >= {minimum}"
        raise InputValidationError(f"{option} must be {kind}, got {raw!r}")
    return value


def _job_paths(settings: Settings, codebase: Path | None, job: str | None) -> JobPaths:
    if codebase is None:
        raise InputValidationError("--codebase <path> is required")
    if not job:
        raise InputValidationError("--job <slug> is required")
    return resolve_job(codebase, job, state_dir_name=settings.state_dir_name)


def _hook_executor(settings: Settings, paths: JobPaths) -> HookExecutor | None:
    commands = load_hooks(paths.codebase, state_dir_name=settings.state_dir_name)
    if not commands:
        return None
    logger.info("Loaded %d hook command(s)", len(commands))
    return HookExecutor(
        commands,
        cwd=paths.codebase,
        timeout_seconds=settings.loop.hook_timeout_seconds,
    )
