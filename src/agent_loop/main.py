"""CLI entrypoint for agent-loop."""

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from agent_loop import __version__
from agent_loop.orchestrator.controllers import (
    BuildCommand,
    CommandReport,
    JobCommand,
    LoopCliController,
    PlanCommand,
    RunCommand,
    StatusCommand,
)
from agent_loop.orchestrator.errors import AgentLoopError, describe_error

click.rich_click.USE_MARKDOWN = True
CONTROLLER = LoopCliController()

CommandT = TypeVar("CommandT")

_CODEBASE_OPTION = click.option(
    "--codebase",
    type=click.Path(path_type=Path),
    default=None,
    help="Project root holding the `.agent_loop/` state directory.",
)
_JOB_OPTION = click.option(
    "--job",
    default=None,
    help="Job directory name under `.agent_loop/jobs/`.",
)
_MODEL_OPTION = click.option(
    "--model",
    "-m",
    default=None,
    help="Model override; defaults to AGENT_LOOP_MODEL.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-loop")
@click.option("--verbose", "-v", is_flag=True, help="Log progress details to stderr.")
def agent_loop(verbose: bool) -> None:
    """Run a coding agent once, in a loop, or until a job's tasks are done."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )


@agent_loop.command("run")
@click.argument("prompt", required=False)
@_MODEL_OPTION
@click.option(
    "--context",
    "-c",
    "context_paths",
    multiple=True,
    help="File or directory the agent should look at. Can be repeated.",
)
@click.option(
    "--count",
    "-n",
    default=None,
    help="Run the prompt N times, each in a fresh session; exits 1 if any run failed.",
)
@click.option("--forever", is_flag=True, help="Repeat the prompt until interrupted.")
@click.option(
    "--interactive",
    "-i",
    is_flag=True,
    help="Keep one conversation open and read follow-ups from stdin.",
)
def run(  # noqa: PLR0913
    prompt: str | None,
    model: str | None,
    context_paths: tuple[str, ...],
    count: str | None,
    forever: bool,
    interactive: bool,
) -> None:
    """Send a prompt to the agent.

    Runs once by default. `--count N` and `--forever` start a fresh session
    per iteration; `--interactive` keeps one session for the whole conversation.

    With `--count N` every iteration runs even if an earlier one fails, and the
    command exits 1 if any of them failed. Stopping with Ctrl-C exits 0 after a
    summary of the finished iterations.
    """

    _execute(
        CONTROLLER.run,
        RunCommand(
            prompt=prompt,
            model=model,
            context_paths=context_paths,
            count=count,
            forever=forever,
            interactive=interactive,
        ),
    )


@agent_loop.command("plan")
@_CODEBASE_OPTION
@_JOB_OPTION
@click.option("--iterations", default=None, help="Number of planning iterations (default: 1).")
@_MODEL_OPTION
def plan(codebase: Path | None, job: str | None, iterations: str | None, model: str | None) -> None:
    """Run planning iterations for a job."""

    _execute(
        CONTROLLER.plan,
        PlanCommand(codebase=codebase, job=job, iterations=iterations, model=model),
    )


@agent_loop.command("build")
@_CODEBASE_OPTION
@_JOB_OPTION
@click.option(
    "--max-iterations",
    default=None,
    help="Safety limit on build iterations; defaults to AGENT_LOOP_UNTIL_DONE_MAX_ITERATIONS.",
)
@click.option(
    "--max-hook-retries",
    default=None,
    help="Fix attempts after a failing hook; defaults to AGENT_LOOP_MAX_HOOK_RETRIES.",
)
@_MODEL_OPTION
def build(
    codebase: Path | None,
    job: str | None,
    max_iterations: str | None,
    max_hook_retries: str | None,
    model: str | None,
) -> None:
    """Build a job until every task in its `tasks.md` is checked off."""

    _execute(
        CONTROLLER.build,
        BuildCommand(
            codebase=codebase,
            job=job,
            max_iterations=max_iterations,
            max_hook_retries=max_hook_retries,
            model=model,
        ),
    )


@agent_loop.command("job")
@_CODEBASE_OPTION
@_JOB_OPTION
@click.option("--iterations", default=None, help="Number of planning iterations (default: 1).")
@click.option("--max-iterations", default=None, help="Safety limit on build iterations.")
@click.option("--max-hook-retries", default=None, help="Fix attempts after a failing hook.")
@_MODEL_OPTION
def job(  # noqa: PLR0913
    codebase: Path | None,
    job: str | None,
    iterations: str | None,
    max_iterations: str | None,
    max_hook_retries: str | None,
    model: str | None,
) -> None:
    """Plan a job, then build it until done. Build is skipped if planning fails."""

    _execute(
        CONTROLLER.job,
        JobCommand(
            codebase=codebase,
            job=job,
            iterations=iterations,
            max_iterations=max_iterations,
            max_hook_retries=max_hook_retries,
            model=model,
        ),
    )


@agent_loop.command("status")
@_CODEBASE_OPTION
@_JOB_OPTION
def status(codebase: Path | None, job: str | None) -> None:
    """Show pending and done task counts for a job."""

    _execute(CONTROLLER.status, StatusCommand(codebase=codebase, job=job))


def _execute(action: Callable[[CommandT], CommandReport], command: CommandT) -> None:
    try:
        report = action(command)
    except AgentLoopError as error:
        raise click.ClickException(describe_error(error)) from error
    _emit_lines(report.output)
    _emit_lines(report.lines, err=True)
    if report.exit_code != 0:
        raise click.ClickException(report.failure or "Command failed.")


def _emit_lines(lines: list[str], *, err: bool = False) -> None:
    for line in lines:
        click.echo(line, err=err)


if __name__ == "__main__":  # pragma: no cover
    agent_loop()
