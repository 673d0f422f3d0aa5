"""Job directories and the plan-then-build pipeline."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from agent_loop.config import STATE_DIR_NAME
from agent_loop.orchestrator.completion import TaskListOracle
from agent_loop.orchestrator.errors import InputValidationError
from agent_loop.orchestrator.hooks import HookExecutor
from agent_loop.orchestrator.loop import (
    HookFailureCallback,
    LoopRunner,
    ProgressCallback,
)
from agent_loop.orchestrator.models import LoopSummary
from agent_loop.orchestrator.prompt import build_prompt

logger = logging.getLogger(__name__)

JOBS_DIR_NAME = "jobs"
TASKS_FILE_NAME = "tasks.md"
PLAN_MESSAGE = "Begin planning."
BUILD_MESSAGE = "Begin building."
BUILD_CONTINUATION_MESSAGE = (
    "Continue building: pick the next unchecked task in tasks.md, implement it, "
    "and mark it done."
)

_JOB_SLUG = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True, slots=True)
class JobPaths:
    """Filesystem locations of one job inside a codebase."""

    codebase: Path
    slug: str
    job_dir: Path
    tasks_path: Path

    @property
    def relative_dir(self) -> str:
        return self.job_dir.relative_to(self.codebase).as_posix() + "/"


def resolve_job(codebase: Path, job: str, *, state_dir_name: str = STATE_DIR_NAME) -> JobPaths:
    """Validate ``codebase`` and ``job`` and return the job's paths.

    Raises:
        InputValidationError: codebase or job directory is missing, or the
            job slug is not a plain directory name.
    """

    if not codebase.is_dir():
        raise InputValidationError(f"Codebase directory not found: {codebase}")
    if not _JOB_SLUG.match(job or ""):
        raise InputValidationError(
            f"Invalid job slug {job!r}: use letters, digits, '.', '_' or '-'",
        )
    root = codebase.resolve()
    job_dir = root / state_dir_name / JOBS_DIR_NAME / job
    if not job_dir.is_dir():
        raise InputValidationError(
            f"Job directory not found: {state_dir_name}/{JOBS_DIR_NAME}/{job}/ "
            f"(resolved to {job_dir})",
        )
    return JobPaths(
        codebase=root,
        slug=job,
        job_dir=job_dir,
        tasks_path=job_dir / TASKS_FILE_NAME,
    )


def plan_message(paths: JobPaths) -> str:
    return build_prompt(PLAN_MESSAGE, (paths.relative_dir,))


def build_message(paths: JobPaths) -> str:
    return build_prompt(BUILD_MESSAGE, (paths.relative_dir,))


@dataclass(slots=True)
class JobPipelineResult:
    """Outcome of both pipeline phases; ``build`` is ``None`` when skipped."""

    plan: LoopSummary
    build: LoopSummary | None

    @property
    def exit_code(self) -> int:
        if self.plan.exit_code != 0 or self.build is None:
            return self.plan.exit_code
        return self.build.exit_code


class JobPipeline:
    """Runs a fixed number of planning iterations, then builds until tasks are done."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        paths: JobPaths,
        planner: LoopRunner,
        builder: LoopRunner,
        plan_iterations: int = 1,
        build_max_iterations: int = 50,
        hooks: HookExecutor | None = None,
        max_hook_retries: int = 3,
    ) -> None:
        self.paths = paths
        self.planner = planner
        self.builder = builder
        self.plan_iterations = plan_iterations
        self.build_max_iterations = build_max_iterations
        self.hooks = hooks
        self.max_hook_retries = max_hook_retries

    def run(
        self,
        *,
        on_phase: Callable[[str], None] | None = None,
        on_plan_progress: ProgressCallback | None = None,
        on_build_progress: ProgressCallback | None = None,
        on_hook_failure: HookFailureCallback | None = None,
    ) -> JobPipelineResult:
        announce = on_phase or (lambda _line: None)

        announce(f'Starting planning phase for job "{self.paths.slug}"...')
        plan = self.planner.run_fixed_count(
            message=plan_message(self.paths),
            iterations=self.plan_iterations,
            on_progress=on_plan_progress,
        )
        if plan.exit_code != 0 or self.planner.token.cancelled:
            logger.warning("Planning did not finish cleanly; skipping build phase")
            return JobPipelineResult(plan=plan, build=None)
        announce("Planning phase complete.")

        announce("Starting build phase...")
        build = self.builder.run_until_done(
            initial_message=build_message(self.paths),
            continuation_message=BUILD_CONTINUATION_MESSAGE,
            oracle=TaskListOracle(self.paths.tasks_path),
            max_iterations=self.build_max_iterations,
            hooks=self.hooks,
            max_hook_retries=self.max_hook_retries,
            on_progress=on_build_progress,
            on_hook_failure=on_hook_failure,
        )
        return JobPipelineResult(plan=plan, build=build)
