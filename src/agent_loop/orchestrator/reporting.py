"""Human-readable rendering of turns, iterations, and loop summaries."""

from __future__ import annotations

from agent_loop.orchestrator.models import (
    HookResult,
    IterationOutcome,
    IterationRecord,
    LoopMode,
    LoopStatus,
    LoopSummary,
    RunResult,
)


def format_summary(result: RunResult) -> str:
    """``<tokens> tokens · <n> turn(s) · <secs>s`` for one agent turn."""

    turn_word = "turn" if result.num_turns == 1 else "turns"
    seconds = result.duration_ms / 1000
    return f"{result.total_tokens} tokens · {result.num_turns} {turn_word} · {seconds:.1f}s"


def format_loop_header(index: int, total: int | None = None) -> str:
    if total is None:
        return f"loop {index}"
    return f"loop {index} / {total}"


def format_error(subtype: str, errors: tuple[str, ...] = ()) -> list[str]:
    return [f"error: {subtype}", *(f"  {error}" for error in errors)]


def format_result(result: RunResult) -> list[str]:
    """Summary line on success, error lines otherwise."""

    if result.success:
        return [format_summary(result)]
    return format_error(result.error_subtype or "unknown", result.errors)


def format_record(record: IterationRecord) -> str:
    """One progress line for a finished iteration."""

    position = (
        f"{record.index}/{record.total}" if record.total is not None else str(record.index)
    )
    parts = [f"Iteration {position}: {record.outcome.value}"]
    if record.remaining is not None:
        parts.append(f"{record.remaining} task(s) remaining")
    if record.hook_failure:
        parts.append(f"hook: {record.hook_failure}")
    elif record.error and record.outcome != IterationOutcome.FAILURE:
        parts.append(record.error)
    return " - ".join(parts)


def format_hook_failure(result: HookResult, attempt: int, max_retries: int) -> str:
    command = result.failed_command or "<hook>"
    if attempt > max_retries:
        return f"Hook failed: {command} (no retries left)"
    return f"Hook failed: {command} (fix attempt {attempt}/{max_retries})"


def render_summary_lines(summary: LoopSummary) -> list[str]:
    """Closing report for a loop run."""

    lines = [
        f"Loop summary: mode={summary.mode.value} status={summary.status.value} "
        f"attempted={summary.attempted} succeeded={summary.succeeded} failed={summary.failed}",
    ]
    if summary.remaining is not None:
        lines.append(f"Tasks remaining: {summary.remaining}")
    if summary.status == LoopStatus.CANCELED:
        lines.append("Stopped by signal.")
    elif summary.status == LoopStatus.EXHAUSTED:
        lines.append("Safety limit reached before all tasks were done.")
    elif summary.mode == LoopMode.UNTIL_DONE and summary.status == LoopStatus.COMPLETED:
        lines.append("All tasks done.")
    if summary.error:
        lines.append(f"error: {summary.error}")
    return lines
