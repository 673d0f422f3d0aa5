"""Subprocess-based agent runtime for CLI agents."""

from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from agent_loop.orchestrator.errors import AgentRuntimeError, AgentUnavailableError
from agent_loop.orchestrator.failure_classifier import classify_agent_failure
from agent_loop.orchestrator.models import AgentResponse, Message, MessageRole, RunResult
from agent_loop.orchestrator.prompt import render_transcript
from agent_loop.orchestrator.usage import extract_usage

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1
_ERROR_TAIL_CHARS = 2_000


class CliAgentRuntime:
    """Run one conversation turn per subprocess of a CLI agent.

    CLI agents are stateless between invocations, so earlier turns are
    rendered into the prompt as a transcript.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        command_template: str,
        default_model: str,
        timeout_seconds: int = 1_800,
        graceful_shutdown_seconds: int = 5,
        cwd: Path | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.cwd = cwd
        self.extra_env = dict(extra_env or {})
        self._scratch: tempfile.TemporaryDirectory[str] | None = None
        self._process: subprocess.Popen[str] | None = None
        self._closed = False
        self._turns = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_available(self) -> None:
        """Raise if the agent executable from the command template cannot be found."""

        command_head = _command_head(self.command_template)
        if shutil.which(command_head) is None and not Path(command_head).is_file():
            raise AgentUnavailableError(f"Agent command not found: {command_head}")

    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_steps: int,
        model: str | None = None,
    ) -> AgentResponse:
        if self._closed:
            raise AgentRuntimeError("Agent runtime is closed.")
        if not messages:
            raise AgentRuntimeError("Cannot run the agent with an empty history.")

        history = tuple(messages)
        prompt = render_transcript(history)
        resolved_model = model or self.default_model
        scratch = self._scratch_dir()
        self._turns += 1
        prompt_file = scratch / f"prompt-{self._turns}.txt"
        prompt_file.write_text(prompt, "utf-8")
        stdout_path = scratch / f"stdout-{self._turns}.txt"
        stderr_path = scratch / f"stderr-{self._turns}.txt"

        run_args = _build_run_args(
            command_template=self.command_template,
            model=resolved_model,
            max_steps=max_steps,
            prompt=prompt,
            prompt_file=prompt_file,
        )
        env = os.environ.copy()
        env.update(self.extra_env)
        env["AGENT_LOOP_MODEL"] = resolved_model
        env["AGENT_LOOP_MAX_STEPS"] = str(max_steps)
        env["AGENT_LOOP_TURN"] = str(self._turns)

        logger.debug("Starting agent turn %d: %s", self._turns, run_args[0])
        started = time.monotonic()
        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code = self._run_subprocess(
                    run_args=run_args,
                    env=env,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                )
            stdout = stdout_path.read_text("utf-8", errors="replace")
            stderr = stderr_path.read_text("utf-8", errors="replace")
        finally:
            self._process = None
            if self._closed:
                self._cleanup()

        elapsed_ms = int((time.monotonic() - started) * 1000)
        text, result = parse_agent_output(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            elapsed_ms=elapsed_ms,
        )
        logger.info(
            "Agent turn %d finished: success=%s exit_code=%d elapsed=%.1fs",
            self._turns,
            result.success,
            exit_code,
            elapsed_ms / 1000,
        )
        reply = Message(role=MessageRole.AGENT, content=text, result=result)
        return AgentResponse(messages=(*history, reply), result=result)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        process = self._process
        if process is not None:
            # generate() observes the flag, reaps the process and cleans up.
            try:
                process.terminate()
            except OSError:
                pass
            return
        self._cleanup()

    def _run_subprocess(
        self,
        *,
        run_args: list[str],
        env: dict[str, str],
        stdout_handle,
        stderr_handle,
    ) -> int:
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                env=env,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=stdout_handle,
                stderr=stderr_handle,
                text=True,
            )
        except FileNotFoundError as error:
            raise AgentUnavailableError(f"Agent command not found: {run_args[0]}") from error
        except OSError as error:
            raise AgentRuntimeError(f"Agent failed to start: {error}", transient=True) from error

        self._process = process
        start_monotonic = time.monotonic()
        shutdown_deadline: float | None = None
        while True:
            returncode = process.poll()
            if returncode is not None:
                if self._closed:
                    raise AgentRuntimeError("Agent run canceled.")
                return returncode

            now = time.monotonic()
            if now - start_monotonic >= self.timeout_seconds:
                _terminate_process(process)
                raise AgentRuntimeError(
                    f"Agent timed out after {self.timeout_seconds}s.",
                    transient=True,
                )

            if self._closed:
                if shutdown_deadline is None:
                    shutdown_deadline = now + max(0, self.graceful_shutdown_seconds)
                if now >= shutdown_deadline:
                    _terminate_process(process)
                    raise AgentRuntimeError("Agent run canceled.")

            time.sleep(_POLL_SECONDS)

    def _scratch_dir(self) -> Path:
        if self._scratch is None:
            self._scratch = tempfile.TemporaryDirectory(prefix="agent-loop-")
        return Path(self._scratch.name)

    def _cleanup(self) -> None:
        if self._scratch is not None:
            self._scratch.cleanup()
            self._scratch = None


def parse_agent_output(
    *,
    stdout: str,
    stderr: str,
    exit_code: int,
    elapsed_ms: int,
) -> tuple[str, RunResult]:
    """Build the reply text and structured result from captured agent output."""

    payload = _load_result_payload(stdout)
    if payload is not None:
        text = str(payload.get("result") or "").strip()
        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
        input_tokens = _as_int(usage.get("input_tokens"))
        output_tokens = _as_int(usage.get("output_tokens"))
        num_turns = _as_int(payload.get("num_turns")) or 1
        duration_ms = _as_int(payload.get("duration_ms")) or elapsed_ms
        subtype = payload.get("subtype")
        failed = bool(payload.get("is_error")) or exit_code != 0
        if isinstance(subtype, str) and subtype not in {"", "success"}:
            failed = True
    else:
        text = stdout.strip()
        extracted = extract_usage(stdout=stdout, stderr=stderr)
        input_tokens = extracted.input_tokens
        output_tokens = extracted.output_tokens
        num_turns = 1
        duration_ms = elapsed_ms
        subtype = None
        failed = exit_code != 0

    if not failed:
        return text, RunResult(
            success=True,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            num_turns=num_turns,
            duration_ms=duration_ms,
        )

    if not isinstance(subtype, str) or subtype in {"", "success"}:
        subtype = classify_agent_failure(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        ).failure_class.value
    errors: list[str] = []
    if exit_code != 0:
        errors.append(f"agent exited with code {exit_code}")
    tail = stderr.strip()[-_ERROR_TAIL_CHARS:]
    if tail:
        errors.append(tail)
    return text, RunResult(
        success=False,
        error_subtype=subtype,
        errors=tuple(errors),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        num_turns=num_turns,
        duration_ms=duration_ms,
    )


def _load_result_payload(stdout: str) -> dict[str, Any] | None:
    stripped = stdout.strip()
    if not stripped:
        return None
    candidates = [stripped, *reversed(stripped.splitlines())]
    for candidate in candidates:
        candidate = candidate.strip()
        if not candidate.startswith("{"):
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and "result" in parsed:
            return parsed
    return None


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value))
    return 0


def _command_head(command_template: str) -> str:
    try:
        argv = shlex.split(command_template.strip())
    except ValueError as error:
        raise AgentUnavailableError(f"Agent command template is not valid: {error}") from error
    if not argv:
        raise AgentUnavailableError("Agent command template is empty.")
    return argv[0]


def _build_run_args(
    *,
    command_template: str,
    model: str,
    max_steps: int,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise AgentRuntimeError("Agent command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise AgentRuntimeError("Agent command template must include {prompt} or {prompt_file}.")

    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            max_steps=str(max_steps),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise AgentRuntimeError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentRuntimeError("Agent command template rendered empty command.")
    return argv


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
