"""Runtime configuration for agent runs, loops, and hooks."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_COMMAND_TEMPLATE = (
    "claude -p --output-format json --permission-mode bypassPermissions "
    "--max-turns {max_steps} --model {model} -- {prompt}"
)
STATE_DIR_NAME = ".agent_loop"


@dataclass(slots=True)
class AgentSettings:
    """How the external agent CLI is invoked."""

    command_template: str = DEFAULT_COMMAND_TEMPLATE
    model: str = "sonnet"
    max_steps: int = 50
    timeout_seconds: int = 1_800
    graceful_shutdown_seconds: int = 5


@dataclass(slots=True)
class LoopSettings:
    """Safety bounds for until-done runs and hook retries."""

    until_done_max_iterations: int = 50
    max_hook_retries: int = 3
    hook_timeout_seconds: int = 600


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    state_dir_name: str = STATE_DIR_NAME
    dry_run: bool = False
    agent: AgentSettings = field(default_factory=AgentSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            state_dir_name=os.getenv("AGENT_LOOP_STATE_DIR", STATE_DIR_NAME),
            dry_run=_env_bool("AGENT_LOOP_DRY_RUN", default=False),
            agent=AgentSettings(
                command_template=os.getenv("AGENT_LOOP_AGENT_COMMAND", DEFAULT_COMMAND_TEMPLATE),
                model=os.getenv("AGENT_LOOP_MODEL", "sonnet"),
                max_steps=_env_int("AGENT_LOOP_MAX_STEPS", 50),
                timeout_seconds=_env_int("AGENT_LOOP_TIMEOUT_SECONDS", 1800),
                graceful_shutdown_seconds=_env_int("AGENT_LOOP_GRACEFUL_SHUTDOWN_SECONDS", 5),
            ),
            loop=LoopSettings(
                until_done_max_iterations=_env_int("AGENT_LOOP_UNTIL_DONE_MAX_ITERATIONS", 50),
                max_hook_retries=_env_int("AGENT_LOOP_MAX_HOOK_RETRIES", 3),
                hook_timeout_seconds=_env_int("AGENT_LOOP_HOOK_TIMEOUT_SECONDS", 600),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        template = self.agent.command_template.strip()
        if not template:
            raise ValueError("AGENT_LOOP_AGENT_COMMAND must not be empty.")
        if "{prompt}" not in template and "{prompt_file}" not in template:
            raise ValueError(
                "AGENT_LOOP_AGENT_COMMAND must include {prompt} or {prompt_file}.",
            )
        try:
            shlex.split(template)
        except ValueError as error:
            raise ValueError(f"AGENT_LOOP_AGENT_COMMAND is not valid shell syntax: {error}") from error
        if self.agent.max_steps <= 0:
            raise ValueError("AGENT_LOOP_MAX_STEPS must be > 0.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("AGENT_LOOP_TIMEOUT_SECONDS must be > 0.")
        if self.agent.graceful_shutdown_seconds < 0:
            raise ValueError("AGENT_LOOP_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.loop.until_done_max_iterations <= 0:
            raise ValueError("AGENT_LOOP_UNTIL_DONE_MAX_ITERATIONS must be > 0.")
        if self.loop.max_hook_retries < 0:
            raise ValueError("AGENT_LOOP_MAX_HOOK_RETRIES must be >= 0.")
        if self.loop.hook_timeout_seconds <= 0:
            raise ValueError("AGENT_LOOP_HOOK_TIMEOUT_SECONDS must be > 0.")

    def state_dir(self, codebase: Path) -> Path:
        """Return the per-project state directory holding jobs and hooks."""

        return codebase / self.state_dir_name


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
