"""Shared test fixtures."""

from __future__ import annotations

import signal
from pathlib import Path

import pytest
from helpers import ECHO_AGENT_COMMAND_TEMPLATE, FakeSignalRegistry

from agent_loop.orchestrator.cancellation import CancellationCoordinator

ENV_VARS = (
    "AGENT_LOOP_AGENT_COMMAND",
    "AGENT_LOOP_MODEL",
    "AGENT_LOOP_MAX_STEPS",
    "AGENT_LOOP_TIMEOUT_SECONDS",
    "AGENT_LOOP_GRACEFUL_SHUTDOWN_SECONDS",
    "AGENT_LOOP_UNTIL_DONE_MAX_ITERATIONS",
    "AGENT_LOOP_MAX_HOOK_RETRIES",
    "AGENT_LOOP_HOOK_TIMEOUT_SECONDS",
    "AGENT_LOOP_DRY_RUN",
    "AGENT_LOOP_STATE_DIR",
)


@pytest.fixture()
def registry() -> FakeSignalRegistry:
    return FakeSignalRegistry()


@pytest.fixture()
def coordinator(registry: FakeSignalRegistry) -> CancellationCoordinator:
    return CancellationCoordinator(
        registry=registry,
        signals=(signal.SIGINT, signal.SIGTERM),
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_agent(monkeypatch: pytest.MonkeyPatch) -> str:
    """Route CLI runs to the local echo agent."""

    monkeypatch.setenv("AGENT_LOOP_AGENT_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)
    return ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def job_codebase(tmp_path: Path) -> Path:
    """Codebase with a ``demo`` job holding two pending tasks."""

    job_dir = tmp_path / ".agent_loop" / "jobs" / "demo"
    job_dir.mkdir(parents=True)
    (job_dir / "tasks.md").write_text(
        "# Tasks\n\n- [ ] write parser\n- [ ] add tests\n",
        "utf-8",
    )
    return tmp_path
