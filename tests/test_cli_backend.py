from __future__ import annotations

import json
import sys
import threading
from pathlib import Path

import allure
import pytest
from helpers import ECHO_AGENT, ECHO_AGENT_COMMAND_TEMPLATE

from agent_loop.orchestrator.backend.cli_backend import (
    CliAgentRuntime,
    _build_run_args,
    parse_agent_output,
)
from agent_loop.orchestrator.errors import AgentRuntimeError, AgentUnavailableError
from agent_loop.orchestrator.models import Message, MessageRole

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("CLI Agent Runtime"),
]


def _user(text: str) -> Message:
    return Message(role=MessageRole.USER, content=text)


def test_build_run_args_quotes_placeholder_values() -> None:
    run_args = _build_run_args(
        command_template="agent --model {model} --max-turns {max_steps} -- {prompt}",
        model="sonnet",
        max_steps=12,
        prompt='fix "the" bug; rm -rf /',
        prompt_file=Path("prompt.txt"),
    )

    assert run_args == [
        "agent",
        "--model",
        "sonnet",
        "--max-turns",
        "12",
        "--",
        'fix "the" bug; rm -rf /',
    ]


def test_build_run_args_rejects_template_without_prompt() -> None:
    with pytest.raises(AgentRuntimeError, match="must include"):
        _build_run_args(
            command_template="agent --model {model}",
            model="m",
            max_steps=1,
            prompt="p",
            prompt_file=Path("p.txt"),
        )


def test_build_run_args_rejects_unknown_placeholder() -> None:
    with pytest.raises(AgentRuntimeError, match="Unsupported command template placeholder"):
        _build_run_args(
            command_template="agent {workdir} {prompt}",
            model="m",
            max_steps=1,
            prompt="p",
            prompt_file=Path("p.txt"),
        )


def test_parse_json_result_payload() -> None:
    stdout = "progress line\n" + json.dumps(
        {
            "type": "result",
            "subtype": "success",
            "is_error": False,
            "result": "done",
            "num_turns": 3,
            "duration_ms": 4500,
            "usage": {"input_tokens": 100, "output_tokens": 20},
        },
    )

    text, result = parse_agent_output(stdout=stdout, stderr="", exit_code=0, elapsed_ms=9)

    assert text == "done"
    assert result.success is True
    assert (result.input_tokens, result.output_tokens) == (100, 20)
    assert result.num_turns == 3
    assert result.duration_ms == 4500


def test_parse_json_error_payload_keeps_subtype() -> None:
    stdout = json.dumps({"result": "", "is_error": True, "subtype": "error_max_turns"})

    _text, result = parse_agent_output(stdout=stdout, stderr="", exit_code=0, elapsed_ms=9)

    assert result.success is False
    assert result.error_subtype == "error_max_turns"


def test_parse_plain_text_with_usage_markers() -> None:
    text, result = parse_agent_output(
        stdout="All good.\n",
        stderr="input_tokens: 1,200\noutput_tokens: 30\n",
        exit_code=0,
        elapsed_ms=2500,
    )

    assert text == "All good."
    assert result.success is True
    assert result.total_tokens == 1230
    assert result.duration_ms == 2500


def test_parse_nonzero_exit_is_classified() -> None:
    _text, result = parse_agent_output(
        stdout="",
        stderr="Error: 429 Too Many Requests\n",
        exit_code=1,
        elapsed_ms=10,
    )

    assert result.success is False
    assert result.error_subtype == "rate_limited"
    assert result.errors[0] == "agent exited with code 1"
    assert "Too Many Requests" in result.errors[1]


def test_generate_with_echo_agent_returns_updated_history(tmp_path: Path) -> None:
    runtime = CliAgentRuntime(
        command_template=ECHO_AGENT_COMMAND_TEMPLATE,
        default_model="echo-model",
        timeout_seconds=30,
        cwd=tmp_path,
    )
    try:
        response = runtime.generate([_user("say hi")], max_steps=5)
        follow_up = runtime.generate([*response.messages, _user("again")], max_steps=5)
    finally:
        runtime.close()

    assert response.text == "echo: say hi"
    assert response.result.success is True
    assert response.result.total_tokens > 0
    assert [message.role for message in follow_up.messages] == [
        MessageRole.USER,
        MessageRole.AGENT,
        MessageRole.USER,
        MessageRole.AGENT,
    ]
    assert follow_up.text == "echo: again"


def test_generate_reports_agent_failure_as_result(tmp_path: Path) -> None:
    runtime = CliAgentRuntime(
        command_template=f"{ECHO_AGENT} --fail --prompt-file {{prompt_file}}",
        default_model="echo-model",
        timeout_seconds=30,
        cwd=tmp_path,
    )
    try:
        response = runtime.generate([_user("break")], max_steps=5)
    finally:
        runtime.close()

    assert response.result.success is False
    assert response.result.error_subtype == "error_during_execution"


def test_generate_plain_text_agent(tmp_path: Path) -> None:
    runtime = CliAgentRuntime(
        command_template=f"{ECHO_AGENT} --text --prompt-file {{prompt_file}}",
        default_model="echo-model",
        cwd=tmp_path,
    )
    try:
        response = runtime.generate([_user("plain")], max_steps=5)
    finally:
        runtime.close()

    assert response.result.success is True
    assert (response.result.input_tokens, response.result.output_tokens) == (3, 2)


def test_close_aborts_in_flight_run(tmp_path: Path) -> None:
    runtime = CliAgentRuntime(
        command_template=f"{sys.executable} -c 'import time; time.sleep(30)' {{prompt}}",
        default_model="m",
        timeout_seconds=60,
        graceful_shutdown_seconds=0,
        cwd=tmp_path,
    )
    timer = threading.Timer(0.5, runtime.close)
    timer.start()
    try:
        with pytest.raises(AgentRuntimeError, match="canceled"):
            runtime.generate([_user("wait")], max_steps=1)
    finally:
        timer.cancel()

    assert runtime.closed is True


def test_timeout_is_a_transient_runtime_error(tmp_path: Path) -> None:
    runtime = CliAgentRuntime(
        command_template=f"{sys.executable} -c 'import time; time.sleep(30)' {{prompt}}",
        default_model="m",
        timeout_seconds=1,
        cwd=tmp_path,
    )
    try:
        with pytest.raises(AgentRuntimeError, match="timed out") as excinfo:
            runtime.generate([_user("wait")], max_steps=1)
    finally:
        runtime.close()

    assert excinfo.value.transient is True


def test_ensure_available_detects_missing_executable() -> None:
    runtime = CliAgentRuntime(
        command_template="definitely-not-an-agent-binary {prompt}",
        default_model="m",
    )

    with pytest.raises(AgentUnavailableError, match="definitely-not-an-agent-binary"):
        runtime.ensure_available()


def test_closed_runtime_refuses_new_turns() -> None:
    runtime = CliAgentRuntime(command_template=ECHO_AGENT_COMMAND_TEMPLATE, default_model="m")
    runtime.close()
    runtime.close()

    with pytest.raises(AgentRuntimeError, match="closed"):
        runtime.generate([_user("hi")], max_steps=1)
