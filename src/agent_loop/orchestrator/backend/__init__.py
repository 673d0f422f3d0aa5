"""Agent runtime implementations."""

from agent_loop.orchestrator.backend.base import AgentRuntime, RuntimeFactory
from agent_loop.orchestrator.backend.cli_backend import CliAgentRuntime, parse_agent_output

__all__ = [
    "AgentRuntime",
    "CliAgentRuntime",
    "RuntimeFactory",
    "parse_agent_output",
]
