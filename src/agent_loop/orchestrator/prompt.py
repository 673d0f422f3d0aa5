"""Agent-facing text: context references, transcripts, and correction requests."""

from __future__ import annotations

from collections.abc import Sequence

from agent_loop.orchestrator.models import HookResult, Message, MessageRole

_MAX_HOOK_OUTPUT_CHARS = 8_000


def build_prompt(prompt: str, context_paths: Sequence[str] = ()) -> str:
    """Prepend context path references so the agent knows where to look.

    Paths are listed as references; the agent reads them itself.
    """

    if not context_paths:
        return prompt
    refs = "\n".join(f"Context: {path}" for path in context_paths)
    return f"{refs}\n\n{prompt}"


def render_transcript(messages: Sequence[Message]) -> str:
    """Render a history as one prompt for a stateless CLI agent."""

    if not messages:
        return ""
    if len(messages) == 1:
        return messages[0].content

    *earlier, latest = messages
    lines = ["Conversation so far:", ""]
    for message in earlier:
        label = "User" if message.role == MessageRole.USER else "Assistant"
        lines.append(f"[{label}]")
        lines.append(message.content.rstrip())
        lines.append("")
    lines.append("[User, current request]")
    lines.append(latest.content)
    return "\n".join(lines)


def hook_correction_message(result: HookResult, *, attempt: int, max_retries: int) -> str:
    """Describe a failed hook so the agent can fix it in the same conversation."""

    output = result.output.strip()
    if len(output) > _MAX_HOOK_OUTPUT_CHARS:
        output = "...\n" + output[-_MAX_HOOK_OUTPUT_CHARS:]
    command = result.failed_command or "<hook>"
    if result.exit_code is not None:
        outcome = f"exit code {result.exit_code}"
    else:
        outcome = result.detail or "did not run"
    return (
        f"A post-iteration check failed (fix attempt {attempt}/{max_retries}).\n"
        f"\n"
        f"Command: {command}\n"
        f"Result: {outcome}\n"
        f"\n"
        f"Output:\n"
        f"{output or '(no output)'}\n"
        f"\n"
        f"Fix the problem so the command passes, then stop."
    )
