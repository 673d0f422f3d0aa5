"""Local deterministic agent for CLI runtime integration tests and smoke runs."""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
from pathlib import Path

_PENDING_TASK = re.compile(r"^(\s*[-*+]\s+)\[ \]", re.MULTILINE)


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt back as a structured result."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", default=None)
    parser.add_argument("--tasks-file", default=None, help="Resolve one pending task per call.")
    parser.add_argument("--fail", action="store_true", help="Exit non-zero with an error result.")
    parser.add_argument("--text", action="store_true", help="Print plain text instead of JSON.")
    parser.add_argument("prompt", nargs="?", default="")
    args = parser.parse_args(argv)

    prompt = args.prompt
    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text("utf-8")
    last_line = prompt.strip().splitlines()[-1] if prompt.strip() else ""

    resolved = None
    if args.tasks_file:
        resolved = _resolve_one_task(Path(args.tasks_file))

    reply = f"echo: {last_line}"
    if resolved is not None:
        reply += f"\nresolved: {resolved}"

    if args.fail:
        sys.stderr.write("echo agent failure requested\n")
        if not args.text:
            payload = {
                "type": "result",
                "subtype": "error_during_execution",
                "is_error": True,
                "result": reply,
            }
            sys.stdout.write(json.dumps(payload) + "\n")
        return 1

    if args.text:
        sys.stdout.write(reply + "\ninput_tokens: 3\noutput_tokens: 2\n")
        return 0

    payload = {
        "type": "result",
        "subtype": "success",
        "is_error": False,
        "result": reply,
        "num_turns": 1,
        "duration_ms": 5,
        "usage": {"input_tokens": len(prompt.split()), "output_tokens": len(reply.split())},
        "model": os.getenv("AGENT_LOOP_MODEL", ""),
    }
    sys.stdout.write(json.dumps(payload) + "\n")
    return 0


def _resolve_one_task(tasks_file: Path) -> str | None:
    if not tasks_file.exists():
        return None
    text = tasks_file.read_text("utf-8")
    match = _PENDING_TASK.search(text)
    if match is None:
        return None
    line_end = text.find("\n", match.end())
    task_text = text[match.end() : line_end if line_end != -1 else len(text)].strip()
    updated = text[: match.start()] + f"{match.group(1)}[x]" + text[match.end() :]
    tasks_file.write_text(updated, "utf-8")
    return task_text


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
