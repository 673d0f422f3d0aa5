"""Usage extraction helpers for CLI agent output streams."""

from __future__ import annotations

import re
from dataclasses import dataclass

_JSON_INPUT_TOKENS = re.compile(r'"(?:input|prompt)_tokens"\s*:\s*(\d+)', re.IGNORECASE)
_JSON_OUTPUT_TOKENS = re.compile(r'"(?:output|completion)_tokens"\s*:\s*(\d+)', re.IGNORECASE)

_TOKENS_USED = re.compile(r"tokens used\s*[\r\n ]+\s*([\d,]+)", re.IGNORECASE)
_INPUT_TOKENS = re.compile(r"(?:input|prompt)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_OUTPUT_TOKENS = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)


@dataclass(slots=True)
class UsageExtraction:
    """Best-effort token usage extraction result."""

    input_tokens: int
    output_tokens: int
    source: str

    @property
    def found(self) -> bool:
        return self.source != "none"


def extract_usage(*, stdout: str, stderr: str) -> UsageExtraction:
    """Extract token usage from structured or textual agent output."""

    for source_name, text in (("agent_stdout", stdout), ("agent_stderr", stderr)):
        input_tokens = _extract_int(_JSON_INPUT_TOKENS, text)
        output_tokens = _extract_int(_JSON_OUTPUT_TOKENS, text)
        if input_tokens is None and output_tokens is None:
            continue
        return UsageExtraction(
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            source=source_name,
        )

    for source_name, text in (("agent_stderr", stderr), ("agent_stdout", stdout)):
        input_tokens = _extract_int(_INPUT_TOKENS, text)
        output_tokens = _extract_int(_OUTPUT_TOKENS, text)
        if input_tokens is not None or output_tokens is not None:
            return UsageExtraction(
                input_tokens=input_tokens or 0,
                output_tokens=output_tokens or 0,
                source=source_name,
            )
        total = _extract_int(_TOKENS_USED, text)
        if total is not None:
            # Only a total is reported; attribute it to output.
            return UsageExtraction(input_tokens=0, output_tokens=total, source=source_name)

    return UsageExtraction(input_tokens=0, output_tokens=0, source="none")


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    raw = match.group(1).replace(",", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)
