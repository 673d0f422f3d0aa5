"""Deterministic classification of failed agent CLI runs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureClass(str, Enum):
    """Normalized failure classes reported as a result error subtype."""

    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    MAX_STEPS = "error_max_turns"
    NON_RETRYABLE = "error_during_execution"


# Order matters: the first class with a matching marker wins.
_RULES: tuple[tuple[FailureClass, tuple[str, ...]], ...] = (
    (
        FailureClass.BILLING_OR_QUOTA,
        ("quota", "resource_exhausted", "insufficient", "billing", "payment", "credits",
         "usage limit"),
    ),
    (
        FailureClass.ACCESS_OR_AUTH,
        ("unauthorized", "forbidden", "permission denied", "invalid api key",
         "authentication", "not logged in"),
    ),
    (
        FailureClass.MODEL_NOT_AVAILABLE,
        ("model not found", "unknown model", "unsupported model", "invalid model",
         "model is not available"),
    ),
    (
        FailureClass.RATE_LIMITED,
        ("too many requests", "rate limit", "429", "overloaded", "try again later"),
    ),
    (
        FailureClass.MAX_STEPS,
        ("max turns", "max_turns", "maximum number of turns", "max steps"),
    ),
    (
        FailureClass.TRANSIENT,
        ("temporarily unavailable", "temporary failure", "connection reset",
         "network error", "could not resolve host"),
    ),
)
TRANSIENT_EXIT_CODES: tuple[int, ...] = (137, 143)


@dataclass(slots=True)
class AgentFailureClassification:
    failure_class: FailureClass
    matched_pattern: str | None = None

    @property
    def transient(self) -> bool:
        return self.failure_class in {FailureClass.RATE_LIMITED, FailureClass.TRANSIENT}


def classify_agent_failure(
    *,
    exit_code: int,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = TRANSIENT_EXIT_CODES,
) -> AgentFailureClassification:
    """Classify a non-zero agent exit into a stable error subtype.

    Output markers take precedence; a kill-style exit code with no marker
    is treated as transient.
    """

    haystack = f"{stderr}\n{stdout}".lower()
    for failure_class, markers in _RULES:
        hit = next((marker for marker in markers if marker in haystack), None)
        if hit is not None:
            return AgentFailureClassification(failure_class, hit)
    if exit_code in transient_exit_codes:
        return AgentFailureClassification(FailureClass.TRANSIENT)
    return AgentFailureClassification(FailureClass.NON_RETRYABLE)
