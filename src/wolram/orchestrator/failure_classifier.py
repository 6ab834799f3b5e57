"""Deterministic classification of PROCESS-stage errors for the retry policy."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from wolram.orchestrator.backend.base import (
    ApiError,
    GenerationError,
    NetworkError,
    RateLimitedError,
    ResponseParseError,
)
from wolram.orchestrator.models import Failure, FailureKind

OutputCheck = Callable[[str], str | None]


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure plus diagnostics for logs and backoff."""

    failure: Failure
    reason_code: str
    retry_after_ms: int | None = None

    @property
    def kind(self) -> FailureKind:
        return self.failure.kind


def classify_generation_error(error: BaseException) -> FailureClassification:
    """Map any collaborator error to a SYSTEM failure.

    Raw exception types never travel past the PROCESS boundary; the reason code
    keeps enough detail to tell rate limiting from outages in the logs.
    """

    if isinstance(error, RateLimitedError):
        return FailureClassification(
            failure=Failure.system("Rate limited"),
            reason_code="rate_limited",
            retry_after_ms=error.retry_after_ms,
        )
    if isinstance(error, ApiError):
        return FailureClassification(
            failure=Failure.system(str(error)),
            reason_code=f"api_error_{error.status}",
        )
    if isinstance(error, NetworkError):
        return FailureClassification(
            failure=Failure.system(str(error) or "Network error"),
            reason_code="network_error",
        )
    if isinstance(error, ResponseParseError):
        return FailureClassification(
            failure=Failure.system(str(error)),
            reason_code="response_parse_error",
        )
    if isinstance(error, GenerationError):
        return FailureClassification(
            failure=Failure.system(str(error) or "Generation failed"),
            reason_code="generation_error",
        )
    return FailureClassification(
        failure=Failure.system(f"{type(error).__name__}: {error}"),
        reason_code="unexpected_error",
    )


def classify_output(text: str, check: OutputCheck | None) -> FailureClassification | None:
    """Run the caller's output check; a rejection is a BUSINESS failure."""

    if check is None:
        return None
    problem = check(text)
    if problem is None:
        return None
    return FailureClassification(
        failure=Failure.business(problem),
        reason_code="output_rejected",
    )


def reject_empty_output(text: str) -> str | None:
    """Output check that only rejects blank responses."""

    if not text.strip():
        return "Generation returned an empty response"
    return None
