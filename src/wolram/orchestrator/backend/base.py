"""Generation capability interface used by the engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class GenerationRequest:
    """One text-generation call."""

    prompt: str
    model: str
    max_tokens: int = 4096


@dataclass(slots=True)
class GenerationResponse:
    """Successful generation result with token usage."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str | None = None
    response_id: str | None = None


class GenerationError(RuntimeError):
    """Generation call failed before producing a usable response."""


class RateLimitedError(GenerationError):
    """HTTP 429 with the server's suggested delay."""

    def __init__(self, retry_after_ms: int) -> None:
        super().__init__(f"Rate limited, retry after {retry_after_ms}ms")
        self.retry_after_ms = retry_after_ms


class ApiError(GenerationError):
    """Non-success HTTP status from the API."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"API returned status {status}: {message}")
        self.status = status
        self.message = message


class NetworkError(GenerationError):
    """Connection, DNS or timeout failure."""


class ResponseParseError(GenerationError):
    """The API answered with a body we could not interpret."""


class GenerationBackend(Protocol):
    """Protocol implemented by generation transports and test doubles."""

    def send(self, request: GenerationRequest) -> GenerationResponse:
        """Run one generation call or raise ``GenerationError``."""
