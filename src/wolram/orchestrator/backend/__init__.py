"""Generation backend implementations."""

from wolram.orchestrator.backend.anthropic_client import AnthropicClient
from wolram.orchestrator.backend.base import (
    ApiError,
    GenerationBackend,
    GenerationError,
    GenerationRequest,
    GenerationResponse,
    NetworkError,
    RateLimitedError,
    ResponseParseError,
)
from wolram.orchestrator.backend.stub import StubGenerationBackend

__all__ = [
    "AnthropicClient",
    "ApiError",
    "GenerationBackend",
    "GenerationError",
    "GenerationRequest",
    "GenerationResponse",
    "NetworkError",
    "RateLimitedError",
    "ResponseParseError",
    "StubGenerationBackend",
]
