"""Deterministic in-process generation backend.

Used when no API key is configured ("stub mode"), by the demo command, and as
the test double for the engine. Scripted entries are consumed in order: a
string becomes a response, a ``GenerationError`` instance is raised. Once the
script is exhausted every call echoes the prompt.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from wolram.orchestrator.backend.base import (
    GenerationError,
    GenerationRequest,
    GenerationResponse,
)


class StubGenerationBackend:
    """Scripted generation backend that records every request."""

    def __init__(self, script: Iterable[str | GenerationError] = ()) -> None:
        self._script: deque[str | GenerationError] = deque(script)
        self.requests: list[GenerationRequest] = []

    def send(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        entry = self._script.popleft() if self._script else None
        if isinstance(entry, GenerationError):
            raise entry
        text = entry if entry is not None else _echo(request.prompt)
        return GenerationResponse(
            text=text,
            model=request.model,
            input_tokens=_approx_tokens(request.prompt),
            output_tokens=_approx_tokens(text),
            stop_reason="end_turn",
            response_id=f"stub-{len(self.requests)}",
        )

    @property
    def calls(self) -> int:
        return len(self.requests)


def _echo(prompt: str) -> str:
    last_line = prompt.strip().splitlines()[-1] if prompt.strip() else ""
    return f"[stub] {last_line}".rstrip()


def _approx_tokens(text: str) -> int:
    return len(text.split())
