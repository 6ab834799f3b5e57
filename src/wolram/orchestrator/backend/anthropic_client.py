"""HTTP transport for the Anthropic Messages API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from wolram.orchestrator.backend.base import (
    ApiError,
    GenerationRequest,
    GenerationResponse,
    NetworkError,
    RateLimitedError,
    ResponseParseError,
)

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_RETRY_AFTER_MS = 1000


class AnthropicClient:
    """Messages API client wrapper with auth headers and timeouts.

    Transport-level retries are left to the job engine, which owns the retry
    budget; this client reports each failure once as a typed error.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key.strip():
            raise ValueError("Anthropic API key must not be empty.")
        self._base_url = base_url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
            headers={
                "x-api-key": api_key,
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
            transport=transport,
        )

    def send(self, request: GenerationRequest) -> GenerationResponse:
        """POST one message and return the first text block."""

        payload = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        try:
            response = self._client.post(self._base_url, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s: %s", self._base_url, exc)
            raise NetworkError("Request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s: %s", self._base_url, exc)
            raise NetworkError(str(exc)) from exc

        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise RateLimitedError(_retry_after_ms(response.headers.get("retry-after")))
        if not response.is_success:
            raise ApiError(response.status_code, response.text or "unknown error")

        try:
            body = response.json()
        except ValueError as exc:
            raise ResponseParseError(f"Failed to parse API response: {exc}") from exc
        return _parse_response(body)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AnthropicClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _parse_response(body: Any) -> GenerationResponse:
    if not isinstance(body, dict):
        raise ResponseParseError("Failed to parse API response: body is not an object")
    content = body.get("content")
    if not isinstance(content, list):
        raise ResponseParseError("Failed to parse API response: missing content list")
    text = ""
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = str(block.get("text", ""))
            break
    usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
    return GenerationResponse(
        text=text,
        model=str(body.get("model", "")),
        input_tokens=_int_or_zero(usage.get("input_tokens")),
        output_tokens=_int_or_zero(usage.get("output_tokens")),
        stop_reason=body.get("stop_reason"),
        response_id=body.get("id"),
    )


def _retry_after_ms(raw: str | None) -> int:
    if raw is None:
        return DEFAULT_RETRY_AFTER_MS
    try:
        seconds = float(raw.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER_MS
    if seconds < 0:
        return DEFAULT_RETRY_AFTER_MS
    return int(seconds * 1000)


def _int_or_zero(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)
