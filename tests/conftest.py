"""Shared test fixtures."""

from __future__ import annotations

import pytest

from wolram.orchestrator.backend import StubGenerationBackend
from wolram.orchestrator.engine import JobEngine
from wolram.orchestrator.models import Job, RetryLimits

_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "WOLRAM_API_KEY",
    "WOLRAM_API_URL",
    "WOLRAM_AUDIT_DIR",
    "WOLRAM_BASE_DELAY_MS",
    "WOLRAM_CONFIG",
    "WOLRAM_DEFAULT_MODEL_TIER",
    "WOLRAM_GIT_RECORDING",
    "WOLRAM_HONOR_RATE_LIMIT_HINT",
    "WOLRAM_LLM_PRICING",
    "WOLRAM_LLM_ROUTING",
    "WOLRAM_MAX_DELAY_MS",
    "WOLRAM_MAX_RETRIES",
    "WOLRAM_REQUEST_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run every test outside any git repo and without wolram env/config."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def make_engine(sleeps):
    """Factory for an engine over a scripted stub backend with captured sleeps."""

    def _make(script=(), **kwargs):
        backend = kwargs.pop("backend", None) or StubGenerationBackend(script)
        engine = JobEngine(backend=backend, sleep=sleeps.append, **kwargs)
        return engine, backend

    return _make


@pytest.fixture()
def make_job():
    def _make(description="fix the bug in login", *, max_retries=3, base_delay_ms=1000):
        return Job(
            description=description,
            retry_limits=RetryLimits(max_retries=max_retries, base_delay_ms=base_delay_ms),
        )

    return _make
