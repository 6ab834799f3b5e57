from __future__ import annotations

import allure
import pytest

from wolram.orchestrator.audit import AuditRecord
from wolram.orchestrator.backend import (
    ApiError,
    GenerationRequest,
    GenerationResponse,
    NetworkError,
    RateLimitedError,
    ResponseParseError,
)
from wolram.orchestrator.engine import JobValidationError, build_process_prompt, validate_job
from wolram.orchestrator.failure_classifier import reject_empty_output
from wolram.orchestrator.models import (
    AssignedCapability,
    CapabilityTier,
    Complete,
    FailureKind,
    JobStatus,
    Next,
    Retry,
    RetryLimits,
    Stage,
)
from wolram.orchestrator.recording import JobSummary, RecordingError
from wolram.orchestrator.routing import ROUTING_SOURCE_KEYWORDS, ROUTING_SOURCE_LLM

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Orchestrator"),
]


class _Recorder:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.summaries: list[JobSummary] = []

    def record(self, summary: JobSummary) -> str:
        self.summaries.append(summary)
        if self.error is not None:
            raise self.error
        return "abc1234"


class _ExplodingBackend:
    def send(self, request: GenerationRequest) -> GenerationResponse:
        raise KeyError("surprise")


class _BrokenClassifierBackend:
    """Raises a non-generation error on the routing call, then answers normally."""

    def __init__(self) -> None:
        self.requests: list[GenerationRequest] = []

    def send(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if len(self.requests) == 1:
            raise KeyError("surprise")
        return GenerationResponse(text="patched", model=request.model)


def test_successful_job_produces_completed_record(make_engine, make_job, sleeps) -> None:
    engine, backend = make_engine(["def login(): ..."])
    job = make_job()

    record = engine.run(job)

    assert isinstance(record, AuditRecord)
    assert record.status == JobStatus.COMPLETED
    assert record.stage_history == (Stage.INIT, Stage.DEFINE_AGENT, Stage.PROCESS, Stage.END)
    assert record.retry_count == 0
    assert record.skill == "bug_fix"
    assert record.capability_tier == CapabilityTier.SONNET
    assert record.model == CapabilityTier.SONNET.api_model
    assert record.routing_source == ROUTING_SOURCE_KEYWORDS
    assert record.result_text == "def login(): ..."
    assert record.failure_kind is None
    assert backend.calls == 1
    assert backend.requests[0].model == CapabilityTier.SONNET.api_model
    assert sleeps == []


def test_process_prompt_carries_skill_and_description(make_engine, make_job) -> None:
    engine, backend = make_engine()
    engine.run(make_job("write tests for the parser"))

    prompt = backend.requests[0].prompt
    assert "testing specialist" in prompt
    assert prompt.endswith("write tests for the parser")


def test_transient_failures_are_retried_with_backoff(make_engine, make_job, sleeps) -> None:
    engine, backend = make_engine([NetworkError("reset"), ApiError(503, "busy"), "ok"])

    record = engine.run(make_job(max_retries=3, base_delay_ms=1000))

    assert record.status == JobStatus.COMPLETED
    assert record.retry_count == 2
    assert record.stage_history == (
        Stage.INIT,
        Stage.DEFINE_AGENT,
        Stage.PROCESS,
        Stage.PROCESS,
        Stage.PROCESS,
        Stage.END,
    )
    assert sleeps == [1.0, 2.0]
    assert backend.calls == 3


def test_exhausted_retries_fail_with_last_failure(make_engine, make_job, sleeps) -> None:
    engine, backend = make_engine([NetworkError("a"), NetworkError("b"), NetworkError("c")])

    record = engine.run(make_job(max_retries=2, base_delay_ms=100))

    assert record.status == JobStatus.FAILED
    assert record.retry_count == 2
    assert record.stage_history.count(Stage.PROCESS) == 3
    assert record.stage_history[-1] == Stage.PROCESS
    assert record.failure_kind == FailureKind.SYSTEM
    assert record.failure_message == "c"
    assert sleeps == [0.1, 0.2]
    assert backend.calls == 3


def test_zero_retry_budget_fails_immediately(make_engine, make_job, sleeps) -> None:
    engine, backend = make_engine([ResponseParseError("garbled")])

    record = engine.run(make_job(max_retries=0))

    assert record.status == JobStatus.FAILED
    assert record.retry_count == 0
    assert record.stage_history == (Stage.INIT, Stage.DEFINE_AGENT, Stage.PROCESS)
    assert sleeps == []
    assert backend.calls == 1


def test_rate_limit_hint_extends_backoff(make_engine, make_job, sleeps) -> None:
    engine, _ = make_engine([RateLimitedError(5000), "ok"])

    record = engine.run(make_job(base_delay_ms=1000))

    assert record.succeeded
    assert sleeps == [5.0]


def test_rate_limit_hint_is_clamped(make_engine, make_job, sleeps) -> None:
    engine, _ = make_engine([RateLimitedError(90_000), "ok"], max_delay_ms=3000)

    engine.run(make_job(base_delay_ms=1000))

    assert sleeps == [3.0]


def test_rate_limit_hint_ignored_when_disabled(make_engine, make_job, sleeps) -> None:
    engine, _ = make_engine([RateLimitedError(5000), "ok"], honor_rate_limit_hint=False)

    engine.run(make_job(base_delay_ms=1000))

    assert sleeps == [1.0]


def test_zero_base_delay_skips_sleep(make_engine, make_job, sleeps) -> None:
    engine, _ = make_engine([NetworkError("x"), "ok"])

    record = engine.run(make_job(base_delay_ms=0))

    assert record.retry_count == 1
    assert sleeps == []


def test_unexpected_backend_exception_becomes_system_failure(
    make_engine,
    make_job,
) -> None:
    engine, _ = make_engine(backend=_ExplodingBackend())

    record = engine.run(make_job(max_retries=1, base_delay_ms=0))

    assert record.status == JobStatus.FAILED
    assert record.failure_kind == FailureKind.SYSTEM
    assert "KeyError" in (record.failure_message or "")
    assert record.retry_count == 1


def test_rejected_output_is_business_failure_and_retried(make_engine, make_job) -> None:
    engine, _ = make_engine(["   ", "real answer"], output_check=reject_empty_output)

    record = engine.run(make_job(base_delay_ms=0))

    assert record.status == JobStatus.COMPLETED
    assert record.retry_count == 1
    assert record.result_text == "real answer"


def test_rejected_output_exhausting_budget_is_business_failure(make_engine, make_job) -> None:
    engine, _ = make_engine(["", ""], output_check=reject_empty_output)

    record = engine.run(make_job(max_retries=1, base_delay_ms=0))

    assert record.status == JobStatus.FAILED
    assert record.failure_kind == FailureKind.BUSINESS


@pytest.mark.parametrize("description", ["", "   "])
def test_invalid_job_fails_in_init_without_backend_calls(
    make_engine,
    make_job,
    description: str,
) -> None:
    engine, backend = make_engine()

    record = engine.run(make_job(description))

    assert record.status == JobStatus.FAILED
    assert record.stage_history == (Stage.INIT,)
    assert record.failure_kind == FailureKind.BUSINESS
    assert record.skill is None
    assert record.capability_tier is None
    assert backend.calls == 0


def test_negative_retry_budget_fails_in_init(make_engine, make_job) -> None:
    engine, backend = make_engine()

    record = engine.run(make_job(max_retries=-1))

    assert record.status == JobStatus.FAILED
    assert record.stage_history == (Stage.INIT,)
    assert "max_retries" in (record.failure_message or "")
    assert backend.calls == 0


def test_llm_routing_uses_classifier_and_counts_usage(make_engine, make_job) -> None:
    engine, backend = make_engine(
        ['{"skill": "testing", "complexity": "simple"}', "tests written"],
        llm_routing=True,
    )

    record = engine.run(make_job("cover the parser"))

    assert record.skill == "testing"
    assert record.capability_tier == CapabilityTier.HAIKU
    assert record.routing_source == ROUTING_SOURCE_LLM
    assert backend.calls == 2
    assert record.input_tokens == sum(
        len(request.prompt.split()) for request in backend.requests
    )
    assert record.estimated_cost_usd > 0


def test_llm_routing_failure_falls_back_to_keywords(make_engine, make_job) -> None:
    engine, backend = make_engine([NetworkError("offline"), "patched"], llm_routing=True)

    record = engine.run(make_job("fix the bug in login"))

    assert record.status == JobStatus.COMPLETED
    assert record.skill == "bug_fix"
    assert record.routing_source == ROUTING_SOURCE_KEYWORDS
    assert record.retry_count == 0
    assert backend.calls == 2


def test_unexpected_classifier_error_falls_back_to_keywords(make_engine, make_job) -> None:
    backend = _BrokenClassifierBackend()
    engine, _ = make_engine(backend=backend, llm_routing=True)

    record = engine.run(make_job("fix the bug in login"))

    assert record.status == JobStatus.COMPLETED
    assert record.skill == "bug_fix"
    assert record.routing_source == ROUTING_SOURCE_KEYWORDS
    assert record.result_text == "patched"
    assert len(backend.requests) == 2
    assert backend.requests[1].model == CapabilityTier.SONNET.api_model


def test_define_agent_failure_yields_failed_record(make_engine, make_job) -> None:
    engine, backend = make_engine()
    job = make_job()
    job.assigned_capability = AssignedCapability(tier=CapabilityTier.OPUS, skill="testing")

    record = engine.run(job)

    assert record.status == JobStatus.FAILED
    assert record.stage_history == (Stage.INIT, Stage.DEFINE_AGENT)
    assert record.failure_kind == FailureKind.BUSINESS
    assert "Routing failed" in (record.failure_message or "")
    assert record.retry_count == 0
    assert record.result_text is None
    assert backend.calls == 0


def test_tier_override_is_applied(make_engine, make_job) -> None:
    engine, backend = make_engine(tier_override=CapabilityTier.OPUS)

    record = engine.run(make_job())

    assert record.capability_tier == CapabilityTier.OPUS
    assert backend.requests[0].model == CapabilityTier.OPUS.api_model


def test_recorder_commit_ref_lands_in_record(make_engine, make_job) -> None:
    recorder = _Recorder()
    engine, _ = make_engine(recorder=recorder)

    record = engine.run(make_job())

    assert record.commit_ref == "abc1234"
    assert record.recording_error is None
    assert recorder.summaries[0].skill == "bug_fix"
    assert recorder.summaries[0].status == JobStatus.COMPLETED.value


def test_recorder_failure_does_not_fail_job(make_engine, make_job) -> None:
    recorder = _Recorder(error=RecordingError("nothing to commit"))
    engine, _ = make_engine(recorder=recorder)

    record = engine.run(make_job())

    assert record.status == JobStatus.COMPLETED
    assert record.commit_ref is None
    assert record.recording_error == "nothing to commit"


def test_recorder_not_called_for_early_failures(make_engine, make_job) -> None:
    recorder = _Recorder()
    engine, _ = make_engine([NetworkError("x")], recorder=recorder)

    engine.run(make_job(max_retries=0))

    assert recorder.summaries == []


def test_observer_sees_every_transition(make_engine, make_job) -> None:
    seen = []
    engine, _ = make_engine(
        [NetworkError("x"), "ok"],
        on_transition=lambda job, transition: seen.append(transition),
    )

    engine.run(make_job(base_delay_ms=0))

    assert [type(transition) for transition in seen] == [Next, Next, Retry, Next, Complete]
    assert seen[-1].succeeded


def test_engine_runs_jobs_independently(make_engine, make_job) -> None:
    engine, _ = make_engine([NetworkError("x")])

    first = engine.run(make_job(max_retries=0))
    second = engine.run(make_job())

    assert first.status == JobStatus.FAILED
    assert second.status == JobStatus.COMPLETED
    assert first.job_id != second.job_id


def test_validate_job_accepts_defaults(make_job) -> None:
    validate_job(make_job())


@pytest.mark.parametrize("max_retries", [True, "3", None, 2.5])
def test_non_integer_retry_budget_fails_in_init(make_engine, make_job, max_retries) -> None:
    engine, backend = make_engine()
    job = make_job()
    job.retry_limits = RetryLimits(max_retries=max_retries, base_delay_ms=10)

    with pytest.raises(JobValidationError, match="max_retries"):
        validate_job(job)

    record = engine.run(job)

    assert record.status == JobStatus.FAILED
    assert record.stage_history == (Stage.INIT,)
    assert record.failure_kind == FailureKind.BUSINESS
    assert "max_retries must be an integer" in (record.failure_message or "")
    assert record.retry_count == 0
    assert backend.calls == 0


def test_non_integer_base_delay_fails_in_init(make_engine, make_job) -> None:
    engine, backend = make_engine()
    job = make_job()
    job.retry_limits = RetryLimits(max_retries=3, base_delay_ms="fast")

    record = engine.run(job)

    assert record.status == JobStatus.FAILED
    assert "base_delay_ms" in (record.failure_message or "")
    assert backend.calls == 0


def test_build_process_prompt() -> None:
    prompt = build_process_prompt("  add logging  ", skill="bug_fix")

    assert "bug fix specialist" in prompt
    assert prompt.endswith("add logging")
