"""Job engine: drives one job through its lifecycle and returns the audit record."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from wolram.orchestrator.audit import AuditError, AuditRecord, check_audit_invariants
from wolram.orchestrator.backend.base import GenerationBackend, GenerationRequest
from wolram.orchestrator.failure_classifier import (
    FailureClassification,
    OutputCheck,
    classify_generation_error,
    classify_output,
)
from wolram.orchestrator.models import (
    SUCCESS,
    CapabilityTier,
    Complete,
    Failure,
    Job,
    JobOutcome,
    Retry,
    Stage,
    Transition,
)
from wolram.orchestrator.pricing import estimate_cost_usd, tier_for_model
from wolram.orchestrator.recording import JobSummary, ResultRecorder
from wolram.orchestrator.retry_policy import retry_delay_ms
from wolram.orchestrator.routing import (
    DEFAULT_ROUTING_TABLE,
    RoutingError,
    RoutingTable,
    resolve_capability,
    validate_decision,
)
from wolram.orchestrator.state_machine import evaluate, is_finished

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY_MS = 60_000
DEFAULT_MAX_TOKENS = 4096

TransitionObserver = Callable[[Job, Transition], None]


class JobValidationError(ValueError):
    """Job preconditions checked in INIT do not hold."""


@dataclass(slots=True)
class StageResult:
    """Outcome of one stage's work plus side-channel data for the engine."""

    outcome: JobOutcome
    retry_after_ms: int | None = None
    commit_ref: str | None = None
    recording_error: str | None = None


class JobEngine:
    """Runs the stage work for a job and feeds outcomes to the state machine.

    The engine holds no per-job state between runs, so one instance can run
    many jobs one after another. Transition rules live in ``state_machine``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: GenerationBackend,
        recorder: ResultRecorder | None = None,
        llm_routing: bool = False,
        tier_override: CapabilityTier | None = None,
        routing_table: RoutingTable = DEFAULT_ROUTING_TABLE,
        max_delay_ms: int | None = DEFAULT_MAX_DELAY_MS,
        honor_rate_limit_hint: bool = True,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        output_check: OutputCheck | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: TransitionObserver | None = None,
    ) -> None:
        self.backend = backend
        self.recorder = recorder
        self.llm_routing = llm_routing
        self.tier_override = tier_override
        self.routing_table = routing_table
        self.max_delay_ms = max_delay_ms
        self.honor_rate_limit_hint = honor_rate_limit_hint
        self.max_tokens = max_tokens
        self.output_check = output_check
        self._sleep = sleep
        self._on_transition = on_transition

    def run(self, job: Job) -> AuditRecord:
        """Drive ``job`` until the state machine completes it."""

        commit_ref: str | None = None
        recording_error: str | None = None
        while not is_finished(job):
            logger.debug("Job %s entering %s", job.identifier, job.stage)
            result = self._run_stage(job)
            if job.stage == Stage.END:
                commit_ref = result.commit_ref
                recording_error = result.recording_error

            transition = evaluate(job, result.outcome)
            if self._on_transition is not None:
                self._on_transition(job, transition)

            if isinstance(transition, Retry):
                self._backoff(job, transition, retry_after_ms=result.retry_after_ms)
            elif isinstance(transition, Complete):
                break

        logger.info(
            "Job %s finished status=%s retries=%d/%s",
            job.identifier,
            job.status.value,
            job.retry_count,
            job.retry_limits.max_retries,
        )
        return AuditRecord.from_job(
            job,
            commit_ref=commit_ref,
            recording_error=recording_error,
        )

    def _run_stage(self, job: Job) -> StageResult:
        if job.stage == Stage.INIT:
            return self._init(job)
        if job.stage == Stage.DEFINE_AGENT:
            return self._define_agent(job)
        if job.stage == Stage.PROCESS:
            return self._process(job)
        return self._end(job)

    def _init(self, job: Job) -> StageResult:
        try:
            validate_job(job)
        except JobValidationError as error:
            logger.warning("Job %s failed validation: %s", job.identifier, error)
            return StageResult(outcome=Failure.business(str(error)))
        return StageResult(outcome=SUCCESS)

    def _define_agent(self, job: Job) -> StageResult:
        try:
            decision = resolve_capability(
                job.description,
                classifier=self.backend if self.llm_routing else None,
                tier_override=self.tier_override,
                table=self.routing_table,
            )
            capability = validate_decision(decision, self.routing_table)
            job.assign_capability(capability, source=decision.source)
        except (RoutingError, ValueError) as error:
            logger.warning("Job %s routing failed: %s", job.identifier, error)
            return StageResult(outcome=Failure.business(f"Routing failed: {error}"))

        if decision.input_tokens or decision.output_tokens:
            classifier_tier = tier_for_model(decision.classifier_model or "")
            self._add_usage(
                job,
                tier=classifier_tier or CapabilityTier.HAIKU,
                input_tokens=decision.input_tokens,
                output_tokens=decision.output_tokens,
            )
        logger.info(
            "Job %s routed: skill=%s tier=%s source=%s",
            job.identifier,
            capability.skill,
            capability.tier.value,
            decision.source,
        )
        return StageResult(outcome=SUCCESS)

    def _process(self, job: Job) -> StageResult:
        capability = job.assigned_capability
        if capability is None:
            return StageResult(outcome=Failure.system("No capability assigned"))

        request = GenerationRequest(
            prompt=build_process_prompt(job.description, skill=capability.skill),
            model=capability.tier.api_model,
            max_tokens=self.max_tokens,
        )
        try:
            response = self.backend.send(request)
        except Exception as error:  # noqa: BLE001
            classification = classify_generation_error(error)
            self._log_failure(job, classification)
            return StageResult(
                outcome=classification.failure,
                retry_after_ms=classification.retry_after_ms,
            )

        self._add_usage(
            job,
            tier=capability.tier,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )
        rejected = classify_output(response.text, self.output_check)
        if rejected is not None:
            self._log_failure(job, rejected)
            return StageResult(outcome=rejected.failure)

        job.set_result(response.text)
        return StageResult(outcome=SUCCESS)

    def _end(self, job: Job) -> StageResult:
        commit_ref: str | None = None
        recording_error: str | None = None
        if self.recorder is not None:
            try:
                commit_ref = self.recorder.record(JobSummary.from_job(job))
            except Exception as error:  # noqa: BLE001
                recording_error = str(error) or type(error).__name__
                logger.warning("Job %s result recording failed: %s", job.identifier, error)
            else:
                logger.info("Job %s recorded as %s", job.identifier, commit_ref)

        try:
            check_audit_invariants(job)
        except AuditError as error:
            logger.error("Job %s audit record cannot be built: %s", job.identifier, error)
            return StageResult(
                outcome=Failure.system(str(error)),
                commit_ref=commit_ref,
                recording_error=recording_error,
            )
        return StageResult(
            outcome=SUCCESS,
            commit_ref=commit_ref,
            recording_error=recording_error,
        )

    def _backoff(self, job: Job, transition: Retry, *, retry_after_ms: int | None) -> None:
        delay_ms = retry_delay_ms(
            attempt=job.retry_count,
            base_delay_ms=job.retry_limits.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            retry_after_ms=retry_after_ms,
            honor_retry_after=self.honor_rate_limit_hint,
        )
        logger.warning(
            "Job %s retry %d/%s: %s (waiting %dms)",
            job.identifier,
            job.retry_count,
            job.retry_limits.max_retries,
            transition.reason,
            delay_ms,
        )
        if delay_ms > 0:
            self._sleep(delay_ms / 1000)

    def _add_usage(
        self,
        job: Job,
        *,
        tier: CapabilityTier,
        input_tokens: int,
        output_tokens: int,
    ) -> None:
        job.add_usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=estimate_cost_usd(
                tier=tier,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            ),
        )

    def _log_failure(self, job: Job, classification: FailureClassification) -> None:
        logger.info(
            "Job %s PROCESS attempt failed: kind=%s reason=%s message=%s",
            job.identifier,
            classification.kind.value,
            classification.reason_code,
            classification.failure.message,
        )


def validate_job(job: Job) -> None:
    """Raise ``JobValidationError`` unless the job can enter the lifecycle."""

    if not job.identifier.strip():
        raise JobValidationError("Job identifier must not be empty")
    if not job.description.strip():
        raise JobValidationError("Job description must not be empty")
    limits = job.retry_limits
    if isinstance(limits.max_retries, bool) or not isinstance(limits.max_retries, int):
        raise JobValidationError(f"max_retries must be an integer, got {limits.max_retries!r}")
    if limits.max_retries < 0:
        raise JobValidationError(f"max_retries must be >= 0, got {limits.max_retries}")
    if isinstance(limits.base_delay_ms, bool) or not isinstance(limits.base_delay_ms, int):
        raise JobValidationError(
            f"base_delay_ms must be an integer, got {limits.base_delay_ms!r}",
        )
    if limits.base_delay_ms < 0:
        raise JobValidationError(f"base_delay_ms must be >= 0, got {limits.base_delay_ms}")


def build_process_prompt(description: str, *, skill: str) -> str:
    return (
        f"You are an AI coding assistant working as a {skill.replace('_', ' ')} specialist.\n"
        "Please perform the following task:\n"
        "\n"
        f"{description.strip()}"
    )
