"""Lifecycle transition function: INIT -> DEFINE_AGENT -> PROCESS -> END.

`evaluate` is the only place that moves a job between stages. It performs no
I/O and never sleeps; the engine owns every side effect and feeds stage
outcomes back in.

Only PROCESS is retry-eligible. INIT and DEFINE_AGENT are deterministic for a
fixed description, and END failures mean the audit record could not be built,
so all three go straight to ``Complete(Failure)``. The retry budget is shared
by the whole job: ``retry_count`` is never reset between stages.
"""

from __future__ import annotations

from wolram.orchestrator.models import (
    Complete,
    Failure,
    Job,
    JobOutcome,
    JobStatus,
    Next,
    Retry,
    Stage,
    Success,
    Transition,
)
from wolram.orchestrator.retry_policy import should_retry

_SUCCESSOR: dict[Stage, Stage] = {
    Stage.INIT: Stage.DEFINE_AGENT,
    Stage.DEFINE_AGENT: Stage.PROCESS,
    Stage.PROCESS: Stage.END,
}

RETRYABLE_STAGES = frozenset({Stage.PROCESS})


class TerminalJobError(RuntimeError):
    """Raised when a job that already completed is evaluated again."""


def evaluate(job: Job, outcome: JobOutcome) -> Transition:
    """Record the current stage, compute the transition and apply it to ``job``."""

    if is_finished(job):
        raise TerminalJobError(f"Job {job.identifier} already completed with {job.status.value}.")

    job.stage_history.append(job.stage)
    transition = _transition_for(job, outcome)
    _apply(job, transition)
    return transition


def _transition_for(job: Job, outcome: JobOutcome) -> Transition:
    if isinstance(outcome, Success):
        if job.stage == Stage.END:
            return Complete(outcome)
        return Next(_SUCCESSOR[job.stage])

    if job.stage in RETRYABLE_STAGES and should_retry(
        job.retry_count,
        job.retry_limits.max_retries,
    ):
        return Retry(stage=job.stage, reason=outcome)
    return Complete(outcome)


def _apply(job: Job, transition: Transition) -> None:
    if isinstance(transition, Next):
        job.stage = transition.stage
        # Entering END means generation succeeded; END evaluation confirms or fails it.
        job.status = (
            JobStatus.COMPLETED if transition.stage == Stage.END else JobStatus.IN_PROGRESS
        )
    elif isinstance(transition, Retry):
        job.retry_count += 1
        job.last_failure = transition.reason
        job.status = JobStatus.IN_PROGRESS
    else:
        if isinstance(transition.outcome, Failure):
            job.last_failure = transition.outcome
            job.status = JobStatus.FAILED
        else:
            job.status = JobStatus.COMPLETED
        job.stage = Stage.END
    job.touch()


def is_finished(job: Job) -> bool:
    """True once ``evaluate`` has returned ``Complete`` for this job."""

    if job.status == JobStatus.FAILED:
        return True
    return job.stage == Stage.END and job.stage_history[-1:] == [Stage.END]
