"""Immutable audit record produced for every finished job."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from wolram.clock import from_iso, utc_now
from wolram.orchestrator.models import CapabilityTier, FailureKind, Job, JobStatus, Stage

AUDIT_SCHEMA_VERSION = 1


class AuditError(RuntimeError):
    """The job's final state cannot be turned into an audit record."""


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """Field-for-field snapshot of a finished job. Key order is part of the contract."""

    schema_version: int
    job_id: str
    description: str
    status: JobStatus
    stage_history: tuple[Stage, ...]
    retry_count: int
    max_retries: int
    base_delay_ms: int
    skill: str | None
    capability_tier: CapabilityTier | None
    model: str | None
    routing_source: str | None
    result_text: str | None
    failure_kind: FailureKind | None
    failure_message: str | None
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    commit_ref: str | None
    recording_error: str | None
    started_at: datetime
    completed_at: datetime
    duration_ms: int

    @classmethod
    def from_job(
        cls,
        job: Job,
        *,
        commit_ref: str | None = None,
        recording_error: str | None = None,
        completed_at: datetime | None = None,
    ) -> AuditRecord:
        """Build the record from a job whose status is terminal."""

        check_audit_invariants(job)
        finished = completed_at or utc_now()
        capability = job.assigned_capability
        failure = job.last_failure if job.status == JobStatus.FAILED else None
        return cls(
            schema_version=AUDIT_SCHEMA_VERSION,
            job_id=job.identifier,
            description=job.description,
            status=job.status,
            stage_history=tuple(job.stage_history),
            retry_count=job.retry_count,
            max_retries=job.retry_limits.max_retries,
            base_delay_ms=job.retry_limits.base_delay_ms,
            skill=capability.skill if capability else None,
            capability_tier=capability.tier if capability else None,
            model=capability.tier.api_model if capability else None,
            routing_source=job.routing_source,
            result_text=job.result_text,
            failure_kind=failure.kind if failure else None,
            failure_message=failure.message if failure else None,
            input_tokens=job.input_tokens,
            output_tokens=job.output_tokens,
            estimated_cost_usd=round(job.estimated_cost_usd, 6),
            commit_ref=commit_ref,
            recording_error=recording_error,
            started_at=job.created_at,
            completed_at=finished,
            duration_ms=max(int((finished - job.created_at).total_seconds() * 1000), 0),
        )

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "job_id": self.job_id,
            "description": self.description,
            "status": self.status.value,
            "stage_history": [stage.value for stage in self.stage_history],
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "base_delay_ms": self.base_delay_ms,
            "skill": self.skill,
            "capability_tier": self.capability_tier.value if self.capability_tier else None,
            "model": self.model,
            "routing_source": self.routing_source,
            "result_text": self.result_text,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "failure_message": self.failure_message,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
            "commit_ref": self.commit_ref,
            "recording_error": self.recording_error,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AuditRecord:
        tier = payload.get("capability_tier")
        failure_kind = payload.get("failure_kind")
        return cls(
            schema_version=int(payload["schema_version"]),
            job_id=str(payload["job_id"]),
            description=str(payload["description"]),
            status=JobStatus(payload["status"]),
            stage_history=tuple(Stage(value) for value in payload["stage_history"]),
            retry_count=int(payload["retry_count"]),
            max_retries=int(payload["max_retries"]),
            base_delay_ms=int(payload["base_delay_ms"]),
            skill=payload.get("skill"),
            capability_tier=CapabilityTier(tier) if tier else None,
            model=payload.get("model"),
            routing_source=payload.get("routing_source"),
            result_text=payload.get("result_text"),
            failure_kind=FailureKind(failure_kind) if failure_kind else None,
            failure_message=payload.get("failure_message"),
            input_tokens=int(payload.get("input_tokens", 0)),
            output_tokens=int(payload.get("output_tokens", 0)),
            estimated_cost_usd=float(payload.get("estimated_cost_usd", 0.0)),
            commit_ref=payload.get("commit_ref"),
            recording_error=payload.get("recording_error"),
            started_at=from_iso(payload["started_at"]),
            completed_at=from_iso(payload["completed_at"]),
            duration_ms=int(payload["duration_ms"]),
        )


def check_audit_invariants(job: Job) -> None:
    """Raise ``AuditError`` if the job state is not a valid audit source."""

    if not job.status.is_terminal:
        raise AuditError(f"Job {job.identifier} is not finished (status={job.status.value}).")
    if not job.stage_history:
        raise AuditError(f"Job {job.identifier} has an empty stage history.")
    max_retries = job.retry_limits.max_retries
    # INIT rejects malformed limits, so only an integer budget bounds the retry count.
    if isinstance(max_retries, int) and job.retry_count > max(max_retries, 0):
        raise AuditError(
            f"Job {job.identifier} retry_count={job.retry_count} exceeds "
            f"max_retries={max_retries}.",
        )
    if job.status == JobStatus.COMPLETED and job.assigned_capability is None:
        raise AuditError(f"Completed job {job.identifier} has no assigned capability.")


def write_audit_record(record: AuditRecord, directory: Path) -> Path:
    """Persist the record as ``<job_id>.json`` and return the path."""

    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{record.job_id}.json"
    path.write_text(record.to_json() + "\n", "utf-8")
    return path


def read_audit_record(path: Path) -> AuditRecord:
    return AuditRecord.from_dict(json.loads(path.read_text("utf-8")))
