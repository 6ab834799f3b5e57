from __future__ import annotations

import json
from dataclasses import FrozenInstanceError
from datetime import timedelta

import allure
import pytest

from wolram.orchestrator.audit import (
    AUDIT_SCHEMA_VERSION,
    AuditError,
    AuditRecord,
    check_audit_invariants,
    read_audit_record,
    write_audit_record,
)
from wolram.orchestrator.backend import NetworkError
from wolram.orchestrator.models import JobStatus, Stage

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Audit Trail"),
]


def test_record_is_immutable(make_engine, make_job) -> None:
    engine, _ = make_engine()
    record = engine.run(make_job())

    with pytest.raises(FrozenInstanceError):
        record.status = JobStatus.FAILED  # type: ignore[misc]


def test_record_dict_has_stable_key_order(make_engine, make_job) -> None:
    engine, _ = make_engine()
    payload = engine.run(make_job()).to_dict()

    assert list(payload)[:5] == [
        "schema_version",
        "job_id",
        "description",
        "status",
        "stage_history",
    ]
    assert payload["schema_version"] == AUDIT_SCHEMA_VERSION
    assert payload["stage_history"] == ["INIT", "DEFINE_AGENT", "PROCESS", "END"]
    assert payload["status"] == "completed"
    assert payload["capability_tier"] == "sonnet"


def test_failed_record_carries_failure_details(make_engine, make_job) -> None:
    engine, _ = make_engine([NetworkError("dns")])
    payload = engine.run(make_job(max_retries=0)).to_dict()

    assert payload["status"] == "failed"
    assert payload["failure_kind"] == "system"
    assert payload["failure_message"] == "dns"
    assert payload["result_text"] is None


def test_write_and_read_record(tmp_path, make_engine, make_job) -> None:
    engine, _ = make_engine()
    record = engine.run(make_job())

    path = write_audit_record(record, tmp_path / "audit")

    assert path.name == f"{record.job_id}.json"
    assert json.loads(path.read_text("utf-8"))["job_id"] == record.job_id
    assert read_audit_record(path) == record


def test_duration_is_measured_from_job_creation(make_job) -> None:
    job = make_job()
    job.stage_history.append(Stage.INIT)
    job.status = JobStatus.FAILED

    record = AuditRecord.from_job(job, completed_at=job.created_at + timedelta(seconds=2))

    assert record.duration_ms == 2000


def test_unfinished_job_cannot_be_audited(make_job) -> None:
    job = make_job()
    job.stage_history.append(Stage.INIT)
    job.status = JobStatus.IN_PROGRESS

    with pytest.raises(AuditError, match="not finished"):
        AuditRecord.from_job(job)


def test_completed_job_needs_capability(make_job) -> None:
    job = make_job()
    job.stage_history.extend([Stage.INIT, Stage.DEFINE_AGENT, Stage.PROCESS])
    job.stage = Stage.END
    job.status = JobStatus.COMPLETED

    with pytest.raises(AuditError, match="capability"):
        check_audit_invariants(job)


def test_retry_count_above_budget_is_rejected(make_job) -> None:
    job = make_job(max_retries=1)
    job.stage_history.append(Stage.PROCESS)
    job.status = JobStatus.FAILED
    job.retry_count = 2

    with pytest.raises(AuditError, match="exceeds"):
        check_audit_invariants(job)
