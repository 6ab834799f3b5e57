from __future__ import annotations

import allure
import pytest

from wolram.orchestrator.models import (
    AssignedCapability,
    CapabilityTier,
    Failure,
    FailureKind,
    Job,
    JobStatus,
)

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Domain Models"),
]


def test_capability_tier_parse_is_case_insensitive() -> None:
    assert CapabilityTier.parse(" Opus ") == CapabilityTier.OPUS


def test_capability_tier_parse_rejects_unknown() -> None:
    with pytest.raises(ValueError, match="Unsupported capability tier"):
        CapabilityTier.parse("gpt-4")


def test_each_tier_maps_to_distinct_model() -> None:
    models = {tier.api_model for tier in CapabilityTier}
    assert len(models) == 3


def test_failure_str_names_kind() -> None:
    assert str(Failure.business("bad")) == "Business failure: bad"
    assert Failure.system("down").kind == FailureKind.SYSTEM


def test_new_job_is_pending_at_init() -> None:
    job = Job(description="x")

    assert job.status == JobStatus.PENDING
    assert job.stage_history == []
    assert job.assigned_capability is None
    assert job.identifier != Job(description="x").identifier


def test_capability_can_only_be_assigned_once() -> None:
    job = Job(description="x")
    job.assign_capability(
        AssignedCapability(tier=CapabilityTier.HAIKU, skill="testing"),
        source="keywords",
    )

    with pytest.raises(ValueError, match="already"):
        job.assign_capability(
            AssignedCapability(tier=CapabilityTier.OPUS, skill="testing"),
            source="llm",
        )
    assert job.assigned_capability.tier == CapabilityTier.HAIKU
    assert job.routing_source == "keywords"
