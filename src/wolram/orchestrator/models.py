"""Domain models for the job lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4

from wolram.clock import utc_now


class Stage(str, Enum):
    """Lifecycle positions, entered in declaration order on the success path."""

    INIT = "INIT"
    DEFINE_AGENT = "DEFINE_AGENT"
    PROCESS = "PROCESS"
    END = "END"

    def __str__(self) -> str:
        return self.value


class JobStatus(str, Enum):
    """Coarse job status derived from stage and terminal outcome."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class FailureKind(str, Enum):
    """Failure classes used by the retry policy.

    Both kinds are retryable in the PROCESS stage; they only differ in what
    broke: the produced output (business) or the infrastructure (system).
    """

    BUSINESS = "business"
    SYSTEM = "system"


class CapabilityTier(str, Enum):
    """Cost/quality level selected for the generation call."""

    HAIKU = "haiku"
    SONNET = "sonnet"
    OPUS = "opus"

    @property
    def api_model(self) -> str:
        return _TIER_MODELS[self]

    @classmethod
    def parse(cls, value: str) -> CapabilityTier:
        normalized = value.strip().lower()
        for tier in cls:
            if tier.value == normalized:
                return tier
        raise ValueError(
            f"Unsupported capability tier: {value!r}. Use one of "
            f"{tuple(tier.value for tier in cls)}.",
        )


_TIER_MODELS: dict[CapabilityTier, str] = {
    CapabilityTier.HAIKU: "claude-haiku-4-5-20251001",
    CapabilityTier.SONNET: "claude-sonnet-4-5-20250929",
    CapabilityTier.OPUS: "claude-opus-4-6",
}

DEFAULT_TIER = CapabilityTier.SONNET


@dataclass(frozen=True, slots=True)
class Success:
    """Stage outcome: the stage work succeeded."""

    def __str__(self) -> str:
        return "Success"


@dataclass(frozen=True, slots=True)
class Failure:
    """Stage outcome: the stage work failed with a classified reason."""

    kind: FailureKind
    message: str

    def __str__(self) -> str:
        label = "Business" if self.kind == FailureKind.BUSINESS else "System"
        return f"{label} failure: {self.message}"

    @classmethod
    def business(cls, message: str) -> Failure:
        return cls(kind=FailureKind.BUSINESS, message=message)

    @classmethod
    def system(cls, message: str) -> Failure:
        return cls(kind=FailureKind.SYSTEM, message=message)


SUCCESS = Success()

JobOutcome = Success | Failure


@dataclass(frozen=True, slots=True)
class Next:
    """Advance to ``stage``."""

    stage: Stage


@dataclass(frozen=True, slots=True)
class Retry:
    """Re-enter ``stage`` after a backoff because of ``reason``."""

    stage: Stage
    reason: Failure


@dataclass(frozen=True, slots=True)
class Complete:
    """The job reached its terminal outcome."""

    outcome: JobOutcome

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Success)


Transition = Next | Retry | Complete


@dataclass(frozen=True, slots=True)
class RetryLimits:
    """Retry budget fixed at job creation."""

    max_retries: int = 3
    base_delay_ms: int = 1000


@dataclass(frozen=True, slots=True)
class AssignedCapability:
    """Routing decision stored on the job once DEFINE_AGENT completes."""

    tier: CapabilityTier
    skill: str


@dataclass(slots=True)
class Job:
    """One unit of orchestrated work, mutable for the duration of one run."""

    description: str
    retry_limits: RetryLimits = field(default_factory=RetryLimits)
    identifier: str = field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.PENDING
    stage: Stage = Stage.INIT
    stage_history: list[Stage] = field(default_factory=list)
    retry_count: int = 0
    assigned_capability: AssignedCapability | None = None
    routing_source: str | None = None
    result_text: str | None = None
    last_failure: Failure | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def assign_capability(self, capability: AssignedCapability, *, source: str) -> None:
        """Set the routing decision; it cannot be replaced once set."""

        if self.assigned_capability is not None:
            raise ValueError(f"Job {self.identifier} already has an assigned capability.")
        self.assigned_capability = capability
        self.routing_source = source
        self.touch()

    def set_result(self, text: str) -> None:
        self.result_text = text
        self.touch()

    def add_usage(self, *, input_tokens: int, output_tokens: int, cost_usd: float) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.estimated_cost_usd += cost_usd
        self.touch()
