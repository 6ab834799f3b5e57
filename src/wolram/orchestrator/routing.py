"""Skill and capability-tier routing for jobs.

Two independent decisions are made over the job description: which skill the
job represents and which capability tier should run it. Both have a
deterministic keyword scorer; an optional upstream classification through the
generation backend is tried first and the scorer is the fallback on any
failure. A caller-supplied tier override always wins for the tier.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from wolram.orchestrator.backend.base import GenerationBackend, GenerationRequest
from wolram.orchestrator.models import DEFAULT_TIER, AssignedCapability, CapabilityTier

logger = logging.getLogger(__name__)

DEFAULT_SKILL = "code_generation"
SUPPORTED_SKILLS = ("testing", "refactoring", "documentation", "bug_fix", "code_generation")
ROUTING_SOURCE_LLM = "llm"
ROUTING_SOURCE_KEYWORDS = "keywords"
CLASSIFIER_MAX_TOKENS = 256

_COMPLEXITY_TIERS = {
    "simple": CapabilityTier.HAIKU,
    "medium": CapabilityTier.SONNET,
    "complex": CapabilityTier.OPUS,
}
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


class RoutingError(ValueError):
    """Routing produced no usable (tier, skill) pair."""


@dataclass(slots=True)
class RoutingTable:
    """Keyword weights and heuristics used by the deterministic scorer."""

    skill_keywords: tuple[tuple[str, str, int], ...]
    skill_order: tuple[str, ...]
    simple_keywords: tuple[tuple[str, int], ...]
    complex_keywords: tuple[tuple[str, int], ...]
    default_skill: str = DEFAULT_SKILL
    default_tier: CapabilityTier = DEFAULT_TIER
    short_description_chars: int = 20
    short_description_bonus: int = 5
    long_description_chars: int = 100
    long_description_bonus: int = 5
    wordy_description_words: int = 15
    wordy_description_bonus: int = 3
    tier_margin: int = 5

    def __post_init__(self) -> None:
        for keyword, skill, weight in self.skill_keywords:
            if skill not in self.skill_order:
                raise ValueError(f"Keyword {keyword!r} maps to undeclared skill {skill!r}")
            if weight < 0:
                raise ValueError(f"Negative weight for keyword {keyword!r}")
        if self.default_skill not in self.skill_order:
            raise ValueError(f"Default skill {self.default_skill!r} is not declared")


DEFAULT_ROUTING_TABLE = RoutingTable(
    skill_keywords=(
        ("test", "testing", 10),
        ("spec", "testing", 5),
        ("refactor", "refactoring", 10),
        ("clean up", "refactoring", 5),
        ("doc", "documentation", 10),
        ("readme", "documentation", 5),
        ("fix", "bug_fix", 10),
        ("bug", "bug_fix", 10),
        ("debug", "bug_fix", 7),
        ("error", "bug_fix", 5),
        ("implement", "code_generation", 5),
        ("add", "code_generation", 3),
        ("create", "code_generation", 5),
        ("build", "code_generation", 5),
    ),
    skill_order=SUPPORTED_SKILLS,
    simple_keywords=(
        ("rename", 10),
        ("format", 10),
        ("typo", 10),
        ("delete", 7),
        ("remove", 5),
        ("update", 3),
    ),
    complex_keywords=(
        ("architect", 10),
        ("refactor", 8),
        ("redesign", 10),
        ("migrate", 8),
        ("multi-file", 10),
        ("system", 5),
        ("overhaul", 10),
    ),
)


@dataclass(slots=True)
class TierScores:
    simple: int
    complex: int


@dataclass(slots=True)
class RoutingDecision:
    """Resolved (tier, skill) pair plus where it came from."""

    skill: str
    tier: CapabilityTier
    source: str
    classifier_model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    fallback_reason: str | None = None

    def to_capability(self) -> AssignedCapability:
        return AssignedCapability(tier=self.tier, skill=self.skill)


def skill_scores(description: str, table: RoutingTable = DEFAULT_ROUTING_TABLE) -> dict[str, int]:
    """Cumulative keyword weight per skill, in declaration order."""

    lower = description.lower()
    scores = dict.fromkeys(table.skill_order, 0)
    for keyword, skill, weight in table.skill_keywords:
        if keyword in lower:
            scores[skill] += weight
    return scores


def assign_skill(description: str, table: RoutingTable = DEFAULT_ROUTING_TABLE) -> str:
    """Highest-scoring skill; ties go to the first declared skill."""

    best_skill = table.default_skill
    best_score = 0
    for skill, score in skill_scores(description, table).items():
        if score > best_score:
            best_skill = skill
            best_score = score
    return best_skill


def score_tier(description: str, table: RoutingTable = DEFAULT_ROUTING_TABLE) -> TierScores:
    lower = description.lower()
    simple = sum(weight for keyword, weight in table.simple_keywords if keyword in lower)
    complex_ = sum(weight for keyword, weight in table.complex_keywords if keyword in lower)

    if len(description) < table.short_description_chars:
        simple += table.short_description_bonus
    if len(description) > table.long_description_chars:
        complex_ += table.long_description_bonus
    if len(description.split()) > table.wordy_description_words:
        complex_ += table.wordy_description_bonus
    return TierScores(simple=simple, complex=complex_)


def select_tier(description: str, table: RoutingTable = DEFAULT_ROUTING_TABLE) -> CapabilityTier:
    """Pick a tier when one score beats the other by more than the margin."""

    scores = score_tier(description, table)
    if scores.simple > scores.complex + table.tier_margin:
        return CapabilityTier.HAIKU
    if scores.complex > scores.simple + table.tier_margin:
        return CapabilityTier.OPUS
    return table.default_tier


def classify_with_llm(
    backend: GenerationBackend,
    description: str,
    *,
    table: RoutingTable = DEFAULT_ROUTING_TABLE,
) -> RoutingDecision:
    """Ask the fast tier to classify the job; raises on any unusable answer."""

    response = backend.send(
        GenerationRequest(
            prompt=_classification_prompt(description, table),
            model=CapabilityTier.HAIKU.api_model,
            max_tokens=CLASSIFIER_MAX_TOKENS,
        ),
    )
    payload = _parse_classification(response.text)
    skill = payload.get("skill")
    complexity = payload.get("complexity")
    if not isinstance(skill, str) or skill.strip().lower() not in table.skill_order:
        raise RoutingError(f"Classifier returned unknown skill: {skill!r}")
    if not isinstance(complexity, str) or complexity.strip().lower() not in _COMPLEXITY_TIERS:
        raise RoutingError(f"Classifier returned unknown complexity: {complexity!r}")
    return RoutingDecision(
        skill=skill.strip().lower(),
        tier=_COMPLEXITY_TIERS[complexity.strip().lower()],
        source=ROUTING_SOURCE_LLM,
        classifier_model=response.model or CapabilityTier.HAIKU.api_model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )


def resolve_capability(
    description: str,
    *,
    classifier: GenerationBackend | None = None,
    tier_override: CapabilityTier | None = None,
    table: RoutingTable = DEFAULT_ROUTING_TABLE,
) -> RoutingDecision:
    """Resolve (tier, skill): upstream classification first, keyword scoring as fallback."""

    fallback_reason: str | None = None
    if classifier is not None:
        try:
            decision = classify_with_llm(classifier, description, table=table)
        except Exception as error:  # noqa: BLE001
            fallback_reason = str(error) or type(error).__name__
            logger.info("LLM classification failed, using keyword routing: %s", error)
        else:
            if tier_override is not None:
                decision.tier = tier_override
            return decision

    return RoutingDecision(
        skill=assign_skill(description, table),
        tier=tier_override if tier_override is not None else select_tier(description, table),
        source=ROUTING_SOURCE_KEYWORDS,
        fallback_reason=fallback_reason,
    )


def validate_decision(
    decision: RoutingDecision,
    table: RoutingTable = DEFAULT_ROUTING_TABLE,
) -> AssignedCapability:
    """Reject malformed decisions before they are stored on a job."""

    if not isinstance(decision.tier, CapabilityTier):
        raise RoutingError(f"Invalid capability tier: {decision.tier!r}")
    if decision.skill not in table.skill_order:
        raise RoutingError(f"Invalid skill label: {decision.skill!r}")
    return decision.to_capability()


def _classification_prompt(description: str, table: RoutingTable) -> str:
    return (
        "Classify this coding task. Respond with ONLY valid JSON, no other text.\n"
        'Format: {"skill": "<skill>", "complexity": "<complexity>"}\n'
        "\n"
        f"skill must be one of: {', '.join(table.skill_order)}\n"
        f"complexity must be one of: {', '.join(_COMPLEXITY_TIERS)}\n"
        "\n"
        f"Task: {description}"
    )


def _parse_classification(text: str) -> dict[str, object]:
    candidate = text.strip()
    fenced = _FENCED_JSON.search(candidate)
    if fenced is not None:
        candidate = fenced.group(1)
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as error:
        raise RoutingError(f"Failed to parse LLM classification: {error}") from error
    if not isinstance(payload, dict):
        raise RoutingError("Failed to parse LLM classification: expected a JSON object")
    return payload
