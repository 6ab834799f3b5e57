"""Token cost estimation per capability tier."""

from __future__ import annotations

import os
from dataclasses import dataclass

from wolram.orchestrator.models import CapabilityTier

PRICING_ENV = "WOLRAM_LLM_PRICING"


@dataclass(slots=True)
class TierPricing:
    """Input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


DEFAULT_PRICING: dict[CapabilityTier, TierPricing] = {
    CapabilityTier.HAIKU: TierPricing(input_per_1m=1.0, output_per_1m=5.0),
    CapabilityTier.SONNET: TierPricing(input_per_1m=3.0, output_per_1m=15.0),
    CapabilityTier.OPUS: TierPricing(input_per_1m=15.0, output_per_1m=75.0),
}


def estimate_cost_usd(
    *,
    tier: CapabilityTier,
    input_tokens: int,
    output_tokens: int,
) -> float:
    """Estimate the cost of one call from its token usage."""

    pricing = pricing_for(tier)
    return (input_tokens / 1_000_000) * pricing.input_per_1m + (
        output_tokens / 1_000_000
    ) * pricing.output_per_1m


def pricing_for(tier: CapabilityTier) -> TierPricing:
    overrides = _parse_pricing_mapping(os.getenv(PRICING_ENV, ""))
    return overrides.get(tier, DEFAULT_PRICING[tier])


def tier_for_model(model: str) -> CapabilityTier | None:
    """Reverse lookup of the tier behind an API model identifier."""

    for tier in CapabilityTier:
        if tier.api_model == model:
            return tier
    lowered = model.lower()
    for tier in CapabilityTier:
        if tier.value in lowered:
            return tier
    return None


def _parse_pricing_mapping(raw: str) -> dict[CapabilityTier, TierPricing]:
    """Parse `WOLRAM_LLM_PRICING` overrides.

    Format: `tier:input_per_1m:output_per_1m`, entries separated by `,`.
    Malformed or negative entries are skipped.
    """

    parsed: dict[CapabilityTier, TierPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 3:
            continue
        tier_raw, input_price, output_price = parts
        try:
            tier = CapabilityTier.parse(tier_raw)
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        if input_per_1m < 0 or output_per_1m < 0:
            continue
        parsed[tier] = TierPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m)
    return parsed
