"""Tier definitions, upgrade paths and overage rates for mentor subscriptions.

Each paid plan maps to one tier. Limits are per billing period.

Limit semantics:
- ``UNLIMITED`` (``None``) means no ceiling for that resource.
- ``0`` means the tier has no quota for that resource at all.
Callers must never compare a limit against a large integer to detect
"unlimited"; use ``is_unlimited()``.
"""

from dataclasses import dataclass
from typing import Any, Optional

from mentor_meter.common.exceptions import TierNotFoundError

UNLIMITED = None

RESOURCES = ("sessions", "minutes", "documents", "tokens")


@dataclass(frozen=True)
class TierDefinition:
    id: str
    name: str
    sessions_limit: Optional[int]
    minutes_limit: Optional[int]
    documents_limit: Optional[int]
    tokens_limit: Optional[int]
    minutes_per_session: int
    team_access: bool = False
    custom_personas: bool = False
    unlimited_tokens: bool = False

    def limit_for(self, resource: str) -> Optional[int]:
        return getattr(self, f"{resource}_limit")

    def limits(self) -> dict[str, Optional[int]]:
        return {resource: self.limit_for(resource) for resource in RESOURCES}

    def unlimited_resources(self) -> list[str]:
        names = [r for r in RESOURCES if is_unlimited(self.limit_for(r))]
        if self.unlimited_tokens and "tokens" not in names:
            names.append("tokens")
        return names


def is_unlimited(limit: Optional[int]) -> bool:
    return limit is UNLIMITED


# ── Tier table (ordered lowest to highest) ──
TIERS: dict[str, TierDefinition] = {
    "founder_essential": TierDefinition(
        id="founder_essential",
        name="Founder Essential",
        sessions_limit=2,
        minutes_limit=40,
        documents_limit=10,
        tokens_limit=25_000,
        minutes_per_session=20,
    ),
    "founder_companion": TierDefinition(
        id="founder_companion",
        name="Founder Companion",
        sessions_limit=3,
        minutes_limit=75,
        documents_limit=20,
        tokens_limit=50_000,
        minutes_per_session=25,
        custom_personas=True,
    ),
    "growth_partner": TierDefinition(
        id="growth_partner",
        name="Growth Partner",
        sessions_limit=5,
        minutes_limit=150,
        documents_limit=40,
        tokens_limit=100_000,
        minutes_per_session=30,
        team_access=True,
        custom_personas=True,
    ),
    "expert_advisor": TierDefinition(
        id="expert_advisor",
        name="Expert Advisor",
        sessions_limit=8,
        minutes_limit=240,
        documents_limit=UNLIMITED,
        tokens_limit=UNLIMITED,
        minutes_per_session=30,
        team_access=True,
        custom_personas=True,
        unlimited_tokens=True,
    ),
}

TIER_ORDER = list(TIERS)

# ── Upgrade benefits shown when an action is blocked (static, keyed by target tier) ──
UPGRADE_BENEFITS: dict[str, list[str]] = {
    "founder_companion": [
        "1 extra session",
        "35 more minutes",
        "10 more documents",
        "25K more tokens",
        "Custom personas",
    ],
    "growth_partner": [
        "2 extra sessions",
        "75 more minutes",
        "20 more documents",
        "50K more tokens",
        "Team access",
    ],
    "expert_advisor": [
        "3 extra sessions",
        "90 more minutes",
        "Unlimited documents",
        "Unlimited tokens",
    ],
}

# ── Overage pricing (informational, used by usage summaries) ──
OVERAGE_RATES = {
    "minutes": 0.50,          # per minute
    "documents": 5.00,        # per document
    "tokens": 0.50 / 1000,    # per token
}


def get_tier(tier_id: str) -> TierDefinition:
    """Look up a tier definition by id.

    Raises:
        TierNotFoundError: If the tier id is unknown.
    """
    tier = TIERS.get(tier_id.lower())
    if tier is None:
        raise TierNotFoundError(f"Unknown tier: {tier_id}")
    return tier


def resolve_tier_for_price(price_id: str | None, price_tiers: dict[str, str]) -> TierDefinition:
    """Map a billing price id to its tier definition.

    Price ids that are themselves tier ids resolve directly, which keeps
    manually provisioned subscriptions simple.
    """
    if not price_id:
        raise TierNotFoundError("Subscription has no price id")
    tier_id = price_tiers.get(price_id, price_id)
    return get_tier(tier_id)


def next_tier(tier_id: str) -> TierDefinition | None:
    """Return the tier one step above ``tier_id``, or None at the top.

    Unknown or absent tiers (e.g. no subscription) suggest the entry tier's
    successor, matching how plans are sold.
    """
    tier_id = (tier_id or "").lower()
    if tier_id not in TIERS:
        return TIERS[TIER_ORDER[1]]
    index = TIER_ORDER.index(tier_id)
    if index + 1 >= len(TIER_ORDER):
        return None
    return TIERS[TIER_ORDER[index + 1]]


def upgrade_suggestion(tier_id: str) -> dict[str, Any] | None:
    """Static upgrade suggestion for a blocked subscriber on ``tier_id``."""
    target = next_tier(tier_id)
    if target is None:
        return None
    return {
        "tier": target.id,
        "name": target.name,
        "benefits": list(UPGRADE_BENEFITS.get(target.id, [])),
    }


def calculate_overage(
    limits: dict[str, Optional[int]],
    usage: dict[str, int],
) -> dict[str, Any]:
    """Compute per-resource overage and its estimated cost.

    Sessions are never billed as overage; unlimited resources never overrun.
    """
    overage: dict[str, Any] = {}
    total = 0.0
    for resource in RESOURCES:
        limit = limits.get(resource)
        used = usage.get(resource, 0)
        amount = 0 if is_unlimited(limit) else max(0, used - limit)
        cost = round(amount * OVERAGE_RATES.get(resource, 0.0), 2)
        overage[resource] = {"amount": amount, "cost": cost}
        total += cost
    overage["total_cost"] = round(total, 2)
    return overage
