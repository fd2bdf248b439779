"""Allow/warn/block decisions for conversation starts and document generation.

``evaluate`` is pure: the caller resolves the subscription, tier and current
usage beforehand and passes them in. A denial is returned as data with a
reason code; nothing here raises for a business outcome.

Block reasons, checked in this order:
    no_subscription, subscription_canceled, subscription_unpaid,
    subscription_expired, subscription_inactive, trial_ended,
    sessions_exceeded, minutes_exceeded, rate_limit_exceeded,
    documents_exceeded, tokens_exceeded

Warnings:
    last_session, approaching_minute_limit, minutes_may_be_truncated,
    approaching_document_limit, approaching_token_limit,
    tokens_may_be_insufficient
"""

import math
from dataclasses import dataclass
from typing import Optional

from mentor_meter.entitlements.schemas import (
    ActionType,
    EntitlementResult,
    TierInfo,
    UpgradeSuggestion,
)
from mentor_meter.entitlements.tiers import (
    RESOURCES,
    TierDefinition,
    calculate_overage,
    is_unlimited,
    upgrade_suggestion,
)

ACTIVE_STATUSES = frozenset({"active", "trialing"})

STATUS_REASONS = {
    "canceled": "subscription_canceled",
    "unpaid": "subscription_unpaid",
    "incomplete_expired": "subscription_expired",
}

# Warning thresholds on remaining quota.
LAST_SESSION_REMAINING = 1
LOW_MINUTES_REMAINING = 30
LOW_DOCUMENTS_REMAINING = 2
LOW_TOKENS_REMAINING = 5000

MESSAGES = {
    "no_subscription": "An active subscription is required.",
    "subscription_canceled": "Your subscription has been canceled.",
    "subscription_unpaid": "Your subscription payment is overdue.",
    "subscription_expired": "Your subscription has expired.",
    "subscription_inactive": "Your subscription is not active.",
    "trial_ended": "Your trial has ended.",
    "sessions_exceeded": "You have used all sessions for this billing period.",
    "minutes_exceeded": "You have used all conversation minutes for this billing period.",
    "rate_limit_exceeded": "Too many conversations started in the last hour.",
    "documents_exceeded": "You have reached your document limit for this billing period.",
    "tokens_exceeded": "You have used all generation tokens for this billing period.",
    "last_session": "This is your last session for this billing period.",
    "approaching_minute_limit": "You have {minutes} minutes remaining this billing period.",
    "minutes_may_be_truncated": (
        "Only {minutes} minutes remain; the session may end before the planned {estimate} minutes."
    ),
    "approaching_document_limit": "You have {documents} documents remaining this billing period.",
    "approaching_token_limit": "You have {tokens} tokens remaining this billing period.",
    "tokens_may_be_insufficient": (
        "Only {tokens} tokens remain; the document may need about {estimate}."
    ),
}


@dataclass(frozen=True)
class Estimate:
    """Caller-supplied size of the action. A zero or missing value falls back
    to the tier's minutes per session or the default token estimate."""

    minutes: Optional[int] = None
    tokens: Optional[int] = None
    document_type: Optional[str] = None

    @classmethod
    def from_request(
        cls,
        minutes: Optional[float] = None,
        tokens: Optional[int] = None,
        document_type: Optional[str] = None,
    ) -> "Estimate":
        return cls(
            minutes=math.ceil(minutes) if minutes is not None else None,
            tokens=tokens,
            document_type=document_type,
        )


def status_block(status: Optional[str], trial_ended: bool = False) -> Optional[str]:
    """Reason a subscription status alone blocks every action, or None."""
    if status is None:
        return "no_subscription"
    if status in STATUS_REASONS:
        return STATUS_REASONS[status]
    if status not in ACTIVE_STATUSES:
        return "subscription_inactive"
    if status == "trialing" and trial_ended:
        return "trial_ended"
    return None


def compute_remaining(
    limits: dict[str, Optional[int]], usage: dict[str, int],
) -> dict[str, Optional[int]]:
    """limit - used per resource, floored at 0; None stays None (unlimited)."""
    return {
        resource: None if is_unlimited(limits[resource]) else max(0, limits[resource] - usage.get(resource, 0))
        for resource in RESOURCES
    }


def _tier_info(tier: TierDefinition) -> TierInfo:
    return TierInfo(
        id=tier.id,
        name=tier.name,
        minutes_per_session=tier.minutes_per_session,
        team_access=tier.team_access,
        custom_personas=tier.custom_personas,
        unlimited_tokens=tier.unlimited_tokens,
    )


def _blocked(
    action_type: ActionType,
    reasons: list[str],
    tier_id: Optional[str],
    **fields,
) -> EntitlementResult:
    suggestion = upgrade_suggestion(tier_id)
    return EntitlementResult(
        allowed=False,
        reason=reasons[0],
        action_type=action_type,
        messages=[MESSAGES[r] for r in reasons] + fields.pop("messages", []),
        upgrade_required=True,
        upgrade_suggestion=UpgradeSuggestion(**suggestion) if suggestion else None,
        **fields,
    )


def evaluate(
    action_type: ActionType,
    subscription_status: Optional[str],
    tier: Optional[TierDefinition] = None,
    usage: Optional[dict[str, int]] = None,
    estimate: Estimate = Estimate(),
    trial_ended: bool = False,
    recent_starts: int = 0,
    max_starts_per_hour: Optional[int] = None,
    default_tokens: int = 2000,
) -> EntitlementResult:
    """Decide whether ``action_type`` may proceed.

    ``tier`` and ``usage`` come from the subscriber's current usage period;
    when either is missing the subscriber is treated as having no
    subscription. ``recent_starts`` is the number of conversations started
    in the trailing hour.
    """
    reason = status_block(subscription_status, trial_ended)
    if reason is None and (tier is None or usage is None):
        reason = "no_subscription"
    if reason is not None:
        return _blocked(
            action_type, [reason], tier.id if tier else None,
            subscription_status=subscription_status,
        )

    limits = tier.limits()
    remaining = compute_remaining(limits, usage)
    blocks: list[str] = []
    warnings: list[str] = []
    values = {resource: remaining[resource] for resource in RESOURCES}

    if action_type == "conversation":
        estimate_minutes = estimate.minutes or tier.minutes_per_session
        values["estimate"] = estimate_minutes
        sessions = remaining["sessions"]
        minutes = remaining["minutes"]

        if sessions is not None and sessions <= 0:
            blocks.append("sessions_exceeded")
        if minutes is not None and minutes < estimate_minutes:
            if minutes <= 0:
                blocks.append("minutes_exceeded")
            else:
                warnings.append("minutes_may_be_truncated")
        if max_starts_per_hour is not None and recent_starts >= max_starts_per_hour:
            blocks.append("rate_limit_exceeded")

        if sessions == LAST_SESSION_REMAINING:
            warnings.insert(0, "last_session")
        if minutes is not None and 0 < minutes <= LOW_MINUTES_REMAINING:
            warnings.insert(1 if "last_session" in warnings else 0, "approaching_minute_limit")
    else:
        estimate_tokens = estimate.tokens or default_tokens
        values["estimate"] = estimate_tokens
        documents = remaining["documents"]
        tokens = None if tier.unlimited_tokens else remaining["tokens"]

        if documents is not None and documents <= 0:
            blocks.append("documents_exceeded")
        if tokens is not None and tokens < estimate_tokens:
            if tokens <= 0:
                blocks.append("tokens_exceeded")
            else:
                warnings.append("tokens_may_be_insufficient")

        low = []
        if documents is not None and 0 < documents <= LOW_DOCUMENTS_REMAINING:
            low.append("approaching_document_limit")
        if tokens is not None and 0 < tokens <= LOW_TOKENS_REMAINING:
            low.append("approaching_token_limit")
        warnings = low + warnings

    snapshot = {
        "subscription_status": subscription_status,
        "current_usage": dict(usage),
        "limits": limits,
        "remaining": remaining,
        "overage": calculate_overage(limits, usage),
        "unlimited": tier.unlimited_resources(),
        "warnings": warnings,
        "tier_info": _tier_info(tier),
    }
    warning_messages = [MESSAGES[w].format(**values) for w in warnings]

    if blocks:
        return _blocked(action_type, blocks, tier.id, messages=warning_messages, **snapshot)

    return EntitlementResult(
        allowed=True,
        action_type=action_type,
        messages=warning_messages,
        **snapshot,
    )
