"""mentor-meter configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
}

# Price ids of the three public plans plus the top advisory tier.
_DEFAULT_PRICE_TIER_MAP = json.dumps({
    "price_1Rd8NVD5a0uk1qUEQSEg8jCp": "founder_essential",
    "price_founder_companion": "founder_companion",
    "price_1Rd8NmD5a0uk1qUEF5N4AXbq": "growth_partner",
    "price_1Rd8O4D5a0uk1qUEb76A0qe2": "expert_advisor",
})


class MentorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MENTOR_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/mentor_meter.db"

    # API
    api_title: str = "mentor-meter"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["*"]

    # Provider webhooks
    webhook_secret: str = ""
    webhook_signature_tolerance: int = 300  # seconds
    webhook_timeout_seconds: float = 10.0
    provider_domains: list[str] = [
        "tavus.io",
        "tavusapi.com",
        "webhook.tavus.io",
        "api.tavus.io",
        "tavus.daily.co",
    ]

    # Billing: JSON dict mapping billing price id -> tier id
    price_tier_map: str = _DEFAULT_PRICE_TIER_MAP

    # Entitlements
    max_conversation_starts_per_hour: int = 10
    default_estimated_tokens: int = 2000

    # Realtime broadcast
    realtime_url: str = ""
    realtime_api_key: str = ""
    broadcast_timeout_seconds: float = 5.0

    @property
    def price_tiers(self) -> dict[str, str]:
        """Return the price map as {price_id: tier_id}."""
        try:
            raw = json.loads(self.price_tier_map)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError(
                f"MENTOR_PRICE_TIER_MAP must be valid JSON (e.g. '{{\"price_123\": \"growth_partner\"}}'), "
                f"got: {self.price_tier_map!r}"
            ) from exc
        return {str(k): str(v) for k, v in raw.items()}

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]
        if not self.webhook_secret:
            insecure_fields.append("webhook_secret")

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"MENTOR_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure configuration detected in '{self.environment}' environment. "
                f"Set these environment variables: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure defaults; set MENTOR_API_KEY and MENTOR_WEBHOOK_SECRET "
                "for production (webhook signatures are not enforced without a secret)",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> MentorSettings:
    settings = MentorSettings()
    settings.validate_for_production()
    return settings
