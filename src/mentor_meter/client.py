"""
MentorMeterClient SDK: sync client for mentor-meter.

Used by the application backend to ask whether a subscriber may start a
conversation or generate a document, and to record generated documents.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx


@dataclass
class ClientEntitlementResult:
    """Result of an entitlement check.

    ``error`` is set (and ``reason`` left empty) when the check itself could
    not be completed; callers must not treat that as a quota denial.
    """

    allowed: bool
    reason: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    remaining: dict[str, Optional[int]] = field(default_factory=dict)
    current_usage: dict[str, int] = field(default_factory=dict)
    limits: dict[str, Optional[int]] = field(default_factory=dict)
    upgrade_required: bool = False
    upgrade_suggestion: Optional[dict[str, Any]] = None
    error: str = ""
    code: str = ""


@dataclass
class ClientUsageSummary:
    """Current-period usage returned by the SDK."""

    success: bool
    tier: str = ""
    resources: dict[str, dict[str, Any]] = field(default_factory=dict)
    overage: dict[str, Any] = field(default_factory=dict)
    code: str = ""


class MentorMeterClient:
    """
    Synchronous HTTP client for mentor-meter.

    Can be wrapped in async by consumers; designed for simplicity in sync contexts.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8080",
        api_key: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
    ):
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
        )

    def _admin_headers(self) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["X-Mentor-Api-Key"] = self.api_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Central HTTP method with retry and structured error handling.

        Retries on timeouts, transport errors, 5xx and 429. Other 4xx
        responses return immediately. Returns parsed JSON on success, or a
        dict with ``error`` and ``code`` on failure.
        """
        last_error = None
        for attempt in range(self.max_retries):
            try:
                resp = getattr(self._http, method)(path, **kwargs)
                if resp.status_code >= 500 or resp.status_code == 429:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < self.max_retries - 1:
                        time.sleep(self.retry_backoff_base * (2 ** attempt))
                        continue
                    return {
                        "error": f"Server error: {resp.status_code}",
                        "code": "SERVER_ERROR",
                    }
                if resp.status_code == 404:
                    return {"error": "Not found", "code": "NOT_FOUND"}
                if resp.status_code >= 400:
                    return {
                        "error": f"Client error: {resp.status_code}",
                        "code": "CLIENT_ERROR",
                    }
                return resp.json()
            except httpx.TimeoutException:
                last_error = "timeout"
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except httpx.HTTPError as e:
                last_error = str(e)
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except json.JSONDecodeError:
                return {"error": "Invalid JSON response", "code": "JSON_ERROR"}

        return {"error": f"All {self.max_retries} retries exhausted: {last_error}", "code": "CONNECTION_ERROR"}

    @staticmethod
    def _parse_entitlement(data: dict[str, Any]) -> ClientEntitlementResult:
        if "error" in data and "allowed" not in data:
            return ClientEntitlementResult(
                allowed=False,
                error=data.get("error", ""),
                code=data.get("code", "ERROR"),
            )
        return ClientEntitlementResult(
            allowed=data.get("allowed", False),
            reason=data.get("reason"),
            warnings=data.get("warnings", []),
            messages=data.get("messages", []),
            remaining=data.get("remaining", {}),
            current_usage=data.get("current_usage", {}),
            limits=data.get("limits", {}),
            upgrade_required=data.get("upgrade_required", False),
            upgrade_suggestion=data.get("upgrade_suggestion"),
        )

    # ── Entitlements ──

    def can_start_conversation(
        self,
        user_id: str,
        estimated_minutes: Optional[float] = None,
    ) -> ClientEntitlementResult:
        """Ask whether ``user_id`` may start a conversation now."""
        body: dict[str, Any] = {"user_id": user_id, "action_type": "conversation"}
        if estimated_minutes is not None:
            body["estimated_duration_minutes"] = estimated_minutes
        return self._parse_entitlement(self._request("post", "/entitlements/check", json=body))

    def can_generate_document(
        self,
        user_id: str,
        document_type: Optional[str] = None,
        estimated_tokens: Optional[int] = None,
    ) -> ClientEntitlementResult:
        """Ask whether ``user_id`` may generate a document now."""
        body: dict[str, Any] = {"user_id": user_id, "action_type": "document_generation"}
        if document_type:
            body["document_type"] = document_type
        if estimated_tokens is not None:
            body["estimated_tokens"] = estimated_tokens
        return self._parse_entitlement(self._request("post", "/entitlements/check", json=body))

    # ── Usage ──

    def get_usage_summary(self, user_id: str) -> ClientUsageSummary:
        data = self._request("get", f"/usage/{user_id}", headers=self._admin_headers())
        if "error" in data:
            return ClientUsageSummary(success=False, code=data.get("code", "ERROR"))
        return ClientUsageSummary(
            success=True,
            tier=data.get("tier", ""),
            resources=data.get("resources", {}),
            overage=data.get("overage", {}),
        )

    def record_document(
        self,
        user_id: str,
        document_type: str,
        tokens: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> ClientUsageSummary:
        """Record one generated document and its token spend."""
        body = {
            "user_id": user_id,
            "document_type": document_type,
            "tokens": tokens,
            "metadata": metadata or {},
        }
        data = self._request(
            "post", "/usage/documents", json=body, headers=self._admin_headers(),
        )
        if "error" in data:
            return ClientUsageSummary(success=False, code=data.get("code", "ERROR"))
        return ClientUsageSummary(
            success=True,
            tier=data.get("tier", ""),
            resources=data.get("resources", {}),
            overage=data.get("overage", {}),
        )

    # ── Conversations ──

    def register_conversation(
        self,
        user_id: str,
        provider_conversation_id: str,
        persona: Optional[str] = None,
    ) -> bool:
        """Register a provider conversation so its webhooks are accepted."""
        body = {
            "user_id": user_id,
            "provider_conversation_id": provider_conversation_id,
            "persona": persona,
        }
        data = self._request(
            "post", "/conversations", json=body, headers=self._admin_headers(),
        )
        return "error" not in data

    # ── Lifecycle ──

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()
