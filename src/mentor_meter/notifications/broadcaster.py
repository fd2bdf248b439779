"""Per-subscriber realtime fan-out.

Messages go to channel ``user-{user_id}`` through the realtime service's HTTP
broadcast endpoint. Publishing never blocks or fails the caller; delivery
errors are logged and dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from mentor_meter.common.config import MentorSettings
from mentor_meter.common.models import utcnow

logger = logging.getLogger(__name__)

CONVERSATION_UPDATE = "conversation_update"
USAGE_UPDATE = "usage_update"


@dataclass
class Notification:
    user_id: str
    payload: dict[str, Any]
    event: str = CONVERSATION_UPDATE

    @property
    def channel(self) -> str:
        return f"user-{self.user_id}"


class Broadcaster:
    """Fire-and-forget publisher for subscriber notifications."""

    def __init__(self, settings: MentorSettings):
        self.settings = settings
        self._http_client: Optional[httpx.AsyncClient] = None
        self._tasks: set[asyncio.Task] = set()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    def publish(self, notification: Notification) -> asyncio.Task:
        """Schedule delivery on the running loop and return immediately."""
        task = asyncio.create_task(self._send(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def publish_all(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            self.publish(notification)

    def build_message(self, notification: Notification) -> dict[str, Any]:
        return {
            "topic": notification.channel,
            "event": notification.event,
            "payload": {**notification.payload, "timestamp": utcnow().isoformat()},
        }

    async def _send(self, notification: Notification) -> None:
        message = self.build_message(notification)
        if not self.settings.realtime_url:
            logger.info(
                "Broadcast %s on %s (no realtime endpoint configured)",
                notification.payload.get("type"), notification.channel,
                extra={"user_id": notification.user_id},
            )
            return

        headers = {"Content-Type": "application/json"}
        if self.settings.realtime_api_key:
            headers["apikey"] = self.settings.realtime_api_key
            headers["Authorization"] = f"Bearer {self.settings.realtime_api_key}"
        try:
            resp = await self._get_http_client().post(
                self.settings.realtime_url,
                json={"messages": [message]},
                headers=headers,
                timeout=self.settings.broadcast_timeout_seconds,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Broadcast to %s failed: %s", notification.channel, e,
                extra={"user_id": notification.user_id},
            )
        except Exception:
            logger.exception(
                "Unexpected broadcast failure on %s", notification.channel,
                extra={"user_id": notification.user_id},
            )

    async def drain(self) -> None:
        """Wait for in-flight publishes (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
