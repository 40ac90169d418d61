"""
Server-Sent Events manager for real-time badge celebrations.
"""
import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator

from allowance.services.observer import NewlyCompleted


@dataclass
class BadgeEvent:
    """Badge event to send to clients."""

    type: str  # "badge_completed" | "connected"
    badge_id: str | None = None
    name: str | None = None
    icon: str | None = None
    category: str | None = None
    timestamp: str | None = None

    @classmethod
    def from_completion(cls, event: NewlyCompleted) -> "BadgeEvent":
        return cls(
            type="badge_completed",
            badge_id=event.badge.id,
            name=event.badge.name,
            icon=event.badge.icon,
            category=event.badge.category,
            timestamp=event.observed_at.isoformat(),
        )


class EventManager:
    """Manages SSE connections per user and fans badge events out to them."""

    def __init__(self):
        self._clients: dict[str, list[asyncio.Queue]] = {}

    async def subscribe(self, user_id: str) -> AsyncGenerator[str, None]:
        """
        Subscribe to a user's badge events.

        Returns an async generator of SSE-formatted data strings.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._clients.setdefault(user_id, []).append(queue)

        try:
            yield self._format_sse(
                BadgeEvent(
                    type="connected",
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )

            while True:
                event = await queue.get()
                yield self._format_sse(event)
        finally:
            queues = self._clients.get(user_id, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._clients.pop(user_id, None)

    def publish(self, user_id: str, event: BadgeEvent) -> None:
        """Queue an event for every connection the user has open."""
        for queue in self._clients.get(user_id, []):
            queue.put_nowait(event)

    def _format_sse(self, event: BadgeEvent) -> str:
        data = json.dumps(asdict(event))
        return f"data: {data}\n\n"

    def client_count(self, user_id: str | None = None) -> int:
        """Number of open connections, for one user or overall."""
        if user_id is not None:
            return len(self._clients.get(user_id, []))
        return sum(len(queues) for queues in self._clients.values())
