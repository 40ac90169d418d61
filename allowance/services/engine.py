"""Badge engine - the service object the API layer is handed.

Bundles the store, catalog, reconciler, resync scanner, completion
observers and event fan-out. One instance is created at startup and kept
on ``app.state``; nothing in the badge services is module-global.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from allowance.services.badges import BadgeCatalog, BadgeViewModel, project_badges
from allowance.services.events import BadgeEvent, EventManager
from allowance.services.observer import CompletionObserver, NewlyCompleted, ObserverRegistry
from allowance.services.reconciler import ProgressReconciler, ReconciliationResult, utcnow
from allowance.services.resync import ResyncReport, ResyncScanner
from allowance.services.store import ActivityStore, Row

logger = logging.getLogger(__name__)


class BadgeEngine:
    """Badge progress, resync and completion detection for all users."""

    def __init__(
        self,
        store: ActivityStore,
        mirror_category: str | None = "activity",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.catalog = BadgeCatalog(store)
        self.reconciler = ProgressReconciler(store, self.catalog, clock=clock)
        self.scanner = ResyncScanner(self.reconciler, store, mirror_category=mirror_category)
        self.events = EventManager()
        self.observers = ObserverRegistry(on_create=self._wire_observer)

    @classmethod
    def from_session_maker(
        cls,
        session_maker: async_sessionmaker[AsyncSession],
        mirror_category: str | None = "activity",
    ) -> "BadgeEngine":
        return cls(ActivityStore(session_maker), mirror_category=mirror_category)

    def _wire_observer(self, user_id: str, observer: CompletionObserver) -> None:
        def forward(event: NewlyCompleted) -> None:
            self.events.publish(user_id, BadgeEvent.from_completion(event))

        observer.subscribe(forward)

    async def apply_progress(self, user_id: str | None, category: str, increment: int = 1) -> ReconciliationResult:
        return await self.reconciler.apply_progress(user_id, category, increment)

    async def resync(self, user_id: str | None, rows: list[Row], category: str) -> ResyncReport:
        return await self.scanner.resync_from_activity(user_id, rows, category)

    async def snapshot(self, user_id: str) -> list[BadgeViewModel]:
        """Current badge view models for a user, across every category."""
        catalog = await self.catalog.list_all()
        progress = await self.catalog.user_progress(user_id)
        return project_badges(catalog, progress)

    async def observe(self, user_id: str) -> tuple[list[BadgeViewModel], list[NewlyCompleted]]:
        """Take a snapshot and run it through the user's completion observer."""
        view_models = await self.snapshot(user_id)
        events = self.observers.for_user(user_id).observe(view_models)
        return view_models, events

    async def reset_user_progress(self, user_id: str) -> int:
        """Debug utility: delete all badge progress and bonus markers for a user."""
        removed = 0
        for table in ("user_badges", "badge_bonus_grants"):
            for row in await self.store.query_rows(table, {"user_id": user_id}):
                await self.store.delete_row(table, row["id"])
                removed += 1
        self.observers.discard(user_id)
        self.scanner.forget(user_id)
        logger.warning("Reset badge progress for user %s (%d rows removed)", user_id, removed)
        return removed
