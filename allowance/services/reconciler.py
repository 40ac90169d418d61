"""Progress reconciler - applies completed actions to a user's badges.

For every badge in a category the user's progress row is fetched, created
or incremented, and written back. Badges are handled one at a time and
independently: a failure on one badge is recorded in the result and the
loop moves on to the next.

Invariants:
  - progress never decreases (increments are positive)
  - completed is a one-way latch: once true it stays true
  - earned_at is written once, on the transition to completed

Two concurrent calls for the same (user, badge) can both read the same
progress and the later write wins. The resync scanner bounds that drift.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from allowance.core.exceptions import StoreError
from allowance.services.badges import BadgeCatalog, BadgeDefinition, UserBadgeProgress
from allowance.services.store import ActivityStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutcomeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    ERROR = "error"


@dataclass
class BadgeOutcome:
    """What happened to one badge during a reconciliation."""
    badge_id: str
    badge_name: str
    kind: OutcomeKind
    progress: int | None = None
    previous_progress: int | None = None
    completed: bool = False
    newly_completed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "badge_id": self.badge_id,
            "badge_name": self.badge_name,
            "kind": self.kind.value,
            "progress": self.progress,
            "previous_progress": self.previous_progress,
            "completed": self.completed,
            "newly_completed": self.newly_completed,
            "error": self.error,
        }


@dataclass
class ReconciliationResult:
    """Outcome of one apply_progress call.

    success is False only when nothing could be attempted (missing user,
    bad increment, unreadable catalog). Per-badge failures leave success
    True and show up in errors.
    """
    success: bool
    user_id: str | None
    category: str
    increment: int
    outcomes: list[BadgeOutcome] = field(default_factory=list)
    message: str | None = None
    error: str | None = None

    @property
    def created(self) -> list[BadgeOutcome]:
        return [o for o in self.outcomes if o.kind is OutcomeKind.CREATED]

    @property
    def updated(self) -> list[BadgeOutcome]:
        return [o for o in self.outcomes if o.kind is OutcomeKind.UPDATED]

    @property
    def errors(self) -> list[BadgeOutcome]:
        return [o for o in self.outcomes if o.kind is OutcomeKind.ERROR]

    @property
    def newly_completed(self) -> list[BadgeOutcome]:
        return [o for o in self.outcomes if o.newly_completed]

    @property
    def fully_applied(self) -> bool:
        """True when the call ran and every badge was written."""
        return self.success and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "user_id": self.user_id,
            "category": self.category,
            "increment": self.increment,
            "message": self.message,
            "error": self.error,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class ProgressReconciler:
    """Applies increments to every badge of a category for one user."""

    def __init__(
        self,
        store: ActivityStore,
        catalog: BadgeCatalog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.catalog = catalog or BadgeCatalog(store)
        self.clock = clock

    async def apply_progress(
        self,
        user_id: str | None,
        category: str,
        increment: int = 1,
    ) -> ReconciliationResult:
        """Add ``increment`` to the user's progress on each badge in ``category``."""
        logger.debug("Badge update: user=%s category=%s increment=%s", user_id, category, increment)

        if not user_id:
            logger.error("Badge update for category %r without a user id", category)
            return ReconciliationResult(
                success=False,
                user_id=user_id,
                category=category,
                increment=increment,
                error="user required",
            )

        if isinstance(increment, bool) or not isinstance(increment, int) or increment < 1:
            logger.error("Rejected badge increment %r for user %s", increment, user_id)
            return ReconciliationResult(
                success=False,
                user_id=user_id,
                category=category,
                increment=increment,
                error="increment must be a positive integer",
            )

        try:
            badges = await self.catalog.list_for_category(category)
        except StoreError as exc:
            logger.error("Could not read badges for category %r: %s", category, exc)
            return ReconciliationResult(
                success=False,
                user_id=user_id,
                category=category,
                increment=increment,
                error=str(exc),
            )

        if not badges:
            logger.warning("No badges defined for category %r", category)
            return ReconciliationResult(
                success=True,
                user_id=user_id,
                category=category,
                increment=increment,
                message=f"No badges in category '{category}'",
            )

        result = ReconciliationResult(
            success=True,
            user_id=user_id,
            category=category,
            increment=increment,
        )
        for badge in badges:
            try:
                outcome = await self._apply_to_badge(user_id, badge, increment)
            except Exception as exc:
                logger.exception("Badge %s (%s) update failed for user %s", badge.id, badge.name, user_id)
                outcome = BadgeOutcome(
                    badge_id=badge.id,
                    badge_name=badge.name,
                    kind=OutcomeKind.ERROR,
                    error=str(exc) or exc.__class__.__name__,
                )
            result.outcomes.append(outcome)

        if result.errors:
            logger.warning(
                "Category %r for user %s: %d of %d badge(s) failed",
                category, user_id, len(result.errors), len(badges),
            )
        return result

    async def _apply_to_badge(
        self,
        user_id: str,
        badge: BadgeDefinition,
        increment: int,
    ) -> BadgeOutcome:
        logger.debug("Processing badge %s (%s), required=%d", badge.id, badge.name, badge.required_count)

        row = await self.store.get_row("user_badges", {"user_id": user_id, "badge_id": badge.id})

        if row is None:
            completed = increment >= badge.required_count
            await self.store.insert_row(
                "user_badges",
                {
                    "user_id": user_id,
                    "badge_id": badge.id,
                    "progress": increment,
                    "completed": completed,
                    "earned_at": self.clock() if completed else None,
                },
            )
            logger.info(
                "Created badge progress: user=%s badge=%s progress=%d/%d",
                user_id, badge.id, increment, badge.required_count,
            )
            if completed:
                logger.info("Badge earned: user=%s badge=%s (%s)", user_id, badge.id, badge.name)
            return BadgeOutcome(
                badge_id=badge.id,
                badge_name=badge.name,
                kind=OutcomeKind.CREATED,
                progress=increment,
                completed=completed,
                newly_completed=completed,
            )

        current = UserBadgeProgress.from_row(row)
        new_progress = current.progress + increment
        # Latch: a completed badge is never revoked
        now_completed = current.completed or new_progress >= badge.required_count
        newly_completed = not current.completed and now_completed

        fields: dict[str, Any] = {"progress": new_progress, "completed": now_completed}
        if newly_completed and current.earned_at is None:
            fields["earned_at"] = self.clock()

        await self.store.update_row("user_badges", current.id, fields)
        logger.info(
            "Updated badge progress: user=%s badge=%s %d -> %d/%d",
            user_id, badge.id, current.progress, new_progress, badge.required_count,
        )
        if newly_completed:
            logger.info("Badge earned: user=%s badge=%s (%s)", user_id, badge.id, badge.name)

        return BadgeOutcome(
            badge_id=badge.id,
            badge_name=badge.name,
            kind=OutcomeKind.UPDATED,
            progress=new_progress,
            previous_progress=current.progress,
            completed=now_completed,
            newly_completed=newly_completed,
        )
