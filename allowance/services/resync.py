"""Bulk resync - feeds authoritative activity counts back into badge progress.

Raw activity rows (tasks, goals) are the ground truth; badge progress is a
cache of them that drifts when increments are lost or repeated. Whenever a
fresh collection is loaded the scanner counts its completed rows and adds
that count to the category's badges. The adjustment is additive: stored
progress never goes down and completed badges stay completed.

A collection that is 100% complete also earns a one-time bonus on the
activity category. The bonus is recorded in badge_bonus_grants keyed by a
fingerprint of the completed rows, so repeated loads of the same fully
completed collection pay it only once.

A pass that fails part way (unreadable catalog, a badge write error) does
not record its fingerprint, and a bonus whose payment fails gives its
marker back, so the next delivery of the same collection retries. A retry
re-applies the whole count; badges that were written on the failed pass
count twice, which stays within the drift the scanner already tolerates.
"""

import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError

from allowance.core.exceptions import StoreError
from allowance.models.activity import TaskStatus
from allowance.models.badge import BadgeCategory
from allowance.services.reconciler import ProgressReconciler, ReconciliationResult
from allowance.services.store import ActivityStore, Row

logger = logging.getLogger(__name__)


def is_completed(row: Row) -> bool:
    """Goal-style rows carry ``completed``; task rows carry ``status``."""
    if "completed" in row:
        return bool(row["completed"])
    return row.get("status") == TaskStatus.COMPLETED.value


def _digest(parts: Iterable[str]) -> str:
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()


def collection_fingerprint(rows: list[Row]) -> str:
    """Identity of a collection: which rows exist and which are completed."""
    return _digest(sorted(f"{row.get('id', i)}:{int(is_completed(row))}" for i, row in enumerate(rows)))


def completion_epoch_key(rows: list[Row]) -> str:
    """Identity of a fully completed collection: the set of its row ids."""
    return _digest(sorted(str(row.get("id", i)) for i, row in enumerate(rows)))


@dataclass
class ResyncReport:
    user_id: str | None
    category: str
    total: int
    completed_count: int = 0
    skipped: bool = False
    reason: str | None = None
    bonus_granted: bool = False
    results: list[ReconciliationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "category": self.category,
            "total": self.total,
            "completed_count": self.completed_count,
            "skipped": self.skipped,
            "reason": self.reason,
            "bonus_granted": self.bonus_granted,
            "results": [r.to_dict() for r in self.results],
        }


class ResyncScanner:
    """Recomputes completed-action counts from raw activity rows."""

    def __init__(
        self,
        reconciler: ProgressReconciler,
        store: ActivityStore,
        mirror_category: str | None = BadgeCategory.ACTIVITY.value,
        bonus_category: str = BadgeCategory.ACTIVITY.value,
        max_remembered: int = 10_000,
    ):
        self.reconciler = reconciler
        self.store = store
        self.mirror_category = mirror_category
        self.bonus_category = bonus_category
        self.max_remembered = max_remembered
        # Last successfully applied collection fingerprint per (user, category), least recent first
        self._last_seen: OrderedDict[tuple[str, str], str] = OrderedDict()

    def _remember(self, key: tuple[str, str], fingerprint: str) -> None:
        self._last_seen[key] = fingerprint
        self._last_seen.move_to_end(key)
        while len(self._last_seen) > self.max_remembered:
            self._last_seen.popitem(last=False)

    async def resync_from_activity(
        self,
        user_id: str | None,
        activity_rows: Iterable[Row],
        category: str,
    ) -> ResyncReport:
        rows = list(activity_rows)
        report = ResyncReport(user_id=user_id, category=category, total=len(rows))

        if not user_id:
            report.skipped, report.reason = True, "user required"
            return report
        if not rows:
            report.skipped, report.reason = True, "empty collection"
            return report

        key = (user_id, category)
        fingerprint = collection_fingerprint(rows)
        if self._last_seen.get(key) == fingerprint:
            logger.debug("Resync skipped for user=%s category=%s: collection unchanged", user_id, category)
            report.skipped, report.reason = True, "collection unchanged"
            return report
        # Claimed up front so an overlapping identical delivery is skipped while this one runs
        self._remember(key, fingerprint)

        report.completed_count = sum(1 for row in rows if is_completed(row))
        logger.info(
            "Resync user=%s category=%s: %d/%d completed",
            user_id, category, report.completed_count, len(rows),
        )

        if report.completed_count > 0:
            report.results.append(
                await self.reconciler.apply_progress(user_id, category, report.completed_count)
            )
            if self.mirror_category and self.mirror_category != category:
                report.results.append(
                    await self.reconciler.apply_progress(user_id, self.mirror_category, report.completed_count)
                )

        if report.completed_count == len(rows):
            bonus = await self.grant_full_completion_bonus(user_id, category, rows)
            if bonus is not None:
                report.bonus_granted = bonus.fully_applied
                report.results.append(bonus)

        if not all(result.fully_applied for result in report.results):
            # Let an identical re-delivery retry instead of being skipped
            if self._last_seen.get(key) == fingerprint:
                del self._last_seen[key]
            logger.warning(
                "Resync user=%s category=%s incomplete; fingerprint not recorded",
                user_id, category,
            )

        return report

    async def grant_full_completion_bonus(
        self,
        user_id: str,
        category: str,
        rows: list[Row],
    ) -> ReconciliationResult | None:
        """Award len(rows) to the bonus category once per completed collection.

        Returns None when this exact collection was already rewarded or its
        marker could not be claimed. A payment that fails releases the
        marker again, so the next delivery of the collection retries.
        """
        if not rows or not all(is_completed(row) for row in rows):
            return None

        epoch_key = completion_epoch_key(rows)
        marker = {"user_id": user_id, "category": category, "epoch_key": epoch_key}
        try:
            existing = await self.store.get_row("badge_bonus_grants", marker)
        except StoreError as exc:
            logger.warning("Could not check bonus marker for user=%s category=%s: %s", user_id, category, exc)
            return None
        if existing is not None:
            logger.debug("Full-completion bonus already granted: user=%s category=%s", user_id, category)
            return None

        try:
            # Claim the epoch before paying; the unique index rejects a racing claim
            claimed = await self.store.insert_row("badge_bonus_grants", {**marker, "amount": len(rows)})
        except StoreError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                logger.info("Full-completion bonus claimed concurrently: user=%s category=%s", user_id, category)
            else:
                logger.warning("Could not claim bonus marker for user=%s category=%s: %s", user_id, category, exc)
            return None

        logger.info(
            "Full-completion bonus: user=%s category=%s +%d to %s",
            user_id, category, len(rows), self.bonus_category,
        )
        result = await self.reconciler.apply_progress(user_id, self.bonus_category, len(rows))
        if not result.fully_applied:
            await self._release_marker(claimed, user_id, category)
        return result

    async def _release_marker(self, claimed: Row, user_id: str, category: str) -> None:
        logger.warning("Full-completion bonus payment failed: user=%s category=%s; releasing marker", user_id, category)
        try:
            await self.store.delete_row("badge_bonus_grants", claimed["id"])
        except StoreError:
            logger.exception("Could not release bonus marker %s for user=%s", claimed["id"], user_id)

    def forget(self, user_id: str) -> None:
        """Drop remembered collection fingerprints for a user."""
        for key in [k for k in self._last_seen if k[0] == user_id]:
            del self._last_seen[key]
