"""Badge catalog reader and display projection.

BadgeDefinition and UserBadgeProgress are immutable snapshots of store rows.
project_badges joins them into the view model the badge page renders.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Iterable

from allowance.services.store import ActivityStore, Row

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    name: str
    description: str
    icon: str
    category: str
    required_count: int

    @classmethod
    def from_row(cls, row: Row) -> "BadgeDefinition":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row.get("description") or "",
            icon=row.get("icon") or "default",
            category=row["category"],
            required_count=int(row["required_count"]),
        )


@dataclass(frozen=True)
class UserBadgeProgress:
    id: str
    user_id: str
    badge_id: str
    progress: int
    completed: bool
    earned_at: datetime | None

    @classmethod
    def from_row(cls, row: Row) -> "UserBadgeProgress":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            badge_id=row["badge_id"],
            progress=int(row.get("progress") or 0),
            completed=bool(row.get("completed")),
            earned_at=row.get("earned_at"),
        )


@dataclass(frozen=True)
class BadgeViewModel:
    """Display-ready badge: definition plus the user's progress."""
    id: str
    name: str
    description: str
    icon: str
    category: str
    required_count: int
    progress: int
    completed: bool
    progress_percent: int
    earned_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["earned_at"] = self.earned_at.isoformat() if self.earned_at else None
        return data


# =============================================================================
# PROJECTION
# =============================================================================

def progress_percent(progress: int, required_count: int) -> int:
    """Whole-number completion percentage, capped at 100."""
    if required_count <= 0:
        return 100
    return min(100, max(0, progress) * 100 // required_count)


def project_badges(
    catalog: Iterable[BadgeDefinition],
    progress: Iterable[UserBadgeProgress],
) -> list[BadgeViewModel]:
    """Join the catalog with a user's progress rows.

    Badges the user has never touched show up with zero progress. Rows
    pointing at badges outside the catalog are ignored.
    """
    by_badge = {row.badge_id: row for row in progress}
    view_models = []
    for badge in catalog:
        row = by_badge.get(badge.id)
        current = row.progress if row else 0
        view_models.append(
            BadgeViewModel(
                id=badge.id,
                name=badge.name,
                description=badge.description,
                icon=badge.icon,
                category=badge.category,
                required_count=badge.required_count,
                progress=current,
                completed=row.completed if row else False,
                progress_percent=progress_percent(current, badge.required_count),
                earned_at=row.earned_at if row else None,
            )
        )
    return view_models


def summarize(view_models: Iterable[BadgeViewModel]) -> dict[str, Any]:
    """Completed/total counts overall and per category."""
    by_category: dict[str, dict[str, int]] = {}
    completed = 0
    total = 0
    for vm in view_models:
        bucket = by_category.setdefault(vm.category, {"completed": 0, "total": 0})
        bucket["total"] += 1
        total += 1
        if vm.completed:
            bucket["completed"] += 1
            completed += 1
    return {
        "completed": completed,
        "total": total,
        "by_category": by_category,
    }


# =============================================================================
# CATALOG READER
# =============================================================================

class BadgeCatalog:
    """Read-only access to badge definitions."""

    def __init__(self, store: ActivityStore):
        self.store = store

    async def list_for_category(self, category: str) -> list[BadgeDefinition]:
        rows = await self.store.query_rows("badges", {"category": category}, order_by="required_count")
        logger.debug("Category %r has %d badge(s)", category, len(rows))
        return [BadgeDefinition.from_row(row) for row in rows]

    async def list_all(self) -> list[BadgeDefinition]:
        rows = await self.store.query_rows("badges", order_by="required_count")
        return [BadgeDefinition.from_row(row) for row in rows]

    async def user_progress(self, user_id: str) -> list[UserBadgeProgress]:
        rows = await self.store.query_rows("user_badges", {"user_id": user_id})
        return [UserBadgeProgress.from_row(row) for row in rows]
