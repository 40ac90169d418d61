"""Badge seeder - the starter catalog shipped with a fresh install."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from allowance.models.badge import Badge, BadgeCategory


def generate_tiered_badges(
    id_prefix: str,
    names: list[str],
    description_template: str,
    category: BadgeCategory,
    thresholds: list[int],
    icons: list[str],
) -> list[dict[str, Any]]:
    """Generate one badge per threshold; names and icons line up with thresholds."""
    if not (len(names) == len(thresholds) == len(icons)):
        raise ValueError("names, thresholds and icons must be the same length")

    badges = []
    for name, threshold, icon in zip(names, thresholds, icons):
        badges.append({
            "id": f"{id_prefix}_{threshold}",
            "name": name,
            "description": description_template.format(count=threshold),
            "icon": icon,
            "category": category.value,
            "required_count": threshold,
        })
    return badges


def default_badges() -> list[dict[str, Any]]:
    """Every badge in the starter catalog."""
    badges: list[dict[str, Any]] = []

    badges += generate_tiered_badges(
        id_prefix="savings",
        names=["First Coin", "Piggy Bank", "Super Saver"],
        description_template="Add savings to a goal {count} times",
        category=BadgeCategory.SAVINGS,
        thresholds=[1, 5, 20],
        icons=["badge-dollar-sign", "badge-dollar-sign", "trophy"],
    )
    badges += generate_tiered_badges(
        id_prefix="expenses",
        names=["Smart Spender", "Budget Keeper"],
        description_template="Record {count} expenses",
        category=BadgeCategory.EXPENSES,
        thresholds=[5, 20],
        icons=["badge-indian-rupee", "award"],
    )
    badges += generate_tiered_badges(
        id_prefix="tasks",
        names=["Helping Hand", "Task Master", "Chore Champion"],
        description_template="Complete {count} tasks",
        category=BadgeCategory.TASKS,
        thresholds=[1, 10, 50],
        icons=["check-check", "badge-check", "trophy"],
    )
    badges += generate_tiered_badges(
        id_prefix="goals",
        names=["Goal Getter", "Dream Achiever"],
        description_template="Reach {count} savings goals",
        category=BadgeCategory.GOALS,
        thresholds=[1, 5],
        icons=["star", "award"],
    )
    badges += generate_tiered_badges(
        id_prefix="activity",
        names=["Getting Started", "Busy Bee", "Allowance Pro"],
        description_template="Earn {count} activity points",
        category=BadgeCategory.ACTIVITY,
        thresholds=[1, 25, 100],
        icons=["badge-plus", "star", "trophy"],
    )
    return badges


async def upsert_badges(session: AsyncSession, badges: list[dict[str, Any]]) -> tuple[int, int]:
    """Insert missing definitions and update existing ones in place, by id.

    Definitions are never deleted, so users' progress rows keep their badge.
    Returns (created, updated). The caller commits.
    """
    created = updated = 0
    for badge_data in badges:
        badge = await session.get(Badge, badge_data["id"])
        if badge is None:
            session.add(Badge(**badge_data))
            created += 1
            continue
        for key, value in badge_data.items():
            setattr(badge, key, value)
        updated += 1
    return created, updated
