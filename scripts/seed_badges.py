"""
Script to seed badge definitions into the database.
Run with: python -m scripts.seed_badges
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from allowance.core.database import async_session_maker, engine
from allowance.models import Base
from allowance.models.badge import Badge
from allowance.services.badge_seeder import default_badges, upsert_badges


async def seed_badges(force: bool = False):
    """Seed the starter badge catalog into the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        result = await session.execute(select(Badge).limit(1))
        existing = result.scalar_one_or_none()

        if existing and not force:
            result = await session.execute(select(Badge.id))
            count = len(result.all())
            print(f"Badges already seeded ({count} definitions). Use --force to update them.")
            return

        # Update in place by id; deleting would cascade to users' progress rows
        badges = default_badges()
        created, updated = await upsert_badges(session, badges)

        await session.commit()
        print(f"Seeded badge definitions: {created} created, {updated} updated.")

        category_counts: dict[str, int] = {}
        for badge in badges:
            category_counts[badge["category"]] = category_counts.get(badge["category"], 0) + 1

        print("\nSummary by category:")
        for category, count in sorted(category_counts.items()):
            print(f"  {category}: {count}")


def main():
    force = "--force" in sys.argv
    asyncio.run(seed_badges(force))


if __name__ == "__main__":
    main()
