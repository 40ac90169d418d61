"""Tests for the starter badge catalog."""
import pytest

from allowance.models.badge import BadgeCategory
from allowance.services.badge_seeder import default_badges, generate_tiered_badges, upsert_badges


class TestGenerateTieredBadges:
    def test_one_badge_per_threshold(self):
        badges = generate_tiered_badges(
            id_prefix="tasks",
            names=["One", "Ten"],
            description_template="Complete {count} tasks",
            category=BadgeCategory.TASKS,
            thresholds=[1, 10],
            icons=["star", "trophy"],
        )

        assert badges == [
            {
                "id": "tasks_1",
                "name": "One",
                "description": "Complete 1 tasks",
                "icon": "star",
                "category": "tasks",
                "required_count": 1,
            },
            {
                "id": "tasks_10",
                "name": "Ten",
                "description": "Complete 10 tasks",
                "icon": "trophy",
                "category": "tasks",
                "required_count": 10,
            },
        ]

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            generate_tiered_badges("x", ["a"], "{count}", BadgeCategory.GOALS, [1, 2], ["star"])


class TestDefaultBadges:
    def test_ids_unique(self):
        ids = [b["id"] for b in default_badges()]
        assert len(ids) == len(set(ids))

    def test_every_category_covered(self):
        assert {b["category"] for b in default_badges()} == {c.value for c in BadgeCategory}

    def test_thresholds_positive_and_increasing(self):
        by_category: dict[str, list[int]] = {}
        for badge in default_badges():
            by_category.setdefault(badge["category"], []).append(badge["required_count"])

        for category, thresholds in by_category.items():
            assert all(t > 0 for t in thresholds), category
            assert thresholds == sorted(thresholds), category

    async def test_seeds_into_store(self, store):
        for badge in default_badges():
            await store.insert_row("badges", badge)

        rows = await store.query_rows("badges", {"category": "activity"}, order_by="required_count")
        assert [r["required_count"] for r in rows] == [1, 25, 100]


class TestUpsertBadges:
    """Re-seeding updates definitions by id and never drops progress."""

    async def test_creates_missing_definitions(self, session_maker, store):
        async with session_maker() as session:
            created, updated = await upsert_badges(session, default_badges())
            await session.commit()

        assert (created, updated) == (len(default_badges()), 0)
        assert len(await store.query_rows("badges")) == len(default_badges())

    async def test_reseed_keeps_user_progress(self, session_maker, store, user_id):
        badges = default_badges()
        async with session_maker() as session:
            await upsert_badges(session, badges)
            await session.commit()
        first = badges[0]
        await store.insert_row(
            "user_badges", {"user_id": user_id, "badge_id": first["id"], "progress": 1, "completed": True}
        )

        changed = [dict(b) for b in badges]
        changed[0]["name"] = "Renamed"
        async with session_maker() as session:
            created, updated = await upsert_badges(session, changed)
            await session.commit()

        assert (created, updated) == (0, len(badges))
        assert (await store.get_row("badges", {"id": first["id"]}))["name"] == "Renamed"
        progress = await store.get_row("user_badges", {"user_id": user_id, "badge_id": first["id"]})
        assert progress["completed"] is True
