"""Tests for the bulk resync scanner.

Covers:
  - Completed-row counting for task (status) and goal (completed) rows
  - Additive correction on top of stored progress
  - Mirror into the activity category
  - Skips: missing user, empty collection, unchanged collection
  - Full-completion bonus paid once per completed collection
  - Failed passes retry on re-delivery; a failed bonus payment releases its marker
  - Remembered fingerprints are bounded
"""
import logging

import pytest

from allowance.core.exceptions import StoreReadError
from allowance.services.reconciler import ProgressReconciler
from allowance.services.store import ActivityStore
from allowance.services.resync import (
    ResyncScanner,
    collection_fingerprint,
    completion_epoch_key,
    is_completed,
)



class FlakyCatalogStore(ActivityStore):
    """Store whose badge catalog read fails once for each given category, then recovers."""

    def __init__(self, session_maker, *categories):
        super().__init__(session_maker)
        self.failing = set(categories)

    async def query_rows(self, table, filters=None, order_by=None, descending=False):
        category = (filters or {}).get("category")
        if table == "badges" and category in self.failing:
            self.failing.discard(category)
            raise StoreReadError("connection reset", table=table, operation="query")
        return await super().query_rows(table, filters, order_by, descending)


class UnreadableMarkerStore(ActivityStore):
    async def get_row(self, table, filters):
        if table == "badge_bonus_grants":
            raise StoreReadError("connection refused", table=table, operation="query")
        return await super().get_row(table, filters)


class BlindMarkerStore(ActivityStore):
    """Never sees an existing marker, as when two deliveries check at the same moment."""

    async def get_row(self, table, filters):
        if table == "badge_bonus_grants":
            return None
        return await super().get_row(table, filters)

@pytest.fixture
def reconciler(store):
    return ProgressReconciler(store)


@pytest.fixture
def scanner(reconciler, store):
    return ResyncScanner(reconciler, store)


@pytest.fixture
def add_tasks(store, user_id):
    """Insert tasks for the test user; pass one bool per task (True = completed)."""

    async def _add_tasks(*completed):
        rows = []
        for i, done in enumerate(completed):
            rows.append(await store.insert_row("tasks", {
                "user_id": user_id,
                "title": f"Chore {i}",
                "status": "completed" if done else "todo",
            }))
        return rows

    return _add_tasks


async def _progress(store, user_id, badge_id):
    return await store.get_row("user_badges", {"user_id": user_id, "badge_id": badge_id})


# =============================================================================
# HELPERS
# =============================================================================

class TestIsCompleted:
    """Tests for is_completed on the two row shapes."""

    def test_task_rows(self):
        assert is_completed({"status": "completed"}) is True
        assert is_completed({"status": "todo"}) is False

    def test_goal_rows(self):
        assert is_completed({"completed": True}) is True
        assert is_completed({"completed": False}) is False

    def test_completed_flag_wins(self):
        assert is_completed({"completed": False, "status": "completed"}) is False

    def test_unknown_shape(self):
        assert is_completed({"title": "x"}) is False


class TestFingerprints:
    """Tests for collection_fingerprint and completion_epoch_key."""

    def test_fingerprint_ignores_order(self):
        rows = [{"id": "a", "completed": True}, {"id": "b", "completed": False}]
        assert collection_fingerprint(rows) == collection_fingerprint(list(reversed(rows)))

    def test_fingerprint_tracks_completion(self):
        before = [{"id": "a", "completed": False}]
        after = [{"id": "a", "completed": True}]
        assert collection_fingerprint(before) != collection_fingerprint(after)

    def test_epoch_key_tracks_membership_only(self):
        rows = [{"id": "a", "completed": True}, {"id": "b", "completed": True}]
        assert completion_epoch_key(rows) == completion_epoch_key([{"id": "b"}, {"id": "a"}])
        assert completion_epoch_key(rows) != completion_epoch_key(rows + [{"id": "c"}])
        assert len(completion_epoch_key(rows)) == 64


# =============================================================================
# RESYNC
# =============================================================================

class TestResync:
    """Tests for ResyncScanner.resync_from_activity."""

    async def test_additive_correction(self, scanner, reconciler, store, user_id, make_badge, add_tasks):
        """Stored progress 2, five completed tasks: progress 7 and completed."""
        badge = await make_badge("tasks", 5)
        await reconciler.apply_progress(user_id, "tasks", 2)
        rows = await add_tasks(True, True, True, True, True, False)

        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        row = await _progress(store, user_id, badge["id"])
        assert report.completed_count == 5
        assert report.total == 6
        assert row["progress"] == 7
        assert row["completed"] is True

    async def test_lower_count_never_uncompletes(self, scanner, reconciler, store, user_id, make_badge, add_tasks):
        badge = await make_badge("tasks", 3)
        await reconciler.apply_progress(user_id, "tasks", 3)
        earned = (await _progress(store, user_id, badge["id"]))["earned_at"]
        rows = await add_tasks(True, False, False)

        await scanner.resync_from_activity(user_id, rows, "tasks")

        row = await _progress(store, user_id, badge["id"])
        assert row["completed"] is True
        assert row["progress"] == 4
        assert row["earned_at"] == earned

    async def test_mirrors_to_activity(self, scanner, store, user_id, make_badge, add_tasks):
        activity = await make_badge("activity", 25)
        rows = await add_tasks(True, True, False)

        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert [r.category for r in report.results] == ["tasks", "activity"]
        assert (await _progress(store, user_id, activity["id"]))["progress"] == 2

    async def test_no_mirror_when_disabled(self, reconciler, store, user_id, make_badge, add_tasks):
        activity = await make_badge("activity", 25)
        scanner = ResyncScanner(reconciler, store, mirror_category=None)
        rows = await add_tasks(True, False)

        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert [r.category for r in report.results] == ["tasks"]
        assert await _progress(store, user_id, activity["id"]) is None

    async def test_activity_category_is_not_mirrored_twice(self, scanner, user_id, make_badge):
        await make_badge("activity", 25)
        rows = [{"id": "x", "completed": True}, {"id": "y", "completed": False}]

        report = await scanner.resync_from_activity(user_id, rows, "activity")

        assert [r.category for r in report.results] == ["activity"]

    async def test_goal_rows(self, scanner, store, user_id, make_badge):
        badge = await make_badge("goals", 5)
        goals = [
            await store.insert_row("goals", {"user_id": user_id, "title": t, "target_amount": 10, "completed": done})
            for t, done in [("Bike", True), ("Book", True), ("Game", False)]
        ]

        report = await scanner.resync_from_activity(user_id, goals, "goals")

        assert report.completed_count == 2
        assert (await _progress(store, user_id, badge["id"]))["progress"] == 2

    async def test_nothing_completed(self, scanner, store, user_id, make_badge, add_tasks):
        await make_badge("tasks", 1)
        rows = await add_tasks(False, False)

        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.skipped is False
        assert report.completed_count == 0
        assert report.results == []
        assert await store.query_rows("user_badges") == []


class TestResyncSkips:
    """Calls that leave badge progress untouched."""

    async def test_missing_user(self, scanner, store, make_badge):
        await make_badge("tasks", 1)

        report = await scanner.resync_from_activity(None, [{"id": "a", "completed": True}], "tasks")

        assert report.skipped is True
        assert report.reason == "user required"
        assert await store.query_rows("user_badges") == []

    async def test_empty_collection(self, scanner, user_id):
        report = await scanner.resync_from_activity(user_id, [], "tasks")

        assert report.skipped is True
        assert report.reason == "empty collection"
        assert report.total == 0

    async def test_unchanged_collection(self, scanner, store, user_id, make_badge, add_tasks):
        badge = await make_badge("tasks", 10)
        rows = await add_tasks(True, False)

        await scanner.resync_from_activity(user_id, rows, "tasks")
        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.skipped is True
        assert report.reason == "collection unchanged"
        assert (await _progress(store, user_id, badge["id"]))["progress"] == 1

    async def test_changed_collection_runs_again(self, scanner, store, user_id, make_badge, add_tasks):
        badge = await make_badge("tasks", 10)
        rows = await add_tasks(True, False)
        await scanner.resync_from_activity(user_id, rows, "tasks")

        rows[1] = {**rows[1], "status": "completed"}
        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.skipped is False
        assert (await _progress(store, user_id, badge["id"]))["progress"] == 3

    async def test_forget(self, scanner, store, user_id, make_badge, add_tasks):
        badge = await make_badge("tasks", 10)
        rows = await add_tasks(True, False)
        await scanner.resync_from_activity(user_id, rows, "tasks")

        scanner.forget(user_id)
        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.skipped is False
        assert (await _progress(store, user_id, badge["id"]))["progress"] == 2

    async def test_failed_pass_retries_on_redelivery(self, session_maker, store, user_id, make_badge, add_tasks):
        badge = await make_badge("tasks", 10)
        flaky = FlakyCatalogStore(session_maker, "tasks")
        scanner = ResyncScanner(ProgressReconciler(flaky), flaky, mirror_category=None)
        rows = await add_tasks(True, False)

        first = await scanner.resync_from_activity(user_id, rows, "tasks")
        second = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert first.results[0].success is False
        assert second.skipped is False
        assert second.results[0].fully_applied is True
        assert (await _progress(store, user_id, badge["id"]))["progress"] == 1

    async def test_successful_pass_is_remembered(self, scanner, user_id, make_badge, add_tasks):
        await make_badge("tasks", 10)
        rows = await add_tasks(True, False)

        await scanner.resync_from_activity(user_id, rows, "tasks")

        assert (user_id, "tasks") in scanner._last_seen

    async def test_remembered_fingerprints_are_bounded(self, reconciler, store, user_id, make_badge, add_tasks):
        badge = await make_badge("tasks", 10)
        scanner = ResyncScanner(reconciler, store, mirror_category=None, max_remembered=1)
        rows = await add_tasks(True, False)

        await scanner.resync_from_activity(user_id, rows, "tasks")
        await scanner.resync_from_activity(user_id, [{"id": "g1", "completed": False}], "goals")
        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert len(scanner._last_seen) == 1
        assert report.skipped is False
        assert (await _progress(store, user_id, badge["id"]))["progress"] == 2


# =============================================================================
# FULL-COMPLETION BONUS
# =============================================================================

class TestFullCompletionBonus:
    """The bonus for a 100% completed collection is paid once per collection."""

    async def test_bonus_on_full_completion(self, scanner, store, user_id, make_badge, add_tasks):
        activity = await make_badge("activity", 100)
        rows = await add_tasks(True, True, True)

        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.bonus_granted is True
        # 3 mirrored + 3 bonus
        assert (await _progress(store, user_id, activity["id"]))["progress"] == 6
        grants = await store.query_rows("badge_bonus_grants", {"user_id": user_id})
        assert len(grants) == 1
        assert grants[0]["category"] == "tasks"
        assert grants[0]["amount"] == 3

    async def test_no_bonus_when_incomplete(self, scanner, store, user_id, make_badge, add_tasks):
        await make_badge("activity", 100)
        rows = await add_tasks(True, True, False)

        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.bonus_granted is False
        assert await store.query_rows("badge_bonus_grants") == []

    async def test_bonus_once_across_scanners(self, reconciler, store, user_id, make_badge, add_tasks):
        """A fresh scanner (e.g. after restart) does not pay the same bonus again."""
        activity = await make_badge("activity", 100)
        rows = await add_tasks(True, True)

        first = await ResyncScanner(reconciler, store).resync_from_activity(user_id, rows, "tasks")
        second = await ResyncScanner(reconciler, store).resync_from_activity(user_id, rows, "tasks")

        assert first.bonus_granted is True
        assert second.bonus_granted is False
        # 2 mirrored + 2 bonus, then 2 mirrored
        assert (await _progress(store, user_id, activity["id"]))["progress"] == 6
        assert len(await store.query_rows("badge_bonus_grants")) == 1

    async def test_new_epoch_after_adding_a_task(self, scanner, store, user_id, make_badge, add_tasks):
        await make_badge("activity", 100)
        rows = await add_tasks(True, True)
        await scanner.resync_from_activity(user_id, rows, "tasks")

        rows += await add_tasks(True)
        report = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert report.bonus_granted is True
        grants = await store.query_rows("badge_bonus_grants", order_by="amount")
        assert [g["amount"] for g in grants] == [2, 3]

    async def test_direct_grant_rejects_incomplete_rows(self, scanner, user_id):
        rows = [{"id": "a", "completed": True}, {"id": "b", "completed": False}]
        assert await scanner.grant_full_completion_bonus(user_id, "goals", rows) is None
        assert await scanner.grant_full_completion_bonus(user_id, "goals", []) is None

    async def test_direct_grant_once(self, scanner, store, user_id, make_badge):
        await make_badge("activity", 100)
        rows = [{"id": "a", "completed": True}]

        first = await scanner.grant_full_completion_bonus(user_id, "goals", rows)
        second = await scanner.grant_full_completion_bonus(user_id, "goals", rows)

        assert first is not None
        assert first.category == "activity"
        assert first.increment == 1
        assert second is None

    async def test_same_rows_different_category(self, scanner, store, user_id, make_badge):
        await make_badge("activity", 100)
        rows = [{"id": "a", "completed": True}]

        assert await scanner.grant_full_completion_bonus(user_id, "goals", rows) is not None
        assert await scanner.grant_full_completion_bonus(user_id, "tasks", rows) is not None


class TestBonusFailures:
    """A bonus that cannot be paid is retried; markers are only kept for paid bonuses."""

    async def test_failed_payment_releases_marker(self, session_maker, store, user_id, make_badge):
        activity = await make_badge("activity", 100)
        flaky = FlakyCatalogStore(session_maker, "activity")
        scanner = ResyncScanner(ProgressReconciler(flaky), flaky)
        rows = [{"id": "a", "completed": True}]

        first = await scanner.grant_full_completion_bonus(user_id, "goals", rows)

        assert first.success is False
        assert await store.query_rows("badge_bonus_grants") == []

        second = await scanner.grant_full_completion_bonus(user_id, "goals", rows)

        assert second.fully_applied is True
        assert len(await store.query_rows("badge_bonus_grants")) == 1
        assert (await _progress(store, user_id, activity["id"]))["progress"] == 1

    async def test_failed_payment_is_not_reported_granted(self, session_maker, store, user_id, make_badge, add_tasks):
        tasks = await make_badge("tasks", 10)
        activity = await make_badge("activity", 100)
        flaky = FlakyCatalogStore(session_maker, "activity")
        scanner = ResyncScanner(ProgressReconciler(flaky), flaky, mirror_category=None)
        rows = await add_tasks(True, True)

        first = await scanner.resync_from_activity(user_id, rows, "tasks")
        second = await scanner.resync_from_activity(user_id, rows, "tasks")

        assert first.bonus_granted is False
        assert second.skipped is False
        assert second.bonus_granted is True
        assert len(await store.query_rows("badge_bonus_grants")) == 1
        assert (await _progress(store, user_id, activity["id"]))["progress"] == 2
        # The retry re-applies the whole count
        assert (await _progress(store, user_id, tasks["id"]))["progress"] == 4

    async def test_unreadable_marker_logs_warning(self, session_maker, user_id, make_badge, caplog):
        await make_badge("activity", 100)
        broken = UnreadableMarkerStore(session_maker)
        scanner = ResyncScanner(ProgressReconciler(broken), broken)

        with caplog.at_level(logging.INFO, logger="allowance.services.resync"):
            result = await scanner.grant_full_completion_bonus(user_id, "goals", [{"id": "a", "completed": True}])

        assert result is None
        records = [r for r in caplog.records if r.name == "allowance.services.resync"]
        assert [r.levelno for r in records] == [logging.WARNING]
        assert "connection refused" in records[0].getMessage()

    async def test_concurrent_claim_logs_info(self, session_maker, store, user_id, make_badge, caplog):
        activity = await make_badge("activity", 100)
        blind = BlindMarkerStore(session_maker)
        scanner = ResyncScanner(ProgressReconciler(blind), blind)
        rows = [{"id": "a", "completed": True}]
        await scanner.grant_full_completion_bonus(user_id, "goals", rows)

        with caplog.at_level(logging.INFO, logger="allowance.services.resync"):
            second = await scanner.grant_full_completion_bonus(user_id, "goals", rows)

        assert second is None
        records = [r for r in caplog.records if r.name == "allowance.services.resync"]
        assert [r.levelno for r in records] == [logging.INFO]
        assert "claimed concurrently" in records[0].getMessage()
        assert (await _progress(store, user_id, activity["id"]))["progress"] == 1
