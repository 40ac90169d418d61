"""Badge bookkeeping triggered by user actions.

These run after the primary action (completing a task, depositing savings)
has already been persisted. They never raise: a missed badge increment is
logged and the action still succeeds.
"""

import logging

from allowance.models.badge import BadgeCategory
from allowance.services.engine import BadgeEngine
from allowance.services.reconciler import ReconciliationResult
from allowance.services.resync import is_completed
from allowance.services.store import Row

logger = logging.getLogger(__name__)


async def _apply_all(
    engine: BadgeEngine,
    user_id: str,
    categories: list[BadgeCategory],
) -> list[ReconciliationResult]:
    results = []
    for category in categories:
        results.append(await engine.apply_progress(user_id, category.value))
    return results


async def on_task_completed(engine: BadgeEngine, user_id: str, tasks: list[Row]) -> list[ReconciliationResult]:
    """A task was marked completed; ``tasks`` is the user's collection after the change."""
    try:
        results = await _apply_all(engine, user_id, [BadgeCategory.TASKS, BadgeCategory.ACTIVITY])
        if tasks and all(is_completed(task) for task in tasks):
            bonus = await engine.scanner.grant_full_completion_bonus(user_id, BadgeCategory.TASKS.value, tasks)
            if bonus is not None:
                results.append(bonus)
        return results
    except Exception:
        logger.exception("Badge update after task completion failed for user %s", user_id)
        return []


async def on_goal_completed(engine: BadgeEngine, user_id: str) -> list[ReconciliationResult]:
    try:
        return await _apply_all(engine, user_id, [BadgeCategory.GOALS, BadgeCategory.ACTIVITY])
    except Exception:
        logger.exception("Badge update after goal completion failed for user %s", user_id)
        return []


async def on_savings_deposit(
    engine: BadgeEngine,
    user_id: str,
    goal_completed_now: bool,
) -> list[ReconciliationResult]:
    """Savings were added to a goal; ``goal_completed_now`` if this deposit reached the target."""
    try:
        results = await _apply_all(engine, user_id, [BadgeCategory.SAVINGS, BadgeCategory.ACTIVITY])
    except Exception:
        logger.exception("Badge update after savings deposit failed for user %s", user_id)
        results = []
    if goal_completed_now:
        results.extend(await on_goal_completed(engine, user_id))
    return results
