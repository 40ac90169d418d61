"""Savings goal endpoints. Deposits count toward savings (and goal) badges."""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allowance.api.auth import get_current_user
from allowance.api.badges import get_badge_engine
from allowance.api.schemas import DepositRequest, GoalCreateRequest, GoalResponse
from allowance.core.database import get_db
from allowance.models.activity import Goal
from allowance.models.user import User
from allowance.services.activity_hooks import on_savings_deposit
from allowance.services.engine import BadgeEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/goals", tags=["goals"])


def _goal_payload(goal: Goal) -> dict[str, Any]:
    return {
        "id": goal.id,
        "title": goal.title,
        "target_amount": float(goal.target_amount),
        "current_amount": float(goal.current_amount or 0),
        "completed": goal.completed,
        "created_at": goal.created_at.isoformat() if goal.created_at else None,
    }


async def _get_user_goal(db: AsyncSession, user_id: str, goal_id: str) -> Goal:
    result = await db.execute(select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id))
    goal = result.scalar_one_or_none()
    if goal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    return goal


@router.get("", response_model=list[GoalResponse])
async def list_goals(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == current_user.id).order_by(Goal.created_at.desc())
    )
    return [_goal_payload(goal) for goal in result.scalars().all()]


@router.post("", response_model=GoalResponse, status_code=status.HTTP_201_CREATED)
async def create_goal(
    request: GoalCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    goal = Goal(
        user_id=current_user.id,
        title=request.title,
        target_amount=request.target_amount,
        current_amount=0,
        completed=False,
    )
    db.add(goal)
    await db.commit()
    await db.refresh(goal)
    return _goal_payload(goal)


@router.post("/{goal_id}/deposit", response_model=GoalResponse)
async def deposit(
    goal_id: str,
    request: DepositRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Add savings to a goal; reaching the target completes it."""
    goal = await _get_user_goal(db, current_user.id, goal_id)
    was_completed = goal.completed

    goal.current_amount = float(goal.current_amount or 0) + request.amount
    goal.completed = was_completed or goal.current_amount >= float(goal.target_amount)
    await db.commit()
    await db.refresh(goal)

    background_tasks.add_task(
        on_savings_deposit,
        engine,
        current_user.id,
        goal.completed and not was_completed,
    )
    return _goal_payload(goal)


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    goal = await _get_user_goal(db, current_user.id, goal_id)
    await db.delete(goal)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
