"""Task endpoints. Completing a task counts toward task and activity badges."""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allowance.api.auth import get_current_user
from allowance.api.badges import get_badge_engine
from allowance.api.schemas import TaskCreateRequest, TaskResponse, TaskToggleRequest
from allowance.core.database import get_db
from allowance.models.activity import Task, TaskStatus
from allowance.models.user import User
from allowance.services.activity_hooks import on_task_completed
from allowance.services.engine import BadgeEngine
from allowance.services.store import row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _task_payload(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "completed": task.status == TaskStatus.COMPLETED.value,
        "recurrence": task.recurrence,
        "created_at": task.created_at.isoformat() if task.created_at else None,
    }


async def _get_user_task(db: AsyncSession, user_id: str, task_id: str) -> Task:
    result = await db.execute(select(Task).where(Task.id == task_id, Task.user_id == user_id))
    task = result.scalar_one_or_none()
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


@router.get("", response_model=list[TaskResponse])
async def list_tasks(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Task).where(Task.user_id == current_user.id).order_by(Task.created_at.desc())
    )
    return [_task_payload(task) for task in result.scalars().all()]


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: TaskCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    task = Task(
        user_id=current_user.id,
        title=request.title,
        status=TaskStatus.TODO.value,
        recurrence=request.recurrence.value,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return _task_payload(task)


@router.patch("/{task_id}", response_model=TaskResponse)
async def toggle_task(
    task_id: str,
    request: TaskToggleRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Mark a task completed or back to todo."""
    task = await _get_user_task(db, current_user.id, task_id)
    was_completed = task.status == TaskStatus.COMPLETED.value

    task.status = TaskStatus.COMPLETED.value if request.completed else TaskStatus.TODO.value
    await db.commit()
    await db.refresh(task)

    if request.completed and not was_completed:
        result = await db.execute(select(Task).where(Task.user_id == current_user.id))
        rows = [row_to_dict(t) for t in result.scalars().all()]
        # Runs after the response; badge failures never affect the toggle itself
        background_tasks.add_task(on_task_completed, engine, current_user.id, rows)

    return _task_payload(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    task = await _get_user_task(db, current_user.id, task_id)
    await db.delete(task)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
