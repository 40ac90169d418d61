"""Badge API endpoints: progress, resync, snapshots and celebration events."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from allowance.api.auth import get_current_user
from allowance.api.schemas import (
    ApplyProgressRequest,
    BadgeListResponse,
    BadgeSummaryResponse,
    ReconciliationResponse,
    ResyncResponse,
    resolve_icon,
)
from allowance.core.config import settings
from allowance.core.exceptions import StoreError
from allowance.models.badge import BadgeCategory
from allowance.models.user import User
from allowance.services.badges import BadgeViewModel, summarize
from allowance.services.engine import BadgeEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/badges", tags=["badges"])

RESYNC_SOURCES = {
    "tasks": BadgeCategory.TASKS,
    "goals": BadgeCategory.GOALS,
}


def get_badge_engine(request: Request) -> BadgeEngine:
    """Dependency returning the engine created at startup."""
    return request.app.state.badge_engine


def _validate_category(category: str) -> None:
    try:
        BadgeCategory(category)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid category. Must be one of: {[c.value for c in BadgeCategory]}",
        )


def _badge_payload(view_model: BadgeViewModel) -> dict[str, Any]:
    data = view_model.to_dict()
    data["icon"] = resolve_icon(view_model.icon)
    return data


def _store_unavailable(exc: StoreError) -> HTTPException:
    logger.error("Badge store unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Badge data is temporarily unavailable",
    )


@router.get("", response_model=BadgeListResponse)
async def list_badges(
    category: str | None = Query(default=None, description="Filter by category"),
    current_user: User = Depends(get_current_user),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Badges with the user's progress, plus any that completed since the last fetch.

    With a category filter both lists are filtered; completions elsewhere are
    still delivered over /badges/events.
    """
    if category:
        _validate_category(category)

    try:
        view_models, events = await engine.observe(current_user.id)
    except StoreError as exc:
        raise _store_unavailable(exc)

    if category:
        view_models = [vm for vm in view_models if vm.category == category]
        events = [e for e in events if e.badge.category == category]

    return {
        "badges": [_badge_payload(vm) for vm in view_models],
        "newly_completed": [
            {"badge": _badge_payload(e.badge), "observed_at": e.observed_at.isoformat()}
            for e in events
        ],
        "refetch_interval_seconds": settings.badge_refetch_interval_seconds,
    }


@router.get("/summary", response_model=BadgeSummaryResponse)
async def badge_summary(
    current_user: User = Depends(get_current_user),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Completed/total badge counts overall and per category."""
    try:
        view_models = await engine.snapshot(current_user.id)
    except StoreError as exc:
        raise _store_unavailable(exc)
    return summarize(view_models)


@router.post("/progress", response_model=ReconciliationResponse)
async def apply_progress(
    request: ApplyProgressRequest,
    current_user: User = Depends(get_current_user),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Count an action toward every badge in a category."""
    _validate_category(request.category)
    result = await engine.apply_progress(current_user.id, request.category, request.increment)
    return result.to_dict()


@router.post("/resync/{source}", response_model=ResyncResponse)
async def resync(
    source: str,
    current_user: User = Depends(get_current_user),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Re-derive badge progress from the user's current task or goal collection."""
    category = RESYNC_SOURCES.get(source)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid source. Must be one of: {sorted(RESYNC_SOURCES)}",
        )

    try:
        rows = await engine.store.query_rows(source, {"user_id": current_user.id})
    except StoreError as exc:
        raise _store_unavailable(exc)

    report = await engine.resync(current_user.id, rows, category.value)
    return report.to_dict()


@router.get("/categories")
async def get_categories() -> dict[str, list[str]]:
    """Get available badge categories."""
    return {"categories": [c.value for c in BadgeCategory]}


@router.get("/events")
async def badge_events(
    current_user: User = Depends(get_current_user),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> StreamingResponse:
    """Server-Sent Events stream of badges the user has just completed."""
    return StreamingResponse(
        engine.events.subscribe(current_user.id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/debug/reset")
async def reset_progress(
    current_user: User = Depends(get_current_user),
    engine: BadgeEngine = Depends(get_badge_engine),
) -> dict[str, Any]:
    """Delete the current user's badge progress. Only available in debug mode."""
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    removed = await engine.reset_user_progress(current_user.id)
    return {"status": "ok", "removed": removed}
