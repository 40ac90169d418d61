from datetime import date

from pydantic import BaseModel, Field

from allowance.models.activity import TaskRecurrence, TransactionType

# Badge icon keys stored in the catalog -> icon the client renders
ICON_MAP = {
    "badge-plus": "badge-plus",
    "badge-check": "badge-check",
    "badge-dollar-sign": "badge-dollar-sign",
    "badge-indian-rupee": "badge-indian-rupee",
    "check-check": "check-check",
    "trophy": "trophy",
    "award": "award",
    "star": "star",
    "default": "badge",
}


def resolve_icon(key: str | None) -> str:
    """Map a catalog icon key to a renderable icon, falling back to the plain badge."""
    return ICON_MAP.get(key or "default", ICON_MAP["default"])


class HealthResponse(BaseModel):
    status: str
    version: str


# =============================================================================
# BADGES
# =============================================================================

class BadgeResponse(BaseModel):
    """Badge definition joined with the user's progress."""
    id: str
    name: str
    description: str
    icon: str
    category: str
    required_count: int
    progress: int
    completed: bool
    progress_percent: int
    earned_at: str | None


class NewlyCompletedResponse(BaseModel):
    badge: BadgeResponse
    observed_at: str


class BadgeListResponse(BaseModel):
    badges: list[BadgeResponse]
    newly_completed: list[NewlyCompletedResponse]
    refetch_interval_seconds: int


class CategorySummary(BaseModel):
    completed: int
    total: int


class BadgeSummaryResponse(BaseModel):
    completed: int
    total: int
    by_category: dict[str, CategorySummary]


class ApplyProgressRequest(BaseModel):
    category: str
    increment: int = Field(default=1, ge=1)


class BadgeOutcomeResponse(BaseModel):
    badge_id: str
    badge_name: str
    kind: str
    progress: int | None
    previous_progress: int | None
    completed: bool
    newly_completed: bool
    error: str | None


class ReconciliationResponse(BaseModel):
    success: bool
    user_id: str | None
    category: str
    increment: int
    message: str | None
    error: str | None
    outcomes: list[BadgeOutcomeResponse]


class ResyncResponse(BaseModel):
    user_id: str | None
    category: str
    total: int
    completed_count: int
    skipped: bool
    reason: str | None
    bonus_granted: bool
    results: list[ReconciliationResponse]


# =============================================================================
# ACTIVITY
# =============================================================================

class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    recurrence: TaskRecurrence = TaskRecurrence.ONE_TIME


class TaskToggleRequest(BaseModel):
    completed: bool


class TaskResponse(BaseModel):
    id: str
    title: str
    completed: bool
    recurrence: str
    created_at: str | None


class GoalCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    target_amount: float = Field(gt=0)


class DepositRequest(BaseModel):
    amount: float = Field(gt=0)


class GoalResponse(BaseModel):
    id: str
    title: str
    target_amount: float
    current_amount: float
    completed: bool
    created_at: str | None


class TransactionCreateRequest(BaseModel):
    type: TransactionType
    amount: float = Field(gt=0)
    category: str = Field(min_length=1, max_length=50)
    description: str | None = None
    transaction_date: date


class TransactionResponse(BaseModel):
    id: str
    type: str
    amount: float
    category: str
    description: str | None
    transaction_date: date
