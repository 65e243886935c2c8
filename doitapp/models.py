"""Pydantic models: the single source of truth for tasks, points and stats."""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Annotated, Any, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from doitapp.errors import DoItError


def _as_local_naive(value: datetime) -> datetime:
    """Store every timestamp as naive local time, like ``datetime.now()``."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


LocalDateTime = Annotated[datetime, AfterValidator(_as_local_naive)]


class TaskCategory(str, enum.Enum):
    """Life areas a task can belong to."""

    ACADEMIC = "academic"
    PROFESSIONAL = "professional"
    PERSONAL = "personal"


class TaskStatus(str, enum.Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.MISSED)


class RecurringPattern(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PointsReason(str, enum.Enum):
    """Why a ledger entry was written."""

    ON_TIME = "on-time"
    LATE = "late"
    MISSED = "missed"
    OUT_OF_SEQUENCE = "out-of-sequence"
    BONUS = "bonus"


def _check_recurrence_and_schedule(model: Any) -> Any:
    if model.is_recurring and model.recurring_pattern is None:
        raise ValueError("recurring_pattern is required when is_recurring is true")
    if not model.is_recurring and model.recurring_pattern is not None:
        raise ValueError("recurring_pattern is only allowed when is_recurring is true")
    start, end = model.scheduled_start, model.scheduled_end
    if start is not None and end is not None and end < start:
        raise ValueError("scheduled_end must not be before scheduled_start")
    return model


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """A unit of work with a deadline and scoring attributes."""

    id: str
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    category: TaskCategory
    estimated_time: int = Field(gt=0)
    difficulty: int = Field(ge=1, le=10)
    importance: int = Field(ge=1, le=10)
    deadline: LocalDateTime
    dependencies: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    status: TaskStatus = TaskStatus.PENDING
    scheduled_start: Optional[LocalDateTime] = None
    scheduled_end: Optional[LocalDateTime] = None
    completed_at: Optional[LocalDateTime] = None
    points_earned: Optional[int] = None
    created_at: LocalDateTime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _validate_shape(self) -> "Task":
        return _check_recurrence_and_schedule(self)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class TaskCreate(BaseModel):
    """Input model for creating a new task.

    Unknown keys (``id``, ``status``, ``created_at``...) are ignored, so a
    caller cannot choose them.
    """

    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    category: TaskCategory
    estimated_time: int = Field(gt=0)
    difficulty: int = Field(ge=1, le=10)
    importance: int = Field(ge=1, le=10)
    deadline: LocalDateTime
    dependencies: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    scheduled_start: Optional[LocalDateTime] = None
    scheduled_end: Optional[LocalDateTime] = None

    @model_validator(mode="after")
    def _validate_shape(self) -> "TaskCreate":
        return _check_recurrence_and_schedule(self)


class TaskUpdate(BaseModel):
    """Partial patch for an existing task.

    Only explicitly set fields are applied.  Identity, creation time and the
    completion fields are not part of the patch surface.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    category: Optional[TaskCategory] = None
    estimated_time: Optional[int] = Field(default=None, gt=0)
    difficulty: Optional[int] = Field(default=None, ge=1, le=10)
    importance: Optional[int] = Field(default=None, ge=1, le=10)
    deadline: Optional[LocalDateTime] = None
    dependencies: Optional[list[str]] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[RecurringPattern] = None
    status: Optional[TaskStatus] = None
    scheduled_start: Optional[LocalDateTime] = None
    scheduled_end: Optional[LocalDateTime] = None

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Points & stats
# ---------------------------------------------------------------------------


class PointsRecord(BaseModel):
    """Immutable ledger entry for one completion event."""

    model_config = ConfigDict(frozen=True)

    id: str
    task_id: Optional[str] = None
    points: int
    reason: PointsReason
    timestamp: LocalDateTime = Field(default_factory=datetime.now)


class CategoryTally(BaseModel):
    completed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)


def _empty_breakdown() -> dict[TaskCategory, CategoryTally]:
    return {category: CategoryTally() for category in TaskCategory}


class UserStats(BaseModel):
    """Aggregate summary of a user's points and category performance."""

    total_points: int = 0
    tasks_completed: int = Field(default=0, ge=0)
    tasks_missed: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    best_streak: int = Field(default=0, ge=0)
    category_breakdown: dict[TaskCategory, CategoryTally] = Field(
        default_factory=_empty_breakdown
    )

    def tally(self, category: TaskCategory) -> CategoryTally:
        return self.category_breakdown.get(category, CategoryTally())


class TaskCreated(BaseModel):
    """Stats event: a task of ``category`` was created."""

    category: TaskCategory


class TaskRecategorized(BaseModel):
    """Stats event: a task moved from one category to another."""

    old: TaskCategory
    new: TaskCategory
    completed: bool = False


class CompletionResult(BaseModel):
    """Side effects of completing one task, computed by the scoring engine."""

    points_earned: int
    ledger_delta: int
    new_streak: int = Field(ge=0)
    new_best_streak: int = Field(ge=0)
    category_breakdown: dict[TaskCategory, CategoryTally]
    completed_at: datetime
    reason: PointsReason
    is_on_time: bool


class TaskCompleted(BaseModel):
    """Stats event: a completion was committed."""

    result: CompletionResult


class CompletionFeedback(BaseModel):
    """What ``complete_task`` reports back for the UI."""

    task: Task
    is_on_time: bool
    applied_ledger_delta: int
    points_earned: Optional[int] = None
    reason: Optional[PointsReason] = None
    already_completed: bool = False


# ---------------------------------------------------------------------------
# Store outcomes
# ---------------------------------------------------------------------------

T = TypeVar("T")


class Outcome(BaseModel, Generic[T]):
    """Explicit success-or-error result of a store operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Optional[T] = None
    error: Optional[DoItError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DoItError) -> "Outcome":
        return cls(error=error)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class MonthlyOverview(BaseModel):
    """Headline numbers for the current month."""

    total_points: int
    completed_this_month: int = Field(ge=0)
    completion_rate: int = Field(ge=0, le=100)
    total_minutes: int = Field(ge=0)
    current_streak: int = Field(ge=0)
    best_streak: int = Field(ge=0)


class TimeInsights(BaseModel):
    """When tasks get done and where the estimated time goes."""

    hourly_distribution: list[int]
    peak_hour: Optional[int] = None
    average_minutes: int = Field(default=0, ge=0)
    minutes_by_category: dict[TaskCategory, int] = Field(default_factory=dict)


class DailyPoints(BaseModel):
    day: date
    points: int
    completed: int = Field(ge=0)


class CategoryRate(BaseModel):
    category: TaskCategory
    completed: int = Field(ge=0)
    total: int = Field(ge=0)
    rate: int = Field(ge=0, le=100)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class AppConfig(BaseModel):
    """Application configuration (persisted to ~/.config/doitapp/config.json)."""

    db_path: Optional[str] = None  # None = use default (~/.local/share/doitapp/)
    user_id: Optional[str] = None
    notifications_enabled: bool = False
    reminder_minutes: int = Field(default=30, gt=0, le=24 * 60)
    check_interval_seconds: int = Field(default=60, gt=0)
