"""Conversion between models and the flat rows the gateway stores.

Column names follow the hosted tables (``tasks``, ``user_stats``,
``points_history``).  Every timestamp crosses the boundary as an ISO-8601
string.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from doitapp.models import (
    CategoryTally,
    PointsReason,
    PointsRecord,
    RecurringPattern,
    Task,
    TaskCategory,
    TaskStatus,
    UserStats,
)

Row = dict[str, Any]

TASK_TIMESTAMPS = ("deadline", "scheduled_start", "scheduled_end", "completed_at", "created_at")


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def task_to_row(task: Task) -> Row:
    """Flatten a task into a ``tasks`` row (without ``user_id``)."""
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "category": task.category.value,
        "estimated_time": task.estimated_time,
        "difficulty": task.difficulty,
        "importance": task.importance,
        "deadline": to_iso(task.deadline),
        "dependencies": list(task.dependencies),
        "is_recurring": task.is_recurring,
        "recurring_pattern": task.recurring_pattern.value if task.recurring_pattern else None,
        "status": task.status.value,
        "scheduled_start": to_iso(task.scheduled_start),
        "scheduled_end": to_iso(task.scheduled_end),
        "completed_at": to_iso(task.completed_at),
        "points_earned": task.points_earned,
        "created_at": to_iso(task.created_at),
    }


def task_patch_to_row(changes: Mapping[str, Any]) -> Row:
    """Encode a partial task patch for ``patch_task``."""
    row: Row = {}
    for key, value in changes.items():
        if key in TASK_TIMESTAMPS:
            row[key] = to_iso(value)
        elif isinstance(value, (TaskCategory, TaskStatus, RecurringPattern)):
            row[key] = value.value
        elif key == "dependencies":
            row[key] = list(value)
        else:
            row[key] = value
    return row


def row_to_task(row: Mapping[str, Any]) -> Task:
    """Convert a ``tasks`` row to a Task model."""
    pattern = row.get("recurring_pattern")
    return Task(
        id=row["id"],
        title=row["title"],
        description=row.get("description"),
        category=TaskCategory(row["category"]),
        estimated_time=row["estimated_time"],
        difficulty=row["difficulty"],
        importance=row["importance"],
        deadline=from_iso(row["deadline"]),
        dependencies=list(row.get("dependencies") or []),
        is_recurring=bool(row.get("is_recurring")),
        recurring_pattern=RecurringPattern(pattern) if pattern else None,
        status=TaskStatus(row["status"]),
        scheduled_start=from_iso(row.get("scheduled_start")),
        scheduled_end=from_iso(row.get("scheduled_end")),
        completed_at=from_iso(row.get("completed_at")),
        points_earned=row.get("points_earned"),
        created_at=from_iso(row["created_at"]),
    )


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def stats_to_row(stats: UserStats) -> Row:
    """Spread the category breakdown into ``<category>_completed/_total`` columns."""
    row: Row = {
        "total_points": stats.total_points,
        "tasks_completed": stats.tasks_completed,
        "tasks_missed": stats.tasks_missed,
        "current_streak": stats.current_streak,
        "best_streak": stats.best_streak,
    }
    for category in TaskCategory:
        tally = stats.tally(category)
        row[f"{category.value}_completed"] = tally.completed
        row[f"{category.value}_total"] = tally.total
    return row


def row_to_stats(row: Mapping[str, Any]) -> UserStats:
    return UserStats(
        total_points=row["total_points"],
        tasks_completed=row["tasks_completed"],
        tasks_missed=row["tasks_missed"],
        current_streak=row["current_streak"],
        best_streak=row["best_streak"],
        category_breakdown={
            category: CategoryTally(
                completed=row[f"{category.value}_completed"],
                total=row[f"{category.value}_total"],
            )
            for category in TaskCategory
        },
    )


# ---------------------------------------------------------------------------
# Points history
# ---------------------------------------------------------------------------


def points_to_row(record: PointsRecord) -> Row:
    return {
        "id": record.id,
        "task_id": record.task_id,
        "points": record.points,
        "reason": record.reason.value,
        "created_at": to_iso(record.timestamp),
    }


def row_to_points(row: Mapping[str, Any]) -> PointsRecord:
    return PointsRecord(
        id=row["id"],
        task_id=row.get("task_id"),
        points=row["points"],
        reason=PointsReason(row["reason"]),
        timestamp=from_iso(row["created_at"]),
    )
