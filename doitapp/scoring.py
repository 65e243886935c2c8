"""Scoring & stats engine.

Pure functions only: no I/O, no clock reads, no randomness.  The store
passes the current time in and applies the results.

Stats only change through :func:`apply_event`, which takes the current
:class:`UserStats` and one event and returns a new object.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Union

from doitapp.models import (
    CategoryTally,
    CompletionResult,
    PointsReason,
    Task,
    TaskCategory,
    TaskCompleted,
    TaskCreated,
    TaskRecategorized,
    UserStats,
)

ON_TIME_MULTIPLIER = 2
LATE_MULTIPLIER = 0.5
LATE_PENALTY = -3

URGENCY_HORIZON_HOURS = 48
IMPORTANCE_WEIGHT = 1.6
DIFFICULTY_WEIGHT = 0.6

StatsEvent = Union[TaskCreated, TaskRecategorized, TaskCompleted]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (``round`` is banker's)."""
    return int(math.floor(value + 0.5))


def _bump_completed(
    breakdown: dict[TaskCategory, CategoryTally], category: TaskCategory
) -> dict[TaskCategory, CategoryTally]:
    updated = {c: tally.model_copy() for c, tally in breakdown.items()}
    tally = updated.get(category, CategoryTally())
    updated[category] = CategoryTally(completed=tally.completed + 1, total=tally.total)
    return updated


def compute_completion(task: Task, now: datetime, stats: UserStats) -> CompletionResult:
    """Work out points, streaks and tallies for completing ``task`` at ``now``.

    The caller must make sure ``task`` is not already completed.  A late
    completion stores the reduced points on the task but applies a flat
    penalty to the ledger.
    """
    is_on_time = now <= task.deadline
    weight = task.difficulty + task.importance

    if is_on_time:
        points_earned = round_half_up(weight * ON_TIME_MULTIPLIER)
        ledger_delta = points_earned
        reason = PointsReason.ON_TIME
        new_streak = stats.current_streak + 1
        new_best = max(stats.best_streak, new_streak)
    else:
        points_earned = round_half_up(weight * LATE_MULTIPLIER)
        ledger_delta = LATE_PENALTY
        reason = PointsReason.LATE
        new_streak = 0
        new_best = stats.best_streak

    return CompletionResult(
        points_earned=points_earned,
        ledger_delta=ledger_delta,
        new_streak=new_streak,
        new_best_streak=new_best,
        category_breakdown=_bump_completed(stats.category_breakdown, task.category),
        completed_at=now,
        reason=reason,
        is_on_time=is_on_time,
    )


def apply_event(stats: UserStats, event: StatsEvent) -> UserStats:
    """Return the stats that result from ``event``; ``stats`` is left as is."""
    if isinstance(event, TaskCreated):
        breakdown = {c: tally.model_copy() for c, tally in stats.category_breakdown.items()}
        tally = breakdown.get(event.category, CategoryTally())
        breakdown[event.category] = CategoryTally(
            completed=tally.completed, total=tally.total + 1
        )
        return stats.model_copy(update={"category_breakdown": breakdown})

    if isinstance(event, TaskRecategorized):
        if event.old == event.new:
            return stats
        breakdown = {c: tally.model_copy() for c, tally in stats.category_breakdown.items()}
        done = 1 if event.completed else 0
        old = breakdown.get(event.old, CategoryTally())
        new = breakdown.get(event.new, CategoryTally())
        breakdown[event.old] = CategoryTally(
            completed=max(0, old.completed - done), total=max(0, old.total - 1)
        )
        breakdown[event.new] = CategoryTally(completed=new.completed + done, total=new.total + 1)
        return stats.model_copy(update={"category_breakdown": breakdown})

    if isinstance(event, TaskCompleted):
        result = event.result
        return stats.model_copy(
            update={
                "total_points": stats.total_points + result.ledger_delta,
                "tasks_completed": stats.tasks_completed + 1,
                "current_streak": result.new_streak,
                "best_streak": result.new_best_streak,
                "category_breakdown": result.category_breakdown,
            }
        )

    raise TypeError(f"Unknown stats event: {type(event).__name__}")


# ---------------------------------------------------------------------------
# Priority heuristic ("top focus")
# ---------------------------------------------------------------------------


def urgency(task: Task, now: datetime) -> float:
    hours_left = (task.deadline - now).total_seconds() / 3600
    if hours_left <= 0:
        return float(URGENCY_HORIZON_HOURS)
    return max(0.0, URGENCY_HORIZON_HOURS - hours_left)


def priority_score(task: Task, now: datetime) -> float:
    """Mix of importance, difficulty and deadline pressure."""
    return (
        task.importance * IMPORTANCE_WEIGHT
        + task.difficulty * DIFFICULTY_WEIGHT
        + urgency(task, now)
    )


def rank_by_priority(tasks: Iterable[Task], now: datetime) -> list[Task]:
    """Highest priority first; ties keep their input order."""
    return sorted(tasks, key=lambda t: priority_score(t, now), reverse=True)
