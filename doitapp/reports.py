"""Read-only report aggregations over tasks, stats and the points ledger."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from doitapp.models import (
    CategoryRate,
    DailyPoints,
    MonthlyOverview,
    PointsRecord,
    Task,
    TaskCategory,
    TimeInsights,
    UserStats,
)
from doitapp.scoring import round_half_up

# Peak hour is looked for in this window only.
_WORKDAY_START = 6
_WORKDAY_END = 22


def _percent(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100) if whole > 0 else 0


def monthly_overview(
    stats: UserStats, tasks: Iterable[Task], now: Optional[datetime] = None
) -> MonthlyOverview:
    now = now or datetime.now()
    tasks = list(tasks)
    completed_this_month = sum(
        1
        for t in tasks
        if t.completed_at is not None
        and t.completed_at.year == now.year
        and t.completed_at.month == now.month
    )
    total_minutes = sum(t.estimated_time for t in tasks if t.is_completed)
    return MonthlyOverview(
        total_points=stats.total_points,
        completed_this_month=completed_this_month,
        completion_rate=_percent(stats.tasks_completed, stats.tasks_completed + stats.tasks_missed),
        total_minutes=total_minutes,
        current_streak=stats.current_streak,
        best_streak=stats.best_streak,
    )


def time_insights(tasks: Iterable[Task]) -> TimeInsights:
    """Hour-of-day completion histogram plus estimated time per category."""
    completed = [t for t in tasks if t.is_completed]
    hourly = [0] * 24
    for task in completed:
        if task.completed_at is not None:
            hourly[task.completed_at.hour] += 1

    working = hourly[_WORKDAY_START:_WORKDAY_END]
    peak: Optional[int] = None
    if max(working) > 0:
        peak = working.index(max(working)) + _WORKDAY_START

    average = (
        round_half_up(sum(t.estimated_time for t in completed) / len(completed)) if completed else 0
    )
    by_category = {
        category: sum(t.estimated_time for t in completed if t.category == category)
        for category in TaskCategory
    }
    return TimeInsights(
        hourly_distribution=hourly,
        peak_hour=peak,
        average_minutes=average,
        minutes_by_category=by_category,
    )


def points_trend(
    ledger: Iterable[PointsRecord],
    tasks: Iterable[Task],
    days: int = 14,
    today: Optional[date] = None,
) -> list[DailyPoints]:
    """Points and completions per day for the last ``days`` days, oldest first."""
    today = today or date.today()
    first = today - timedelta(days=days - 1)
    points: dict[date, int] = {}
    for record in ledger:
        day = record.timestamp.date()
        points[day] = points.get(day, 0) + record.points
    completed: dict[date, int] = {}
    for task in tasks:
        if task.completed_at is not None:
            day = task.completed_at.date()
            completed[day] = completed.get(day, 0) + 1
    return [
        DailyPoints(day=day, points=points.get(day, 0), completed=completed.get(day, 0))
        for day in (first + timedelta(days=i) for i in range(days))
    ]


def category_rates(stats: UserStats) -> list[CategoryRate]:
    rates = []
    for category in TaskCategory:
        tally = stats.tally(category)
        rates.append(
            CategoryRate(
                category=category,
                completed=tally.completed,
                total=tally.total,
                rate=min(100, _percent(tally.completed, tally.total)),
            )
        )
    return rates
