"""Demo data for trying the app without an existing history."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from doitapp.gateway import PersistenceGateway
from doitapp.models import (
    CategoryTally,
    RecurringPattern,
    Task,
    TaskCategory,
    TaskStatus,
    UserStats,
)
from doitapp.rows import stats_to_row, task_to_row

log = logging.getLogger(__name__)

DEMO_STATS = UserStats(
    total_points=850,
    tasks_completed=23,
    tasks_missed=2,
    current_streak=5,
    best_streak=12,
    category_breakdown={
        TaskCategory.ACADEMIC: CategoryTally(completed=8, total=10),
        TaskCategory.PROFESSIONAL: CategoryTally(completed=10, total=12),
        TaskCategory.PERSONAL: CategoryTally(completed=5, total=6),
    },
)


def demo_tasks(now: Optional[datetime] = None) -> list[Task]:
    """Five sample tasks laid out around today."""
    now = now or datetime.now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    def at(days: float = 0, hours: float = 0) -> datetime:
        return today + timedelta(days=days, hours=hours)

    return [
        Task(
            id="demo-react-project",
            title="Complete React Project",
            description="Finish the final components and testing",
            category=TaskCategory.ACADEMIC,
            estimated_time=120,
            difficulty=7,
            importance=9,
            deadline=at(days=2),
            status=TaskStatus.IN_PROGRESS,
            scheduled_start=at(hours=9),
            scheduled_end=at(hours=11),
            created_at=at(days=-3),
        ),
        Task(
            id="demo-team-meeting",
            title="Team Meeting",
            description="Weekly sync with the development team",
            category=TaskCategory.PROFESSIONAL,
            estimated_time=60,
            difficulty=3,
            importance=8,
            deadline=at(hours=14),
            is_recurring=True,
            recurring_pattern=RecurringPattern.WEEKLY,
            scheduled_start=at(hours=14),
            scheduled_end=at(hours=15),
            created_at=at(days=-7),
        ),
        Task(
            id="demo-gym",
            title="Gym Workout",
            description="Upper body strength training",
            category=TaskCategory.PERSONAL,
            estimated_time=90,
            difficulty=5,
            importance=7,
            deadline=at(hours=18),
            is_recurring=True,
            recurring_pattern=RecurringPattern.DAILY,
            scheduled_start=at(hours=17),
            scheduled_end=at(hours=18.5),
            created_at=at(days=-30),
        ),
        Task(
            id="demo-paper-review",
            title="Research Paper Review",
            description="Review and annotate the latest ML papers",
            category=TaskCategory.ACADEMIC,
            estimated_time=180,
            difficulty=8,
            importance=8,
            deadline=at(days=5),
            scheduled_start=at(days=1, hours=10),
            scheduled_end=at(days=1, hours=13),
            created_at=at(days=-2),
        ),
        Task(
            id="demo-client-prep",
            title="Client Presentation Prep",
            description="Prepare slides for quarterly review",
            category=TaskCategory.PROFESSIONAL,
            estimated_time=150,
            difficulty=6,
            importance=10,
            deadline=at(days=1),
            scheduled_start=at(hours=11),
            scheduled_end=at(hours=13.5),
            created_at=at(days=-5),
        ),
    ]


def seed_demo(
    gateway: PersistenceGateway, user_id: str, now: Optional[datetime] = None
) -> int:
    """Give a brand-new user the demo tasks and stats.

    Returns the number of tasks written, or 0 if the user already has tasks
    or ledger entries.  Any existing stats row is replaced.
    Raises :class:`PersistenceError` if the write fails (nothing is kept).
    """
    if gateway.list_tasks(user_id) or gateway.list_points_records(user_id):
        log.info("User %s already has data; demo seed skipped", user_id)
        return 0

    tasks = demo_tasks(now)
    with gateway.transaction():
        for task in tasks:
            row = task_to_row(task)
            row["id"] = f"{row['id']}-{user_id}"
            gateway.insert_task(user_id, row)
        gateway.patch_stats(user_id, stats_to_row(DEMO_STATS))
    log.info("Seeded %d demo tasks for %s", len(tasks), user_id)
    return len(tasks)
