"""Task store: the only writer of tasks, the points ledger and user stats.

Every public operation returns an :class:`~doitapp.models.Outcome` instead of
raising.  Writes go to the gateway first and are applied in memory only once
the gateway has accepted them; multi-record writes share one transaction.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from doitapp.errors import (
    AuthRequiredError,
    NotFoundError,
    PersistenceError,
    TaskValidationError,
)
from doitapp.gateway import PersistenceGateway
from doitapp.identity import LocalIdentity
from doitapp.models import (
    CompletionFeedback,
    Outcome,
    PointsRecord,
    Task,
    TaskCategory,
    TaskCompleted,
    TaskCreate,
    TaskCreated,
    TaskRecategorized,
    TaskStatus,
    TaskUpdate,
    UserStats,
)
from doitapp.rows import (
    points_to_row,
    row_to_points,
    row_to_stats,
    row_to_task,
    stats_to_row,
    task_patch_to_row,
    to_iso,
)
from doitapp.scoring import apply_event, compute_completion, rank_by_priority

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _validation_error(exc: ValidationError) -> TaskValidationError:
    """Flatten a pydantic error into one readable message."""
    parts: list[str] = []
    fields: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "task"
        fields.append(loc)
        parts.append(f"{loc}: {err['msg']}")
    return TaskValidationError("; ".join(parts), fields=fields)


class TaskStore:
    """In-memory view of the signed-in user's tasks, ledger and stats."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        identity: LocalIdentity,
        clock: Clock = datetime.now,
    ) -> None:
        self._gateway = gateway
        self._identity = identity
        self._clock = clock
        self._lock = threading.RLock()
        self._user_id: Optional[str] = None
        self._tasks: list[Task] = []
        self._ledger: list[PointsRecord] = []
        self._stats = UserStats()
        self._unsubscribe = identity.on_auth_change(self._handle_auth_change)

    # ---- state ----

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def tasks(self) -> list[Task]:
        with self._lock:
            return list(self._tasks)

    @property
    def stats(self) -> UserStats:
        return self._stats

    def points_history(self) -> list[PointsRecord]:
        """Ledger entries, newest first."""
        with self._lock:
            return sorted(reversed(self._ledger), key=lambda r: r.timestamp, reverse=True)

    def close(self) -> None:
        self._unsubscribe()

    def reset(self) -> None:
        """Drop everything held in memory."""
        with self._lock:
            self._user_id = None
            self._tasks = []
            self._ledger = []
            self._stats = UserStats()

    def _handle_auth_change(self, user_id: Optional[str]) -> None:
        self.reset()
        if user_id is None:
            return
        outcome = self.load()
        if not outcome.ok:
            log.warning("Could not load data for %s: %s", user_id, outcome.error)

    def load(self) -> Outcome[UserStats]:
        """Hydrate tasks, ledger and stats for the signed-in user."""
        user_id = self._identity.user_id
        if user_id is None:
            self.reset()
            return Outcome.failure(AuthRequiredError())
        try:
            task_rows = self._gateway.list_tasks(user_id)
            ledger_rows = self._gateway.list_points_records(user_id)
            stats_row = self._gateway.get_stats(user_id)
            if stats_row is None:
                stats = UserStats()
                self._gateway.patch_stats(user_id, stats_to_row(stats))
            else:
                stats = row_to_stats(stats_row)
        except PersistenceError as exc:
            log.error("Loading data for %s failed: %s", user_id, exc)
            return Outcome.failure(exc)

        with self._lock:
            self._user_id = user_id
            self._tasks = [row_to_task(r) for r in task_rows]
            self._ledger = [row_to_points(r) for r in reversed(ledger_rows)]
            self._stats = stats
        log.debug(
            "Loaded user=%s tasks=%d ledger=%d", user_id, len(self._tasks), len(self._ledger)
        )
        return Outcome.success(stats)

    def _session_user(self) -> Union[str, AuthRequiredError, PersistenceError]:
        """Signed-in user id, loading their data first if needed."""
        user_id = self._identity.user_id
        if user_id is None:
            return AuthRequiredError()
        if user_id != self._user_id:
            outcome = self.load()
            if not outcome.ok:
                return outcome.error  # type: ignore[return-value]
        return user_id

    def _find(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _replace(self, task: Task) -> None:
        self._tasks = [task if t.id == task.id else t for t in self._tasks]

    # ---- writes ----

    def add_task(self, fields: Union[TaskCreate, Mapping[str, Any]]) -> Outcome[Task]:
        """Create a pending task and count it towards its category total."""
        user_id = self._session_user()
        if not isinstance(user_id, str):
            return Outcome.failure(user_id)
        try:
            task_in = fields if isinstance(fields, TaskCreate) else TaskCreate.model_validate(fields)
        except ValidationError as exc:
            return Outcome.failure(_validation_error(exc))

        row = task_patch_to_row(task_in.model_dump())
        row["status"] = TaskStatus.PENDING.value
        row["created_at"] = to_iso(self._clock())

        with self._lock:
            new_stats = apply_event(self._stats, TaskCreated(category=task_in.category))
            try:
                with self._gateway.transaction():
                    created = self._gateway.insert_task(user_id, row)
                    self._gateway.patch_stats(user_id, stats_to_row(new_stats))
            except PersistenceError as exc:
                log.error("Adding task %r failed: %s", task_in.title, exc)
                return Outcome.failure(exc)
            task = row_to_task(created)
            self._tasks.append(task)
            self._stats = new_stats

        log.info("Added task %s (%s)", task.id, task.category.value)
        return Outcome.success(task)

    def update_task(
        self, task_id: str, patch: Union[TaskUpdate, Mapping[str, Any]]
    ) -> Outcome[Task]:
        """Merge ``patch`` into an existing task.

        ``id`` and ``created_at`` are never overwritten.  Completion goes
        through :meth:`complete_task`, and terminal tasks keep their status.
        Moving a task to another category moves its tallies with it.
        """
        user_id = self._session_user()
        if not isinstance(user_id, str):
            return Outcome.failure(user_id)
        try:
            update = patch if isinstance(patch, TaskUpdate) else TaskUpdate.model_validate(patch)
        except ValidationError as exc:
            return Outcome.failure(_validation_error(exc))
        changes = update.changes()

        with self._lock:
            current = self._find(task_id)
            if current is None:
                return Outcome.failure(NotFoundError(task_id))

            new_status = changes.get("status")
            if new_status is not None and new_status == current.status:
                del changes["status"]
            elif new_status is not None:
                if current.status.is_terminal:
                    return Outcome.failure(
                        TaskValidationError(
                            f"Task is {current.status.value}; its status can no longer change.",
                            fields=["status"],
                        )
                    )
                if new_status == TaskStatus.COMPLETED:
                    return Outcome.failure(
                        TaskValidationError(
                            "Tasks are completed with `complete`, not by editing the status.",
                            fields=["status"],
                        )
                    )
            if not changes:
                return Outcome.success(current)

            try:
                merged = Task.model_validate({**current.model_dump(), **changes})
            except ValidationError as exc:
                return Outcome.failure(_validation_error(exc))

            new_stats = self._stats
            if merged.category != current.category:
                new_stats = apply_event(
                    self._stats,
                    TaskRecategorized(
                        old=current.category,
                        new=merged.category,
                        completed=current.is_completed,
                    ),
                )

            try:
                with self._gateway.transaction():
                    self._gateway.patch_task(task_id, task_patch_to_row(changes))
                    if new_stats is not self._stats:
                        self._gateway.patch_stats(user_id, stats_to_row(new_stats))
            except PersistenceError as exc:
                log.error("Updating task %s failed: %s", task_id, exc)
                return Outcome.failure(exc)
            self._replace(merged)
            self._stats = new_stats

        log.info("Updated task %s fields=%s", task_id, sorted(changes))
        return Outcome.success(merged)

    def set_status(self, task_id: str, status: TaskStatus) -> Outcome[Task]:
        """Move a task to ``in-progress``, back to ``pending``, or to ``missed``."""
        return self.update_task(task_id, TaskUpdate(status=status))

    def complete_task(self, task_id: str) -> Outcome[CompletionFeedback]:
        """Complete a task, writing the task, one ledger entry and the stats together.

        Completing an already completed task changes nothing.
        """
        user_id = self._session_user()
        if not isinstance(user_id, str):
            return Outcome.failure(user_id)

        with self._lock:
            task = self._find(task_id)
            if task is None:
                return Outcome.failure(NotFoundError(task_id))
            if task.is_completed:
                return Outcome.success(
                    CompletionFeedback(
                        task=task,
                        is_on_time=task.completed_at is not None
                        and task.completed_at <= task.deadline,
                        applied_ledger_delta=0,
                        points_earned=task.points_earned,
                        already_completed=True,
                    )
                )
            if task.status == TaskStatus.MISSED:
                return Outcome.failure(
                    TaskValidationError("Task was missed and can no longer be completed.")
                )

            now = self._clock()
            result = compute_completion(task, now, self._stats)
            completed = task.model_copy(
                update={
                    "status": TaskStatus.COMPLETED,
                    "completed_at": now,
                    "points_earned": result.points_earned,
                }
            )
            record = PointsRecord(
                id=uuid.uuid4().hex,
                task_id=task.id,
                points=result.ledger_delta,
                reason=result.reason,
                timestamp=now,
            )
            new_stats = apply_event(self._stats, TaskCompleted(result=result))

            try:
                with self._gateway.transaction():
                    self._gateway.patch_task(
                        task.id,
                        task_patch_to_row(
                            {
                                "status": TaskStatus.COMPLETED,
                                "completed_at": now,
                                "points_earned": result.points_earned,
                            }
                        ),
                    )
                    self._gateway.insert_points_record(user_id, points_to_row(record))
                    self._gateway.patch_stats(user_id, stats_to_row(new_stats))
            except PersistenceError as exc:
                log.error("Completing task %s failed: %s", task_id, exc)
                return Outcome.failure(exc)

            self._replace(completed)
            self._ledger.append(record)
            self._stats = new_stats

        log.info(
            "Completed task %s on_time=%s delta=%+d streak=%d",
            task_id,
            result.is_on_time,
            result.ledger_delta,
            result.new_streak,
        )
        return Outcome.success(
            CompletionFeedback(
                task=completed,
                is_on_time=result.is_on_time,
                applied_ledger_delta=result.ledger_delta,
                points_earned=result.points_earned,
                reason=result.reason,
            )
        )

    def delete_task(self, task_id: str) -> Outcome[Task]:
        """Remove a task.  Category totals count tasks ever created, so stay put."""
        user_id = self._session_user()
        if not isinstance(user_id, str):
            return Outcome.failure(user_id)

        with self._lock:
            task = self._find(task_id)
            if task is None:
                return Outcome.failure(NotFoundError(task_id))
            try:
                self._gateway.delete_task(task_id)
            except PersistenceError as exc:
                log.error("Deleting task %s failed: %s", task_id, exc)
                return Outcome.failure(exc)
            self._tasks = [t for t in self._tasks if t.id != task_id]

        log.info("Deleted task %s", task_id)
        return Outcome.success(task)

    # ---- derived queries ----

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._find(task_id)

    def tasks_by_category(self, category: TaskCategory) -> list[Task]:
        return [t for t in self.tasks if t.category == category]

    def todays_tasks(self, now: Optional[datetime] = None) -> list[Task]:
        """Tasks scheduled to start today, earliest first."""
        now = now or self._clock()
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        scheduled = [
            t
            for t in self.tasks
            if t.scheduled_start is not None and start <= t.scheduled_start < end
        ]
        return sorted(scheduled, key=lambda t: t.scheduled_start)  # type: ignore[arg-type, return-value]

    def upcoming_tasks(self, limit: int = 5, now: Optional[datetime] = None) -> list[Task]:
        """Open tasks whose deadline is still ahead, soonest first."""
        now = now or self._clock()
        open_tasks = [t for t in self.tasks if not t.is_completed and t.deadline > now]
        return sorted(open_tasks, key=lambda t: t.deadline)[:limit]

    def overdue_tasks(self, now: Optional[datetime] = None) -> list[Task]:
        now = now or self._clock()
        return [t for t in self.tasks if not t.is_completed and t.deadline < now]

    def top_focus(self, limit: int = 3, now: Optional[datetime] = None) -> list[Task]:
        """Open tasks ranked by the priority heuristic."""
        now = now or self._clock()
        open_tasks = [t for t in self.tasks if not t.is_completed]
        return rank_by_priority(open_tasks, now)[:limit]
