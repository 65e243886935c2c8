"""Deadline reminders.

The checker only reads tasks.  It remembers which tasks it already alerted
about in a small JSON side-table so each task alerts at most once.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

from doitapp.models import Task
from doitapp.scoring import round_half_up

log = logging.getLogger(__name__)


def upcoming_within_window(
    tasks: Iterable[Task], window_minutes: int, now: datetime
) -> list[Task]:
    """Open tasks due after ``now`` but no later than ``window_minutes`` from it."""
    horizon = now + timedelta(minutes=window_minutes)
    return [t for t in tasks if not t.is_completed and now < t.deadline <= horizon]


def minutes_until(task: Task, now: datetime) -> int:
    return round_half_up((task.deadline - now).total_seconds() / 60)


def reminder_text(task: Task, minutes: int) -> tuple[str, str]:
    """Title and body for an alert about ``task``."""
    if minutes > 0:
        body = f"Due in {minutes} minute{'s' if minutes != 1 else ''}"
    else:
        body = "Due now!"
    return f"Task due soon: {task.title}", body


class NotificationSink(Protocol):
    def notify(self, task: Task, minutes_left: int) -> None: ...


class NotifiedTasks:
    """Ids of tasks that have already been alerted, optionally kept on disk."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._ids: set[str] = set()
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            log.warning("Ignoring unreadable notified-tasks file %s: %s", self._path, exc)
            return
        if isinstance(data, list):
            self._ids = {str(i) for i in data}

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(sorted(self._ids)))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def mark(self, task_id: str) -> None:
        with self._lock:
            self._ids.add(task_id)
            self._save()

    def prune(self, tasks: Iterable[Task], now: datetime) -> set[str]:
        """Forget tasks that are gone, completed, or already past their deadline."""
        live = {t.id: t for t in tasks}
        with self._lock:
            outdated = {
                task_id
                for task_id in self._ids
                if task_id not in live
                or live[task_id].is_completed
                or live[task_id].deadline < now
            }
            if outdated:
                self._ids -= outdated
                self._save()
        return outdated


class ReminderChecker:
    """Periodically alerts about tasks entering the reminder window."""

    def __init__(
        self,
        tasks: Callable[[], list[Task]],
        sink: NotificationSink,
        notified: Optional[NotifiedTasks] = None,
        window_minutes: int = 30,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._tasks = tasks
        self._sink = sink
        self._notified = notified if notified is not None else NotifiedTasks()
        self._window_minutes = window_minutes
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self) -> list[Task]:
        """Run one pass and return the tasks that were alerted."""
        now = self._clock()
        snapshot = self._tasks()
        self._notified.prune(snapshot, now)
        alerted: list[Task] = []
        for task in upcoming_within_window(snapshot, self._window_minutes, now):
            if task.id in self._notified:
                continue
            try:
                self._sink.notify(task, minutes_until(task, now))
            except Exception:
                log.exception("Notification sink failed for task %s", task.id)
                continue
            self._notified.mark(task.id)
            alerted.append(task)
        return alerted

    def _run(self, interval: float) -> None:
        while not self._stop.is_set():
            try:
                self.check()
            except Exception:
                log.exception("Reminder check failed; retrying in %ss", interval)
            self._stop.wait(interval)

    def start(self, interval: float = 60.0) -> None:
        """Check now, then every ``interval`` seconds on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval,), name="doitapp-reminders", daemon=True
        )
        self._thread.start()
        log.debug("Reminder checker started interval=%ss", interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_forever(self, interval: float = 60.0) -> None:
        """Blocking loop for the CLI; returns when :meth:`stop` is called."""
        self._stop.clear()
        self._run(interval)
