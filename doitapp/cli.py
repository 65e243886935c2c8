"""DoIt CLI -- earn points for finishing tasks on time."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import typer

from doitapp import config as cfg
from doitapp import display, encouragement, reports
from doitapp.demo import seed_demo
from doitapp.errors import AuthRequiredError, PersistenceError
from doitapp.gateway import SqliteGateway
from doitapp.identity import LocalIdentity
from doitapp.logging_setup import setup_logging
from doitapp.models import Outcome, RecurringPattern, Task, TaskCategory, TaskStatus
from doitapp.reminders import NotifiedTasks, ReminderChecker
from doitapp.store import TaskStore

log = logging.getLogger(__name__)

app = typer.Typer(
    name="doit",
    help="Track tasks, finish them on time, earn points and keep your streak.",
    no_args_is_help=True,
)

_RELATIVE = re.compile(r"^\+(\d+)([mhd])$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    setup_logging(verbose)


def _get_db_path() -> Path:
    return cfg.get_db_path()


@contextmanager
def _opened() -> Iterator[TaskStore]:
    """Open the store for the configured user and close it afterwards."""
    conf = cfg.load_config()
    try:
        gateway = SqliteGateway(_get_db_path())
    except PersistenceError as exc:
        display.print_error(exc)
        raise typer.Exit(1)
    store = TaskStore(gateway, LocalIdentity(conf.user_id))
    try:
        outcome = store.load()
        _check(outcome)
        yield store
    finally:
        store.close()
        gateway.close()


def _check(outcome: Outcome) -> Any:
    """Return the outcome's value, or report its error and exit."""
    if not outcome.ok:
        display.print_error(outcome.error)
        raise typer.Exit(1)
    return outcome.value


def _parse_when(value: Optional[str]) -> Optional[str]:
    """Expand ``+30m`` / ``+2h`` / ``+3d`` relative to now; pass anything else on."""
    if value is None:
        return None
    match = _RELATIVE.match(value.strip())
    if match:
        amount, unit = match.groups()
        return (datetime.now() + timedelta(**{_UNITS[unit]: int(amount)})).isoformat()
    return value


def _resolve(store: TaskStore, ref: str) -> str:
    """Accept a full id or an unambiguous id prefix."""
    if store.get_task(ref) is not None:
        return ref
    matches = [t.id for t in store.tasks if t.id.startswith(ref)]
    if len(matches) > 1:
        display.print_warning(f"Task id '{ref}' is ambiguous; use more characters.")
        raise typer.Exit(1)
    return matches[0] if matches else ref


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@app.command()
def login(user: str = typer.Argument(..., help="Your user name")) -> None:
    """Sign in; tasks and points are kept per user."""
    if not user.strip():
        display.print_warning("User name must not be empty.")
        raise typer.Exit(1)
    cfg.set_user(user.strip())
    display.print_success(f"Signed in as {user.strip()}.")


@app.command()
def logout() -> None:
    """Sign out of the current session."""
    cfg.set_user(None)
    display.print_success("Signed out.")


@app.command()
def whoami() -> None:
    """Show who is signed in."""
    user = cfg.load_config().user_id
    if user is None:
        display.print_info("Not signed in.")
    else:
        display.print_info(f"Signed in as {user}.")


@app.command()
def demo() -> None:
    """Fill a fresh account with sample tasks and stats."""
    user = cfg.load_config().user_id
    if user is None:
        display.print_error(AuthRequiredError())
        raise typer.Exit(1)
    try:
        gateway = SqliteGateway(_get_db_path())
        try:
            count = seed_demo(gateway, user)
        finally:
            gateway.close()
    except PersistenceError as exc:
        display.print_error(exc)
        raise typer.Exit(1)
    if count == 0:
        display.print_warning("You already have tasks; demo data was not added.")
        raise typer.Exit(1)
    display.print_success(f"Added {count} demo tasks.")
    with _opened() as store:
        display.print_task_list(store.tasks, title="Tasks")


# ---------------------------------------------------------------------------
# Task management
# ---------------------------------------------------------------------------


@app.command()
def add(
    title: str = typer.Argument(..., help="What do you need to do?"),
    deadline: str = typer.Option(
        ..., "--deadline", "-d", help="ISO date/time, or relative like +2h, +3d"
    ),
    category: TaskCategory = typer.Option(TaskCategory.PERSONAL, "--category", "-c"),
    difficulty: int = typer.Option(5, "--difficulty", help="1-10"),
    importance: int = typer.Option(5, "--importance", help="1-10"),
    estimate: int = typer.Option(30, "--estimate", "-e", help="Estimated minutes"),
    description: Optional[str] = typer.Option(None, "--description"),
    repeat: Optional[RecurringPattern] = typer.Option(None, "--repeat", help="Recurring pattern"),
    start: Optional[str] = typer.Option(None, "--start", help="Scheduled start"),
    end: Optional[str] = typer.Option(None, "--end", help="Scheduled end"),
    depends: Optional[list[str]] = typer.Option(None, "--depends", help="Task id this depends on"),
) -> None:
    """Add a new task."""
    with _opened() as store:
        fields = {
            "title": title,
            "description": description,
            "category": category,
            "estimated_time": estimate,
            "difficulty": difficulty,
            "importance": importance,
            "deadline": _parse_when(deadline),
            "dependencies": [_resolve(store, d) for d in depends or []],
            "is_recurring": repeat is not None,
            "recurring_pattern": repeat,
            "scheduled_start": _parse_when(start),
            "scheduled_end": _parse_when(end),
        }
        task = _check(store.add_task(fields))
        display.print_success(f"Added task {display.short_id(task.id)}: {task.title}")


@app.command(name="list")
def list_tasks(
    all_tasks: bool = typer.Option(False, "--all", "-a", help="Include completed tasks"),
    category: Optional[TaskCategory] = typer.Option(None, "--category", "-c"),
) -> None:
    """List your tasks."""
    with _opened() as store:
        tasks = store.tasks_by_category(category) if category else store.tasks
        if not all_tasks:
            tasks = [t for t in tasks if not t.is_completed]
        title = f"Tasks ({category.value})" if category else "Tasks"
        display.print_task_list(tasks, title=title)


@app.command()
def show(task_id: str = typer.Argument(..., help="Task id (or prefix)")) -> None:
    """Show one task in full."""
    with _opened() as store:
        task = store.get_task(_resolve(store, task_id))
        if task is None:
            display.print_warning(f"Task {task_id} not found.")
            raise typer.Exit(1)
        display.print_task(task)


@app.command()
def start(task_id: str = typer.Argument(..., help="Task id (or prefix)")) -> None:
    """Mark a task as in progress."""
    with _opened() as store:
        task = _check(store.set_status(_resolve(store, task_id), TaskStatus.IN_PROGRESS))
        display.print_success(f"Started: {task.title}")


@app.command()
def done(task_id: str = typer.Argument(..., help="Task id (or prefix)")) -> None:
    """Complete a task and collect the points."""
    with _opened() as store:
        feedback = _check(store.complete_task(_resolve(store, task_id)))
        display.print_completion(feedback, encouragement.completion_message(feedback.is_on_time))


@app.command()
def miss(task_id: str = typer.Argument(..., help="Task id (or prefix)")) -> None:
    """Give up on a task; it is marked as missed."""
    with _opened() as store:
        task = _check(store.set_status(_resolve(store, task_id), TaskStatus.MISSED))
        display.print_info(f"Marked as missed: {task.title}")


@app.command()
def edit(
    task_id: str = typer.Argument(..., help="Task id (or prefix)"),
    title: Optional[str] = typer.Option(None, "--title"),
    deadline: Optional[str] = typer.Option(None, "--deadline", "-d"),
    category: Optional[TaskCategory] = typer.Option(None, "--category", "-c"),
    difficulty: Optional[int] = typer.Option(None, "--difficulty"),
    importance: Optional[int] = typer.Option(None, "--importance"),
    estimate: Optional[int] = typer.Option(None, "--estimate", "-e"),
    description: Optional[str] = typer.Option(None, "--description"),
    start_at: Optional[str] = typer.Option(None, "--start"),
    end_at: Optional[str] = typer.Option(None, "--end"),
) -> None:
    """Change fields of a task."""
    patch = {
        "title": title,
        "deadline": _parse_when(deadline),
        "category": category,
        "difficulty": difficulty,
        "importance": importance,
        "estimated_time": estimate,
        "description": description,
        "scheduled_start": _parse_when(start_at),
        "scheduled_end": _parse_when(end_at),
    }
    patch = {k: v for k, v in patch.items() if v is not None}
    if not patch:
        display.print_info("Nothing to change. See `doit edit --help`.")
        return
    with _opened() as store:
        task = _check(store.update_task(_resolve(store, task_id), patch))
        display.print_success(f"Updated: {task.title}")


@app.command()
def delete(
    task_id: str = typer.Argument(..., help="Task id (or prefix)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a task. Points already earned are kept."""
    with _opened() as store:
        resolved = _resolve(store, task_id)
        task = store.get_task(resolved)
        if task is not None and not yes:
            typer.confirm(f'Delete "{task.title}"?', abort=True)
        removed = _check(store.delete_task(resolved))
        display.print_success(f"Deleted: {removed.title}")


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@app.command()
def today() -> None:
    """Tasks scheduled for today."""
    with _opened() as store:
        display.print_task_list(store.todays_tasks(), title="Today")


@app.command()
def upcoming(limit: int = typer.Option(5, "--limit", "-n")) -> None:
    """Open tasks with the nearest deadlines."""
    with _opened() as store:
        display.print_task_list(store.upcoming_tasks(limit=limit), title="Upcoming")


@app.command()
def focus(limit: int = typer.Option(3, "--limit", "-n")) -> None:
    """What deserves your attention right now."""
    with _opened() as store:
        display.print_task_list(store.top_focus(limit=limit), title="Top focus")
        overdue = store.overdue_tasks()
        if overdue:
            display.print_warning(
                f"{len(overdue)} task{'s are' if len(overdue) != 1 else ' is'} overdue."
            )


@app.command()
def stats() -> None:
    """Points, streaks and category balance."""
    with _opened() as store:
        display.print_stats(store.stats, user_id=store.user_id)


@app.command()
def history(limit: int = typer.Option(20, "--limit", "-n")) -> None:
    """Recent point changes, newest first."""
    with _opened() as store:
        by_id = {t.id: t for t in store.tasks}
        display.print_points_history(store.points_history()[:limit], by_id)


@app.command()
def report() -> None:
    """Monthly overview, category rates and the two-week points trend."""
    with _opened() as store:
        tasks = store.tasks
        display.print_report(
            reports.monthly_overview(store.stats, tasks),
            reports.time_insights(tasks),
            reports.points_trend(store.points_history(), tasks),
            reports.category_rates(store.stats),
        )


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


def _live_tasks(store: TaskStore) -> Callable[[], list[Task]]:
    """Task snapshot that picks up changes made by other ``doit`` runs."""

    def snapshot() -> list[Task]:
        outcome = store.load()
        if not outcome.ok:
            log.warning("Reload before reminder check failed: %s", outcome.error)
        return store.tasks

    return snapshot


@app.command()
def remind(
    once: bool = typer.Option(False, "--once", help="Check one time and exit"),
    window: Optional[int] = typer.Option(None, "--window", "-w", help="Minutes before deadline"),
) -> None:
    """Watch deadlines and alert shortly before they pass."""
    conf = cfg.load_config()
    if not conf.notifications_enabled:
        display.print_warning("Reminders are off. Turn them on with `doit config --reminders`.")
        raise typer.Exit(1)
    with _opened() as store:
        checker = ReminderChecker(
            tasks=_live_tasks(store),
            sink=display.ConsoleSink(),
            notified=NotifiedTasks(cfg.get_notified_path()),
            window_minutes=window or conf.reminder_minutes,
        )
        if once:
            alerted = checker.check()
            if not alerted:
                display.print_info("Nothing due soon.")
            return
        display.print_info(
            f"Watching deadlines (every {conf.check_interval_seconds}s). Ctrl-C to stop."
        )
        try:
            checker.run_forever(interval=conf.check_interval_seconds)
        except KeyboardInterrupt:
            checker.stop()
            display.print_info("Stopped.")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@app.command()
def config(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Set a custom database file path"),
    reset: bool = typer.Option(False, "--reset", help="Reset to default local DB"),
    reminders: Optional[bool] = typer.Option(
        None, "--reminders/--no-reminders", help="Turn deadline reminders on or off"
    ),
    reminder_minutes: Optional[int] = typer.Option(
        None, "--reminder-minutes", help="Minutes before a deadline to alert"
    ),
    show: bool = typer.Option(False, "--show", help="Show current config"),
) -> None:
    """Configure where data is stored and how reminders behave."""
    if db_path:
        result = cfg.set_db_path(db_path)
        display.print_success(f"Database path set to: {result.db_path}")
    elif reset:
        cfg.reset_db_path()
        display.print_success("Reset to default local database.")
    elif reminders is not None or reminder_minutes is not None:
        try:
            result = cfg.set_reminders(enabled=reminders, minutes=reminder_minutes)
        except ValueError as exc:
            display.print_warning(f"Invalid reminder settings: {exc}")
            raise typer.Exit(1)
        state = "on" if result.notifications_enabled else "off"
        display.print_success(
            f"Reminders {state}, {result.reminder_minutes} min before deadlines."
        )
    elif show:
        current = cfg.load_config()
        resolved = _get_db_path()
        if current.db_path:
            display.print_info(f"Database: {current.db_path}")
        else:
            display.print_info(f"Database: {resolved} (default)")
        display.print_info(f"User: {current.user_id or '-'}")
        state = "on" if current.notifications_enabled else "off"
        display.print_info(f"Reminders: {state}, {current.reminder_minutes} min before")
    else:
        display.print_info("Use --db-path, --reset, --reminders, --reminder-minutes, or --show.")
