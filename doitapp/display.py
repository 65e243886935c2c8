"""Rich terminal formatting helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from doitapp.errors import DoItError
from doitapp.models import (
    CategoryRate,
    CompletionFeedback,
    DailyPoints,
    MonthlyOverview,
    PointsRecord,
    Task,
    TaskCategory,
    TaskStatus,
    TimeInsights,
    UserStats,
)
from doitapp.reminders import reminder_text

console = Console()

SHORT_ID = 8

_STATUS_STYLE: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "dim",
    TaskStatus.IN_PROGRESS: "bold cyan",
    TaskStatus.COMPLETED: "green",
    TaskStatus.MISSED: "red",
}

_STATUS_ICON: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.COMPLETED: "[x]",
    TaskStatus.MISSED: "[!]",
}

_CATEGORY_STYLE: dict[TaskCategory, str] = {
    TaskCategory.ACADEMIC: "blue",
    TaskCategory.PROFESSIONAL: "magenta",
    TaskCategory.PERSONAL: "yellow",
}


def short_id(task_id: str) -> str:
    return task_id[:SHORT_ID]


def _when(value: Optional[datetime]) -> str:
    return value.strftime("%a %d %b %H:%M") if value else "-"


def print_task_list(tasks: list[Task], title: str = "Tasks") -> None:
    """Print a list of tasks in a panel."""
    if not tasks:
        console.print(Panel("No tasks.", title=title, border_style="dim"))
        return

    table = Table(box=None, pad_edge=False)
    table.add_column("", width=3)
    table.add_column("id", width=SHORT_ID)
    table.add_column("title")
    table.add_column("category")
    table.add_column("D/I", justify="right")
    table.add_column("deadline")
    table.add_column("pts", justify="right")

    for task in tasks:
        table.add_row(
            Text(_STATUS_ICON[task.status]),
            short_id(task.id),
            Text(task.title),
            Text(task.category.value, style=_CATEGORY_STYLE[task.category]),
            f"{task.difficulty}/{task.importance}",
            _when(task.deadline),
            "" if task.points_earned is None else str(task.points_earned),
            style=_STATUS_STYLE[task.status],
        )

    console.print(Panel(table, title=title, border_style="blue"))


def print_task(task: Task) -> None:
    """Print every field of a single task."""
    lines = [
        f"[bold]{escape(task.title)}[/bold]  ({task.status.value})",
        f"id: {task.id}",
        f"category: {task.category.value}",
        f"difficulty {task.difficulty}, importance {task.importance}, ~{task.estimated_time} min",
        f"deadline: {_when(task.deadline)}",
    ]
    if task.description:
        lines.insert(1, escape(task.description))
    if task.scheduled_start:
        lines.append(f"scheduled: {_when(task.scheduled_start)} -> {_when(task.scheduled_end)}")
    if task.is_recurring and task.recurring_pattern:
        lines.append(f"repeats {task.recurring_pattern.value}")
    if task.dependencies:
        lines.append("depends on: " + ", ".join(short_id(d) for d in task.dependencies))
    if task.completed_at:
        lines.append(f"completed: {_when(task.completed_at)} for {task.points_earned} pts")
    console.print(Panel("\n".join(lines), border_style=_STATUS_STYLE[task.status]))


def print_stats(stats: UserStats, user_id: Optional[str] = None) -> None:
    """Print points, streaks and the category breakdown."""
    lines = [
        f"Total points: [bold]{stats.total_points}[/bold]",
        f"Tasks completed: {stats.tasks_completed}   missed: {stats.tasks_missed}",
        f"Streak: {stats.current_streak} (best {stats.best_streak})",
        "",
    ]
    for category in TaskCategory:
        tally = stats.tally(category)
        lines.append(
            f"[{_CATEGORY_STYLE[category]}]{category.value:<13}[/] "
            f"{tally.completed}/{tally.total}"
        )
    title = f"Stats for {user_id}" if user_id else "Stats"
    console.print(Panel("\n".join(lines), title=title, border_style="green"))


def print_points_history(records: list[PointsRecord], tasks_by_id: dict[str, Task]) -> None:
    if not records:
        console.print(Panel("No points yet.", title="Points history", border_style="dim"))
        return
    table = Table(box=None, pad_edge=False)
    table.add_column("when")
    table.add_column("points", justify="right")
    table.add_column("reason")
    table.add_column("task")
    for record in records:
        task = tasks_by_id.get(record.task_id or "")
        style = "green" if record.points >= 0 else "red"
        table.add_row(
            _when(record.timestamp),
            Text(f"{record.points:+d}", style=style),
            record.reason.value,
            Text(task.title) if task else "(deleted)",
        )
    console.print(Panel(table, title="Points history", border_style="blue"))


def print_completion(feedback: CompletionFeedback, message: str) -> None:
    """Print the result of completing a task."""
    if feedback.already_completed:
        print_info(f'"{escape(feedback.task.title)}" was already completed.')
        return
    if feedback.is_on_time:
        headline = f"Task completed! +{feedback.applied_ledger_delta} points"
        style = "green"
    else:
        headline = f"Task completed (late). {feedback.applied_ledger_delta} points"
        style = "yellow"
    text = Text(f"{headline}\n{message}", justify="center")
    console.print(
        Panel(text, title=escape(feedback.task.title), border_style=style, padding=(1, 4))
    )


def print_report(
    overview: MonthlyOverview,
    insights: TimeInsights,
    trend: list[DailyPoints],
    rates: list[CategoryRate],
) -> None:
    lines = [
        f"Total points: {overview.total_points}",
        f"Completed this month: {overview.completed_this_month}",
        f"Completion rate: {overview.completion_rate}%",
        f"Time on completed tasks: {overview.total_minutes} min",
        f"Streak: {overview.current_streak} (best {overview.best_streak})",
    ]
    console.print(Panel("\n".join(lines), title="This month", border_style="green"))

    rate_table = Table(box=None, pad_edge=False)
    rate_table.add_column("category")
    rate_table.add_column("done", justify="right")
    rate_table.add_column("rate", justify="right")
    rate_table.add_column("minutes", justify="right")
    for rate in rates:
        rate_table.add_row(
            Text(rate.category.value, style=_CATEGORY_STYLE[rate.category]),
            f"{rate.completed}/{rate.total}",
            f"{rate.rate}%",
            str(insights.minutes_by_category.get(rate.category, 0)),
        )
    console.print(Panel(rate_table, title="Categories", border_style="blue"))

    peak = f"{insights.peak_hour:02d}:00" if insights.peak_hour is not None else "-"
    trend_table = Table(box=None, pad_edge=False)
    trend_table.add_column("day")
    trend_table.add_column("points", justify="right")
    trend_table.add_column("done", justify="right")
    for day in trend:
        trend_table.add_row(day.day.strftime("%a %d %b"), f"{day.points:+d}", str(day.completed))
    console.print(
        Panel(
            trend_table,
            title=f"Last {len(trend)} days  (peak hour {peak}, avg {insights.average_minutes} min)",
            border_style="blue",
        )
    )


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[blue]{message}[/blue]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]{message}[/yellow]")


def print_error(error: Optional[DoItError]) -> None:
    print_warning(escape(error.get_user_message()) if error else "Something went wrong.")


class ConsoleSink:
    """Notification sink that prints reminders to the terminal."""

    def notify(self, task: Task, minutes_left: int) -> None:
        title, body = reminder_text(task, minutes_left)
        console.print("\a", end="")
        console.print(Panel(body, title=escape(title), border_style="red"))
