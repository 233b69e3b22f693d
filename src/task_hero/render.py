"""Terminal rendering of tasks, PRDs and engine results with rich."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from rich.console import Console
from rich.table import Table

from .engine.model import PRD, Task
from .engine.prd_sync import CascadeResult, LinkIssue, LinkRepairReport, ResyncSummary
from .engine.selector import Selection
from .engine.status import StatusChange
from .engine.validator import FixReport

STATUS_STYLES = {
    "pending": "white",
    "in-progress": "yellow",
    "done": "green",
    "review": "magenta",
    "blocked": "red",
    "deferred": "dim",
    "cancelled": "dim strike",
    "archived": "dim",
}

PRIORITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "dim",
}


def _status(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _priority(value: str) -> str:
    style = PRIORITY_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def render_tasks(console: Console, tasks: Iterable[Task], title: str = "Tasks") -> None:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Dependencies", style="dim")
    table.add_column("PRD", style="dim")
    count = 0
    for task in tasks:
        count += 1
        indent = "  " * task.id.count(".")
        table.add_row(
            task.id,
            f"{indent}{task.title}",
            _status(task.status.value),
            _priority(task.priority.value),
            ", ".join(task.dependencies) or "-",
            task.prd_id or "-",
        )
    if count == 0:
        console.print("[dim]No tasks found.[/dim]")
        return
    console.print(table)


def render_task(console: Console, task: Task, subtasks: Optional[list[Task]] = None) -> None:
    console.print()
    console.print(f"[bold]Task {task.id}: {task.title}[/bold]")
    console.print("━" * 80)

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", _status(task.status.value))
    table.add_row("Priority", _priority(task.priority.value))
    table.add_row("Dependencies", ", ".join(task.dependencies) or "-")
    table.add_row("Parent", task.parent_id or "-")
    table.add_row("PRD", task.prd_id or "-")
    table.add_row("Created", task.created_at)
    table.add_row("Updated", task.updated_at)
    if task.completed_at:
        table.add_row("Completed", task.completed_at)
    console.print(table)

    if task.description:
        console.print(f"\n[bold]Description:[/bold]\n{task.description}")
    if task.details:
        console.print(f"\n[bold]Details:[/bold]\n{task.details}")
    if task.test_strategy:
        console.print(f"\n[bold]Test Strategy:[/bold]\n{task.test_strategy}")
    if subtasks:
        console.print()
        render_tasks(console, subtasks, title="Subtasks")


def render_status_changes(console: Console, changes: list[StatusChange]) -> None:
    for change in changes:
        if change.changed:
            console.print(
                f"[green]✓[/green] Task [cyan]{change.task.id}[/cyan]: "
                f"{_status(change.previous_status.value)} → {_status(change.status.value)}"
            )
        else:
            console.print(f"Task [cyan]{change.task.id}[/cyan] already {_status(change.status.value)}")
        if change.unblocked:
            console.print(f"  [bold]Now available:[/bold] {', '.join(change.unblocked)}")
        for result in change.prd_results:
            console.print(
                f"  PRD [cyan]{result.prd_id}[/cyan]: {_status(result.status.value)} "
                f"({result.stats.completed}/{result.stats.total}, {result.stats.completion_percentage}%)"
            )


def render_selection(console: Console, selection: Selection) -> None:
    if selection.task is None:
        reason = selection.reason
        console.print(f"[yellow]No task available[/yellow] ({reason.value if reason else '-'})")
        if reason is not None:
            console.print(f"[dim]{reason.message}[/dim]")
        return
    render_task(console, selection.task)
    console.print(f"\n[dim]{selection.candidates} task(s) ready to start.[/dim]")


def render_issues(console: Console, issues: list[Any]) -> None:
    if not issues:
        console.print("[green]✓ No dependency issues found.[/green]")
        return
    table = Table(title=f"Dependency issues ({len(issues)})")
    table.add_column("Type", style="cyan")
    table.add_column("Task", style="bold")
    table.add_column("Detail")
    for issue in issues:
        task = getattr(issue, "task", None) or (issue.path[0] if getattr(issue, "path", None) else "-")
        table.add_row(issue.kind, task, issue.message)
    console.print(table)


def render_fix_report(console: Console, report: FixReport) -> None:
    if not report.changed:
        console.print("[green]✓ Dependency graph already consistent; nothing removed.[/green]")
        return
    table = Table(title=f"Removed dependencies ({len(report.removed_edges)})")
    table.add_column("Task", style="cyan")
    table.add_column("Depended on")
    for task_id, depends_on in report.removed_edges:
        table.add_row(task_id, depends_on)
    console.print(table)
    if report.cycle_iterations:
        console.print(f"[dim]Broke {report.cycle_iterations} cycle(s).[/dim]")


def render_batches(console: Console, batches: list[list[str]]) -> None:
    if not batches:
        console.print("[dim]No open tasks.[/dim]")
        return
    table = Table(title="Execution order")
    table.add_column("Batch", style="cyan", justify="right")
    table.add_column("Tasks")
    for index, batch in enumerate(batches, start=1):
        table.add_row(str(index), ", ".join(batch))
    console.print(table)


def render_board(console: Console, board: dict[str, Any]) -> None:
    columns: dict[str, list[Task]] = board["columns"]
    table = Table(title=f"Board ({board['total']} tasks)")
    active = [name for name, tasks in columns.items() if tasks] or list(columns)
    for name in active:
        table.add_column(_status(name))
    height = max((len(columns[name]) for name in active), default=0)
    for row in range(height):
        cells = []
        for name in active:
            tasks = columns[name]
            cells.append(f"[cyan]{tasks[row].id}[/cyan] {tasks[row].title}" if row < len(tasks) else "")
        table.add_row(*cells)
    console.print(table)

    waiting = board.get("waiting_on_inactive") or {}
    for task_id, deps in waiting.items():
        console.print(
            f"[yellow]![/yellow] Task [cyan]{task_id}[/cyan] waits on cancelled or deferred "
            f"task(s) {', '.join(deps)}; remove the dependency to unblock it."
        )


def render_prds(console: Console, prds: Iterable[PRD]) -> None:
    table = Table(title="PRDs")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("File", style="dim")
    count = 0
    for prd in prds:
        count += 1
        stats = prd.task_stats
        table.add_row(
            prd.id,
            prd.title,
            _status(prd.status.value),
            f"{stats.completed}/{stats.total} ({stats.completion_percentage}%)",
            prd.file_name or "-",
        )
    if count == 0:
        console.print("[dim]No PRDs found.[/dim]")
        return
    console.print(table)


def render_prd(console: Console, prd: PRD, tasks: Optional[list[Task]] = None) -> None:
    console.print()
    console.print(f"[bold]PRD {prd.id}: {prd.title}[/bold]")
    console.print("━" * 80)
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", _status(prd.status.value))
    table.add_row("File", prd.file_name or "-")
    stats = prd.task_stats
    table.add_row("Progress", f"{stats.completed}/{stats.total} ({stats.completion_percentage}%)")
    table.add_row("In progress", str(stats.in_progress))
    table.add_row("Pending", str(stats.pending))
    if prd.status_update_reason:
        table.add_row("Last status change", f"{prd.status_updated_at} ({prd.status_update_reason})")
    console.print(table)
    if prd.description:
        console.print(f"\n[bold]Description:[/bold]\n{prd.description}")
    if tasks:
        console.print()
        render_tasks(console, tasks, title="Linked tasks")


def render_cascade(console: Console, result: CascadeResult) -> None:
    console.print(f"[green]✓[/green] PRD [cyan]{result.prd.id}[/cyan] marked done")
    if result.tasks_updated:
        console.print(f"  Marked {result.tasks_updated} task(s) as done: {', '.join(result.updated_task_ids)}")
    else:
        console.print("  All linked tasks were already done.")


def render_resync(console: Console, summary: ResyncSummary) -> None:
    for result in summary.results:
        marker = "[green]↻[/green]" if result.changed else "[dim]=[/dim]"
        console.print(
            f"{marker} PRD [cyan]{result.prd_id}[/cyan]: {_status(result.status.value)} "
            f"({result.stats.completion_percentage}%)"
        )
    console.print(
        f"[dim]{summary.processed} processed, {summary.updated} updated, {summary.unchanged} unchanged[/dim]"
    )


def render_link_issues(console: Console, issues: list[LinkIssue]) -> None:
    if not issues:
        console.print("[green]✓ All PRD links are consistent.[/green]")
        return
    table = Table(title=f"PRD link issues ({len(issues)})")
    table.add_column("Severity")
    table.add_column("Type", style="cyan")
    table.add_column("PRD")
    table.add_column("Task")
    table.add_column("Detail")
    for issue in issues:
        severity = "[red]error[/red]" if issue.severity == "error" else "[yellow]warning[/yellow]"
        table.add_row(severity, issue.type, issue.prd_id, issue.task_id, issue.message)
    console.print(table)


def render_link_repair(console: Console, report: LinkRepairReport) -> None:
    for prd_id, task_id in report.linked:
        console.print(f"[green]+[/green] Linked task [cyan]{task_id}[/cyan] to PRD [cyan]{prd_id}[/cyan]")
    for prd_id, task_id in report.unlinked:
        console.print(f"[red]-[/red] Removed missing task [cyan]{task_id}[/cyan] from PRD [cyan]{prd_id}[/cyan]")
    if report.remaining:
        console.print("[yellow]Needs manual attention:[/yellow]")
        render_link_issues(console, report.remaining)
    elif not (report.linked or report.unlinked):
        console.print("[green]✓ Nothing to repair.[/green]")
