from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from rich.console import Console

from . import render
from .config import get_log_level, load_project_config
from .engine.errors import TaskHeroError
from .engine.service import ConsistencyService
from .logging_utils import _configure_logging, summarize_issues


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _service(args: argparse.Namespace) -> ConsistencyService:
    return ConsistencyService(_resolve_project_dir(args.project_dir))


def _split_ids(raw: str) -> list[str]:
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def _emit_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")


def _console() -> Console:
    return Console()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def _list(args: argparse.Namespace) -> int:
    tasks = _service(args).list_tasks(
        status=args.status,
        prd_id=args.prd,
        include_subtasks=not args.no_subtasks,
    )
    if args.json:
        _emit_json({"tasks": [t.to_dict() for t in tasks]})
    else:
        render.render_tasks(_console(), tasks)
    return 0


def _show(args: argparse.Namespace) -> int:
    service = _service(args)
    graph = service.snapshot()
    task = graph.require_task(args.task_id)
    subtasks = [graph.require_task(tid) for tid in graph.subtasks_of(task.id, recursive=False)]
    if args.json:
        _emit_json({"task": task.to_dict(), "subtasks": [t.to_dict() for t in subtasks]})
    else:
        render.render_task(_console(), task, subtasks)
    return 0


def _add_task(args: argparse.Namespace) -> int:
    task = _service(args).create_task(
        title=args.title,
        description=args.description,
        details=args.details,
        test_strategy=args.test_strategy,
        priority=args.priority,
        dependencies=_split_ids(args.dependencies) if args.dependencies else [],
        parent_id=args.parent,
        prd_id=args.prd,
        task_id=args.id,
    )
    if args.json:
        _emit_json({"task": task.to_dict()})
    else:
        _console().print(f"[green]✓[/green] Created task [cyan]{task.id}[/cyan]: {task.title}")
    return 0


def _update_task(args: argparse.Namespace) -> int:
    task = _service(args).update_task(
        args.task_id,
        title=args.title,
        description=args.description,
        details=args.details,
        test_strategy=args.test_strategy,
        priority=args.priority,
        dependencies=_split_ids(args.dependencies) if args.dependencies is not None else None,
    )
    if args.json:
        _emit_json({"task": task.to_dict()})
    else:
        _console().print(f"[green]✓[/green] Updated task [cyan]{task.id}[/cyan]: {task.title}")
    return 0


def _remove_task(args: argparse.Namespace) -> int:
    deleted = _service(args).delete_task(args.task_id)
    if args.json:
        _emit_json({"deleted": deleted})
    else:
        _console().print(f"[green]✓[/green] Removed task(s): [cyan]{', '.join(deleted)}[/cyan]")
    return 0


def _set_status(args: argparse.Namespace) -> int:
    service = _service(args)
    ids = _split_ids(args.task_ids)
    if len(ids) == 1:
        changes = [service.set_status(ids[0], args.status)]
    else:
        changes = service.set_statuses(ids, args.status)
    if args.json:
        _emit_json({"changes": [c.to_dict() for c in changes]})
    else:
        render.render_status_changes(_console(), changes)
    return 0


def _next(args: argparse.Namespace) -> int:
    selection = _service(args).next()
    if args.json:
        _emit_json(selection.to_dict())
    else:
        render.render_selection(_console(), selection)
    return 0


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def _add_dependency(args: argparse.Namespace) -> int:
    added = _service(args).add_dependency(args.task_id, args.depends_on)
    if args.json:
        _emit_json({"task_id": args.task_id, "depends_on": args.depends_on, "added": added})
    elif added:
        _console().print(f"[green]✓[/green] Task [cyan]{args.task_id}[/cyan] now depends on [cyan]{args.depends_on}[/cyan]")
    else:
        _console().print(f"Task [cyan]{args.task_id}[/cyan] already depends on [cyan]{args.depends_on}[/cyan]")
    return 0


def _remove_dependency(args: argparse.Namespace) -> int:
    removed = _service(args).remove_dependency(args.task_id, args.depends_on)
    if args.json:
        _emit_json({"task_id": args.task_id, "depends_on": args.depends_on, "removed": removed})
    elif removed:
        _console().print(f"[green]✓[/green] Removed dependency [cyan]{args.task_id}[/cyan] → [cyan]{args.depends_on}[/cyan]")
    else:
        _console().print(f"Task [cyan]{args.task_id}[/cyan] does not depend on [cyan]{args.depends_on}[/cyan]")
    return 0


def _validate_dependencies(args: argparse.Namespace) -> int:
    issues = _service(args).validate_dependencies()
    if issues:
        logger.info("Dependency validation: {}", summarize_issues(issues))
    if args.json:
        _emit_json({"valid": not issues, "issues": [issue.to_dict() for issue in issues]})
    else:
        render.render_issues(_console(), issues)
    return 1 if issues else 0


def _fix_dependencies(args: argparse.Namespace) -> int:
    report = _service(args).fix_dependencies()
    if args.json:
        _emit_json(report.to_dict())
    else:
        render.render_fix_report(_console(), report)
    return 0


def _execution_order(args: argparse.Namespace) -> int:
    service = _service(args)
    if args.batches:
        batches = service.execution_batches()
        if args.json:
            _emit_json({"batches": batches})
        else:
            render.render_batches(_console(), batches)
        return 0
    order = service.execution_order()
    if args.json:
        _emit_json({"order": order})
    else:
        _console().print(" → ".join(order) if order else "[dim]No tasks.[/dim]")
    return 0


def _board(args: argparse.Namespace) -> int:
    board = _service(args).board()
    if args.json:
        _emit_json({
            "columns": {name: [t.to_dict() for t in tasks] for name, tasks in board["columns"].items()},
            "waiting_on_inactive": board["waiting_on_inactive"],
            "total": board["total"],
        })
    else:
        render.render_board(_console(), board)
    return 0


# ---------------------------------------------------------------------------
# PRDs
# ---------------------------------------------------------------------------

def _prd_add(args: argparse.Namespace) -> int:
    prd = _service(args).create_prd(
        title=args.title,
        file_name=args.file_name,
        description=args.description,
        prd_id=args.id,
    )
    if args.json:
        _emit_json({"prd": prd.to_dict()})
    else:
        _console().print(f"[green]✓[/green] Created PRD [cyan]{prd.id}[/cyan]: {prd.title}")
    return 0


def _prd_update(args: argparse.Namespace) -> int:
    prd = _service(args).update_prd(
        args.prd_id,
        title=args.title,
        file_name=args.file_name,
        description=args.description,
    )
    if args.json:
        _emit_json({"prd": prd.to_dict()})
    else:
        _console().print(f"[green]✓[/green] Updated PRD [cyan]{prd.id}[/cyan]: {prd.title}")
    return 0


def _prd_remove(args: argparse.Namespace) -> int:
    orphaned = _service(args).delete_prd(args.prd_id)
    if args.json:
        _emit_json({"prd_id": args.prd_id, "orphaned_tasks": orphaned})
    else:
        _console().print(
            f"[green]✓[/green] Removed PRD [cyan]{args.prd_id}[/cyan]; {len(orphaned)} task(s) no longer owned"
        )
    return 0


def _prd_link(args: argparse.Namespace) -> int:
    service = _service(args)
    results = [service.link_task_to_prd(args.prd_id, tid) for tid in _split_ids(args.task_ids)]
    if args.json:
        _emit_json({"results": [r.to_dict() for r in results]})
    else:
        last = results[-1] if results else None
        _console().print(f"[green]✓[/green] Linked {len(results)} task(s) to PRD [cyan]{args.prd_id}[/cyan]")
        if last is not None:
            _console().print(f"  Status: {last.status.value} ({last.stats.completion_percentage}%)")
    return 0


def _prd_list(args: argparse.Namespace) -> int:
    prds = _service(args).list_prds(status=args.status)
    if args.json:
        _emit_json({"prds": [p.to_dict() for p in prds]})
    else:
        render.render_prds(_console(), prds)
    return 0


def _prd_show(args: argparse.Namespace) -> int:
    service = _service(args)
    graph = service.snapshot()
    prd = graph.require_prd(args.prd_id)
    tasks = [graph.require_task(tid) for tid in service.prd_sync.linked_task_ids(graph, prd)]
    if args.json:
        _emit_json({"prd": prd.to_dict(), "tasks": [t.to_dict() for t in tasks]})
    else:
        render.render_prd(_console(), prd, tasks)
    return 0


def _prd_done(args: argparse.Namespace) -> int:
    result = _service(args).mark_prd_done(args.prd_id)
    if args.json:
        _emit_json(result.to_dict())
    else:
        render.render_cascade(_console(), result)
    return 0


def _prd_sync(args: argparse.Namespace) -> int:
    service = _service(args)
    if args.prd_id:
        result = service.resync_prd(args.prd_id)
        if args.json:
            _emit_json(result.to_dict())
        else:
            _console().print(
                f"PRD [cyan]{result.prd_id}[/cyan]: {result.previous_status.value} → {result.status.value} "
                f"({result.stats.completion_percentage}%)"
            )
        return 0
    summary = service.resync_all()
    if args.json:
        _emit_json(summary.to_dict())
    else:
        render.render_resync(_console(), summary)
    return 0


def _prd_archive(args: argparse.Namespace) -> int:
    prd = _service(args).archive_prd(args.prd_id)
    if args.json:
        _emit_json({"prd": prd.to_dict()})
    else:
        _console().print(f"[green]✓[/green] PRD [cyan]{prd.id}[/cyan] archived")
    return 0


def _prd_restore(args: argparse.Namespace) -> int:
    prd = _service(args).restore_prd(args.prd_id)
    if args.json:
        _emit_json({"prd": prd.to_dict()})
    else:
        _console().print(f"[green]✓[/green] PRD [cyan]{prd.id}[/cyan] restored ({prd.status.value})")
    return 0


def _prd_check(args: argparse.Namespace) -> int:
    service = _service(args)
    if args.auto_fix:
        report = service.repair_links()
        if args.json:
            _emit_json(report.to_dict())
        else:
            render.render_link_repair(_console(), report)
        return 1 if report.remaining else 0
    issues = service.check_links()
    if issues:
        logger.info("PRD link check: {}", summarize_issues(issues))
    if args.json:
        _emit_json({"valid": not issues, "issues": [issue.to_dict() for issue in issues]})
    else:
        render.render_link_issues(_console(), issues)
    return 1 if issues else 0


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'task-hero[server]'\n")
        return 1

    from .server import create_app

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="task-hero", description="Task Hero: tasks, dependencies and PRDs")
    parser.add_argument("--project-dir", default=None, help="Target project directory (default: current working directory)")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    def _add(name: str, func: Any, help_text: str, **kwargs: Any) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text, parents=[output], **kwargs)
        sub.set_defaults(func=func)
        return sub

    plist = _add("list", _list, "List tasks")
    plist.add_argument("--status", default=None)
    plist.add_argument("--prd", default=None, help="Only tasks owned by this PRD")
    plist.add_argument("--no-subtasks", action="store_true")

    pshow = _add("show", _show, "Show one task")
    pshow.add_argument("task_id")

    padd = _add("add-task", _add_task, "Create a task or subtask")
    padd.add_argument("title")
    padd.add_argument("--description", default="")
    padd.add_argument("--details", default="")
    padd.add_argument("--test-strategy", default="")
    padd.add_argument("--priority", default="medium", choices=["low", "medium", "high", "critical"])
    padd.add_argument("--dependencies", default=None, help="Comma-separated task ids")
    padd.add_argument("--parent", default=None, help="Create as a subtask of this task")
    padd.add_argument("--prd", default=None, help="Owning PRD id")
    padd.add_argument("--id", default=None, help="Explicit task id")

    pupdate = _add("update-task", _update_task, "Edit a task; omitted fields are left alone")
    pupdate.add_argument("task_id")
    pupdate.add_argument("--title", default=None)
    pupdate.add_argument("--description", default=None)
    pupdate.add_argument("--details", default=None)
    pupdate.add_argument("--test-strategy", default=None)
    pupdate.add_argument("--priority", default=None, choices=["low", "medium", "high", "critical"])
    pupdate.add_argument("--dependencies", default=None, help="Comma-separated task ids; replaces the list ('' clears it)")

    premove = _add("remove-task", _remove_task, "Delete a task and its subtasks", aliases=["delete-task"])
    premove.add_argument("task_id")

    pstatus = _add("set-status", _set_status, "Set the status of one or more tasks", aliases=["mark"])
    pstatus.add_argument("task_ids", help="Task id, or comma-separated ids")
    pstatus.add_argument("status")

    _add("next", _next, "Show the next task to work on")

    padep = _add("add-dependency", _add_dependency, "Make a task depend on another")
    padep.add_argument("task_id")
    padep.add_argument("depends_on")

    prdep = _add("remove-dependency", _remove_dependency, "Remove a dependency")
    prdep.add_argument("task_id")
    prdep.add_argument("depends_on")

    _add("validate-dependencies", _validate_dependencies, "Report dependency problems")
    _add("fix-dependencies", _fix_dependencies, "Repair dependency problems by removing edges")

    porder = _add("execution-order", _execution_order, "Print tasks in dependency order")
    porder.add_argument("--batches", action="store_true", help="Group open tasks into independent batches")

    _add("board", _board, "Show tasks grouped by status")

    pprd_add = _add("prd-add", _prd_add, "Register a PRD")
    pprd_add.add_argument("title")
    pprd_add.add_argument("--file-name", default="")
    pprd_add.add_argument("--description", default="")
    pprd_add.add_argument("--id", default=None, help="Explicit PRD id")

    pprd_update = _add("prd-update", _prd_update, "Edit a PRD's title, file name or description")
    pprd_update.add_argument("prd_id")
    pprd_update.add_argument("--title", default=None)
    pprd_update.add_argument("--file-name", default=None)
    pprd_update.add_argument("--description", default=None)

    pprd_remove = _add("prd-remove", _prd_remove, "Delete a PRD; its tasks are kept")
    pprd_remove.add_argument("prd_id")

    pprd_link = _add("prd-link", _prd_link, "Link tasks to a PRD")
    pprd_link.add_argument("prd_id")
    pprd_link.add_argument("task_ids", help="Task id, or comma-separated ids")

    pprd_list = _add("prd-list", _prd_list, "List PRDs")
    pprd_list.add_argument("--status", default=None)

    pprd_show = _add("prd-show", _prd_show, "Show one PRD and its tasks")
    pprd_show.add_argument("prd_id")

    pprd_done = _add("prd-done", _prd_done, "Mark a PRD and all of its tasks done")
    pprd_done.add_argument("prd_id")

    pprd_sync = _add("prd-sync", _prd_sync, "Recompute PRD status from linked tasks")
    pprd_sync.add_argument("prd_id", nargs="?", default=None, help="Omit to resync every PRD")

    pprd_archive = _add("prd-archive", _prd_archive, "Archive a done PRD")
    pprd_archive.add_argument("prd_id")

    pprd_restore = _add("prd-restore", _prd_restore, "Restore an archived PRD")
    pprd_restore.add_argument("prd_id")

    pprd_check = _add("prd-check", _prd_check, "Check PRD and task links")
    pprd_check.add_argument("--auto-fix", action="store_true", help="Add missing links and drop orphaned ones")

    server = subparsers.add_parser("server", help="Start the REST API server")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", default=8000, type=int)
    server.add_argument("--reload", action="store_true")
    server.set_defaults(func=_server)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config, _ = load_project_config(_resolve_project_dir(args.project_dir))
    _configure_logging(get_log_level(config, args.log_level))

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except (TaskHeroError, ValueError) as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
