"""Command-line interface for worktree-orchestrator"""

import os
import sys
import time

from rich.console import Console

from worktree_orchestrator.cli.args import parse_args
from worktree_orchestrator.config import Config
from worktree_orchestrator.constants import EVENT_DEV_SERVER_OUTPUT, EVENT_INIT_COMPLETED, EVENT_INIT_OUTPUT
from worktree_orchestrator.core import WorktreeOrchestrator
from worktree_orchestrator.exceptions import WorktreeOrchestratorError
from worktree_orchestrator.logging_config import setup_logging
from worktree_orchestrator.services.display_service import DisplayService
from worktree_orchestrator.utils.threading import get_threading_info

console = Console()


def _print_event(event) -> None:
    if event.type in (EVENT_INIT_OUTPUT, EVENT_DEV_SERVER_OUTPUT):
        console.print(event.payload.get("content", ""), markup=False, highlight=False)
    elif event.type == EVENT_INIT_COMPLETED:
        if event.payload.get("success"):
            console.print("[green]Init script completed[/green]")
        else:
            console.print(f"[red]{event.payload.get('error')}[/red]")


def _cmd_list(orchestrator, project, args, display):
    worktrees = orchestrator.list(project, include_details=args.details)
    display.display_worktree_table(
        worktrees,
        selected_path=orchestrator.current_worktree(project).path,
        dev_servers=orchestrator.list_dev_servers(),
        show_details=args.details,
    )


def _cmd_create(orchestrator, project, args, display):
    worktree = orchestrator.create(project, args.branch)
    console.print(f"[green]Created worktree for {worktree.branch} at {worktree.path}[/green]")
    if args.init:
        script = orchestrator.get_init_script(project)
        if not script.exists:
            console.print(f"[yellow]No init script at {script.path}[/yellow]")
            return
        unsubscribe = orchestrator.events.subscribe(_print_event)
        try:
            orchestrator.run_init_script(project, worktree.path, worktree.branch).join()
        finally:
            unsubscribe()


def _cmd_delete(orchestrator, project, args, display):
    removed = orchestrator.delete(
        project, os.path.abspath(args.path), delete_branch=not args.keep_branch, force=args.force
    )
    message = f"Deleted worktree {removed.path}"
    if not args.keep_branch and removed.branch:
        message += f" and branch {removed.branch}"
    console.print(f"[green]{message}[/green]")


def _cmd_switch(orchestrator, project, args, display):
    worktree = orchestrator.switch_branch(project, os.path.abspath(args.path), args.branch)
    console.print(f"[green]{worktree.path} is now on {worktree.branch}[/green]")


def _cmd_branches(orchestrator, project, args, display):
    worktree_path = os.path.abspath(args.worktree) if args.worktree else None
    listing = orchestrator.list_branches(project, worktree_path, include_remote=args.remote)
    display.display_branch_table(listing, args.filter)


def _cmd_init_script(orchestrator, project, args, display):
    script = orchestrator.get_init_script(project)
    if not args.run:
        if script.exists:
            console.print(f"[bold]{script.path}[/bold]")
            console.print(script.content, markup=False, highlight=False)
        else:
            console.print(f"[yellow]No init script at {script.path}[/yellow]")
        return

    path = os.path.abspath(args.run)
    branch = args.branch
    if not branch:
        worktree = orchestrator.get_context(project).registry.get(path)
        branch = worktree.branch if worktree else ""
    unsubscribe = orchestrator.events.subscribe(_print_event)
    try:
        orchestrator.run_init_script(project, path, branch).join()
    finally:
        unsubscribe()


def _cmd_dev_server(orchestrator, project, args, display):
    path = os.path.abspath(args.path)
    unsubscribe = orchestrator.events.subscribe(_print_event)
    try:
        instance = orchestrator.start_dev_server(path, project)
        display.display_dev_server(instance)
        console.print("[dim]Press Ctrl-C to stop[/dim]")
        while True:
            instance = orchestrator.dev_server_status(path, project)
            if instance is None or not instance.status.is_live:
                break
            time.sleep(0.5)
        if instance is not None:
            display.display_dev_server(instance)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping dev server...[/yellow]")
    finally:
        unsubscribe()
        final = orchestrator.stop_dev_server(path, project)
        if final is not None:
            display.display_dev_server(final)


def _cmd_watch(orchestrator, project, args, display):
    context = orchestrator.get_context(project)
    context.reconciler.interval = args.interval
    orchestrator.start()
    console.print(f"[dim]Watching {context.project_path} every {args.interval}s, Ctrl-C to stop[/dim]")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped watching[/yellow]")


COMMANDS = {
    "list": _cmd_list,
    "create": _cmd_create,
    "delete": _cmd_delete,
    "switch": _cmd_switch,
    "branches": _cmd_branches,
    "init-script": _cmd_init_script,
    "dev-server": _cmd_dev_server,
    "watch": _cmd_watch,
}


def main(argv=None):
    """Main entry point for the application."""
    parsed_args = None
    orchestrator = None
    try:
        parsed_args = parse_args(argv)

        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

        config = Config(
            verbose=parsed_args.verbose,
            debug=parsed_args.debug,
            workers=parsed_args.workers,
        )

        if parsed_args.debug:
            console.print("[yellow]Debug mode enabled[/yellow]")

            threading_info = get_threading_info()
            console.print("[yellow]Threading Information:[/yellow]")
            console.print(f"  Python version: {threading_info['python_version']}")
            console.print(f"  Threading mode: {threading_info['mode']}")
            console.print(f"  CPU count: {threading_info['cpu_count']}")
            console.print(f"  Optimal workers: {threading_info['optimal_workers']}")

            console.print("[yellow]Configuration:[/yellow]")
            for key, value in config.to_dict().items():
                console.print(f"  {key}: {value}")

        display = DisplayService(verbose=parsed_args.verbose, debug=parsed_args.debug)
        orchestrator = WorktreeOrchestrator(config, on_removed=display.display_removed)
        project = os.path.abspath(parsed_args.project)

        COMMANDS[parsed_args.command](orchestrator, project, parsed_args, display)
        return 0
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except (WorktreeOrchestratorError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        if parsed_args is not None and parsed_args.debug:
            console.print_exception()
        return 1
    finally:
        if orchestrator is not None:
            orchestrator.shutdown()


if __name__ == "__main__":
    sys.exit(main())
