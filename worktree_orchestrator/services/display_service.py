"""Display service for worktrees, branches and dev servers"""
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.branch import BranchListing
from worktree_orchestrator.models.dev_server import DevServerInstance, DevServerStatus
from worktree_orchestrator.models.worktree import Worktree

console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    DevServerStatus.STARTING: "yellow",
    DevServerStatus.RUNNING: "green",
    DevServerStatus.STOPPED: "dim",
    DevServerStatus.CRASHED: "red",
}


def format_sync(ahead: Optional[int], behind: Optional[int]) -> str:
    """Render ahead/behind counts like ``↑2 ↓1``."""
    if ahead is None and behind is None:
        return ""
    parts = []
    if ahead:
        parts.append(f"[green]↑{ahead}[/green]")
    if behind:
        parts.append(f"[red]↓{behind}[/red]")
    return " ".join(parts) or "[dim]in sync[/dim]"


def format_changes(worktree: Worktree) -> str:
    if not worktree.has_changes:
        return ""
    noun = "file" if worktree.changed_files_count == 1 else "files"
    return f"[yellow]{worktree.changed_files_count} {noun}[/yellow]"


class DisplayService:
    def __init__(self, verbose: bool = False, debug: bool = False, output: Optional[Console] = None):
        self.verbose = verbose
        self.debug_mode = debug
        self.console = output or console

    def display_worktree_table(
            self,
            worktrees: List[Worktree],
            selected_path: Optional[str] = None,
            dev_servers: Optional[List[DevServerInstance]] = None,
            show_details: bool = False,
        ) -> None:
        """Display a table of worktrees, main first."""
        servers = {s.worktree_path: s for s in (dev_servers or [])}
        table = Table()
        table.add_column("Branch")
        table.add_column("Path")
        table.add_column("Changes")
        if show_details:
            table.add_column("Sync")
        table.add_column("Dev Server")

        for worktree in worktrees:
            branch = worktree.branch or "[dim](detached)[/dim]"
            if worktree.is_main:
                branch += " [cyan](main)[/cyan]"
            if selected_path and worktree.path == selected_path:
                branch = f"[bold]{branch}[/bold]"

            server = servers.get(worktree.path)
            server_text = ""
            if server is not None:
                style = STATUS_STYLES.get(server.status, "")
                server_text = f"[{style}]{server.status.value}[/{style}]"
                if server.url:
                    server_text += f" {server.url}"

            row = [branch, worktree.path, format_changes(worktree)]
            if show_details:
                row.append(format_sync(worktree.ahead_count, worktree.behind_count))
            row.append(server_text)
            table.add_row(*row)

        self.console.print(table)
        if self.verbose:
            self.console.print(f"[dim]{len(worktrees)} worktree(s)[/dim]")

    def display_branch_table(self, listing: BranchListing, filter_text: str = "") -> None:
        """Display the branches a worktree can switch to."""
        if not listing.repo_status.is_git_repo:
            self.console.print("[red]Not a git repository[/red]")
            return
        if not listing.repo_status.has_commits:
            self.console.print("[yellow]Repository has no commits yet[/yellow]")
            return

        table = Table()
        table.add_column("Branch")
        table.add_column("Worktree")

        for branch in listing.filtered(filter_text):
            name = f"[bold green]* {branch.name}[/bold green]" if branch.is_current else f"  {branch.name}"
            if branch.is_remote:
                name = f"[dim]{name}[/dim]"
            table.add_row(name, branch.worktree_path or "")

        self.console.print(table)
        sync = format_sync(listing.ahead_count, listing.behind_count)
        remote = "tracked" if listing.has_remote_branch else "[dim]no remote branch[/dim]"
        self.console.print(f"Current: {listing.current_branch or '(detached)'} {sync} {remote}")

    def display_dev_server(self, instance: DevServerInstance) -> None:
        style = STATUS_STYLES.get(instance.status, "")
        self.console.print(
            f"Dev server [{style}]{instance.status.value}[/{style}] "
            f"pid={instance.pid} port={instance.port}"
            + (f" url={instance.url}" if instance.url else "")
        )
        if instance.exit_code is not None:
            self.console.print(f"[dim]exit code {instance.exit_code}[/dim]")

    def display_removed(self, project_path: str, removed: List[Worktree]) -> None:
        for worktree in removed:
            self.console.print(
                f"[yellow]Worktree removed outside the tool:[/yellow] {worktree.branch or '(detached)'} ({worktree.path})"
            )
        logger.debug(f"Reported {len(removed)} removed worktree(s) for {project_path}")
