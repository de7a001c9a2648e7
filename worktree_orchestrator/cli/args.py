"""Command-line argument parsing for worktree-orchestrator."""

import argparse
from worktree_orchestrator.__version__ import __version__


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        description="Concurrent, isolated git worktrees with dev servers",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("--version", action="version", version=f"worktree-orchestrator {__version__}")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information for troubleshooting"
    )
    parser.add_argument(
        "--project",
        default=".",
        metavar="PATH",
        help="Project repository (default: current directory)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        help="Number of parallel workers for git queries (default: auto-detect)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    list_parser = subparsers.add_parser("list", help="List worktrees, main first")
    list_parser.add_argument("--details", action="store_true", help="Include ahead/behind counts")

    create_parser = subparsers.add_parser("create", help="Create a worktree for a branch")
    create_parser.add_argument("branch", help="Branch name; created from HEAD if missing")
    create_parser.add_argument(
        "--init", action="store_true", help="Run the init script in the new worktree"
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a worktree and its branch")
    delete_parser.add_argument("path", help="Worktree directory")
    delete_parser.add_argument("--keep-branch", action="store_true", help="Keep the branch")
    delete_parser.add_argument(
        "--force", action="store_true", help="Delete even with uncommitted changes"
    )

    switch_parser = subparsers.add_parser("switch", help="Switch a worktree to another branch")
    switch_parser.add_argument("path", help="Worktree directory")
    switch_parser.add_argument("branch", help="Existing branch to check out")

    branches_parser = subparsers.add_parser("branches", help="List branches for a worktree")
    branches_parser.add_argument("--worktree", metavar="PATH", help="Worktree (default: main)")
    branches_parser.add_argument("--filter", default="", help="Case-insensitive name filter")
    branches_parser.add_argument("--remote", action="store_true", help="Include remote branches")

    init_parser = subparsers.add_parser("init-script", help="Show or run the worktree init script")
    init_parser.add_argument("--run", metavar="PATH", help="Run the script in this worktree")
    init_parser.add_argument("--branch", help="Branch name passed to the script")

    dev_parser = subparsers.add_parser(
        "dev-server", help="Run a worktree's dev server in the foreground"
    )
    dev_parser.add_argument("path", help="Worktree directory")

    watch_parser = subparsers.add_parser(
        "watch", help="Reconcile periodically and report worktrees removed outside the tool"
    )
    watch_parser.add_argument(
        "--interval", type=float, default=5.0, help="Seconds between passes (default: 5)"
    )

    return parser


def parse_args(argv=None):
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)
