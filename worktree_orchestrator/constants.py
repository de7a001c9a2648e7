"""Shared constants for worktree-orchestrator."""

import re

# Directory under the project root that holds feature worktrees
WORKTREES_DIR_NAME = ".worktrees"

# Project-relative location of the optional worktree init script
DEFAULT_INIT_SCRIPT_PATH = ".worktree-orchestrator/worktree-init.sh"

# Characters allowed in a worktree directory segment
SAFE_DIRECTORY_CHARS = re.compile(r"[^A-Za-z0-9_-]")

# Branch segment used in auto-mode keys for the main worktree
AUTO_MODE_MAIN_KEY = "__main__"
AUTO_MODE_KEY_SEPARATOR = "::"

# Lockfile -> package manager, checked in order
PACKAGE_MANAGER_LOCKFILES = [
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
]

# Dev server output parsing
ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
URL_PATTERN = re.compile(
    r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1?\]|[A-Za-z0-9.-]+):\d{2,5}[^\s'\"]*"
)

# Event names published on the event bus
EVENT_WORKTREES_REMOVED = "worktrees:removed"
EVENT_INIT_STARTED = "worktree:init-started"
EVENT_INIT_OUTPUT = "worktree:init-output"
EVENT_INIT_COMPLETED = "worktree:init-completed"
EVENT_DEV_SERVER_STARTED = "dev-server:started"
EVENT_DEV_SERVER_URL = "dev-server:url-detected"
EVENT_DEV_SERVER_OUTPUT = "dev-server:output"
EVENT_DEV_SERVER_STOPPED = "dev-server:stopped"
EVENT_DEV_SERVER_CRASHED = "dev-server:crashed"
EVENT_AUTO_MODE_STARTED = "auto-mode:started"
EVENT_AUTO_MODE_STOPPED = "auto-mode:stopped"
