"""Services composing the worktree orchestration core."""
