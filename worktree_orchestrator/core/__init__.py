"""Core orchestration for worktree-orchestrator."""

from worktree_orchestrator.core.orchestrator import ProjectContext, WorktreeOrchestrator

__all__ = ["ProjectContext", "WorktreeOrchestrator"]
