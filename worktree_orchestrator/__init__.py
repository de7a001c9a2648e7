"""
worktree-orchestrator - Concurrent, isolated git worktrees with dev servers and auto-mode
"""

from .__version__ import __version__
from .core import WorktreeOrchestrator, ProjectContext

__all__ = ["WorktreeOrchestrator", "ProjectContext", "__version__"]
