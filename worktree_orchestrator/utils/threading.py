"""Threading utilities for sizing the git query worker pool."""

import os
import sys
from typing import Any, Dict, Optional


def is_free_threading_enabled() -> bool:
    """Detect if Python is running with free-threading enabled.

    Returns:
        True if running on Python 3.13+ with GIL disabled (free-threading mode)
        False if running with GIL enabled or Python < 3.13
    """
    # sys._is_gil_enabled() only exists on 3.13+
    is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
    return is_gil_enabled is not None and not is_gil_enabled()


def get_optimal_worker_count(user_specified: Optional[int] = None, task_count: Optional[int] = None) -> int:
    """Calculate worker count for per-worktree git queries.

    Args:
        user_specified: User-specified worker count, if provided
        task_count: Number of queued tasks; the pool never exceeds it

    Returns:
        Number of workers for parallel processing (at least 1)
    """
    if user_specified is not None and user_specified > 0:
        workers = user_specified
    else:
        cpu_count = os.cpu_count() or 1
        if is_free_threading_enabled():
            workers = min(64, cpu_count * 2)
        else:
            # git queries are subprocess bound, so oversubscribe the CPUs
            workers = min(32, cpu_count + 4)

    if task_count is not None:
        workers = min(workers, max(1, task_count))
    return workers


def get_threading_info() -> Dict[str, Any]:
    """Describe the interpreter's threading setup for debug output."""
    free_threading = is_free_threading_enabled()
    return {
        "mode": "free-threading" if free_threading else "GIL",
        "free_threading": free_threading,
        "cpu_count": os.cpu_count() or 1,
        "optimal_workers": get_optimal_worker_count(),
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
    }
