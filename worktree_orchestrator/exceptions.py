"""Custom exceptions for worktree-orchestrator"""

from typing import Optional


class WorktreeOrchestratorError(Exception):
    """Base exception for all worktree-orchestrator errors."""

    code = "ERROR"


class AlreadyExistsError(WorktreeOrchestratorError):
    """Exception raised when a worktree for a branch is already registered."""

    code = "ALREADY_EXISTS"

    def __init__(self, branch: str, path: Optional[str] = None):
        self.branch = branch
        self.path = path
        error_msg = f"A worktree for branch '{branch}' already exists"
        if path:
            error_msg += f" at {path}"
        super().__init__(error_msg)


class WorktreeNotFoundError(WorktreeOrchestratorError):
    """Exception raised when a worktree or branch cannot be found."""

    code = "NOT_FOUND"

    def __init__(self, target: str, message: Optional[str] = None):
        self.target = target
        super().__init__(message or f"Worktree not found: {target}")


class BranchConflictError(WorktreeOrchestratorError):
    """Exception raised when git refuses a branch that is checked out elsewhere."""

    code = "BRANCH_CONFLICT"

    def __init__(self, branch: str, message: Optional[str] = None):
        self.branch = branch
        error_msg = f"Branch '{branch}' is already checked out in another worktree"
        if message:
            error_msg += f": {message}"
        super().__init__(error_msg)


class BranchInUseError(WorktreeOrchestratorError):
    """Exception raised when switching to a branch active in a different worktree."""

    code = "BRANCH_IN_USE"

    def __init__(self, branch: str, worktree_path: str):
        self.branch = branch
        self.worktree_path = worktree_path
        super().__init__(f"Branch '{branch}' is already active in worktree {worktree_path}")


class WorktreeInUseError(WorktreeOrchestratorError):
    """Exception raised when uncommitted changes block an operation."""

    code = "IN_USE"

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        error_msg = f"Worktree {path} has uncommitted changes"
        if message:
            error_msg += f": {message}"
        super().__init__(error_msg)


class CannotDeleteMainError(WorktreeOrchestratorError):
    """Exception raised when attempting to delete the main worktree."""

    code = "CANNOT_DELETE_MAIN"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Cannot delete the main worktree ({path})")


class PathExistsError(WorktreeOrchestratorError):
    """Exception raised when the target directory of a worktree is occupied."""

    code = "PATH_EXISTS"

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        error_msg = f"Path already exists: {path}"
        if message:
            error_msg += f" ({message})"
        super().__init__(error_msg)


class AlreadyRunningError(WorktreeOrchestratorError):
    """Exception raised when a dev server is already live for a worktree."""

    code = "ALREADY_RUNNING"

    def __init__(self, path: str, status: str):
        self.path = path
        self.status = status
        super().__init__(f"Dev server for {path} is already {status}")


class BackendError(WorktreeOrchestratorError):
    """Exception raised for errors reported by git."""

    code = "BACKEND_ERROR"

    def __init__(
        self,
        operation: str,
        message: Optional[str] = None,
        status: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        self.operation = operation
        self.message = message
        self.status = status
        self.stderr = stderr

        error_msg = f"Git operation '{operation}' failed"
        if status is not None:
            error_msg += f" (exit {status})"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class ProcessError(WorktreeOrchestratorError):
    """Exception raised when a child process cannot be spawned or signalled."""

    code = "PROCESS_ERROR"

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.message = message

        error_msg = f"Process operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class AutoModeError(WorktreeOrchestratorError):
    """Exception raised when the auto-mode runner rejects a start."""

    code = "AUTO_MODE_ERROR"


class InvalidBranchNameError(WorktreeOrchestratorError):
    """Exception raised for branch names git would not accept."""

    code = "INVALID_BRANCH_NAME"

    def __init__(self, branch: str, reason: str = "not a valid branch name"):
        self.branch = branch
        super().__init__(f"Invalid branch name '{branch}': {reason}")


class InvalidRequestError(WorktreeOrchestratorError):
    """Exception raised when an API payload fails validation."""

    code = "INVALID_REQUEST"
