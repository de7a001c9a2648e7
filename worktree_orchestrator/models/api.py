"""Request and response shapes for the operations exposed to a transport.

Requests are validated when constructed, so malformed payloads are rejected
before they reach the orchestrator. ``from_dict`` accepts the camelCase keys
a JSON client sends (``projectPath``) as well as snake_case ones.
"""

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from worktree_orchestrator.exceptions import InvalidRequestError, WorktreeOrchestratorError
from worktree_orchestrator.models.branch import BranchListing
from worktree_orchestrator.models.dev_server import DevServerInstance
from worktree_orchestrator.models.worktree import Worktree

_CAMEL_BOUNDARY = re.compile(r"([A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(lambda m: "_" + m.group(1).lower(), key)


def _require_path(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f"{name} is required")
    return value.strip()


def _optional_str(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(f"{name} must be a string")
    return value.strip() or None


def _require_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidRequestError(f"{name} must be a boolean")
    return value


class _Request:
    """Shared payload parsing for request dataclasses."""

    @classmethod
    def from_dict(cls, data: Any):
        """Build the request from a decoded JSON object; unknown keys are dropped."""
        if not isinstance(data, dict):
            raise InvalidRequestError("Request payload must be an object")
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name in known:
                kwargs[name] = value
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise InvalidRequestError(f"Invalid {cls.__name__}: {e}") from e


@dataclass
class CreateWorktreeRequest(_Request):
    project_path: str
    branch_name: str

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.branch_name = _require_path(self.branch_name, "branchName")


@dataclass
class DeleteWorktreeRequest(_Request):
    project_path: str
    worktree_path: str
    delete_branch: bool = False
    force: bool = False

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.worktree_path = _require_path(self.worktree_path, "worktreePath")
        self.delete_branch = _require_bool(self.delete_branch, "deleteBranch")
        self.force = _require_bool(self.force, "force")


@dataclass
class ListWorktreesRequest(_Request):
    project_path: str
    include_details: bool = False

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.include_details = _require_bool(self.include_details, "includeDetails")


@dataclass
class SelectWorktreeRequest(_Request):
    project_path: str
    worktree_path: Optional[str] = None  # None selects the main worktree

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.worktree_path = _optional_str(self.worktree_path, "worktreePath")


@dataclass
class SwitchBranchRequest(_Request):
    project_path: str
    worktree_path: str
    branch_name: str

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.worktree_path = _require_path(self.worktree_path, "worktreePath")
        self.branch_name = _require_path(self.branch_name, "branchName")


@dataclass
class ListBranchesRequest(_Request):
    project_path: str
    worktree_path: Optional[str] = None
    filter: str = ""
    include_remote: bool = False

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.worktree_path = _optional_str(self.worktree_path, "worktreePath")
        if not isinstance(self.filter, str):
            raise InvalidRequestError("filter must be a string")
        self.include_remote = _require_bool(self.include_remote, "includeRemote")


@dataclass
class ProjectRequest(_Request):
    project_path: str

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")


@dataclass
class DevServerRequest(_Request):
    worktree_path: str
    project_path: Optional[str] = None
    limit: Optional[int] = None  # log lines, for the logs operation

    def __post_init__(self):
        self.worktree_path = _require_path(self.worktree_path, "worktreePath")
        self.project_path = _optional_str(self.project_path, "projectPath")
        if self.limit is not None and (not isinstance(self.limit, int) or isinstance(self.limit, bool) or self.limit <= 0):
            raise InvalidRequestError("limit must be a positive integer")


@dataclass
class AutoModeRequest(_Request):
    project_path: str
    branch_name: Optional[str] = None  # None = main worktree

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.branch_name = _optional_str(self.branch_name, "branchName")


@dataclass
class RunInitScriptRequest(_Request):
    project_path: str
    worktree_path: str
    branch: str

    def __post_init__(self):
        self.project_path = _require_path(self.project_path, "projectPath")
        self.worktree_path = _require_path(self.worktree_path, "worktreePath")
        self.branch = _require_path(self.branch, "branch")


# --------------------------------------------------------------------- responses


def worktree_to_dict(worktree: Worktree, include_details: bool = False) -> Dict[str, Any]:
    """Wire form of a worktree; detail fields only when requested."""
    data: Dict[str, Any] = {
        "path": worktree.path,
        "branch": worktree.branch,
        "isMain": worktree.is_main,
    }
    if include_details:
        data["hasChanges"] = worktree.has_changes
        data["changedFilesCount"] = worktree.changed_files_count
        data["aheadCount"] = worktree.ahead_count
        data["behindCount"] = worktree.behind_count
    return data


@dataclass
class SuccessResponse:
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": True}
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class CreateWorktreeResponse:
    worktree_path: str
    branch: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "worktree": {"path": self.worktree_path, "branch": self.branch}}


@dataclass
class ListWorktreesResponse:
    worktrees: List[Worktree] = field(default_factory=list)
    include_details: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "worktrees": [worktree_to_dict(wt, self.include_details) for wt in self.worktrees],
        }


@dataclass
class SelectWorktreeResponse:
    worktree: Worktree

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "worktree": worktree_to_dict(self.worktree)}


@dataclass
class RefreshResponse:
    removed: List[Worktree] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "removedWorktrees": [worktree_to_dict(wt) for wt in self.removed]}


@dataclass
class ListBranchesResponse:
    listing: BranchListing
    filter: str = ""

    def to_dict(self) -> Dict[str, Any]:
        listing = self.listing
        return {
            "success": True,
            "currentBranch": listing.current_branch,
            "branches": [b.to_dict() for b in listing.filtered(self.filter)],
            "aheadCount": listing.ahead_count,
            "behindCount": listing.behind_count,
            "hasRemoteBranch": listing.has_remote_branch,
            "gitRepoStatus": listing.repo_status.to_dict(),
        }


@dataclass
class DevServerResponse:
    instance: Optional[DevServerInstance] = None
    include_logs: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "server": self.instance.to_dict(include_logs=self.include_logs) if self.instance else None,
        }


@dataclass
class AutoModeResponse:
    is_running: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "isRunning": self.is_running}


@dataclass
class InitScriptResponse:
    exists: bool
    path: str
    content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "exists": self.exists, "path": self.path, "content": self.content}


def error_response(error: WorktreeOrchestratorError) -> Dict[str, Any]:
    """Wire form of a typed error."""
    return {"success": False, "error": str(error), "code": error.code}
