"""Tests for request validation and response shapes"""
import pytest

from worktree_orchestrator.exceptions import AlreadyExistsError, InvalidRequestError
from worktree_orchestrator.models.api import (
    AutoModeRequest,
    CreateWorktreeRequest,
    DeleteWorktreeRequest,
    DevServerRequest,
    ListBranchesResponse,
    ListWorktreesRequest,
    ListWorktreesResponse,
    error_response,
)
from worktree_orchestrator.models.branch import BranchInfo, BranchListing
from worktree_orchestrator.models.worktree import Worktree


class TestRequests:
    """Test request parsing and validation."""

    def test_camel_case_payload(self):
        """Test camelCase keys map onto fields."""
        request = CreateWorktreeRequest.from_dict({"projectPath": "/repo", "branchName": " feature/x "})
        assert request.project_path == "/repo"
        assert request.branch_name == "feature/x"

    def test_snake_case_payload(self):
        """Test snake_case keys are accepted too."""
        request = DeleteWorktreeRequest.from_dict(
            {"project_path": "/repo", "worktree_path": "/repo/.worktrees/a", "delete_branch": True}
        )
        assert request.delete_branch is True
        assert request.force is False

    def test_unknown_keys_dropped(self):
        """Test extra payload keys are ignored."""
        request = ListWorktreesRequest.from_dict({"projectPath": "/repo", "extra": 1})
        assert request.include_details is False

    @pytest.mark.parametrize("payload", [
        {},
        {"projectPath": "/repo"},
        {"projectPath": "", "branchName": "x"},
        {"projectPath": "/repo", "branchName": 5},
    ])
    def test_invalid_create(self, payload):
        """Test missing or malformed fields raise InvalidRequestError."""
        with pytest.raises(InvalidRequestError):
            CreateWorktreeRequest.from_dict(payload)

    def test_payload_must_be_object(self):
        """Test non-dict payloads are rejected."""
        with pytest.raises(InvalidRequestError):
            CreateWorktreeRequest.from_dict(["/repo", "x"])

    def test_bool_fields_are_strict(self):
        """Test booleans are not coerced from strings."""
        with pytest.raises(InvalidRequestError):
            DeleteWorktreeRequest.from_dict(
                {"projectPath": "/repo", "worktreePath": "/wt", "deleteBranch": "yes"}
            )

    def test_auto_mode_branch_optional(self):
        """Test a null or empty branch means the main worktree."""
        assert AutoModeRequest.from_dict({"projectPath": "/repo", "branchName": None}).branch_name is None
        assert AutoModeRequest.from_dict({"projectPath": "/repo", "branchName": ""}).branch_name is None

    def test_dev_server_limit(self):
        """Test the log limit must be a positive integer."""
        assert DevServerRequest.from_dict({"worktreePath": "/wt", "limit": 10}).limit == 10
        with pytest.raises(InvalidRequestError):
            DevServerRequest.from_dict({"worktreePath": "/wt", "limit": 0})
        with pytest.raises(InvalidRequestError):
            DevServerRequest.from_dict({"worktreePath": "/wt", "limit": True})


class TestResponses:
    """Test response serialization."""

    def test_list_worktrees_without_details(self):
        """Test detail fields are omitted unless requested."""
        response = ListWorktreesResponse([Worktree("/repo", "main", True)]).to_dict()
        assert response == {"success": True, "worktrees": [{"path": "/repo", "branch": "main", "isMain": True}]}

    def test_list_worktrees_with_details(self):
        """Test detail fields use camelCase keys."""
        worktree = Worktree("/wt", "a", False, has_changes=True, changed_files_count=2, ahead_count=1, behind_count=0)
        item = ListWorktreesResponse([worktree], include_details=True).to_dict()["worktrees"][0]
        assert item["hasChanges"] is True
        assert item["changedFilesCount"] == 2
        assert item["aheadCount"] == 1
        assert item["behindCount"] == 0

    def test_list_branches_filtered(self):
        """Test the filter is applied case-insensitively."""
        listing = BranchListing(
            current_branch="main",
            branches=[BranchInfo("main", is_current=True), BranchInfo("feature/Login"), BranchInfo("fix/typo")],
        )
        response = ListBranchesResponse(listing, "login").to_dict()
        assert [b["name"] for b in response["branches"]] == ["feature/Login"]
        assert response["gitRepoStatus"] == {"isGitRepo": True, "hasCommits": True}

    def test_error_response(self):
        """Test typed errors carry their code."""
        response = error_response(AlreadyExistsError("feature/x"))
        assert response["success"] is False
        assert response["code"] == "ALREADY_EXISTS"
        assert "feature/x" in response["error"]
