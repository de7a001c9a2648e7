"""Orchestration facade: the single entry point for worktree operations."""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace as dataclass_replace
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Union

from worktree_orchestrator.config import Config
from worktree_orchestrator.constants import EVENT_WORKTREES_REMOVED
from worktree_orchestrator.exceptions import (
    BackendError,
    BranchInUseError,
    InvalidRequestError,
    WorktreeNotFoundError,
    WorktreeOrchestratorError,
)
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.api import (
    AutoModeRequest,
    AutoModeResponse,
    CreateWorktreeRequest,
    CreateWorktreeResponse,
    DeleteWorktreeRequest,
    DevServerRequest,
    DevServerResponse,
    InitScriptResponse,
    ListBranchesRequest,
    ListBranchesResponse,
    ListWorktreesRequest,
    ListWorktreesResponse,
    ProjectRequest,
    RefreshResponse,
    RunInitScriptRequest,
    SelectWorktreeRequest,
    SelectWorktreeResponse,
    SuccessResponse,
    SwitchBranchRequest,
    error_response,
    worktree_to_dict,
)
from worktree_orchestrator.models.auto_mode import AutoModeKey, AutoModeRun
from worktree_orchestrator.models.branch import BranchListing
from worktree_orchestrator.models.dev_server import DevServerInstance
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.services.auto_mode_service import AutoModeController, AutoModeRunner
from worktree_orchestrator.services.dev_server_service import DevServerSupervisor
from worktree_orchestrator.services.event_service import EventBus
from worktree_orchestrator.services.git import BranchQueries, WorktreeBackend
from worktree_orchestrator.services.init_script_service import InitScript, InitScriptService
from worktree_orchestrator.services.lifecycle_service import LifecycleManager
from worktree_orchestrator.services.reconciliation_service import ReconciliationLoop
from worktree_orchestrator.services.registry import WorktreeRegistry
from worktree_orchestrator.utils.naming import normalize_path
from worktree_orchestrator.utils.threading import get_optimal_worker_count

logger = get_logger(__name__)

RemovedSink = Callable[[str, List[Worktree]], None]


class ProjectContext:
    """Everything the orchestrator keeps for one project.

    Building a context lists the project's worktrees once, so the registry is
    populated before the first reconciliation tick.
    """

    def __init__(
        self,
        project_path: str,
        config: Config,
        events: EventBus,
        on_removed: Optional[RemovedSink] = None,
    ):
        self.project_path = os.path.realpath(project_path)
        self.project_id = normalize_path(project_path)
        self.config = config
        self.events = events
        self.on_removed = on_removed

        self.backend = WorktreeBackend(self.project_path)
        self.registry = WorktreeRegistry(self.backend.list())
        self.branches = BranchQueries(self.project_path, self.backend)
        self.dev_servers = DevServerSupervisor(config, events)
        self.lifecycle = LifecycleManager(
            self.project_path, config, self.backend, self.registry, dev_servers=self.dev_servers
        )
        self.init_scripts = InitScriptService(self.project_path, config, events)
        self.reconciler = ReconciliationLoop(
            self.backend,
            self.registry,
            config,
            on_removed=self._handle_removed,
            name=f"reconcile-{os.path.basename(self.project_path)}",
            busy_paths=self.lifecycle.busy_paths,
        )

        self._selected_path: Optional[str] = None
        self._selection_lock = Lock()

    def __repr__(self) -> str:
        return f"ProjectContext({self.project_path!r}, worktrees={len(self.registry)})"

    # ----------------------------------------------------------------- selection

    def select(self, worktree_path: Optional[str]) -> Worktree:
        """Select a worktree by path; unknown or None paths select main."""
        worktree = self.registry.get(worktree_path) if worktree_path else None
        with self._selection_lock:
            self._selected_path = worktree.path if worktree is not None and not worktree.is_main else None
        return worktree or self.registry.main()

    def current(self) -> Worktree:
        with self._selection_lock:
            selected = self._selected_path
        worktree = self.registry.get(selected) if selected else None
        return worktree or self.registry.main()

    def forget_selection(self, removed: List[Worktree]) -> None:
        """Fall back to main if the selected worktree is among ``removed``."""
        removed_paths = {normalize_path(wt.path) for wt in removed}
        with self._selection_lock:
            if self._selected_path and normalize_path(self._selected_path) in removed_paths:
                logger.info(f"Selected worktree {self._selected_path} was removed, selecting main")
                self._selected_path = None

    # ------------------------------------------------------------- removal fan-out

    def _handle_removed(self, removed: List[Worktree]) -> None:
        for worktree in removed:
            self.dev_servers.handle_worktree_removed(worktree.path)

        self.forget_selection(removed)

        self.events.emit(
            EVENT_WORKTREES_REMOVED,
            projectPath=self.project_path,
            worktrees=[worktree_to_dict(wt) for wt in removed],
        )

        if self.on_removed is not None:
            try:
                self.on_removed(self.project_path, removed)
            except Exception as e:
                logger.error(f"Removed-worktrees handler failed for {self.project_path}: {e}")

    # ----------------------------------------------------------------- lifecycle

    def start(self) -> None:
        self.reconciler.start()

    def shutdown(self) -> None:
        self.reconciler.stop()
        self.dev_servers.stop_all()


class WorktreeOrchestrator:
    """Facade over worktree lifecycle, dev servers and auto-mode.

    Holds one ProjectContext per project path (created on first use) and a
    single auto-mode controller shared by all projects.
    """

    def __init__(
        self,
        config: Union[Config, dict, None] = None,
        runner: Optional[AutoModeRunner] = None,
        events: Optional[EventBus] = None,
        on_removed: Optional[RemovedSink] = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Configuration dict or Config object
            runner: Auto-mode runner that executes the actual work loop
            events: Event bus; a private one is created when omitted
            on_removed: Called with (project_path, removed_worktrees) when
                reconciliation finds worktrees removed outside the tool
        """
        if config is None:
            config = Config()
        elif isinstance(config, dict):
            config = Config.from_dict(config)
        self.config = config
        self.events = events or EventBus()
        self.on_removed = on_removed
        self.auto_mode = AutoModeController(runner, self.events)
        self._contexts: Dict[str, ProjectContext] = {}
        self._contexts_lock = Lock()
        self._started = False

    # ----------------------------------------------------------------- contexts

    def get_context(self, project_path: str) -> ProjectContext:
        """Context for ``project_path``, opening it on first use.

        Raises:
            BackendError: ``project_path`` is not a git repository
        """
        key = normalize_path(project_path)
        with self._contexts_lock:
            context = self._contexts.get(key)
            if context is None:
                context = ProjectContext(project_path, self.config, self.events, self.on_removed)
                self._contexts[key] = context
                logger.debug(f"Opened {context!r}")
                if self._started:
                    context.start()
            return context

    def _open_contexts(self) -> List[ProjectContext]:
        with self._contexts_lock:
            return list(self._contexts.values())

    def _context_for_worktree(self, worktree_path: str, project_path: Optional[str] = None) -> ProjectContext:
        """Find the project owning ``worktree_path``.

        A context with a tracked dev server for the path also matches, so a
        crashed server stays reachable after its worktree is gone.
        """
        if project_path:
            return self.get_context(project_path)
        contexts = self._open_contexts()
        for context in contexts:
            if context.registry.get(worktree_path) is not None:
                return context
        for context in contexts:
            if context.dev_servers.status(worktree_path) is not None:
                return context
        raise WorktreeNotFoundError(worktree_path)

    def start(self) -> None:
        """Start reconciliation for every open project (and ones opened later)."""
        self._started = True
        for context in self._open_contexts():
            context.start()

    def shutdown(self) -> None:
        """Stop reconciliation, dev servers and auto-mode runs."""
        self._started = False
        for context in self._open_contexts():
            context.shutdown()
        self.auto_mode.stop_all()
        logger.info("Orchestrator shut down")

    def __enter__(self) -> "WorktreeOrchestrator":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ---------------------------------------------------------------- worktrees

    def create(self, project_path: str, branch: str) -> Worktree:
        """Create a worktree for ``branch`` under ``<project>/.worktrees/``."""
        context = self.get_context(project_path)
        return context.lifecycle.create_worktree(branch, base_path=context.project_path)

    def delete(
        self, project_path: str, worktree_path: str, delete_branch: bool = False, force: bool = False
    ) -> Worktree:
        """Delete a worktree; its dev server is stopped first."""
        context = self.get_context(project_path)
        removed = context.lifecycle.delete_worktree(worktree_path, delete_branch=delete_branch, force=force)
        context.forget_selection([removed])
        return removed

    def list(self, project_path: str, include_details: bool = False) -> List[Worktree]:
        """Registry snapshot, main first.

        With ``include_details`` the ahead/behind counts are queried from git
        for every worktree in parallel.
        """
        context = self.get_context(project_path)
        worktrees = list(context.registry.snapshot())
        if not include_details or not worktrees:
            return worktrees

        def with_sync_counts(worktree: Worktree) -> Worktree:
            try:
                ahead, behind = context.backend.ahead_behind(worktree.path)
            except BackendError as e:
                logger.debug(f"Could not compute ahead/behind for {worktree.path}: {e}")
                return worktree
            return dataclass_replace(worktree, ahead_count=ahead, behind_count=behind)

        max_workers = get_optimal_worker_count(self.config.workers, task_count=len(worktrees))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(with_sync_counts, worktrees))

    def select_worktree(self, project_path: str, worktree_path: Optional[str] = None) -> Worktree:
        """Select a worktree from the registry; unknown paths fall back to main."""
        return self.get_context(project_path).select(worktree_path)

    def current_worktree(self, project_path: str) -> Worktree:
        return self.get_context(project_path).current()

    def switch_branch(self, project_path: str, worktree_path: str, branch: str) -> Worktree:
        """Check out ``branch`` in place in an existing worktree.

        Raises:
            WorktreeNotFoundError: unknown worktree or branch
            BranchInUseError: ``branch`` is active in a different worktree
            WorktreeInUseError: uncommitted changes in the worktree
        """
        context = self.get_context(project_path)
        worktree = context.registry.get(worktree_path)
        if worktree is None:
            raise WorktreeNotFoundError(worktree_path)

        branch = branch.strip()
        if worktree.branch == branch:
            logger.debug(f"{worktree.path} is already on {branch}")
            return worktree

        owner = context.registry.find_by_branch(branch)
        if owner is not None and normalize_path(owner.path) != normalize_path(worktree.path):
            raise BranchInUseError(branch, owner.path)

        context.backend.switch_branch(worktree.path, branch)
        return context.registry.update_branch(worktree.path, branch) or worktree

    def list_branches(
        self, project_path: str, worktree_path: Optional[str] = None, include_remote: bool = False
    ) -> BranchListing:
        """Branches available to a worktree (main when ``worktree_path`` is None)."""
        context = self.get_context(project_path)
        path = worktree_path or context.current().path
        return context.branches.list_branches(path, include_remote=include_remote)

    def refresh(self, project_path: str) -> List[Worktree]:
        """Run one reconciliation pass now; returns worktrees found removed."""
        return self.get_context(project_path).reconciler.tick() or []

    # --------------------------------------------------------------- dev servers

    def start_dev_server(self, worktree_path: str, project_path: Optional[str] = None) -> DevServerInstance:
        context = self._context_for_worktree(worktree_path, project_path)
        worktree = context.registry.get(worktree_path)
        if worktree is None:
            raise WorktreeNotFoundError(worktree_path)
        return context.dev_servers.start(worktree)

    def stop_dev_server(self, worktree_path: str, project_path: Optional[str] = None) -> Optional[DevServerInstance]:
        context = self._context_for_worktree(worktree_path, project_path)
        return context.dev_servers.stop(worktree_path)

    def toggle_dev_server(self, worktree_path: str, project_path: Optional[str] = None) -> Optional[DevServerInstance]:
        """Stop a live server, otherwise start one."""
        context = self._context_for_worktree(worktree_path, project_path)
        instance = context.dev_servers.status(worktree_path)
        if instance is not None and instance.status.is_live:
            return context.dev_servers.stop(worktree_path)
        return self.start_dev_server(worktree_path, context.project_path)

    def dev_server_status(self, worktree_path: str, project_path: Optional[str] = None) -> Optional[DevServerInstance]:
        try:
            context = self._context_for_worktree(worktree_path, project_path)
        except WorktreeNotFoundError:
            return None
        return context.dev_servers.status(worktree_path)

    def dev_server_logs(
        self, worktree_path: str, project_path: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        try:
            context = self._context_for_worktree(worktree_path, project_path)
        except WorktreeNotFoundError:
            return []
        return context.dev_servers.get_logs(worktree_path, limit)

    def list_dev_servers(self) -> List[DevServerInstance]:
        instances = []
        for context in self._open_contexts():
            instances.extend(context.dev_servers.list_instances())
        return instances

    # ----------------------------------------------------------------- auto-mode

    def auto_mode_key(self, project_path: str, branch: Optional[str] = None) -> AutoModeKey:
        """Key for a project/branch pair; None (or empty) means the main worktree."""
        return AutoModeKey(normalize_path(project_path), branch or None)

    def start_auto_mode(self, project_path: str, branch: Optional[str] = None) -> AutoModeRun:
        return self.auto_mode.start(self.auto_mode_key(project_path, branch))

    def stop_auto_mode(self, project_path: str, branch: Optional[str] = None) -> Optional[AutoModeRun]:
        """Stop auto-mode; works even after the branch's worktree is gone."""
        return self.auto_mode.stop(self.auto_mode_key(project_path, branch))

    def toggle_auto_mode(self, project_path: str, branch: Optional[str] = None) -> bool:
        return self.auto_mode.toggle(self.auto_mode_key(project_path, branch))

    def is_auto_mode_running(self, project_path: str, branch: Optional[str] = None) -> bool:
        return self.auto_mode.is_running(self.auto_mode_key(project_path, branch))

    # ---------------------------------------------------------------- init script

    def get_init_script(self, project_path: str) -> InitScript:
        return self.get_context(project_path).init_scripts.get_script()

    def run_init_script(self, project_path: str, worktree_path: str, branch: str):
        """Start the init script; progress is published on the event bus."""
        return self.get_context(project_path).init_scripts.run(worktree_path, branch)

    # ------------------------------------------------------------------ dispatch

    def handle(self, operation: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a named operation from a transport payload.

        Typed errors are returned as ``{"success": False, "error", "code"}``
        instead of raised.
        """
        handlers = {
            "worktree.create": self._handle_create,
            "worktree.delete": self._handle_delete,
            "worktree.list": self._handle_list,
            "worktree.select": self._handle_select,
            "worktree.switchBranch": self._handle_switch_branch,
            "worktree.listBranches": self._handle_list_branches,
            "worktree.refresh": self._handle_refresh,
            "worktree.getInitScript": self._handle_get_init_script,
            "worktree.runInitScript": self._handle_run_init_script,
            "devServer.start": self._handle_dev_server_start,
            "devServer.stop": self._handle_dev_server_stop,
            "devServer.status": self._handle_dev_server_status,
            "devServer.logs": self._handle_dev_server_logs,
            "autoMode.start": self._handle_auto_mode_start,
            "autoMode.stop": self._handle_auto_mode_stop,
            "autoMode.status": self._handle_auto_mode_status,
        }
        try:
            handler = handlers.get(operation)
            if handler is None:
                raise InvalidRequestError(f"Unknown operation: {operation}")
            return handler(payload if payload is not None else {})
        except WorktreeOrchestratorError as e:
            logger.debug(f"{operation} failed: {e}")
            return error_response(e)

    def _handle_create(self, payload: dict) -> dict:
        request = CreateWorktreeRequest.from_dict(payload)
        worktree = self.create(request.project_path, request.branch_name)
        return CreateWorktreeResponse(worktree.path, worktree.branch).to_dict()

    def _handle_delete(self, payload: dict) -> dict:
        request = DeleteWorktreeRequest.from_dict(payload)
        self.delete(request.project_path, request.worktree_path, request.delete_branch, request.force)
        return SuccessResponse().to_dict()

    def _handle_list(self, payload: dict) -> dict:
        request = ListWorktreesRequest.from_dict(payload)
        worktrees = self.list(request.project_path, include_details=request.include_details)
        return ListWorktreesResponse(worktrees, request.include_details).to_dict()

    def _handle_select(self, payload: dict) -> dict:
        request = SelectWorktreeRequest.from_dict(payload)
        return SelectWorktreeResponse(self.select_worktree(request.project_path, request.worktree_path)).to_dict()

    def _handle_switch_branch(self, payload: dict) -> dict:
        request = SwitchBranchRequest.from_dict(payload)
        self.switch_branch(request.project_path, request.worktree_path, request.branch_name)
        return SuccessResponse().to_dict()

    def _handle_list_branches(self, payload: dict) -> dict:
        request = ListBranchesRequest.from_dict(payload)
        listing = self.list_branches(request.project_path, request.worktree_path, request.include_remote)
        return ListBranchesResponse(listing, request.filter).to_dict()

    def _handle_refresh(self, payload: dict) -> dict:
        request = ProjectRequest.from_dict(payload)
        return RefreshResponse(self.refresh(request.project_path)).to_dict()

    def _handle_get_init_script(self, payload: dict) -> dict:
        request = ProjectRequest.from_dict(payload)
        script = self.get_init_script(request.project_path)
        return InitScriptResponse(script.exists, script.path, script.content).to_dict()

    def _handle_run_init_script(self, payload: dict) -> dict:
        request = RunInitScriptRequest.from_dict(payload)
        self.run_init_script(request.project_path, request.worktree_path, request.branch)
        return SuccessResponse("Init script started").to_dict()

    def _handle_dev_server_start(self, payload: dict) -> dict:
        request = DevServerRequest.from_dict(payload)
        return DevServerResponse(self.start_dev_server(request.worktree_path, request.project_path)).to_dict()

    def _handle_dev_server_stop(self, payload: dict) -> dict:
        request = DevServerRequest.from_dict(payload)
        return DevServerResponse(self.stop_dev_server(request.worktree_path, request.project_path)).to_dict()

    def _handle_dev_server_status(self, payload: dict) -> dict:
        request = DevServerRequest.from_dict(payload)
        return DevServerResponse(self.dev_server_status(request.worktree_path, request.project_path)).to_dict()

    def _handle_dev_server_logs(self, payload: dict) -> dict:
        request = DevServerRequest.from_dict(payload)
        instance = self.dev_server_status(request.worktree_path, request.project_path)
        response = DevServerResponse(instance, include_logs=True).to_dict()
        response["logs"] = self.dev_server_logs(request.worktree_path, request.project_path, request.limit)
        return response

    def _handle_auto_mode_start(self, payload: dict) -> dict:
        request = AutoModeRequest.from_dict(payload)
        run = self.start_auto_mode(request.project_path, request.branch_name)
        return AutoModeResponse(run.is_running).to_dict()

    def _handle_auto_mode_stop(self, payload: dict) -> dict:
        request = AutoModeRequest.from_dict(payload)
        self.stop_auto_mode(request.project_path, request.branch_name)
        return AutoModeResponse(False).to_dict()

    def _handle_auto_mode_status(self, payload: dict) -> dict:
        request = AutoModeRequest.from_dict(payload)
        return AutoModeResponse(self.is_auto_mode_running(request.project_path, request.branch_name)).to_dict()
