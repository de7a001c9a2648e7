"""Dev server process supervision, one server per worktree."""

import os
import signal
import socket
import subprocess
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Event, Lock, Thread
from typing import TYPE_CHECKING, Callable, Deque, Dict, List, Optional, Set, Union

from worktree_orchestrator.constants import (
    ANSI_ESCAPE,
    EVENT_DEV_SERVER_CRASHED,
    EVENT_DEV_SERVER_OUTPUT,
    EVENT_DEV_SERVER_STARTED,
    EVENT_DEV_SERVER_STOPPED,
    EVENT_DEV_SERVER_URL,
    PACKAGE_MANAGER_LOCKFILES,
    URL_PATTERN,
)
from worktree_orchestrator.exceptions import AlreadyRunningError, ProcessError
from worktree_orchestrator.logging_config import get_logger
from worktree_orchestrator.models.dev_server import DevServerInstance, DevServerStatus
from worktree_orchestrator.models.worktree import Worktree
from worktree_orchestrator.utils.naming import normalize_path

if TYPE_CHECKING:
    from worktree_orchestrator.config import Config
    from worktree_orchestrator.services.event_service import EventBus

logger = get_logger(__name__)


def detect_url(line: str) -> Optional[str]:
    """Find the first http(s) URL with a port in a line of server output."""
    match = URL_PATTERN.search(ANSI_ESCAPE.sub("", line))
    if not match:
        return None
    return match.group(0).rstrip(".,;)")


def detect_package_manager(path: str) -> str:
    """Pick the package manager from the lockfile present in ``path``."""
    for lockfile, manager in PACKAGE_MANAGER_LOCKFILES:
        if os.path.exists(os.path.join(path, lockfile)):
            return manager
    return "npm"


class _DevServerProcess:
    """Mutable supervision state for one worktree's server."""

    def __init__(self, worktree_path: str, command: List[str], port: int, log_lines: int):
        self.worktree_path = worktree_path
        self.command = command
        self.port = port
        self.process: Optional[subprocess.Popen] = None
        self.status = DevServerStatus.STARTING
        self.url: Optional[str] = None
        self.exit_code: Optional[int] = None
        self.started_at = datetime.now(timezone.utc)
        self.logs: Deque[str] = deque(maxlen=log_lines)
        self.stopping = False
        self.exited = Event()
        self.lock = Lock()
        self.reader: Optional[Thread] = None

    def snapshot(self) -> DevServerInstance:
        with self.lock:
            return DevServerInstance(
                worktree_path=self.worktree_path,
                pid=self.process.pid if self.process else None,
                status=self.status,
                command=tuple(self.command),
                port=self.port,
                url=self.url,
                exit_code=self.exit_code,
                started_at=self.started_at,
                logs=tuple(self.logs),
            )


class DevServerSupervisor:
    """Starts, stops and watches dev server processes for worktrees."""

    def __init__(
        self,
        config: Union["Config", dict],
        events: Optional["EventBus"] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        """Initialize the supervisor.

        Args:
            config: Configuration dictionary or Config object
            events: Event bus for started/url/stopped/crashed notifications
            popen: Process factory
        """
        self.config = config
        self.events = events
        self._popen = popen
        self.grace_period = config.get("dev_server_grace_period", 5.0)
        self.log_lines = config.get("dev_server_log_lines", 1000)
        self.ready_timeout = config.get("dev_server_ready_timeout", 60.0)
        self.base_port = config.get("dev_server_base_port", 3001)
        self.port_range = config.get("dev_server_port_range", 100)
        self._servers: Dict[str, _DevServerProcess] = {}
        self._servers_lock = Lock()
        self._path_locks: Dict[str, Lock] = {}
        self._reserved_ports: Set[int] = set()

    # ----------------------------------------------------------------- helpers

    @contextmanager
    def _path_lock(self, path: str):
        """Make start and stop for one worktree mutually exclusive."""
        key = normalize_path(path)
        with self._servers_lock:
            lock = self._path_locks.setdefault(key, Lock())
        with lock:
            yield

    def _get(self, path: str) -> Optional[_DevServerProcess]:
        with self._servers_lock:
            return self._servers.get(normalize_path(path))

    def _emit(self, event_type: str, server: _DevServerProcess) -> None:
        if self.events is not None:
            self.events.emit(event_type, **server.snapshot().to_dict())

    def resolve_command(self, worktree: Worktree) -> List[str]:
        """Command used to start the dev server for ``worktree``.

        Lookup order: per-worktree override (by branch, then path), the
        global ``dev_server_command``, then ``<package manager> run dev``
        when the worktree has a package.json.
        """
        overrides = self.config.get("dev_server_commands", {}) or {}
        for key in (worktree.branch, worktree.path):
            if key and key in overrides:
                return list(overrides[key])
        for key, command in overrides.items():
            if normalize_path(key) == normalize_path(worktree.path):
                return list(command)

        default = self.config.get("dev_server_command", None)
        if default:
            return list(default)

        if os.path.exists(os.path.join(worktree.path, "package.json")):
            return [detect_package_manager(worktree.path), "run", "dev"]

        raise ProcessError(
            "resolve_command",
            f"no dev server command configured and no package.json in {worktree.path}",
        )

    def _allocate_port(self) -> int:
        """Reserve a free port; the caller releases it with ``_release_port``."""
        with self._servers_lock:
            taken: Set[int] = {s.port for s in self._servers.values() if s.status.is_live}
            taken |= self._reserved_ports
            for port in range(self.base_port, self.base_port + self.port_range):
                if port in taken:
                    continue
                with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as candidate:
                    try:
                        candidate.bind(("127.0.0.1", port))
                    except OSError:
                        continue
                self._reserved_ports.add(port)
                return port
        raise ProcessError(
            "allocate_port",
            f"no free port in {self.base_port}-{self.base_port + self.port_range - 1}",
        )

    def _release_port(self, port: int) -> None:
        with self._servers_lock:
            self._reserved_ports.discard(port)

    def _signal(self, server: _DevServerProcess, sig: int) -> None:
        """Send ``sig`` to the server's whole process group."""
        process = server.process
        if process is None or process.poll() is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, sig)
            elif sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
        except ProcessLookupError:
            pass
        except OSError as e:
            raise ProcessError("signal", f"could not send {sig} to pid {process.pid}: {e}") from e

    # --------------------------------------------------------------- lifecycle

    def start(self, worktree: Worktree) -> DevServerInstance:
        """Start the dev server for ``worktree``.

        Returns:
            Snapshot of the new instance (status ``starting``)

        Raises:
            AlreadyRunningError: a server is already starting or running there
            ProcessError: the command cannot be resolved or spawned
        """
        with self._path_lock(worktree.path):
            existing = self._get(worktree.path)
            if existing is not None and existing.status.is_live:
                raise AlreadyRunningError(worktree.path, existing.status.value)

            if not os.path.isdir(worktree.path):
                raise ProcessError("start", f"worktree directory does not exist: {worktree.path}")

            command = self.resolve_command(worktree)
            port = self._allocate_port()
            env = os.environ.copy()
            env["PORT"] = str(port)

            server = _DevServerProcess(worktree.path, command, port, self.log_lines)
            logger.info(f"Starting dev server in {worktree.path}: {' '.join(command)} (PORT={port})")
            try:
                server.process = self._popen(
                    command,
                    cwd=worktree.path,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                    bufsize=1,
                    start_new_session=True,
                )
            except OSError as e:
                self._release_port(port)
                raise ProcessError("spawn", f"{' '.join(command)}: {e}") from e

            with self._servers_lock:
                self._servers[normalize_path(worktree.path)] = server
                # The live server now holds the port
                self._reserved_ports.discard(port)

            server.reader = Thread(
                target=self._pump_output, args=(server,), name=f"dev-server-{server.process.pid}", daemon=True
            )
            server.reader.start()
            Thread(
                target=self._probe_ready, args=(server,), name=f"dev-server-probe-{server.process.pid}", daemon=True
            ).start()

            self._emit(EVENT_DEV_SERVER_STARTED, server)
            return server.snapshot()

    def _mark_running(self, server: _DevServerProcess, url: str) -> None:
        with server.lock:
            if server.status != DevServerStatus.STARTING:
                if server.url is None and server.status == DevServerStatus.RUNNING:
                    server.url = url
                return
            server.status = DevServerStatus.RUNNING
            server.url = url
        logger.info(f"Dev server for {server.worktree_path} is running at {url}")
        self._emit(EVENT_DEV_SERVER_URL, server)

    def _pump_output(self, server: _DevServerProcess) -> None:
        """Copy process output into the log buffer until the process exits."""
        process = server.process
        if process.stdout is not None:
            for raw_line in process.stdout:
                line = raw_line.rstrip("\r\n")
                with server.lock:
                    server.logs.append(line)
                    needs_url = server.url is None
                if self.events is not None:
                    self.events.emit(EVENT_DEV_SERVER_OUTPUT, worktreePath=server.worktree_path, content=line)
                if needs_url:
                    url = detect_url(line)
                    if url:
                        self._mark_running(server, url)
            process.stdout.close()

        exit_code = process.wait()
        with server.lock:
            server.exit_code = exit_code
            crashed = not server.stopping
            if crashed:
                server.status = DevServerStatus.CRASHED
        server.exited.set()

        if crashed:
            logger.warning(f"Dev server for {server.worktree_path} exited unexpectedly with code {exit_code}")
            self._emit(EVENT_DEV_SERVER_CRASHED, server)

    def _probe_ready(self, server: _DevServerProcess) -> None:
        """Mark the server running once its port accepts connections."""
        deadline = time.monotonic() + self.ready_timeout
        while not server.exited.is_set() and time.monotonic() < deadline:
            if server.status != DevServerStatus.STARTING:
                return
            try:
                with socket.create_connection(("127.0.0.1", server.port), timeout=0.5):
                    self._mark_running(server, f"http://localhost:{server.port}")
                    return
            except OSError:
                server.exited.wait(0.25)
        if server.status == DevServerStatus.STARTING and not server.exited.is_set():
            logger.warning(
                f"Dev server for {server.worktree_path} not ready after {self.ready_timeout}s, still waiting for output"
            )

    def stop(self, path: str) -> Optional[DevServerInstance]:
        """Stop the dev server for ``path`` and release its log buffer.

        SIGTERM goes to the process group first; SIGKILL follows after the
        grace period.

        Returns:
            Final snapshot (status ``stopped``), or None if nothing was tracked

        Raises:
            ProcessError: the process could not be signalled
        """
        with self._path_lock(path):
            server = self._get(path)
            if server is None:
                return None

            with server.lock:
                server.stopping = True
            process = server.process

            if process is not None and process.poll() is None:
                logger.info(f"Stopping dev server for {server.worktree_path} (pid={process.pid})")
                self._signal(server, signal.SIGTERM)
                try:
                    process.wait(timeout=self.grace_period)
                except subprocess.TimeoutExpired:
                    logger.warning(f"Dev server pid={process.pid} ignored SIGTERM, killing")
                    self._signal(server, getattr(signal, "SIGKILL", signal.SIGTERM))
                    try:
                        process.wait(timeout=max(self.grace_period, 1.0))
                    except subprocess.TimeoutExpired as e:
                        raise ProcessError("stop", f"pid {process.pid} did not exit after SIGKILL") from e

            if server.reader is not None:
                server.reader.join(timeout=max(self.grace_period, 1.0))

            with server.lock:
                server.status = DevServerStatus.STOPPED
                if server.exit_code is None and process is not None:
                    server.exit_code = process.poll()
                server.logs.clear()
            with self._servers_lock:
                self._servers.pop(normalize_path(path), None)

            self._emit(EVENT_DEV_SERVER_STOPPED, server)
            return server.snapshot()

    def handle_worktree_removed(self, path: str) -> Optional[DevServerInstance]:
        """React to a worktree directory disappearing.

        A live server is killed best-effort and marked ``crashed``; its logs
        stay available until it is stopped or restarted.
        """
        server = self._get(path)
        if server is None:
            return None
        with server.lock:
            if not server.status.is_live:
                return None
            server.stopping = True
            server.status = DevServerStatus.CRASHED
            server.logs.append(f"[worktree {server.worktree_path} was removed]")

        try:
            self._signal(server, getattr(signal, "SIGKILL", signal.SIGTERM))
        except ProcessError as e:
            logger.warning(f"Could not kill dev server for removed worktree {path}: {e}")

        logger.warning(f"Worktree {path} disappeared, dev server marked crashed")
        self._emit(EVENT_DEV_SERVER_CRASHED, server)
        return server.snapshot()

    def stop_all(self) -> None:
        """Stop every tracked server; failures are logged."""
        with self._servers_lock:
            paths = [s.worktree_path for s in self._servers.values()]
        for path in paths:
            try:
                self.stop(path)
            except ProcessError as e:
                logger.error(f"Failed to stop dev server for {path}: {e}")

    # ----------------------------------------------------------------- queries

    def status(self, path: str) -> Optional[DevServerInstance]:
        """Snapshot of the server for ``path``, or None if none is tracked."""
        server = self._get(path)
        return server.snapshot() if server else None

    def get_logs(self, path: str, limit: Optional[int] = None) -> List[str]:
        """Captured output lines, oldest first."""
        server = self._get(path)
        if server is None:
            return []
        with server.lock:
            lines = list(server.logs)
        return lines[-limit:] if limit else lines

    def list_instances(self) -> List[DevServerInstance]:
        with self._servers_lock:
            servers = list(self._servers.values())
        return [server.snapshot() for server in servers]

    def wait_until(self, path: str, statuses, timeout: float) -> Optional[DevServerInstance]:
        """Poll until the server for ``path`` reaches one of ``statuses``."""
        wanted = {DevServerStatus(s) for s in statuses}
        server = self._get(path)
        if server is None:
            return None
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if server.status in wanted:
                break
            time.sleep(0.05)
        return server.snapshot()
