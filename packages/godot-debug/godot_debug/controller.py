"""The debug session state machine.

``DebugSessionController`` is the single entry-point consumed by the front
ends (MCP server, skill script).  :meth:`launch` runs four steps strictly in
order and stops at the first failure::

    IDLE -> SELECTING -> BUILDING -> LAUNCHING -> ATTACHING -> ACTIVE -> IDLE

Every way a session can end (a step failing, the DAP session reporting
``terminated`` / ``exited`` / ``disconnected``, the monitor losing the
process) goes through :meth:`end_session`, which releases everything exactly
once.  Nothing raised inside a step escapes :meth:`launch`; callers get a
:class:`SessionOutcome`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from godot_debug.adapters.netcoredbg import NetcoredbgAdapter
from godot_debug.build import BuildCoordinator, BuildResult, build_command, clean_build
from godot_debug.config import DebugConfig
from godot_debug.dap_client import DAPClient
from godot_debug.errors import (
    AlreadyInProgress,
    AttachFailed,
    BuildFailed,
    GodotDebugError,
    LaunchFailed,
    NoTargetsFound,
    NoTargetSelected,
)
from godot_debug.launcher import LaunchFlags, LaunchHandle, ProcessLauncher, kill_command
from godot_debug.locator import (
    Target,
    TargetPicker,
    find_targets,
    load_last_used,
    order_targets,
    pick_first,
    save_last_used,
)
from godot_debug.monitor import ProcessMonitor
from godot_debug.notifications import Notifier
from godot_debug.project import find_project_root
from godot_debug.protocol import SESSION_END_EVENTS, DebugClient, DebugMessage
from godot_debug.runner import ProcessRunner
from godot_debug.views import OutputViews

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[], DebugClient]
ProcessPicker = Callable[[], Awaitable["int | None"]]


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    BUILDING = "building"
    LAUNCHING = "launching"
    ATTACHING = "attaching"
    ACTIVE = "active"


@dataclass
class SessionState:
    phase: SessionPhase = SessionPhase.IDLE
    in_progress: bool = False
    active_handle: LaunchHandle | None = None
    session_id: int = 0

    @property
    def idle(self) -> bool:
        return self.phase is SessionPhase.IDLE


@dataclass(frozen=True)
class SessionOutcome:
    success: bool
    phase: SessionPhase
    error: GodotDebugError | None = None
    target: Target | None = None
    build: BuildResult | None = None
    handle: LaunchHandle | None = None

    @property
    def reason(self) -> str | None:
        return self.error.reason if self.error else None

    @property
    def message(self) -> str:
        if self.error is not None:
            return f"Debug session aborted: {self.error.message}"
        pid = self.handle.process_id if self.handle else "?"
        return f"Debug session started (PID {pid})"


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class DebugSessionController:
    """Owns the session state and drives the launch pipeline.

    Usage::

        controller = DebugSessionController(DebugConfig(), picker=my_picker)
        outcome = await controller.launch()
        if outcome.success:
            await controller.wait_idle()
    """

    def __init__(
        self,
        config: DebugConfig | None = None,
        *,
        search_root: str | None = None,
        runner: ProcessRunner | None = None,
        builder: BuildCoordinator | None = None,
        launcher: ProcessLauncher | None = None,
        monitor: ProcessMonitor | None = None,
        client_factory: ClientFactory | None = None,
        picker: TargetPicker | None = None,
        process_picker: ProcessPicker | None = None,
        notifier: Notifier | None = None,
        views: OutputViews | None = None,
    ) -> None:
        self.config = config or DebugConfig()
        cfg = self.config

        self._search_root = os.path.abspath(search_root or os.getcwd())
        self._runner = runner or ProcessRunner()
        self.views = views or OutputViews()
        self.notifier = notifier or Notifier()
        self._launcher = launcher or ProcessLauncher(
            self._runner,
            cfg.godot_binary,
            settle_delay=cfg.settle_delay,
            pid_resolve_delay=cfg.pid_resolve_delay,
            detach=cfg.detach_runtime,
        )
        assert cfg.build_log_dir is not None
        self._builder = builder or BuildCoordinator(
            self._runner,
            cfg.build_log_dir,
            kill_by_name=self._kill_by_name,
            poll_interval=cfg.build_poll_interval,
            kill_grace=cfg.build_kill_grace,
            completion_markers=cfg.build_completion_markers,
            views=self.views,
            show_output=cfg.show_build_output,
            keep_logs=cfg.build_log_keep,
        )
        self._monitor = monitor or ProcessMonitor(
            interval=cfg.monitor_interval,
            failure_threshold=cfg.monitor_failure_threshold,
        )
        self._client_factory = client_factory or self._default_client
        self._picker = picker or pick_first
        self._process_picker = process_picker

        self._state = SessionState()
        self._client: DebugClient | None = None
        self._last_build: BuildResult | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def client(self) -> DebugClient | None:
        return self._client

    @property
    def search_root(self) -> str:
        return self._search_root

    @property
    def last_build(self) -> BuildResult | None:
        return self._last_build

    def status(self) -> dict[str, Any]:
        handle = self._state.active_handle
        return {
            "phase": self._state.phase.value,
            "in_progress": self._state.in_progress,
            "session_id": self._state.session_id,
            "process_id": handle.process_id if handle else None,
            "target": handle.relative_target if handle else None,
            "monitoring": self._monitor.active,
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def launch(self, picker: TargetPicker | None = None) -> SessionOutcome:
        """Select, build, launch and attach.  Never raises for step failures.

        *picker* overrides the configured scene picker for this run only.
        """
        if not self._state.idle:
            return self._reject()

        session_id = self._begin(SessionPhase.SELECTING)
        self.notifier.start("session", "Starting debug session...")
        self._last_build = None
        target: Target | None = None
        handle: LaunchHandle | None = None

        try:
            target, project_root = await self._run_step(
                "select", "Selecting scene...", NoTargetSelected,
                lambda: self._select_target(picker or self._picker),
            )
            self.notifier.success("select", f"Selected scene: {target.relative_path}")

            self._enter(SessionPhase.BUILDING, session_id)
            build = await self._run_step(
                "build",
                "Building Godot solutions...",
                lambda msg: BuildFailed([msg], f"Build failed: {msg}"),
                lambda: self._build(project_root),
            )
            self.notifier.success("build", f"Build completed successfully ({build.duration:.1f}s)")

            self._enter(SessionPhase.LAUNCHING, session_id)
            handle = await self._run_step(
                "launch",
                f"Launching {target.relative_path}...",
                LaunchFailed,
                lambda: self._launch(target.path, project_root),
            )
            self._state.active_handle = handle
            self.notifier.success("launch", f"Godot launched with PID: {handle.process_id}")

            self._enter(SessionPhase.ATTACHING, session_id)
            await self._run_step(
                "attach",
                f"Attaching debugger to PID: {handle.process_id}",
                AttachFailed,
                lambda: self._attach_client(handle.project_root, session_id),
            )
        except GodotDebugError as exc:
            return self._abort(exc, session_id, target, handle)
        except asyncio.CancelledError:
            self.end_session("cancelled", session_id)
            raise

        return self._activate(session_id, target, handle)

    async def attach(self) -> SessionOutcome:
        """Attach to an already running runtime (e.g. after AttachFailed)."""
        if not self._state.idle:
            return self._reject()

        session_id = self._begin(SessionPhase.ATTACHING)
        self.notifier.start("session", "Attaching to running Godot process...")
        project_root = find_project_root(self._search_root, self.config.manifest_file) or self._search_root
        last = load_last_used(self.config.scene_cache_file or "")
        handle = LaunchHandle(
            target=last or "",
            project_root=project_root,
            relative_target=os.path.relpath(last, project_root) if last else "",
        )

        try:
            pid = await self.provide_process_id()
            if pid is None:
                raise AttachFailed("No Godot process to attach to")
            handle.process_id = pid
            self._state.active_handle = handle
            await self._run_step(
                "attach",
                f"Attaching debugger to PID: {pid}",
                AttachFailed,
                lambda: self._attach_client(project_root, session_id),
            )
        except GodotDebugError as exc:
            return self._abort(exc, session_id, None, handle)
        except asyncio.CancelledError:
            self.end_session("cancelled", session_id)
            raise

        return self._activate(session_id, None, handle)

    async def provide_process_id(self) -> int | None:
        """Pid for the DAP ``attach`` request.

        Order: the handle from this session, a process-table lookup, then
        the external process picker.
        """
        handle = self._state.active_handle
        if handle is not None and handle.resolved:
            logger.info("Using stored Godot PID: %d", handle.process_id)
            return handle.process_id

        logger.info("Looking for running Godot process...")
        pid = await self._launcher.find_process_id()
        if pid is not None:
            logger.info("Found Godot process with PID: %d", pid)
            return pid

        if self._process_picker is None:
            logger.error("No Godot process found and no process picker configured")
            return None

        logger.info("No Godot process found automatically, using process picker")
        pid = await self._process_picker()
        if pid is None:
            logger.error("No process selected")
        return pid

    # ------------------------------------------------------------------
    # Session end
    # ------------------------------------------------------------------

    def end_session(self, reason: str, session_id: int | None = None) -> bool:
        """Release the session.  Idempotent; returns True only the first time.

        *session_id* guards against late events from an earlier session.
        """
        state = self._state
        if session_id is not None and session_id != state.session_id:
            return False
        if state.idle and not state.in_progress:
            return False

        logger.info("Debug session ended: %s", reason)
        self._monitor.stop()
        state.active_handle = None
        state.in_progress = False
        state.phase = SessionPhase.IDLE

        client, self._client = self._client, None
        if client is not None:
            # Detach only; the game keeps running unless it is already gone.
            self._spawn(client.disconnect(terminate_debuggee=False))

        self._idle.set()
        return True

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def flush(self) -> None:
        """Wait for background cleanup (client disconnects) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def kill_processes(self) -> None:
        """The "kill target processes" command."""
        if self._state.phase is SessionPhase.ACTIVE:
            self.end_session("Godot processes killed")
        await self._launcher.kill_processes()

    async def rebuild_and_restart(self, picker: TargetPicker | None = None) -> SessionOutcome:
        """End any active session, wipe build output, then :meth:`launch`."""
        if self._state.phase is SessionPhase.ACTIVE:
            self.end_session("restarting")
            await self.flush()
        elif not self._state.idle:
            return self._reject()

        project_root = find_project_root(self._search_root, self.config.manifest_file)
        if project_root is not None:
            try:
                await asyncio.to_thread(clean_build, project_root)
            except OSError as exc:
                logger.warning("Could not clean build artifacts: %s", exc)
        return await self.launch(picker)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _select_target(self, picker: TargetPicker) -> tuple[Target, str]:
        cfg = self.config
        try:
            paths = await find_targets(
                self._search_root, cfg.exclude_dirs, self._runner, cfg.target_extension,
            )
        except NoTargetsFound:
            raise
        except Exception as exc:
            raise NoTargetsFound(f"Failed to find scenes: {exc}") from exc

        display_root = find_project_root(self._search_root, cfg.manifest_file) or self._search_root
        last_used = load_last_used(cfg.scene_cache_file or "")
        candidates = order_targets(paths, display_root, last_used)
        logger.info("Found %d scene(s)", len(candidates))

        choice = await picker(candidates)
        if choice is None:
            raise NoTargetSelected("No scene selected")

        if cfg.scene_cache_file:
            try:
                save_last_used(cfg.scene_cache_file, choice.path)
            except OSError as exc:
                logger.warning("Could not save last scene: %s", exc)

        project_root = find_project_root(choice.path, cfg.manifest_file)
        if project_root is None:
            raise NoTargetSelected(f"Could not find {cfg.manifest_file} for {choice.path}")
        return choice, project_root

    async def _build(self, project_root: str) -> BuildResult:
        cfg = self.config
        result = await self._builder.build(
            project_root,
            build_command(cfg.godot_binary),
            cfg.build_timeout,
            cfg.ignore_build_errors,
        )
        self._last_build = result
        if not result.success:
            raise BuildFailed(result.fatal_lines)
        return result

    async def _launch(self, target: str, project_root: str) -> LaunchHandle:
        cfg = self.config
        flags = LaunchFlags(
            debug=True,
            breakpoints_enabled=cfg.breakpoints_enabled,
            extra_args=cfg.launch_args,
        )
        return await self._launcher.launch(target, project_root, flags)

    async def _attach_client(self, project_root: str, session_id: int) -> None:
        client = self._client_factory()
        self._client = client
        for event in SESSION_END_EVENTS:
            client.on(event, self._session_end_listener(event, session_id))
        await client.start()
        await client.attach(self.provide_process_id, project_root)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        step: str,
        start_message: str,
        error_factory: Callable[[str], GodotDebugError],
        action: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *action*, converting anything unexpected into *error_factory*."""
        self.notifier.start(step, start_message)
        try:
            return await action()
        except GodotDebugError as exc:
            self.notifier.failure(step, exc.message)
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error during %s step", step)
            err = error_factory(str(exc) or exc.__class__.__name__)
            self.notifier.failure(step, err.message)
            raise err from exc

    def _begin(self, phase: SessionPhase) -> int:
        state = self._state
        state.session_id += 1
        state.in_progress = True
        state.phase = phase
        state.active_handle = None
        self._idle.clear()
        logger.debug("Session %d: idle -> %s", state.session_id, phase.value)
        return state.session_id

    def _enter(self, phase: SessionPhase, session_id: int) -> None:
        state = self._state
        if state.session_id != session_id or state.idle:
            raise GodotDebugError("Debug session was ended")
        logger.debug("Session %d: %s -> %s", session_id, state.phase.value, phase.value)
        state.phase = phase

    def _reject(self) -> SessionOutcome:
        err = AlreadyInProgress()
        logger.warning(err.message)
        self.notifier.failure("guard", err.message)
        return SessionOutcome(False, self._state.phase, err)

    def _abort(
        self,
        exc: GodotDebugError,
        session_id: int,
        target: Target | None,
        handle: LaunchHandle | None,
    ) -> SessionOutcome:
        phase = self._state.phase
        self.notifier.failure("session", f"Debug session aborted: {exc.message}")
        self.end_session(exc.reason, session_id)
        return SessionOutcome(False, phase, exc, target, self._last_build, handle)

    def _activate(
        self,
        session_id: int,
        target: Target | None,
        handle: LaunchHandle | None,
    ) -> SessionOutcome:
        state = self._state
        if state.session_id != session_id or state.idle or handle is None:
            # A session-end event arrived while we were attaching.
            err = AttachFailed("Debug session ended while attaching")
            self.notifier.failure("session", err.message)
            return SessionOutcome(False, SessionPhase.ATTACHING, err, target, self._last_build, handle)

        state.phase = SessionPhase.ACTIVE
        state.in_progress = False
        self._monitor.start(
            handle.process_id,
            lambda pid: self.end_session(f"process {pid} is no longer running", session_id),
        )
        self.notifier.success("session", "Debug session started successfully")
        return SessionOutcome(True, SessionPhase.ACTIVE, None, target, self._last_build, handle)

    def _session_end_listener(self, event: str, session_id: int) -> Callable[[DebugMessage], None]:
        def _listener(msg: DebugMessage) -> None:
            body = msg.get("body") or {}
            if event == "exited":
                logger.warning("DAP session exited (exit code %s)", body.get("exitCode"))
            else:
                logger.warning("DAP session %s", event)
            self.end_session(f"DAP session {event}", session_id)

        return _listener

    def _default_client(self) -> DebugClient:
        adapter = NetcoredbgAdapter(self.config.netcoredbg_path, self.config.adapter_env)
        return DAPClient(adapter)

    async def _kill_by_name(self) -> None:
        await self._runner.run(kill_command(self.config.godot_binary))

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_task_error)


def _log_task_error(task: asyncio.Task[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Background cleanup failed: %s", task.exception())
