"""Shared fakes for the godot_debug tests.

The fakes stand in for the collaborators of :class:`DebugSessionController`
(runner, builder, launcher, DAP client) so the state machine can be driven
without Godot or netcoredbg installed.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import pytest
import pytest_asyncio

from godot_debug.build import BuildResult
from godot_debug.config import DebugConfig
from godot_debug.launcher import LaunchHandle
from godot_debug.protocol import resolve_process_id
from godot_debug.runner import CommandResult, ExecutionStyle, ProcessHandle


class FakeHandle(ProcessHandle):
    """A child process that exits only when told to."""

    def __init__(self, pid: int | None = 4242, error: str | None = None) -> None:
        super().__init__(ExecutionStyle.SUBPROCESS, pid)
        self.error = error
        self._code: int | None = None
        self._exited = asyncio.Event()
        self.terminated = False
        self.killed = False

    @property
    def returncode(self) -> int | None:
        return self._code

    def exit(self, code: int = 0) -> None:
        if self._code is None:
            self._code = code
        self._exited.set()

    async def _wait(self) -> CommandResult:
        await self._exited.wait()
        return CommandResult("", self._code == 0, "")

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


class FakeRunner:
    """Records commands; ``run`` answers from ``results`` keyed by argv[0]."""

    def __init__(self) -> None:
        self.results: dict[str, CommandResult] = {}
        self.commands: list[list[str]] = []
        self.spawn_options: list[Any] = []
        self.handles: list[FakeHandle] = []
        self.next_handle: FakeHandle | None = None

    async def run(self, command, options=None, timeout=None) -> CommandResult:
        argv = [command] if isinstance(command, str) else list(command)
        self.commands.append(argv)
        return self.results.get(argv[0], CommandResult("", True, ""))

    async def spawn(self, command, options=None) -> ProcessHandle:
        argv = [command] if isinstance(command, str) else list(command)
        self.commands.append(argv)
        self.spawn_options.append(options)
        handle = self.next_handle or FakeHandle()
        self.next_handle = None
        self.handles.append(handle)
        return handle

    def release(self) -> None:
        for handle in self.handles:
            handle.exit(0)


class FakeBuilder:
    """Build coordinator stub; optionally blocks until ``gate`` is set."""

    def __init__(self, result: BuildResult | None = None) -> None:
        self.result = result or make_build_result()
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def build(self, project_root, command, timeout, ignore_patterns=()) -> BuildResult:
        self.calls.append(project_root)
        if self.gate is not None:
            await self.gate.wait()
        return self.result


class FakeLauncher:
    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.error: Exception | None = None
        self.lookup_pid: int | None = None
        self.launches: list[tuple[str, str, Any]] = []
        self.kills = 0

    async def kill_processes(self) -> None:
        self.kills += 1

    async def launch(self, target, project_root, flags=None) -> LaunchHandle:
        self.launches.append((target, project_root, flags))
        if self.error is not None:
            raise self.error
        return LaunchHandle(
            target=target,
            project_root=project_root,
            relative_target=os.path.relpath(target, project_root),
            process_id=self.pid,
        )

    async def find_process_id(self, relative_target=None) -> int | None:
        return self.lookup_pid


class FakeClient:
    """In-memory DAP client with scriptable attach failure."""

    def __init__(self) -> None:
        self.listeners: dict[str, list[Any]] = {}
        self.attach_error: Exception | None = None
        self.started = False
        self.attached_pid: int | None = None
        self.project_root: str | None = None
        self.continued = 0
        self.disconnects: list[bool] = []

    async def start(self) -> dict:
        self.started = True
        return {}

    async def attach(self, process_id, project_root) -> dict:
        if self.attach_error is not None:
            raise self.attach_error
        self.attached_pid = await resolve_process_id(process_id)
        self.project_root = project_root
        return {}

    async def continue_(self, thread_id=None) -> dict:
        self.continued += 1
        return {}

    async def disconnect(self, terminate_debuggee=False) -> None:
        self.disconnects.append(terminate_debuggee)

    def on(self, event, callback) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def off(self, event, callback) -> None:
        if callback in self.listeners.get(event, []):
            self.listeners[event].remove(callback)

    def fire(self, event: str, body: dict | None = None) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback({"type": "event", "event": event, "body": body or {}})


def make_build_result(success: bool = True, fatal: tuple[str, ...] = ()) -> BuildResult:
    return BuildResult(
        success=success,
        lines=fatal,
        fatal_lines=fatal,
        ignored_lines=(),
        duration=0.1,
    )


@pytest.fixture
def project(tmp_path):
    """A Godot project with two scenes and one excluded addon scene."""
    root = tmp_path / "game"
    (root / "scenes").mkdir(parents=True)
    (root / "addons" / "plugin").mkdir(parents=True)
    (root / "project.godot").write_text("[application]\n")
    (root / "scenes" / "a.tscn").write_text("")
    (root / "scenes" / "b.tscn").write_text("")
    (root / "addons" / "plugin" / "dock.tscn").write_text("")
    return root


@pytest.fixture
def config(tmp_path):
    return DebugConfig(
        cache_dir=str(tmp_path / "cache"),
        settle_delay=0,
        pid_resolve_delay=0,
        build_poll_interval=0.05,
        build_kill_grace=0.2,
        monitor_interval=0.01,
    )


@pytest.fixture
def scene_listing(project):
    """``find`` output for the project fixture."""
    paths = [
        project / "scenes" / "a.tscn",
        project / "scenes" / "b.tscn",
        project / "addons" / "plugin" / "dock.tscn",
    ]
    return "\n".join(str(p) for p in paths)


class Harness:
    """A controller wired to fakes, plus handles on every fake."""

    def __init__(self, controller, runner, builder, launcher, clients, alive, settings) -> None:
        self.controller = controller
        self.runner = runner
        self.builder = builder
        self.launcher = launcher
        self.clients = clients
        self.alive = alive
        self.settings = settings

    @property
    def client(self) -> FakeClient:
        return self.clients[-1]


@pytest_asyncio.fixture
async def harness(config, project, scene_listing):
    from godot_debug.controller import DebugSessionController
    from godot_debug.monitor import ProcessMonitor

    runner = FakeRunner()
    runner.results["find"] = CommandResult(scene_listing, True, "")
    builder = FakeBuilder()
    launcher = FakeLauncher()
    clients: list[FakeClient] = []
    alive = {"value": True}
    settings: dict[str, Any] = {"attach_error": None}

    def _client_factory() -> FakeClient:
        client = FakeClient()
        client.attach_error = settings["attach_error"]
        clients.append(client)
        return client

    controller = DebugSessionController(
        config,
        search_root=str(project),
        runner=runner,
        builder=builder,
        launcher=launcher,
        monitor=ProcessMonitor(
            probe=lambda pid: alive["value"],
            interval=0.01,
            failure_threshold=2,
        ),
        client_factory=_client_factory,
    )
    h = Harness(controller, runner, builder, launcher, clients, alive, settings)
    yield h
    controller.end_session("test teardown")
    await controller.flush()
    runner.release()


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* until true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)