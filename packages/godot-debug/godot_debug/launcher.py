"""Starting the Godot runtime for a scene and finding its process id.

Launching always kills any running instance of the binary first and waits a
short settle delay, so two launches in a row never leave two runtimes alive
and the debugger never attaches to a stale instance.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Callable

from godot_debug.errors import LaunchFailed, ProcessIdUnresolved
from godot_debug.liveness import find_process_ids
from godot_debug.runner import ProcessHandle, ProcessRunner, RunOptions

logger = logging.getLogger(__name__)

UNKNOWN_PID = -1

ProcessLookup = Callable[[str, "str | None"], list[int]]


@dataclass(frozen=True)
class LaunchFlags:
    debug: bool = True
    breakpoints_enabled: bool = False
    extra_args: tuple[str, ...] = ()


@dataclass
class LaunchHandle:
    target: str
    project_root: str
    relative_target: str
    process_id: int = UNKNOWN_PID
    spawned_at: float = field(default_factory=time.time)
    process: ProcessHandle | None = None

    @property
    def resolved(self) -> bool:
        return self.process_id > 0


_ERE_SPECIAL = frozenset("\\.[]()*+?{}|^$")


def process_pattern(godot_binary: str) -> str:
    """Extended regex matching command lines whose program is *godot_binary*.

    Only argv[0] is matched, by basename, so processes that merely mention
    the binary in their arguments or name (``godot-debug-mcp``, a script
    under ``skills/godot-debug``) are left alone.
    """
    name = os.path.basename(godot_binary)
    escaped = "".join("\\" + c if c in _ERE_SPECIAL else c for c in name)
    return f"^([^ ]*/)?{escaped}( |$)"


def kill_command(godot_binary: str) -> list[str]:
    """Platform kill-by-image-name command."""
    if sys.platform == "win32":
        image = os.path.basename(godot_binary)
        if not image.lower().endswith(".exe"):
            image += ".exe"
        return ["taskkill", "/F", "/IM", image]
    return ["pkill", "-f", process_pattern(godot_binary)]


def launch_command(
    godot_binary: str,
    project_root: str,
    relative_target: str,
    flags: LaunchFlags,
) -> list[str]:
    cmd = [godot_binary, "--path", project_root]
    if flags.debug:
        cmd.append("--debug")
    if flags.breakpoints_enabled:
        cmd.append("--breakpoints-enabled")
    cmd.extend(flags.extra_args)
    cmd.append(relative_target)
    return cmd


class ProcessLauncher:
    """Spawns the runtime and resolves the pid of what it spawned."""

    def __init__(
        self,
        runner: ProcessRunner,
        godot_binary: str,
        *,
        settle_delay: float = 0.3,
        pid_resolve_delay: float = 0.5,
        detach: bool = False,
        process_lookup: ProcessLookup = find_process_ids,
    ) -> None:
        self._runner = runner
        self._binary = godot_binary
        self._settle_delay = settle_delay
        self._pid_resolve_delay = pid_resolve_delay
        self._detach = detach
        self._lookup = process_lookup
        self._current: LaunchHandle | None = None
        self._watchers: set[asyncio.Task[None]] = set()

    @property
    def current(self) -> LaunchHandle | None:
        return self._current

    async def kill_processes(self) -> None:
        """Stop the tracked runtime and anything else running the binary."""
        current, self._current = self._current, None
        if current is not None and current.process is not None:
            current.process.kill()

        _stdout, success, stderr = await self._runner.run(kill_command(self._binary))
        if success:
            logger.info("Killed running %s processes", self._binary)
        else:
            # pkill exits 1 when nothing matched; that is the common case.
            logger.debug("Kill command reported: %s", stderr or "no matching process")

    async def launch(
        self,
        target: str,
        project_root: str,
        flags: LaunchFlags | None = None,
    ) -> LaunchHandle:
        flags = flags or LaunchFlags()
        target = os.path.abspath(target)
        project_root = os.path.abspath(project_root)
        relative_target = os.path.relpath(target, project_root)
        logger.info("Launching Godot with scene: %s", relative_target)

        await self.kill_processes()
        await asyncio.sleep(self._settle_delay)

        cmd = launch_command(self._binary, project_root, relative_target, flags)
        process = await self._runner.spawn(
            cmd,
            RunOptions(
                cwd=project_root,
                detach=self._detach,
                on_stdout=lambda line: logger.debug("Godot stdout: %s", line),
                on_stderr=lambda line: logger.debug("Godot stderr: %s", line),
            ),
        )
        if process.error:
            raise LaunchFailed(f"Failed to start Godot process: {process.error}")

        handle = LaunchHandle(
            target=target,
            project_root=project_root,
            relative_target=relative_target,
            process=process,
        )
        self._current = handle
        self._watch_exit(process)

        if process.pid is not None:
            handle.process_id = process.pid
        else:
            await asyncio.sleep(self._pid_resolve_delay)
            pid = await self.find_process_id(relative_target)
            if pid is None:
                raise ProcessIdUnresolved(
                    f"Could not find a running {self._binary} process for {relative_target}"
                )
            handle.process_id = pid

        if process.returncode is not None:
            raise LaunchFailed(f"Godot exited immediately with code {process.returncode}")

        logger.info("Godot launched with PID: %d", handle.process_id)
        return handle

    async def find_process_id(self, relative_target: str | None = None) -> int | None:
        """First process-table match for the binary, or ``None``."""
        pids = await asyncio.to_thread(self._lookup, self._binary, relative_target)
        return pids[0] if pids else None

    def _watch_exit(self, process: ProcessHandle) -> None:
        if self._detach:
            return

        async def _wait() -> None:
            _stdout, _success, _stderr = await process.wait()
            logger.info("Godot process exited (code=%s)", process.returncode)
            if self._current is not None and self._current.process is process:
                self._current = None

        task = asyncio.create_task(_wait())
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
