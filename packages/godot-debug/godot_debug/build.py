"""Build coordination for Godot .NET projects.

``godot --headless --build-solutions`` can outlive its own build (the
headless editor keeps running), so the build is never awaited directly.
Instead the output is redirected to a per-run log file which is polled for a
completion marker, with a hard timeout that kills the process.  Whatever was
written is then classified into fatal and ignorable error lines.
"""

from __future__ import annotations

import asyncio
import glob
import logging
import os
import re
import shutil
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Awaitable, Callable

from godot_debug.config import DEFAULT_COMPLETION_MARKERS
from godot_debug.errors import ConfigError
from godot_debug.runner import Command, ProcessHandle, ProcessRunner, RunOptions
from godot_debug.views import BUILD_OUTPUT_VIEW, OutputViews

logger = logging.getLogger(__name__)

BUILD_LOG_GLOB = "godot_build_*.log"

FATAL_PATTERN = re.compile(r"Error:|error CS\d+:")

MONO_TEMP_DIR = os.path.join(".godot", "mono", "temp")
DEBUG_SYMBOLS_DIR = os.path.join(MONO_TEMP_DIR, "bin", "Debug")


@dataclass(frozen=True)
class BuildResult:
    success: bool
    lines: tuple[str, ...]
    fatal_lines: tuple[str, ...]
    ignored_lines: tuple[str, ...]
    duration: float
    timed_out: bool = False
    completed: bool = True
    output_file: str | None = None


def build_command(godot_binary: str) -> list[str]:
    return [godot_binary, "--headless", "--build-solutions"]


def classify_lines(
    lines: Sequence[str],
    ignore_patterns: Sequence[str],
) -> tuple[list[str], list[str]]:
    """Split *lines* into ``(fatal, ignored)``.

    Only lines carrying the fatal signature are considered.  Of those, a
    line matching any ignorable pattern is reported as ignored instead.
    """
    try:
        compiled = [re.compile(p) for p in ignore_patterns]
    except re.error as exc:
        raise ConfigError(f"Invalid ignore_build_errors pattern: {exc}") from exc

    fatal: list[str] = []
    ignored: list[str] = []
    for line in lines:
        if not FATAL_PATTERN.search(line):
            continue
        if any(p.search(line) for p in compiled):
            ignored.append(line)
        else:
            fatal.append(line)
    return fatal, ignored


class BuildCoordinator:
    """Runs one build per :meth:`build` call and classifies its output."""

    def __init__(
        self,
        runner: ProcessRunner,
        log_dir: str,
        *,
        kill_by_name: Callable[[], Awaitable[None]] | None = None,
        poll_interval: float = 1.0,
        kill_grace: float = 1.0,
        completion_markers: Sequence[str] = DEFAULT_COMPLETION_MARKERS,
        views: OutputViews | None = None,
        show_output: bool = True,
        keep_logs: int = 5,
    ) -> None:
        self._runner = runner
        self._log_dir = log_dir
        self._kill_by_name = kill_by_name
        self._poll_interval = poll_interval
        self._kill_grace = kill_grace
        self._markers = tuple(completion_markers)
        self._views = views
        self._show_output = show_output
        self._keep_logs = max(keep_logs, 1)

    async def build(
        self,
        project_root: str,
        command: Command,
        timeout: float,
        ignore_patterns: Sequence[str] = (),
    ) -> BuildResult:
        self._prune_logs()
        output_file = os.path.join(self._log_dir, f"godot_build_{uuid.uuid4().hex}.log")
        started = time.monotonic()
        logger.info("Building solutions in %s (log: %s)", project_root, output_file)

        handle = await self._runner.spawn(
            command, RunOptions(cwd=project_root, output_file=output_file),
        )
        if handle.error:
            lines = (handle.error,)
            self._show(lines)
            return BuildResult(
                success=False,
                lines=lines,
                fatal_lines=lines,
                ignored_lines=(),
                duration=time.monotonic() - started,
                completed=False,
                output_file=output_file,
            )

        completed = await self._poll(handle, output_file, started + timeout)
        timed_out = not completed
        if timed_out:
            logger.warning("Build timed out after %.1fs, killing it", timeout)
            await self._force_stop(handle)
            # Give the OS a moment to flush what the build wrote.
            await asyncio.sleep(self._kill_grace)
        elif handle.returncode is None:
            # Marker seen but the headless editor is still up.
            await self._stop(handle)

        lines = tuple(_read_lines(output_file))
        fatal, ignored = classify_lines(lines, ignore_patterns)
        for line in fatal:
            logger.error("Build error: %s", line)
        for line in ignored:
            logger.info("Ignored build error: %s", line)

        self._show(lines)
        result = BuildResult(
            success=not fatal,
            lines=lines,
            fatal_lines=tuple(fatal),
            ignored_lines=tuple(ignored),
            duration=time.monotonic() - started,
            timed_out=timed_out,
            completed=completed,
            output_file=output_file,
        )
        if result.success:
            logger.info("Build completed successfully in %.1fs", result.duration)
        else:
            logger.error("Build failed with %d errors", len(fatal))
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _poll(self, handle: ProcessHandle, output_file: str, deadline: float) -> bool:
        """Return True on marker or exit, False when *deadline* passes."""
        while True:
            if self._marker_seen(output_file):
                logger.debug("Build completion marker found")
                return True
            if handle.returncode is not None:
                logger.debug("Build process exited with %s", handle.returncode)
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(self._poll_interval, remaining))

    def _marker_seen(self, output_file: str) -> bool:
        try:
            with open(output_file, encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError:
            return False
        return any(marker in content for marker in self._markers)

    async def _stop(self, handle: ProcessHandle) -> None:
        handle.terminate()
        try:
            await asyncio.wait_for(handle.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            await self._force_stop(handle)

    async def _force_stop(self, handle: ProcessHandle) -> None:
        if handle.pid is not None:
            handle.kill()
        elif self._kill_by_name is not None:
            await self._kill_by_name()
        else:
            handle.kill()
        try:
            await asyncio.wait_for(handle.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            logger.warning("Build process did not exit after kill")

    def _prune_logs(self) -> None:
        """Drop old build logs, leaving room for the one about to be written."""
        logs = sorted(
            glob.glob(os.path.join(self._log_dir, BUILD_LOG_GLOB)),
            key=_mtime,
            reverse=True,
        )
        for path in logs[self._keep_logs - 1:]:
            try:
                os.remove(path)
            except OSError as exc:
                logger.debug("Could not remove old build log %s: %s", path, exc)

    def _show(self, lines: Sequence[str]) -> None:
        if self._views is not None and self._show_output:
            self._views.show(BUILD_OUTPUT_VIEW, lines)


def _mtime(path: str) -> float:
    try:
        return os.path.getmtime(path)
    except OSError:
        return 0.0


def _read_lines(path: str) -> list[str]:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\r\n") for line in f]
    except OSError:
        logger.error("Build output file not found: %s", path)
        return []


# ---------------------------------------------------------------------------
# Build artifacts
# ---------------------------------------------------------------------------


def clean_build(project_root: str) -> list[str]:
    """Remove the Mono build output so the next build starts clean."""
    removed: list[str] = []
    target = os.path.join(project_root, MONO_TEMP_DIR)
    if os.path.isdir(target):
        shutil.rmtree(target)
        removed.append(target)
        logger.info("Removed build artifacts in %s", target)
    return removed


def verify_debug_symbols(project_root: str) -> bool:
    """True if the Debug output holds ``.pdb`` or ``.mdb`` symbol files."""
    debug_path = os.path.join(project_root, DEBUG_SYMBOLS_DIR)
    if not os.path.isdir(debug_path):
        logger.error("Debug directory not found: %s", debug_path)
        return False

    symbols = glob.glob(os.path.join(debug_path, "*.pdb")) + glob.glob(
        os.path.join(debug_path, "*.mdb")
    )
    if not symbols:
        logger.error("No debug symbols found in %s", debug_path)
        return False

    logger.info("Found %d debug symbol file(s) in %s", len(symbols), debug_path)
    return True
