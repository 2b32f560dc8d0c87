"""Process runner: the substrate every other component shells out through.

Two calls, independent of how the child is actually driven::

    result = await runner.run(["godot-mono", "--version"])
    stdout, success, stderr = result

    handle = await runner.spawn(cmd, RunOptions(cwd=root, detach=True))
    handle.pid            # None when the platform cannot tell us
    await handle.wait()   # -> CommandResult

Three execution styles are supported and tried in order.  A style the
running event loop cannot provide (``NotImplementedError``, e.g. subprocess
support on a Windows selector loop) falls through to the next one:

* ``SUBPROCESS`` -- ``asyncio.create_subprocess_exec`` streams.
* ``PROTOCOL``   -- ``loop.subprocess_exec`` with per-fd data callbacks and
  an exit callback.
* ``THREAD``     -- plain ``subprocess.Popen``; the blocking pipe read runs
  in a worker thread via ``asyncio.to_thread``.

A child exiting non-zero is a normal result.  Failing to start a child is
reported as ``success=False`` with a readable reason, never raised.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import subprocess
import sys
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import IO, Any, Callable, NamedTuple, Union

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

Command = Union[Sequence[str], str]
LineCallback = Callable[[str], None]

_STREAM_LIMIT = 1 << 20

# Lines of stdout/stderr kept per stream for the result; callbacks see all.
KEPT_LINES = 5000


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class ExecutionStyle(str, enum.Enum):
    SUBPROCESS = "subprocess"
    PROTOCOL = "protocol"
    THREAD = "thread"


DEFAULT_STYLES: tuple[ExecutionStyle, ...] = (
    ExecutionStyle.SUBPROCESS,
    ExecutionStyle.PROTOCOL,
    ExecutionStyle.THREAD,
)


@dataclass
class RunOptions:
    cwd: str | None = None
    detach: bool = False
    capture_stderr_with_stdout: bool = False
    # Redirect stdout and stderr to this file (appending).
    output_file: str | None = None
    env: dict[str, str] | None = None
    on_stdout: LineCallback | None = None
    on_stderr: LineCallback | None = None


class CommandResult(NamedTuple):
    stdout: str
    success: bool
    stderr: str


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------


class ProcessHandle:
    """A started child process, whatever style started it."""

    def __init__(self, style: ExecutionStyle | None, pid: int | None = None) -> None:
        self.style = style
        self.pid = pid
        self.error: str | None = None
        self._wait_task: asyncio.Future[CommandResult] | None = None

    @property
    def returncode(self) -> int | None:
        raise NotImplementedError

    async def wait(self) -> CommandResult:
        """Wait for exit.  Safe to call more than once."""
        if self._wait_task is None:
            self._wait_task = asyncio.ensure_future(self._wait())
        return await asyncio.shield(self._wait_task)

    async def _wait(self) -> CommandResult:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError

    def kill(self) -> None:
        raise NotImplementedError


class _FailedHandle(ProcessHandle):
    def __init__(self, style: ExecutionStyle | None, reason: str) -> None:
        super().__init__(style)
        self.error = reason

    @property
    def returncode(self) -> int | None:
        return None

    async def _wait(self) -> CommandResult:
        return CommandResult("", False, self.error or "Failed to start process")

    def terminate(self) -> None:
        pass

    def kill(self) -> None:
        pass


class _SubprocessHandle(ProcessHandle):
    def __init__(
        self,
        process: asyncio.subprocess.Process,
        pid: int | None,
        options: RunOptions,
    ) -> None:
        super().__init__(ExecutionStyle.SUBPROCESS, pid)
        self._process = process
        self._stdout: deque[str] = deque(maxlen=KEPT_LINES)
        self._stderr: deque[str] = deque(maxlen=KEPT_LINES)
        self._readers: list[asyncio.Task[None]] = []
        if process.stdout is not None:
            self._readers.append(
                asyncio.create_task(_drain(process.stdout, self._stdout, options.on_stdout))
            )
        if process.stderr is not None:
            self._readers.append(
                asyncio.create_task(_drain(process.stderr, self._stderr, options.on_stderr))
            )

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def _wait(self) -> CommandResult:
        code = await self._process.wait()
        if self._readers:
            await asyncio.gather(*self._readers)
        return CommandResult("\n".join(self._stdout), code == 0, "\n".join(self._stderr))

    def terminate(self) -> None:
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            pass


class _LineProtocol(asyncio.SubprocessProtocol):
    """Splits pipe data into lines and resolves ``done`` on full shutdown."""

    def __init__(self, options: RunOptions) -> None:
        self._callbacks = {1: options.on_stdout, 2: options.on_stderr}
        self._partial = {1: b"", 2: b""}
        self.lines: dict[int, deque[str]] = {
            1: deque(maxlen=KEPT_LINES),
            2: deque(maxlen=KEPT_LINES),
        }
        self.done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        chunk = self._partial.get(fd, b"") + data
        *complete, rest = chunk.split(b"\n")
        self._partial[fd] = rest
        for raw in complete:
            self._line(fd, raw)

    def pipe_connection_lost(self, fd: int, exc: Exception | None) -> None:
        rest = self._partial.get(fd, b"")
        if rest:
            self._partial[fd] = b""
            self._line(fd, rest)

    def process_exited(self) -> None:
        logger.debug("Child process exited (protocol style)")

    def connection_lost(self, exc: Exception | None) -> None:
        # Called once the process has exited and every pipe is closed.
        if not self.done.done():
            self.done.set_result(None)

    def _line(self, fd: int, raw: bytes) -> None:
        text = raw.decode("utf-8", errors="replace").rstrip("\r")
        self.lines.setdefault(fd, deque(maxlen=KEPT_LINES)).append(text)
        _emit(self._callbacks.get(fd), text)


class _ProtocolHandle(ProcessHandle):
    def __init__(
        self,
        transport: asyncio.SubprocessTransport,
        protocol: _LineProtocol,
        pid: int | None,
    ) -> None:
        super().__init__(ExecutionStyle.PROTOCOL, pid)
        self._transport = transport
        self._protocol = protocol

    @property
    def returncode(self) -> int | None:
        return self._transport.get_returncode()

    async def _wait(self) -> CommandResult:
        await self._protocol.done
        code = self._transport.get_returncode()
        self._transport.close()
        return CommandResult(
            "\n".join(self._protocol.lines.get(1, [])),
            code == 0,
            "\n".join(self._protocol.lines.get(2, [])),
        )

    def terminate(self) -> None:
        try:
            self._transport.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        try:
            self._transport.kill()
        except ProcessLookupError:
            pass


class _ThreadHandle(ProcessHandle):
    def __init__(self, popen: subprocess.Popen[bytes], pid: int | None, options: RunOptions) -> None:
        super().__init__(ExecutionStyle.THREAD, pid)
        self._popen = popen
        self._options = options

    @property
    def returncode(self) -> int | None:
        return self._popen.poll()

    async def _wait(self) -> CommandResult:
        loop = asyncio.get_running_loop()
        stdout: deque[str] = deque(maxlen=KEPT_LINES)
        stderr: deque[str] = deque(maxlen=KEPT_LINES)
        readers = []
        # One blocking reader per pipe; line callbacks run back on the loop.
        if self._popen.stdout is not None:
            readers.append(asyncio.to_thread(
                _read_pipe, self._popen.stdout, stdout, loop, self._options.on_stdout,
            ))
        if self._popen.stderr is not None:
            readers.append(asyncio.to_thread(
                _read_pipe, self._popen.stderr, stderr, loop, self._options.on_stderr,
            ))
        if readers:
            await asyncio.gather(*readers)
        code = await asyncio.to_thread(self._popen.wait)
        return CommandResult("\n".join(stdout), code == 0, "\n".join(stderr))

    def terminate(self) -> None:
        if self._popen.poll() is None:
            self._popen.terminate()

    def kill(self) -> None:
        if self._popen.poll() is None:
            self._popen.kill()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ProcessRunner:
    """Runs external commands with execution-style fallback."""

    def __init__(self, styles: Sequence[ExecutionStyle] = DEFAULT_STYLES) -> None:
        if not styles:
            raise ValueError("at least one execution style is required")
        self._styles = tuple(styles)

    @property
    def styles(self) -> tuple[ExecutionStyle, ...]:
        return self._styles

    async def run(
        self,
        command: Command,
        options: RunOptions | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *command* to completion and return ``(stdout, success, stderr)``."""
        handle = await self.spawn(command, options)
        if handle.error:
            return await handle.wait()
        try:
            return await asyncio.wait_for(handle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            handle.kill()
            logger.warning("Command timed out after %.1fs: %s", timeout, _display(command))
            return CommandResult("", False, f"Timed out after {timeout}s")

    async def spawn(self, command: Command, options: RunOptions | None = None) -> ProcessHandle:
        """Start *command* and return a handle without waiting for exit."""
        options = options or RunOptions()
        argv, shell_wrapped = _to_argv(command)
        logger.info("Starting command: %s", _display(command))

        for style in self._styles:
            try:
                handle = await self._spawn_with(style, argv, shell_wrapped, options)
            except NotImplementedError:
                logger.debug("Execution style %s unavailable, falling back", style.value)
                continue
            except (OSError, ValueError) as exc:
                reason = f"Failed to start {argv[0]}: {exc}"
                logger.error(reason)
                return _FailedHandle(style, reason)

            logger.debug(
                "Started %s via %s (pid=%s)", argv[0], style.value, handle.pid,
            )
            return handle

        reason = "No execution style available on this event loop"
        logger.error(reason)
        return _FailedHandle(None, reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _spawn_with(
        self,
        style: ExecutionStyle,
        argv: list[str],
        shell_wrapped: bool,
        options: RunOptions,
    ) -> ProcessHandle:
        output: IO[bytes] | None = None
        if options.output_file:
            os.makedirs(os.path.dirname(os.path.abspath(options.output_file)), exist_ok=True)
            output = open(options.output_file, "ab")  # noqa: SIM115

        try:
            kwargs = _spawn_kwargs(options, output)

            if style is ExecutionStyle.SUBPROCESS:
                process = await asyncio.create_subprocess_exec(
                    *argv, limit=_STREAM_LIMIT, **kwargs,
                )
                pid = None if shell_wrapped else process.pid
                return _SubprocessHandle(process, pid, options)

            if style is ExecutionStyle.PROTOCOL:
                loop = asyncio.get_running_loop()
                transport, protocol = await loop.subprocess_exec(
                    lambda: _LineProtocol(options), *argv, **kwargs,
                )
                pid = None if shell_wrapped else transport.get_pid()
                return _ProtocolHandle(transport, protocol, pid)

            popen = subprocess.Popen(argv, **kwargs)  # noqa: S603
            pid = None if shell_wrapped else popen.pid
            return _ThreadHandle(popen, pid, options)
        finally:
            if output is not None:
                output.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_argv(command: Command) -> tuple[list[str], bool]:
    """Return (argv, shell_wrapped).  Strings go through the platform shell."""
    if isinstance(command, str):
        if IS_WINDOWS:
            return ["cmd.exe", "/c", command], True
        return ["sh", "-c", command], True
    argv = [str(part) for part in command]
    if not argv:
        raise ValueError("empty command")
    return argv, False


def _display(command: Command) -> str:
    return command if isinstance(command, str) else " ".join(str(c) for c in command)


def _spawn_kwargs(options: RunOptions, output: IO[bytes] | None) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"stdin": subprocess.DEVNULL}

    if output is not None:
        kwargs["stdout"] = output
        kwargs["stderr"] = subprocess.STDOUT
    elif options.detach:
        kwargs["stdout"] = subprocess.DEVNULL
        kwargs["stderr"] = subprocess.DEVNULL
    else:
        kwargs["stdout"] = subprocess.PIPE
        kwargs["stderr"] = (
            subprocess.STDOUT if options.capture_stderr_with_stdout else subprocess.PIPE
        )

    if options.cwd:
        kwargs["cwd"] = options.cwd
    if options.env:
        kwargs["env"] = {**os.environ, **options.env}

    if options.detach:
        if IS_WINDOWS:
            kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
                subprocess, "CREATE_NEW_PROCESS_GROUP", 0
            )
        else:
            kwargs["start_new_session"] = True
    return kwargs


async def _drain(
    stream: asyncio.StreamReader,
    sink: deque[str],
    callback: LineCallback | None,
) -> None:
    while True:
        raw = await stream.readline()
        if not raw:
            return
        text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        sink.append(text)
        _emit(callback, text)


def _read_pipe(
    pipe: IO[bytes],
    sink: deque[str],
    loop: asyncio.AbstractEventLoop,
    callback: LineCallback | None,
) -> None:
    with pipe:
        for raw in pipe:
            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            sink.append(text)
            if callback is not None:
                loop.call_soon_threadsafe(_emit, callback, text)


def _emit(callback: LineCallback | None, line: str) -> None:
    if callback is None:
        return
    try:
        callback(line)
    except Exception:
        logger.exception("Error in output line callback")
