"""
Attach-only DAP (Debug Adapter Protocol) client.

Speaks the DAP JSON-RPC protocol over stdin/stdout to a debug adapter
subprocess (netcoredbg for Godot .NET).

This is the lowest-level building block -- session orchestration lives in
controller.py.  Other code observes the session through listener lists
(:meth:`DAPClient.on`) rather than by patching the client.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
from collections import deque
from typing import Any

from godot_debug.adapters.base import DebugAdapter
from godot_debug.protocol import (
    EVENT_DISCONNECTED,
    TIMEOUT_ATTACH,
    TIMEOUT_DISCONNECT,
    TIMEOUT_INITIALIZE,
    TIMEOUT_REQUEST,
    DebugMessage,
    EventCallback,
    ProcessIdSource,
    resolve_process_id,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

DAPMessage = DebugMessage

# Listener key that receives every event.
ANY_EVENT = "*"

OUTPUT_LIMIT = 2000


# ---------------------------------------------------------------------------
# DAP Client
# ---------------------------------------------------------------------------


class DAPClient:
    """Async DAP client that communicates with a debug adapter subprocess.

    Lifecycle::

        client = DAPClient(adapter)
        client.on("terminated", on_end)
        await client.start()                 # spawns adapter, sends 'initialize'
        await client.attach(pid, root)       # 'attach' + 'configurationDone'
        ...
        await client.disconnect()            # detaches, debuggee keeps running
    """

    def __init__(self, adapter: DebugAdapter) -> None:
        self._adapter = adapter
        self._process: asyncio.subprocess.Process | None = None
        self._seq: int = 1
        self._pending: dict[int, asyncio.Future[DAPMessage]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._listeners: dict[str, list[EventCallback]] = {}

        # Resolves when the adapter fires 'initialized' (ready for configuration).
        self._initialized_event: asyncio.Future[None] | None = None

        # Set while we tear the connection down ourselves.
        self._closing: bool = False

        self.capabilities: DAPMessage = {}
        self.process_id: int | None = None

        # Collected stdout/stderr from the debuggee (via 'output' events).
        self.output_lines: deque[str] = deque(maxlen=OUTPUT_LIMIT)

    @property
    def connected(self) -> bool:
        return self._process is not None and self._process.returncode is None

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on(self, event: str, callback: EventCallback) -> None:
        """Call *callback* with the event message whenever *event* fires."""
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        callbacks = self._listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> DAPMessage:
        """Spawn the adapter subprocess and send ``initialize``."""
        cmd = self._adapter.get_spawn_command()
        logger.info("Spawning adapter: %s", " ".join(cmd))

        self._closing = False
        self._process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **self._adapter.get_env()},
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        self._stderr_task = asyncio.create_task(self._drain_stderr())

        self.capabilities = await self._request(
            "initialize",
            {
                "adapterID": self._adapter.adapter_id,
                "clientID": "godot-debug",
                "clientName": "godot-debug",
                "linesStartAt1": True,
                "columnsStartAt1": True,
                "pathFormat": "path",
                "supportsRunInTerminalRequest": False,
            },
            timeout=TIMEOUT_INITIALIZE,
        )
        return self.capabilities

    async def attach(self, process_id: ProcessIdSource, project_root: str) -> DAPMessage:
        """Send ``attach`` and complete the configuration handshake.

        *process_id* may be a pid or a provider called right before the
        request goes out.  The adapter answers ``attach`` with an
        ``initialized`` event; ``configurationDone`` then lets the attach
        response through.
        """
        self._adapter.check_request("attach")
        pid = await resolve_process_id(process_id)
        if pid is None:
            raise ValueError("No process id available to attach to")
        self.process_id = pid

        attach_args = self._adapter.get_attach_args(pid, project_root)
        logger.info("Attaching debugger to PID: %d", pid)

        self._initialized_event = asyncio.get_running_loop().create_future()
        attach_task = asyncio.ensure_future(
            self._request("attach", attach_args, timeout=None)
        )

        done, _pending = await asyncio.wait(
            {self._initialized_event, attach_task},
            timeout=TIMEOUT_ATTACH,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if not done:
            attach_task.cancel()
            raise asyncio.TimeoutError("Debug adapter did not initialize in time.")
        if attach_task.done():
            # Rejected outright, or answered before 'initialized'.
            attach_task.result()

        await self._request("configurationDone", {})
        body = await asyncio.wait_for(attach_task, timeout=TIMEOUT_ATTACH)
        logger.info("DAP attached successfully")
        return body

    async def disconnect(self, terminate_debuggee: bool = False) -> None:
        """Disconnect and stop the adapter.  Safe to call repeatedly."""
        self._closing = True
        if self._process and self._process.returncode is None:
            try:
                await asyncio.wait_for(
                    self._request(
                        "disconnect",
                        {"restart": False, "terminateDebuggee": terminate_debuggee},
                    ),
                    timeout=TIMEOUT_DISCONNECT,
                )
            except Exception:  # noqa: BLE001
                pass  # best-effort
            try:
                if self._process.returncode is None:
                    self._process.terminate()
                await asyncio.wait_for(self._process.wait(), timeout=TIMEOUT_DISCONNECT)
            except asyncio.TimeoutError:
                self._process.kill()
            except ProcessLookupError:
                pass  # already gone

        for task in (self._reader_task, self._stderr_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._fail_pending("Disconnected.")
        self._process = None

    # ------------------------------------------------------------------
    # DAP requests
    # ------------------------------------------------------------------

    async def continue_(self, thread_id: int | None = None) -> DAPMessage:
        """Resume the debuggee (all threads unless *thread_id* is given)."""
        args: dict[str, Any] = {"threadId": thread_id if thread_id is not None else 0}
        return await self._request("continue", args)

    async def pause(self, thread_id: int = 0) -> DAPMessage:
        return await self._request("pause", {"threadId": thread_id})

    async def threads(self) -> DAPMessage:
        """Return active threads."""
        return await self._request("threads", {})

    # ------------------------------------------------------------------
    # Protocol internals
    # ------------------------------------------------------------------

    def _fail_pending(self, reason: str) -> None:
        """Reject all in-flight request futures so callers don't hang."""
        err = ConnectionError(reason)
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(err)
        self._pending.clear()

    async def _request(
        self,
        command: str,
        arguments: dict[str, Any],
        timeout: float | None = TIMEOUT_REQUEST,
    ) -> DAPMessage:
        """Send a DAP request and wait for the matching response.

        *timeout* ``None`` waits indefinitely.
        """
        if not self._process or not self._process.stdin:
            raise ConnectionError("Debug adapter is not running.")
        if self._reader_task is not None and self._reader_task.done():
            raise ConnectionError("Adapter connection lost.")

        seq = self._seq
        self._seq += 1

        msg: DAPMessage = {
            "seq": seq,
            "type": "request",
            "command": command,
            "arguments": arguments,
        }

        payload = json.dumps(msg).encode("utf-8")
        header = f"Content-Length: {len(payload)}\r\n\r\n".encode("ascii")

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[DAPMessage] = loop.create_future()
        self._pending[seq] = fut

        self._process.stdin.write(header + payload)
        await self._process.stdin.drain()

        logger.debug("-> DAP request seq=%d cmd=%s", seq, command)

        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        finally:
            self._pending.pop(seq, None)

    async def _read_loop(self) -> None:
        """Background task that reads DAP messages from adapter stdout."""
        assert self._process and self._process.stdout
        reader = self._process.stdout

        try:
            while True:
                # -- Read header ------------------------------------------
                raw_header = await reader.readuntil(b"\r\n\r\n")
                header_str = raw_header.decode("utf-8")
                content_length = _parse_content_length(header_str)

                # -- Read body --------------------------------------------
                body_bytes = await reader.readexactly(content_length)
                msg: DAPMessage = json.loads(body_bytes.decode("utf-8"))

                msg_type = msg.get("type")

                if msg_type == "response":
                    await self._handle_response(msg)
                elif msg_type == "event":
                    await self._handle_event(msg)
                else:
                    logger.debug("Ignoring DAP message type=%s", msg_type)

        except asyncio.CancelledError:
            return  # don't touch futures on intentional cancel
        except asyncio.IncompleteReadError:
            logger.debug("Adapter closed the stream.")
        except Exception:
            logger.exception("Error in DAP read loop")

        # Reject any in-flight requests so callers don't hang.
        self._fail_pending("Adapter connection lost.")
        if not self._closing:
            await self._dispatch(EVENT_DISCONNECTED, {"type": "event", "event": EVENT_DISCONNECTED})

    async def _drain_stderr(self) -> None:
        """Log adapter diagnostics so a full stderr pipe never stalls it."""
        assert self._process and self._process.stderr
        reader = self._process.stderr
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                # Over-long line; the remainder is read on the next pass.
                continue
            if not raw:
                return
            logger.debug("Adapter stderr: %s", raw.decode("utf-8", errors="replace").rstrip())

    async def _handle_response(self, msg: DAPMessage) -> None:
        req_seq: int = msg.get("request_seq", -1)
        fut = self._pending.pop(req_seq, None)
        if fut is None or fut.done():
            return

        if msg.get("success"):
            fut.set_result(msg.get("body", {}) or {})
        else:
            error_msg = msg.get("message", "Unknown DAP error")
            fut.set_exception(RuntimeError(f"DAP error: {error_msg}"))

    async def _handle_event(self, msg: DAPMessage) -> None:
        event = msg.get("event", "")
        body = msg.get("body", {}) or {}
        logger.debug("<- DAP event: %s", event)

        if event == "initialized":
            if self._initialized_event and not self._initialized_event.done():
                self._initialized_event.set_result(None)
            logger.info("DAP session initialized")

        elif event == "output":
            category = body.get("category", "")
            output_text = body.get("output", "")
            if category in ("stdout", "stderr", "console"):
                self.output_lines.append(output_text.rstrip("\n"))

        await self._dispatch(event, msg)

    async def _dispatch(self, event: str, msg: DAPMessage) -> None:
        callbacks = list(self._listeners.get(event, [])) + list(self._listeners.get(ANY_EVENT, []))
        for callback in callbacks:
            try:
                result = callback(msg)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error in DAP %s listener", event)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_content_length(header: str) -> int:
    """Extract Content-Length from a DAP header block."""
    for line in header.strip().splitlines():
        if line.lower().startswith("content-length:"):
            return int(line.split(":", 1)[1].strip())
    raise ValueError(f"No Content-Length in header: {header!r}")
