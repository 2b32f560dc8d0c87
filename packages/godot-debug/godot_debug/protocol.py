"""Shared protocol definitions for the DAP collaborator.

Defines :class:`DebugClient` -- the contract the session controller relies
on.  :class:`~godot_debug.dap_client.DAPClient` implements it; tests supply
lightweight fakes.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Protocol, Union, runtime_checkable

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

DebugMessage = dict[str, Any]

EventCallback = Callable[[DebugMessage], Union[Awaitable[None], None]]

# Either a known pid or something that produces one on demand.
ProcessIdProvider = Callable[[], Union[Awaitable["int | None"], "int | None"]]
ProcessIdSource = Union[int, ProcessIdProvider]

# Events that end a debug session.
EVENT_TERMINATED = "terminated"
EVENT_EXITED = "exited"
EVENT_DISCONNECTED = "disconnected"
SESSION_END_EVENTS = (EVENT_TERMINATED, EVENT_EXITED, EVENT_DISCONNECTED)

# ---------------------------------------------------------------------------
# Timeout constants (seconds)
# ---------------------------------------------------------------------------

TIMEOUT_INITIALIZE: float = 10.0
"""How long to wait for the adapter's ``initialize`` response."""

TIMEOUT_ATTACH: float = 15.0
"""How long to wait for ``initialized`` and the ``attach`` response."""

TIMEOUT_REQUEST: float = 10.0
"""Default wait for any other request."""

TIMEOUT_DISCONNECT: float = 3.0
"""Grace period for the adapter subprocess to exit before being killed."""


# ---------------------------------------------------------------------------
# DebugClient protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class DebugClient(Protocol):
    """What :class:`DebugSessionController` needs from a DAP client."""

    async def start(self) -> DebugMessage: ...
    async def attach(self, process_id: ProcessIdSource, project_root: str) -> DebugMessage: ...
    async def continue_(self, thread_id: int | None = None) -> DebugMessage: ...
    async def disconnect(self, terminate_debuggee: bool = False) -> None: ...

    def on(self, event: str, callback: EventCallback) -> None: ...
    def off(self, event: str, callback: EventCallback) -> None: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def resolve_process_id(source: ProcessIdSource | None) -> int | None:
    """Turn an int or a (sync/async) provider into a pid, or ``None``."""
    if source is None:
        return None
    if isinstance(source, int):
        return source if source > 0 else None

    value = source()
    if inspect.isawaitable(value):
        value = await value
    if value is None:
        return None
    pid = int(value)
    return pid if pid > 0 else None
