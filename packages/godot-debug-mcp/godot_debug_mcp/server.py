"""
MCP server that exposes the Godot debug pipeline as tools.

Thin layer on top of ``godot_debug.controller.DebugSessionController``.
All heavy lifting (build, launch, process monitoring, DAP) lives in the
``godot-debug`` package.  The controller lives as long as the server, so a
session started by ``godot_launch`` keeps being monitored between calls.

Run::

    python -m godot_debug_mcp.server          # stdio transport

Configuration is read from the JSON file named by ``GODOT_DEBUG_CONFIG``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, Awaitable, Callable

import mcp.server.stdio
from mcp import types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from godot_debug.autodetect import ContinueHook
from godot_debug.build import verify_debug_symbols
from godot_debug.config import DebugConfig
from godot_debug.controller import DebugSessionController, SessionOutcome
from godot_debug.formatters import (
    format_build_result,
    format_events,
    format_outcome,
    format_status,
)
from godot_debug.locator import make_path_picker
from godot_debug.log import setup_logging
from godot_debug.notifications import StepEvent
from godot_debug.project import find_project_root
from godot_debug.views import DEBUG_LOG_VIEW

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

# Each strategy is an async callable: (controller, args) -> str
ToolStrategy = Callable[[DebugSessionController, dict[str, Any]], Awaitable[str]]

_DEFAULT_LOG_LINES = 100

# ---------------------------------------------------------------------------
# Server + shared controller
# ---------------------------------------------------------------------------

server = Server("godot-debug-mcp")
_controller: DebugSessionController | None = None


def _get_controller() -> DebugSessionController:
    global _controller  # noqa: PLW0603
    if _controller is None:
        config = DebugConfig.load()
        _controller = DebugSessionController(config)
        setup_logging(config, _controller.views)
    return _controller


async def _with_events(
    controller: DebugSessionController,
    action: Callable[[], Awaitable[SessionOutcome]],
) -> str:
    """Run *action* and append the step notifications it produced."""
    events: list[StepEvent] = []
    unsubscribe = controller.notifier.subscribe(events.append)
    try:
        outcome = await action()
    finally:
        unsubscribe()
    return f"{format_outcome(outcome)}\n\n--- Steps ---\n{format_events(events)}"


# ---------------------------------------------------------------------------
# Tool strategies -- one per tool, maps name -> (schema, handler)
# ---------------------------------------------------------------------------


async def _launch(controller: DebugSessionController, args: dict[str, Any]) -> str:
    picker = make_path_picker(args.get("scene"))
    return await _with_events(controller, lambda: controller.launch(picker))


async def _kill(controller: DebugSessionController, args: dict[str, Any]) -> str:
    await controller.kill_processes()
    return "Godot processes killed."


async def _attach(controller: DebugSessionController, args: dict[str, Any]) -> str:
    return await _with_events(controller, controller.attach)


async def _continue(controller: DebugSessionController, args: dict[str, Any]) -> str:
    async def _resume() -> str:
        client = controller.client
        if client is None:
            return "No active debug session to continue."
        await client.continue_()
        return "Resumed."

    hook = ContinueHook(controller, _resume, enabled=controller.config.auto_detect)
    result = await hook(args.get("path") or controller.search_root)
    if isinstance(result, SessionOutcome):
        return format_outcome(result)
    return result


async def _rebuild(controller: DebugSessionController, args: dict[str, Any]) -> str:
    picker = make_path_picker(args.get("scene"))
    return await _with_events(controller, lambda: controller.rebuild_and_restart(picker))


async def _status(controller: DebugSessionController, args: dict[str, Any]) -> str:
    return format_status(controller.status())


async def _build_output(controller: DebugSessionController, args: dict[str, Any]) -> str:
    return format_build_result(controller.last_build)


async def _debug_log(controller: DebugSessionController, args: dict[str, Any]) -> str:
    count = int(args.get("lines", _DEFAULT_LOG_LINES))
    lines = controller.views.get(DEBUG_LOG_VIEW)[-count:] if count > 0 else []
    return "\n".join(lines) or "(log is empty)"


async def _verify_symbols(controller: DebugSessionController, args: dict[str, Any]) -> str:
    root = find_project_root(controller.search_root, controller.config.manifest_file)
    if root is None:
        return f"Not inside a Godot project ({controller.config.manifest_file} not found)."
    if await asyncio.to_thread(verify_debug_symbols, root):
        return "Debug symbols found."
    return "No debug symbols found. Build the project in Debug configuration first."


# ---------------------------------------------------------------------------
# Registry: tool name -> (Tool schema, strategy)
# ---------------------------------------------------------------------------

_SCENE_ARG = {
    "type": "string",
    "description": (
        "Scene to run, absolute or relative to the project root "
        "(e.g. 'scenes/main.tscn').  Defaults to the last used scene."
    ),
}

_TOOL_REGISTRY: dict[str, tuple[types.Tool, ToolStrategy]] = {
    "godot_launch": (
        types.Tool(
            name="godot_launch",
            description=(
                "Start a debug session: pick a scene, build the C# solutions, "
                "launch Godot and attach netcoredbg.  Returns once attached "
                "or after the first failing step."
            ),
            inputSchema={
                "type": "object",
                "properties": {"scene": _SCENE_ARG},
            },
        ),
        _launch,
    ),
    "godot_kill": (
        types.Tool(
            name="godot_kill",
            description="Kill all running Godot processes and end the active session.",
            inputSchema={"type": "object", "properties": {}},
        ),
        _kill,
    ),
    "godot_attach": (
        types.Tool(
            name="godot_attach",
            description=(
                "Attach the debugger to an already running Godot process "
                "(e.g. after an attach failure left the game running)."
            ),
            inputSchema={"type": "object", "properties": {}},
        ),
        _attach,
    ),
    "godot_continue": (
        types.Tool(
            name="godot_continue",
            description=(
                "Continue debugging.  Inside a Godot project with no session "
                "this starts one; otherwise it resumes the attached runtime."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "File or directory used to detect the project.",
                    },
                },
            },
        ),
        _continue,
    ),
    "godot_rebuild": (
        types.Tool(
            name="godot_rebuild",
            description="End the session, wipe build artifacts, rebuild and relaunch.",
            inputSchema={
                "type": "object",
                "properties": {"scene": _SCENE_ARG},
            },
        ),
        _rebuild,
    ),
    "godot_status": (
        types.Tool(
            name="godot_status",
            description="Show the current session phase, PID and scene.",
            inputSchema={"type": "object", "properties": {}},
        ),
        _status,
    ),
    "godot_build_output": (
        types.Tool(
            name="godot_build_output",
            description="Show the result of the last build with its error lines.",
            inputSchema={"type": "object", "properties": {}},
        ),
        _build_output,
    ),
    "godot_debug_log": (
        types.Tool(
            name="godot_debug_log",
            description="Show the most recent orchestrator log lines.",
            inputSchema={
                "type": "object",
                "properties": {
                    "lines": {
                        "type": "integer",
                        "description": f"Number of lines.  Defaults to {_DEFAULT_LOG_LINES}.",
                    },
                },
            },
        ),
        _debug_log,
    ),
    "godot_verify_symbols": (
        types.Tool(
            name="godot_verify_symbols",
            description="Check that the Debug build produced .pdb/.mdb symbol files.",
            inputSchema={"type": "object", "properties": {}},
        ),
        _verify_symbols,
    ),
}


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    return [schema for schema, _ in _TOOL_REGISTRY.values()]


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict[str, Any]
) -> list[types.TextContent]:
    entry = _TOOL_REGISTRY.get(name)
    if entry is None:
        return [types.TextContent(type="text", text=f"Unknown tool: {name}")]

    _schema, strategy = entry
    text = await strategy(_get_controller(), arguments or {})
    return [types.TextContent(type="text", text=text)]


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


async def run() -> None:
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="godot-debug-mcp",
                server_version="0.1.0",
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def main() -> None:
    # stdout carries the MCP stream; console logging goes to stderr.
    logging.basicConfig(stream=sys.stderr, level=logging.WARNING)
    if os.environ.get("GODOT_DEBUG_VERBOSE"):
        logging.getLogger().setLevel(logging.DEBUG)
    asyncio.run(run())


if __name__ == "__main__":
    main()
