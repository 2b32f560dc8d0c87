#!/usr/bin/env python3
"""Godot .NET debugger CLI for agent skills.

Thin router that delegates all work to
``godot_debug.controller.DebugSessionController``.  Run it from inside a
Godot project.  ``launch`` and ``attach`` stay in the foreground while the
session is active and return once the game exits or the debugger detaches
(Ctrl-C ends the session early and leaves the game running).

Usage::

    python debug.py launch                     # last used / first scene
    python debug.py launch scenes/main.tscn
    python debug.py attach
    python debug.py kill
"""

from __future__ import annotations

import asyncio
import logging
import sys

# Require godot-debug (provides godot_debug). Install globally or in env:
#   pip install godot-debug
try:
    from godot_debug.config import DebugConfig
    from godot_debug.controller import DebugSessionController
    from godot_debug.errors import ConfigError
    from godot_debug.formatters import format_outcome
    from godot_debug.locator import make_path_picker
    from godot_debug.log import setup_logging
    from godot_debug.notifications import StepEvent
except ModuleNotFoundError as e:
    if e.name == "godot_debug":
        print(
            "Error: godot-debug is not installed. Install it first:\n"
            "  pip install godot-debug\n"
            "  or run: python scripts/init.py",
            file=sys.stderr,
        )
        sys.exit(1)
    raise


def _usage() -> str:
    return (
        "Usage: python debug.py <action> [args]\n"
        "Actions: launch [scene], attach, kill"
    )


def _print_event(event: StepEvent) -> None:
    timing = f" ({event.elapsed:.1f}s)" if event.elapsed is not None else ""
    print(f"[{event.step}] {event.message}{timing}", file=sys.stderr)


async def _run(argv: list[str]) -> str:
    if len(argv) < 2:
        return _usage()

    action = argv[1]
    try:
        config = DebugConfig.load()
    except ConfigError as exc:
        return f"Error: {exc.message}"

    controller = DebugSessionController(config)
    setup_logging(config, controller.views)
    controller.notifier.subscribe(_print_event)

    if action == "launch":
        scene = argv[2] if len(argv) > 2 else None
        outcome = await controller.launch(make_path_picker(scene))
    elif action == "attach":
        outcome = await controller.attach()
    elif action == "kill":
        await controller.kill_processes()
        return "Godot processes killed."
    else:
        return f"Unknown action: {action}\n{_usage()}"

    if not outcome.success:
        return format_outcome(outcome)

    print(format_outcome(outcome), file=sys.stderr)
    try:
        await controller.wait_idle()
    finally:
        controller.end_session("debug.py exiting")
        await controller.flush()
    return "Debug session ended."


def main() -> None:
    logging.basicConfig(stream=sys.stderr, level=logging.WARNING)
    try:
        result = asyncio.run(_run(sys.argv))
    except KeyboardInterrupt:
        result = "Interrupted."
    print(result)


if __name__ == "__main__":
    main()
