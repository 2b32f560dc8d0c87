"""Error taxonomy for the debug pipeline.

Every pipeline step raises one of these; :class:`DebugSessionController`
catches them at the step boundary and turns them into a
:class:`~godot_debug.controller.SessionOutcome`.  The ``reason`` attribute is
a stable code that front ends can switch on.
"""

from __future__ import annotations


class GodotDebugError(Exception):
    """Base class for all orchestrator errors."""

    reason = "Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.reason
        super().__init__(self.message)


class ConfigError(GodotDebugError):
    reason = "ConfigError"


class NoTargetsFound(GodotDebugError):
    reason = "NoTargetsFound"


class NoTargetSelected(GodotDebugError):
    reason = "NoTargetSelected"


class BuildFailed(GodotDebugError):
    reason = "BuildFailed"

    def __init__(self, fatal_lines: list[str] | tuple[str, ...], message: str | None = None) -> None:
        self.fatal_lines = tuple(fatal_lines)
        if message is None:
            count = len(self.fatal_lines)
            message = f"Build failed with {count} error{'s' if count != 1 else ''}"
        super().__init__(message)


class LaunchFailed(GodotDebugError):
    reason = "LaunchFailed"


class ProcessIdUnresolved(LaunchFailed):
    reason = "ProcessIdUnresolved"


class AttachFailed(GodotDebugError):
    reason = "AttachFailed"


class AlreadyInProgress(GodotDebugError):
    reason = "AlreadyInProgress"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Debug session already in progress")
