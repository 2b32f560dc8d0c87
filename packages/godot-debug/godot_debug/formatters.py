"""Plain-text formatting for session results.

All functions return plain text suited to an MCP reply or a terminal:
no ANSI codes, no excessive nesting.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from godot_debug.build import BuildResult
from godot_debug.controller import SessionOutcome
from godot_debug.locator import Target
from godot_debug.notifications import FAILURE, SUCCESS, StepEvent

_MAX_BUILD_LINES = 20

_STATUS_MARKS = {SUCCESS: "[ok]", FAILURE: "[fail]"}


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def format_outcome(outcome: SessionOutcome) -> str:
    """One-screen summary of a :class:`SessionOutcome`.

    Example output::

        Debug session started (PID 4242)
          Scene: scenes/main.tscn
          Build: ok (12.3s)
    """
    lines = [outcome.message]
    if outcome.error is not None:
        lines.append(f"  Reason: {outcome.reason} (during {outcome.phase.value})")
    if outcome.target is not None:
        lines.append(f"  Scene: {outcome.target.relative_path}")
    elif outcome.handle is not None and outcome.handle.relative_target:
        lines.append(f"  Scene: {outcome.handle.relative_target}")
    if outcome.build is not None:
        lines.append("  " + _build_summary(outcome.build))
        if not outcome.build.success:
            lines.append(_indent(_clip(outcome.build.fatal_lines)))
    return "\n".join(lines)


def format_status(status: dict[str, Any]) -> str:
    phase = status.get("phase", "idle")
    if phase == "idle":
        return "No debug session."
    parts = [f"Phase: {phase}"]
    if status.get("process_id") is not None:
        parts.append(f"PID: {status['process_id']}")
    if status.get("target"):
        parts.append(f"Scene: {status['target']}")
    if status.get("monitoring"):
        parts.append("monitoring")
    return " | ".join(parts)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def format_build_result(result: BuildResult | None) -> str:
    """Build summary followed by fatal and ignored lines."""
    if result is None:
        return "No build has run yet."

    lines = [_build_summary(result)]
    if result.fatal_lines:
        lines.append("--- Errors ---")
        lines.append(_clip(result.fatal_lines))
    if result.ignored_lines:
        lines.append("--- Ignored ---")
        lines.append(_clip(result.ignored_lines))
    if result.output_file:
        lines.append(f"Full output: {result.output_file}")
    return "\n".join(lines)


def _build_summary(result: BuildResult) -> str:
    if result.success:
        status = "ok"
    elif result.fatal_lines:
        count = len(result.fatal_lines)
        status = f"failed with {count} error{'s' if count != 1 else ''}"
    else:
        status = "failed"
    extras = []
    if result.timed_out:
        extras.append("timed out")
    if result.ignored_lines:
        extras.append(f"{len(result.ignored_lines)} ignored")
    suffix = f", {', '.join(extras)}" if extras else ""
    return f"Build: {status} ({result.duration:.1f}s{suffix})"


# ---------------------------------------------------------------------------
# Targets / events
# ---------------------------------------------------------------------------


def format_targets(targets: Sequence[Target]) -> str:
    if not targets:
        return "(no scenes)"
    return "\n".join(f"{i + 1:>3}. {t.display}" for i, t in enumerate(targets))


def format_events(events: Sequence[StepEvent]) -> str:
    """Render notifier history, one event per line."""
    if not events:
        return "(no events)"
    lines = []
    for event in events:
        mark = _STATUS_MARKS.get(event.status, "...")
        timing = f" ({event.elapsed:.1f}s)" if event.elapsed is not None else ""
        lines.append(f"{mark:<6} {event.step}: {event.message}{timing}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clip(lines: Sequence[str]) -> str:
    shown = list(lines[:_MAX_BUILD_LINES])
    remaining = len(lines) - len(shown)
    if remaining > 0:
        shown.append(f"... and {remaining} more lines")
    return "\n".join(shown)


def _indent(text: str) -> str:
    return "\n".join(f"    {line}" for line in text.splitlines())
