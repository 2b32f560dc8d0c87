"""Tests for the plain-text formatters."""

from __future__ import annotations

from godot_debug.build import BuildResult
from godot_debug.controller import SessionOutcome, SessionPhase
from godot_debug.errors import BuildFailed
from godot_debug.formatters import (
    format_build_result,
    format_events,
    format_outcome,
    format_status,
    format_targets,
)
from godot_debug.launcher import LaunchHandle
from godot_debug.locator import Target
from godot_debug.notifications import FAILURE, START, SUCCESS, StepEvent

CS_ERROR = "Main.cs(3,5): error CS0103: The name 'x' does not exist"


def _failed_build() -> BuildResult:
    return BuildResult(
        success=False,
        lines=("Building...", CS_ERROR),
        fatal_lines=(CS_ERROR,),
        ignored_lines=("Error: GdUnit Already in use",),
        duration=2.5,
        output_file="/tmp/godot_build_1.log",
    )


class TestFormatOutcome:
    def test_success(self):
        outcome = SessionOutcome(
            success=True,
            phase=SessionPhase.ACTIVE,
            target=Target("/p/scenes/main.tscn", "scenes/main.tscn"),
            handle=LaunchHandle("/p/scenes/main.tscn", "/p", "scenes/main.tscn", process_id=4242),
        )
        text = format_outcome(outcome)
        assert text.splitlines()[0] == "Debug session started (PID 4242)"
        assert "Scene: scenes/main.tscn" in text

    def test_build_failure(self):
        build = _failed_build()
        outcome = SessionOutcome(
            success=False,
            phase=SessionPhase.BUILDING,
            error=BuildFailed(build.fatal_lines),
            build=build,
        )
        text = format_outcome(outcome)
        assert text.startswith("Debug session aborted: Build failed with 1 error")
        assert "Reason: BuildFailed (during building)" in text
        assert CS_ERROR in text


class TestFormatBuildResult:
    def test_no_build(self):
        assert format_build_result(None) == "No build has run yet."

    def test_sections(self):
        text = format_build_result(_failed_build())
        assert text.splitlines()[0] == "Build: failed with 1 error (2.5s, 1 ignored)"
        assert "--- Errors ---" in text
        assert "--- Ignored ---" in text
        assert "Full output: /tmp/godot_build_1.log" in text

    def test_long_output_is_clipped(self):
        fatal = tuple(f"Error: {i}" for i in range(25))
        result = BuildResult(False, fatal, fatal, (), 1.0)
        assert "... and 5 more lines" in format_build_result(result)


class TestOtherFormatters:
    def test_status(self):
        assert format_status({"phase": "idle"}) == "No debug session."
        text = format_status({
            "phase": "active", "process_id": 42, "target": "scenes/a.tscn", "monitoring": True,
        })
        assert text == "Phase: active | PID: 42 | Scene: scenes/a.tscn | monitoring"

    def test_targets(self):
        targets = [
            Target("/p/b.tscn", "b.tscn", last_used=True),
            Target("/p/a.tscn", "a.tscn"),
        ]
        assert format_targets(targets).splitlines() == [
            "  1. ↻ Last: b.tscn",
            "  2. a.tscn",
        ]
        assert format_targets([]) == "(no scenes)"

    def test_events(self):
        events = [
            StepEvent("build", START, "Building Godot solutions..."),
            StepEvent("build", SUCCESS, "Build completed successfully", 1.3),
            StepEvent("attach", FAILURE, "Attach failed", 0.5),
        ]
        assert format_events(events).splitlines() == [
            "...    build: Building Godot solutions...",
            "[ok]   build: Build completed successfully (1.3s)",
            "[fail] attach: Attach failed (0.5s)",
        ]
        assert format_events([]) == "(no events)"
