"""Tests for build classification and the polling build coordinator."""

from __future__ import annotations

import os
import sys
import time

import pytest

from godot_debug.build import (
    BuildCoordinator,
    build_command,
    classify_lines,
    clean_build,
    verify_debug_symbols,
)
from godot_debug.config import DEFAULT_IGNORE_BUILD_ERRORS
from godot_debug.errors import ConfigError
from godot_debug.runner import ProcessRunner
from godot_debug.views import BUILD_OUTPUT_VIEW, OutputViews

GDUNIT_LINE = "Error: GdUnit: Can't establish server, port 31002 Already in use"
CS_ERROR = "Main.cs(12,9): error CS0103: The name 'speed' does not exist in the current context"


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


class TestClassifyLines:
    def test_fatal_signatures(self):
        fatal, ignored = classify_lines(
            ["Building...", "Error: something broke", CS_ERROR, "warning CS0168: unused"],
            (),
        )
        assert fatal == ["Error: something broke", CS_ERROR]
        assert ignored == []

    def test_ignorable_wins_over_fatal(self):
        fatal, ignored = classify_lines([GDUNIT_LINE], DEFAULT_IGNORE_BUILD_ERRORS)
        assert fatal == []
        assert ignored == [GDUNIT_LINE]

    def test_missing_texture_is_ignorable(self):
        line = "Error: Resource file not found: res://<Texture2D#-9223372036854775>"
        fatal, ignored = classify_lines([line], DEFAULT_IGNORE_BUILD_ERRORS)
        assert fatal == []
        assert ignored == [line]

    def test_cs_error_is_not_ignorable_by_default(self):
        fatal, _ignored = classify_lines([CS_ERROR], DEFAULT_IGNORE_BUILD_ERRORS)
        assert fatal == [CS_ERROR]

    def test_ignore_patterns_only_apply_to_errors(self):
        chatter = "GdUnit: Can't establish server, port 31002 Already in use, retrying"
        fatal, ignored = classify_lines([chatter, GDUNIT_LINE], DEFAULT_IGNORE_BUILD_ERRORS)
        assert fatal == []
        assert ignored == [GDUNIT_LINE]

    def test_invalid_pattern(self):
        with pytest.raises(ConfigError):
            classify_lines(["x"], ["(unclosed"])

    def test_build_command(self):
        assert build_command("godot-mono") == ["godot-mono", "--headless", "--build-solutions"]


class TestBuildCoordinator:
    @pytest.fixture
    def views(self):
        return OutputViews()

    @pytest.fixture
    def coordinator(self, tmp_path, views):
        return BuildCoordinator(
            ProcessRunner(),
            str(tmp_path / "logs"),
            poll_interval=0.05,
            kill_grace=0.2,
            views=views,
        )

    @pytest.mark.asyncio
    async def test_ignorable_only_output_succeeds(self, coordinator, tmp_path, views):
        code = f"print({GDUNIT_LINE!r}); print('Build succeeded')"
        result = await coordinator.build(str(tmp_path), _py(code), 10, DEFAULT_IGNORE_BUILD_ERRORS)

        assert result.success
        assert result.ignored_lines == (GDUNIT_LINE,)
        assert result.fatal_lines == ()
        assert views.get(BUILD_OUTPUT_VIEW) == [GDUNIT_LINE, "Build succeeded"]

    @pytest.mark.asyncio
    async def test_compiler_error_fails(self, coordinator, tmp_path):
        code = f"print({CS_ERROR!r}); print('Build FAILED')"
        result = await coordinator.build(str(tmp_path), _py(code), 10, DEFAULT_IGNORE_BUILD_ERRORS)

        assert not result.success
        assert CS_ERROR in result.fatal_lines
        assert result.completed

    @pytest.mark.asyncio
    async def test_marker_returns_before_timeout(self, coordinator, tmp_path):
        # The headless editor keeps running after the build finishes.
        code = (
            "import time\n"
            "time.sleep(0.5)\n"
            "print('Build succeeded', flush=True)\n"
            "time.sleep(30)\n"
        )
        started = time.monotonic()
        result = await coordinator.build(str(tmp_path), _py(code), 5, ())
        elapsed = time.monotonic() - started

        assert result.success
        assert result.completed
        assert not result.timed_out
        assert elapsed < 4

    @pytest.mark.asyncio
    async def test_process_exit_without_marker_completes(self, coordinator, tmp_path):
        result = await coordinator.build(str(tmp_path), _py("print('done')"), 5, ())
        assert result.success
        assert result.completed
        assert result.lines == ("done",)

    @pytest.mark.asyncio
    async def test_timeout_kills_and_classifies(self, coordinator, tmp_path):
        code = "import time\nprint('Building...', flush=True)\ntime.sleep(30)\n"
        result = await coordinator.build(str(tmp_path), _py(code), 0.5, ())

        assert result.timed_out
        assert not result.completed
        assert result.success
        assert "Building..." in result.lines

    @pytest.mark.asyncio
    async def test_each_build_gets_its_own_log(self, coordinator, tmp_path):
        first = await coordinator.build(str(tmp_path), _py("print('one')"), 5, ())
        second = await coordinator.build(str(tmp_path), _py("print('two')"), 5, ())
        assert first.output_file != second.output_file
        assert second.lines == ("two",)

    @pytest.mark.asyncio
    async def test_old_logs_are_pruned(self, tmp_path):
        log_dir = tmp_path / "logs"
        coordinator = BuildCoordinator(
            ProcessRunner(), str(log_dir), poll_interval=0.05, kill_grace=0.2, keep_logs=2,
        )
        results = [
            await coordinator.build(str(tmp_path), _py(f"print({i})"), 5, ())
            for i in range(3)
        ]

        remaining = sorted(p.name for p in log_dir.glob("godot_build_*.log"))
        assert len(remaining) == 2
        assert os.path.basename(results[-1].output_file) in remaining
        assert not os.path.exists(results[0].output_file)

    @pytest.mark.asyncio
    async def test_spawn_failure(self, coordinator, tmp_path):
        result = await coordinator.build(str(tmp_path), [str(tmp_path / "godot-missing")], 5, ())
        assert not result.success
        assert not result.completed
        assert result.fatal_lines


class TestArtifacts:
    def test_verify_debug_symbols(self, tmp_path):
        assert verify_debug_symbols(str(tmp_path)) is False

        debug_dir = tmp_path / ".godot" / "mono" / "temp" / "bin" / "Debug"
        debug_dir.mkdir(parents=True)
        assert verify_debug_symbols(str(tmp_path)) is False

        (debug_dir / "Game.pdb").write_text("")
        assert verify_debug_symbols(str(tmp_path)) is True

    def test_clean_build(self, tmp_path):
        temp = tmp_path / ".godot" / "mono" / "temp"
        temp.mkdir(parents=True)
        removed = clean_build(str(tmp_path))
        assert removed == [str(temp)]
        assert not temp.exists()
        assert clean_build(str(tmp_path)) == []
