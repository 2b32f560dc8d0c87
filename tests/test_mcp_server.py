"""Tests for the MCP tool registry, driven against a faked controller."""

from __future__ import annotations

import pytest

from godot_debug.views import DEBUG_LOG_VIEW
from godot_debug_mcp import server

EXPECTED_TOOLS = {
    "godot_launch",
    "godot_kill",
    "godot_attach",
    "godot_continue",
    "godot_rebuild",
    "godot_status",
    "godot_build_output",
    "godot_debug_log",
    "godot_verify_symbols",
}


@pytest.fixture
def controller(harness, monkeypatch):
    monkeypatch.setattr(server, "_controller", harness.controller)
    return harness.controller


async def _call(name, arguments=None) -> str:
    contents = await server.handle_call_tool(name, arguments or {})
    assert len(contents) == 1
    return contents[0].text


class TestRegistry:
    @pytest.mark.asyncio
    async def test_list_tools(self):
        tools = await server.handle_list_tools()
        assert {tool.name for tool in tools} == EXPECTED_TOOLS

    @pytest.mark.asyncio
    async def test_unknown_tool(self, controller):
        assert await _call("debug_probe") == "Unknown tool: debug_probe"


class TestTools:
    @pytest.mark.asyncio
    async def test_launch_with_scene(self, controller, harness, project):
        text = await _call("godot_launch", {"scene": "scenes/b.tscn"})

        assert text.startswith("Debug session started (PID 4242)")
        assert "--- Steps ---" in text
        assert harness.launcher.launches[0][0] == str(project / "scenes" / "b.tscn")

        status = await _call("godot_status")
        assert status.startswith("Phase: active | PID: 4242")

    @pytest.mark.asyncio
    async def test_launch_unknown_scene(self, controller):
        text = await _call("godot_launch", {"scene": "scenes/missing.tscn"})
        assert "Reason: NoTargetSelected" in text

    @pytest.mark.asyncio
    async def test_kill(self, controller, harness):
        await _call("godot_launch")
        assert await _call("godot_kill") == "Godot processes killed."
        assert harness.launcher.kills == 1
        assert await _call("godot_status") == "No debug session."

    @pytest.mark.asyncio
    async def test_continue_starts_then_resumes(self, controller, harness, project):
        first = await _call("godot_continue", {"path": str(project)})
        assert first.startswith("Debug session started")

        second = await _call("godot_continue", {"path": str(project)})
        assert second == "Resumed."
        assert harness.client.continued == 1

    @pytest.mark.asyncio
    async def test_continue_outside_project(self, controller, tmp_path):
        outside = tmp_path / "other"
        outside.mkdir()
        text = await _call("godot_continue", {"path": str(outside)})
        assert text == "No active debug session to continue."

    @pytest.mark.asyncio
    async def test_build_output(self, controller):
        assert await _call("godot_build_output") == "No build has run yet."
        await _call("godot_launch")
        assert (await _call("godot_build_output")).startswith("Build: ok")

    @pytest.mark.asyncio
    async def test_debug_log(self, controller):
        assert await _call("godot_debug_log") == "(log is empty)"
        controller.views.append(DEBUG_LOG_VIEW, ["one", "two", "three"])
        assert await _call("godot_debug_log", {"lines": 2}) == "two\nthree"

    @pytest.mark.asyncio
    async def test_verify_symbols(self, controller, project):
        assert (await _call("godot_verify_symbols")).startswith("No debug symbols found")

        debug_dir = project / ".godot" / "mono" / "temp" / "bin" / "Debug"
        debug_dir.mkdir(parents=True)
        (debug_dir / "Game.pdb").write_text("")
        assert await _call("godot_verify_symbols") == "Debug symbols found."

    @pytest.mark.asyncio
    async def test_attach(self, controller, harness):
        harness.launcher.lookup_pid = 321
        text = await _call("godot_attach")
        assert text.startswith("Debug session started (PID 321)")

    @pytest.mark.asyncio
    async def test_rebuild(self, controller, harness):
        await _call("godot_launch")
        text = await _call("godot_rebuild")
        assert text.startswith("Debug session started")
        assert len(harness.builder.calls) == 2
