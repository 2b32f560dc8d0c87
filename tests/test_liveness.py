"""Tests for process liveness and process-table lookup."""

from __future__ import annotations

import os
import subprocess
import sys
import time

import psutil
import pytest

from godot_debug import liveness
from godot_debug.liveness import find_process_ids, is_process_alive


class _FakeProc:
    def __init__(self, pid, name, cmdline):
        self.info = {"pid": pid, "name": name, "cmdline": cmdline}


class TestIsProcessAlive:
    def test_current_process(self):
        assert is_process_alive(os.getpid())

    @pytest.mark.parametrize("pid", [0, -1])
    def test_invalid_pids(self, pid):
        assert not is_process_alive(pid)

    def test_exited_child(self):
        child = subprocess.Popen([sys.executable, "-c", "pass"])
        child.wait()
        assert not is_process_alive(child.pid)

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX zombie handling")
    def test_unreaped_child_is_dead(self):
        child = subprocess.Popen([sys.executable, "-c", "pass"])
        deadline = time.monotonic() + 5
        while psutil.Process(child.pid).status() != psutil.STATUS_ZOMBIE:
            assert time.monotonic() < deadline
            time.sleep(0.01)
        assert not is_process_alive(child.pid)
        child.wait()


class TestFindProcessIds:
    @pytest.fixture
    def process_table(self, monkeypatch):
        procs = [
            _FakeProc(10, "bash", ["bash"]),
            _FakeProc(11, "godot-mono", ["/opt/godot/godot-mono", "--path", "/p", "scenes/menu.tscn"]),
            _FakeProc(12, "godot-mono", ["/opt/godot/godot-mono", "--path", "/p", "scenes/main.tscn"]),
            _FakeProc(13, "Godot_v4", ["/usr/bin/godot-mono", "--headless"]),
            _FakeProc(14, None, None),
        ]
        monkeypatch.setattr(liveness.psutil, "process_iter", lambda attrs: iter(procs))

    def test_matches_binary_name(self, process_table):
        assert find_process_ids("godot-mono") == [11, 12, 13]

    def test_hint_orders_first(self, process_table):
        assert find_process_ids("/opt/godot/godot-mono", "scenes/main.tscn") == [12, 11, 13]

    def test_windows_image_name(self, monkeypatch):
        procs = [_FakeProc(20, "godot-mono.exe", ["C:\\Godot\\godot-mono.exe"])]
        monkeypatch.setattr(liveness.psutil, "process_iter", lambda attrs: iter(procs))
        assert find_process_ids("godot-mono.exe") == [20]

    def test_no_match(self, process_table):
        assert find_process_ids("godot") == []
