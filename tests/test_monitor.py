"""Tests for ProcessMonitor debouncing and cancellation."""

from __future__ import annotations

import asyncio

import pytest
from conftest import wait_for

from godot_debug.monitor import ProcessMonitor


def _scripted(results):
    """Probe returning *results* in order, then dead forever."""
    remaining = list(results)

    def _probe(pid):
        return remaining.pop(0) if remaining else False

    return _probe


class TestProcessMonitor:
    @pytest.mark.asyncio
    async def test_fires_once_after_two_consecutive_failures(self):
        fired = []
        monitor = ProcessMonitor(
            probe=_scripted([True, False, True, False, False]),
            interval=0.01,
            failure_threshold=2,
        )
        ticket = monitor.start(42, fired.append)

        await wait_for(lambda: fired)
        await asyncio.sleep(0.05)

        assert fired == [42]
        assert ticket.probes == 5
        assert ticket.fired
        assert not monitor.active

    @pytest.mark.asyncio
    async def test_single_failure_is_absorbed(self):
        fired = []
        monitor = ProcessMonitor(
            probe=_scripted([False, True, True, True] + [True] * 100),
            interval=0.01,
            failure_threshold=2,
        )
        monitor.start(1, fired.append)
        await asyncio.sleep(0.1)

        assert fired == []
        assert monitor.active
        monitor.stop()

    @pytest.mark.asyncio
    async def test_stop_prevents_firing(self):
        fired = []
        monitor = ProcessMonitor(probe=lambda pid: False, interval=0.05, failure_threshold=2)
        ticket = monitor.start(7, fired.append)

        monitor.stop()
        monitor.stop()
        await asyncio.sleep(0.2)

        assert fired == []
        assert ticket.cancelled
        assert not monitor.active

    @pytest.mark.asyncio
    async def test_stop_from_callback(self):
        fired = []
        monitor = ProcessMonitor(probe=lambda pid: False, interval=0.01, failure_threshold=1)

        def _on_terminated(pid):
            fired.append(pid)
            monitor.stop()

        monitor.start(9, _on_terminated)
        await wait_for(lambda: fired)
        assert fired == [9]

    @pytest.mark.asyncio
    async def test_restart_replaces_previous_monitor(self):
        fired = []
        state = {"alive": True}
        monitor = ProcessMonitor(probe=lambda pid: state["alive"], interval=0.01, failure_threshold=2)

        first = monitor.start(1, fired.append)
        second = monitor.start(2, fired.append)
        assert first.cancelled
        assert monitor.ticket is second

        state["alive"] = False
        await wait_for(lambda: fired)
        await asyncio.sleep(0.05)
        assert fired == [2]

    @pytest.mark.asyncio
    async def test_probe_exception_counts_as_failure(self):
        fired = []

        def _broken(pid):
            raise RuntimeError("probe failed")

        monitor = ProcessMonitor(probe=_broken, interval=0.01, failure_threshold=2)
        monitor.start(3, fired.append)
        await wait_for(lambda: fired)
        assert fired == [3]
