"""Liveness monitoring of the debugged runtime.

One probe every ``interval`` seconds.  A single failed probe is not trusted
(the OS can briefly misreport); ``failure_threshold`` consecutive failures
declare the process dead and fire ``on_terminated`` exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from godot_debug.liveness import is_process_alive

logger = logging.getLogger(__name__)

Probe = Callable[[int], bool]
TerminatedCallback = Callable[[int], None]


@dataclass
class MonitorTicket:
    process_id: int
    failures: int = 0
    probes: int = 0
    cancelled: bool = False
    fired: bool = False


class ProcessMonitor:
    """Polls one process id at a time."""

    def __init__(
        self,
        probe: Probe = is_process_alive,
        interval: float = 0.3,
        failure_threshold: int = 2,
    ) -> None:
        self._probe = probe
        self._interval = interval
        self._threshold = failure_threshold
        self._ticket: MonitorTicket | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._ticket is not None and not self._ticket.cancelled

    @property
    def ticket(self) -> MonitorTicket | None:
        return self._ticket

    def start(self, process_id: int, on_terminated: TerminatedCallback) -> MonitorTicket:
        """Monitor *process_id*, replacing any previous monitor."""
        self.stop()
        ticket = MonitorTicket(process_id)
        self._ticket = ticket
        self._task = asyncio.create_task(self._run(ticket, on_terminated))
        logger.debug("Monitoring PID %d every %.2fs", process_id, self._interval)
        return ticket

    def stop(self) -> None:
        """Cancel monitoring.  Idempotent, safe from ``on_terminated``."""
        ticket, task = self._ticket, self._task
        self._ticket = None
        self._task = None
        if ticket is None or ticket.cancelled:
            return
        ticket.cancelled = True
        # Only the sleep between probes is ever interrupted.
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        logger.debug("Stopped monitoring PID %d", ticket.process_id)

    async def _run(self, ticket: MonitorTicket, on_terminated: TerminatedCallback) -> None:
        try:
            while not ticket.cancelled:
                await asyncio.sleep(self._interval)
                if ticket.cancelled:
                    return

                alive = self._check(ticket.process_id)
                ticket.probes += 1
                if alive:
                    ticket.failures = 0
                    continue

                ticket.failures += 1
                logger.debug(
                    "PID %d liveness probe failed (%d/%d)",
                    ticket.process_id, ticket.failures, self._threshold,
                )
                if ticket.failures >= self._threshold:
                    self._fire(ticket, on_terminated)
                    return
        except asyncio.CancelledError:
            return

    def _check(self, process_id: int) -> bool:
        try:
            return bool(self._probe(process_id))
        except Exception:
            logger.exception("Liveness probe raised for PID %d", process_id)
            return False

    def _fire(self, ticket: MonitorTicket, on_terminated: TerminatedCallback) -> None:
        if ticket.fired or ticket.cancelled:
            return
        ticket.fired = True
        logger.info("Process %d is no longer running", ticket.process_id)
        if self._ticket is ticket:
            self._ticket = None
            self._task = None
        ticket.cancelled = True
        try:
            on_terminated(ticket.process_id)
        except Exception:
            logger.exception("Error in process termination callback")
