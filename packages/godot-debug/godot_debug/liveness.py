"""Process liveness and process-table lookup.

``is_process_alive`` is chosen once at import time:

* POSIX   -- signal probe (``os.kill(pid, 0)``).
* Windows -- process-table query through psutil.

``find_process_ids`` scans the process table for a binary name, optionally
narrowed by a substring of the command line.
"""

from __future__ import annotations

import logging
import os
import sys

import psutil

logger = logging.getLogger(__name__)


def _is_alive_posix(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except OSError:
        return False
    return _not_zombie(pid)


def _is_alive_windows(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        return psutil.pid_exists(pid) and _not_zombie(pid)
    except psutil.Error:
        return False


def _not_zombie(pid: int) -> bool:
    # An exited child we have not reaped still answers the signal probe.
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.Error:
        return True


is_process_alive = _is_alive_windows if sys.platform == "win32" else _is_alive_posix


def _image_name(binary: str) -> str:
    return os.path.basename(binary).lower()


def find_process_ids(binary: str, cmdline_hint: str | None = None) -> list[int]:
    """Return pids whose executable name or command line mentions *binary*.

    Matches whose command line also contains *cmdline_hint* come first.
    Blocking; call it through ``asyncio.to_thread`` from async code.
    """
    image = _image_name(binary)
    stem = os.path.splitext(image)[0]
    preferred: list[int] = []
    others: list[int] = []

    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            name = (proc.info.get("name") or "").lower()
            cmdline = proc.info.get("cmdline") or []
            cmd_str = " ".join(cmdline)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

        exe_match = name in (image, stem) or (
            bool(cmdline) and os.path.splitext(_image_name(cmdline[0]))[0] == stem
        )
        if not exe_match:
            continue

        if cmdline_hint and cmdline_hint in cmd_str:
            preferred.append(proc.info["pid"])
        else:
            others.append(proc.info["pid"])

    pids = preferred + others
    logger.debug("Process-table lookup for %s (hint=%s): %s", binary, cmdline_hint, pids)
    return pids
