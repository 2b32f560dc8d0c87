#!/usr/bin/env python3
"""Ensure godot-debug and its external tools are available for this skill.

Run once before using the debugger (e.g. after installing the skill).
Uses the same Python that will run debug.py, so the package is available
when you run debug commands.  Also checks that the Godot binary and
netcoredbg can be found.

Usage: python scripts/init.py
"""

from __future__ import annotations

import shutil
import subprocess
import sys

PACKAGE = "godot-debug"


def _have_package() -> bool:
    try:
        __import__("godot_debug")
        return True
    except ModuleNotFoundError:
        return False


def _install() -> bool:
    print(f"Installing {PACKAGE}...")
    r = subprocess.run(
        [sys.executable, "-m", "pip", "install", PACKAGE],
        capture_output=False,
    )
    if r.returncode != 0:
        print(
            f"Install failed. You can install manually:\n"
            f"  pip install {PACKAGE}\n"
            f"  uv add {PACKAGE}   (in a uv project)",
            file=sys.stderr,
        )
        return False
    if not _have_package():
        print("Install completed but package still not found. Try restarting your shell.", file=sys.stderr)
        return False
    return True


def _check_tools() -> int:
    from godot_debug.config import DebugConfig
    from godot_debug.errors import ConfigError

    try:
        config = DebugConfig.load()
    except ConfigError as exc:
        print(f"Invalid configuration: {exc.message}", file=sys.stderr)
        return 1

    missing = 0
    if shutil.which(config.godot_binary) is None:
        print(
            f"Godot binary '{config.godot_binary}' not found on PATH. "
            "Set godot_binary in your config file.",
            file=sys.stderr,
        )
        missing += 1

    netcoredbg = config.netcoredbg_path or shutil.which("netcoredbg")
    if not netcoredbg:
        print(
            "netcoredbg not found. Download it from "
            "https://github.com/Samsung/netcoredbg/releases and put it on PATH.",
            file=sys.stderr,
        )
        missing += 1

    return 1 if missing else 0


def main() -> int:
    if _have_package():
        print(f"{PACKAGE} is already installed.")
    elif not _install():
        return 1

    if _check_tools() != 0:
        return 1

    print(f"{PACKAGE} is ready. You can run debug.py now.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
