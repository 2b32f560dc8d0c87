"""netcoredbg debug adapter for Godot .NET (Mono) runtimes.

netcoredbg is Samsung's open-source .NET debugger.  Started with
``--interpreter=vscode`` it speaks DAP over stdin/stdout.

Install: https://github.com/Samsung/netcoredbg/releases (put it on PATH).
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import Any

from godot_debug.adapters.base import DebugAdapter
from godot_debug.build import DEBUG_SYMBOLS_DIR
from godot_debug.config import DEFAULT_ADAPTER_ENV

logger = logging.getLogger(__name__)


def _find_netcoredbg(explicit: str | None = None) -> str:
    """Locate the netcoredbg executable (explicit path first, then PATH)."""
    if explicit:
        if os.path.isfile(explicit):
            return explicit
        raise FileNotFoundError(f"netcoredbg not found at {explicit}")

    path = shutil.which("netcoredbg")
    if not path:
        raise FileNotFoundError(
            "netcoredbg not found in PATH.  Install it from "
            "https://github.com/Samsung/netcoredbg/releases"
        )
    logger.debug("Found netcoredbg at %s", path)
    return path


class NetcoredbgAdapter(DebugAdapter):
    """Attach-only adapter for debugging Godot C# scripts."""

    def __init__(
        self,
        netcoredbg_path: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._path = _find_netcoredbg(netcoredbg_path)
        self._env = dict(DEFAULT_ADAPTER_ENV if env is None else env)

    @property
    def adapter_id(self) -> str:
        return "coreclr"

    @property
    def path(self) -> str:
        return self._path

    def get_spawn_command(self) -> list[str]:
        return [self._path, "--interpreter=vscode"]

    def get_env(self) -> dict[str, str]:
        return dict(self._env)

    def get_attach_args(self, process_id: int, project_root: str) -> dict[str, Any]:
        project_root = os.path.abspath(project_root)
        return {
            "type": "coreclr",
            "request": "attach",
            "name": "Attach to Godot Mono",
            "processId": process_id,
            # Symbol resolution needs to see the game's own assemblies.
            "justMyCode": False,
            "justMyCodeStepping": False,
            "enableStepIntoProp": True,
            "enableStepFiltering": False,
            "stopAtEntry": False,
            "symbolOptions": {
                "searchMicrosoftSymbolServer": False,
                "searchNuGetOrgSymbolServer": False,
            },
            "sourceFileMap": {"<default>": project_root},
            "additionalSOLibSearchPath": os.path.join(project_root, DEBUG_SYMBOLS_DIR),
        }
