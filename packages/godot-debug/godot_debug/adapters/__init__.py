"""Debug adapter implementations.

Godot .NET runtimes are debugged through netcoredbg
(:class:`NetcoredbgAdapter`), attach-only.
"""

from godot_debug.adapters.base import DebugAdapter
from godot_debug.adapters.netcoredbg import NetcoredbgAdapter

__all__ = ["DebugAdapter", "NetcoredbgAdapter"]
