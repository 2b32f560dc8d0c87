"""Named text views shared with the editor front end.

A view is a list of lines kept under a fixed display name.  Reusing the name
refreshes the same view instead of creating a new one, so repeated builds
keep overwriting ``"Godot Build Output"``.
"""

from __future__ import annotations

from collections.abc import Iterable

BUILD_OUTPUT_VIEW = "Godot Build Output"
DEBUG_LOG_VIEW = "Godot Debug Log"


class OutputViews:
    """Registry of named line buffers."""

    def __init__(self, max_lines: int = 5000) -> None:
        self._views: dict[str, list[str]] = {}
        self._max_lines = max_lines

    def show(self, name: str, lines: Iterable[str]) -> None:
        """Replace the content of view *name*."""
        self._views[name] = self._trim(list(lines))

    def append(self, name: str, lines: Iterable[str]) -> None:
        buf = self._views.setdefault(name, [])
        buf.extend(lines)
        self._views[name] = self._trim(buf)

    def get(self, name: str) -> list[str]:
        return list(self._views.get(name, []))

    def clear(self, name: str) -> None:
        self._views.pop(name, None)

    def names(self) -> list[str]:
        return sorted(self._views)

    def __contains__(self, name: object) -> bool:
        return name in self._views

    def _trim(self, lines: list[str]) -> list[str]:
        if len(lines) > self._max_lines:
            return lines[-self._max_lines:]
        return lines
