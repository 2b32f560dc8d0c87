"""Project root discovery."""

from __future__ import annotations

import os

DEFAULT_MANIFEST = "project.godot"


def find_project_root(start: str, manifest: str = DEFAULT_MANIFEST) -> str | None:
    """Walk upward from *start* to the nearest directory holding *manifest*.

    *start* may be a file or a directory; the directory itself is checked
    first.  Returns ``None`` when the filesystem root is reached.
    """
    current = os.path.abspath(start)
    if not os.path.isdir(current):
        current = os.path.dirname(current)

    while True:
        if os.path.isfile(os.path.join(current, manifest)):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def is_project_path(path: str, manifest: str = DEFAULT_MANIFEST) -> bool:
    return bool(path) and find_project_root(path, manifest) is not None
