"""Scene (target) discovery and the last-used cache.

The picker UI itself belongs to the front end; this module only produces the
ordered candidate list and remembers what was chosen last time.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Awaitable, Callable

from godot_debug.errors import NoTargetsFound
from godot_debug.runner import ProcessRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    path: str
    relative_path: str
    last_used: bool = False

    @property
    def display(self) -> str:
        if self.last_used:
            return f"↻ Last: {self.relative_path}"
        return self.relative_path


TargetPicker = Callable[[list[Target]], Awaitable["Target | None"]]


# ---------------------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------------------


def _search_command(project_root: str, extension: str) -> list[str]:
    pattern = f"*{extension}"
    if sys.platform == "win32":
        return [
            "powershell",
            "-NoProfile",
            "-Command",
            f"Get-ChildItem -LiteralPath '{project_root}' -Filter '{pattern}' -Recurse "
            "| Select-Object -ExpandProperty FullName",
        ]
    return ["find", project_root, "-name", pattern]


def filter_excluded(paths: Iterable[str], exclude_patterns: Sequence[str]) -> list[str]:
    """Drop every path containing any exclusion entry (plain substring)."""
    return [
        p for p in paths
        if not any(pattern and pattern in p for pattern in exclude_patterns)
    ]


async def find_targets(
    project_root: str,
    exclude_patterns: Sequence[str],
    runner: ProcessRunner,
    extension: str = ".tscn",
) -> list[str]:
    """Recursively list target files under *project_root*.

    Raises :class:`NoTargetsFound` when nothing survives the filter.
    """
    project_root = os.path.abspath(project_root)
    stdout, success, stderr = await runner.run(_search_command(project_root, extension))

    # ``find`` exits non-zero on unreadable sub-directories but still lists
    # everything else, so the output wins over the exit status.
    found = [line.strip() for line in stdout.splitlines() if line.strip()]
    if not found and not success:
        raise NoTargetsFound(f"Failed to find scenes: {stderr or 'no output'}")

    targets = filter_excluded(found, exclude_patterns)
    if not targets:
        raise NoTargetsFound(f"No scenes found in {project_root}")

    logger.info("Found %d scene(s) under %s", len(targets), project_root)
    return targets


# ---------------------------------------------------------------------------
# Last-used cache
# ---------------------------------------------------------------------------


def load_last_used(cache_file: str) -> str | None:
    """Return the cached target, or ``None`` if absent or no longer on disk."""
    try:
        with open(cache_file, encoding="utf-8") as f:
            cached = f.readline().strip()
    except OSError:
        return None
    if cached and os.path.isfile(cached):
        return cached
    return None


def save_last_used(cache_file: str, path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(cache_file)), exist_ok=True)
    with open(cache_file, "w", encoding="utf-8") as f:
        f.write(os.path.abspath(path) + "\n")


# ---------------------------------------------------------------------------
# Presentation order
# ---------------------------------------------------------------------------


def _relative(path: str, project_root: str) -> str:
    try:
        return os.path.relpath(path, project_root)
    except ValueError:
        # Different drive on Windows.
        return path


def order_targets(
    paths: Iterable[str],
    project_root: str,
    last_used: str | None = None,
) -> list[Target]:
    """Last-used first (if given), the rest sorted by project-relative path."""
    items: list[Target] = []
    if last_used:
        items.append(Target(last_used, _relative(last_used, project_root), last_used=True))

    rest = sorted(
        (Target(p, _relative(p, project_root)) for p in set(paths) if p != last_used),
        key=lambda t: t.relative_path,
    )
    items.extend(rest)
    return items


# ---------------------------------------------------------------------------
# Non-interactive pickers
# ---------------------------------------------------------------------------


async def pick_first(targets: list[Target]) -> Target | None:
    return targets[0] if targets else None


def make_path_picker(requested: str | None) -> TargetPicker:
    """Picker that selects *requested* (absolute or project-relative).

    With no request it behaves like :func:`pick_first`.
    """

    async def _pick(targets: list[Target]) -> Target | None:
        if not requested:
            return await pick_first(targets)
        wanted = os.path.normpath(requested)
        for target in targets:
            if wanted in (os.path.normpath(target.path), os.path.normpath(target.relative_path)):
                return target
        logger.warning("Requested scene %s is not among the candidates", requested)
        return None

    return _pick
