"""Auto-detection wrapper around the front end's "continue" action.

The front end installs this once at startup in place of its plain
"continue debugging" handler.  Inside a Godot project with no session
running, continuing starts the Godot pipeline; anywhere else the plain
handler runs unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from godot_debug.controller import DebugSessionController, SessionOutcome
from godot_debug.project import is_project_path

logger = logging.getLogger(__name__)

Fallback = Callable[[], Awaitable[Any]]


class ContinueHook:
    def __init__(
        self,
        controller: DebugSessionController,
        fallback: Fallback,
        enabled: bool = True,
    ) -> None:
        self._controller = controller
        self._fallback = fallback
        self.enabled = enabled

    def should_launch(self, context_path: str | None) -> bool:
        if not self.enabled or not self._controller.state.idle:
            return False
        return is_project_path(context_path or "", self._controller.config.manifest_file)

    async def __call__(self, context_path: str | None = None) -> SessionOutcome | Any:
        if self.should_launch(context_path):
            logger.info("Detected Godot project, launching debugger")
            return await self._controller.launch()

        logger.debug(
            "Continuing with standard handler (path=%s, phase=%s)",
            context_path, self._controller.state.phase.value,
        )
        return await self._fallback()
