"""Abstract base for debug adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class DebugAdapter(ABC):
    """Base class for runtime-specific debug adapters.

    Each subclass knows how to:
    * Locate the adapter binary on disk.
    * Build the command (and environment) to spawn it.
    * Build the ``attach`` arguments that the DAP client sends.
    """

    supported_requests: tuple[str, ...] = ("attach",)

    @property
    @abstractmethod
    def adapter_id(self) -> str:
        """Short identifier used in the DAP ``initialize`` request."""

    @abstractmethod
    def get_spawn_command(self) -> list[str]:
        """Return the command + args to start the adapter subprocess."""

    @abstractmethod
    def get_attach_args(self, process_id: int, project_root: str) -> dict[str, Any]:
        """Return the ``arguments`` dict for the DAP ``attach`` request."""

    def get_env(self) -> dict[str, str]:
        """Extra environment variables for the adapter subprocess."""
        return {}

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def check_request(self, request: str) -> None:
        if request not in self.supported_requests:
            raise ValueError(
                f"{self.adapter_id} adapter only supports "
                f"{', '.join(repr(r) for r in self.supported_requests)} requests, got {request!r}"
            )
