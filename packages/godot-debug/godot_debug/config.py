"""Configuration for the Godot debug orchestrator.

Defaults mirror what a typical Godot .NET project needs.  Front ends build a
:class:`DebugConfig` from a plain mapping (e.g. parsed JSON) and hand it to
:class:`~godot_debug.controller.DebugSessionController`.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any

from godot_debug.errors import ConfigError

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

CONFIG_ENV_VAR = "GODOT_DEBUG_CONFIG"

_DEFAULT_CACHE_DIR = os.path.join(
    os.environ.get("XDG_CACHE_HOME", os.path.expanduser("~/.cache")),
    "godot-debug",
)

DEFAULT_IGNORE_BUILD_ERRORS: tuple[str, ...] = (
    r"GdUnit.*Can't establish server.*Already in use",
    r"Resource file not found: res://<.*Texture.*>",
)

DEFAULT_COMPLETION_MARKERS: tuple[str, ...] = ("Build succeeded", "Build FAILED")

DEFAULT_ADAPTER_ENV: dict[str, str] = {
    "GODOT_MONO_LOG_LEVEL": "debug",
    "DOTNET_CLI_TELEMETRY_OPTOUT": "1",
}


@dataclass
class DebugConfig:
    """All tunables of the pipeline.

    Paths left as ``None`` are derived from ``cache_dir`` in
    :meth:`__post_init__`.
    """

    godot_binary: str = "godot-mono.exe" if IS_WINDOWS else "godot-mono"
    manifest_file: str = "project.godot"
    target_extension: str = ".tscn"
    exclude_dirs: tuple[str, ...] = ("addons/", "src/")

    cache_dir: str = _DEFAULT_CACHE_DIR
    scene_cache_file: str | None = None
    log_file: str | None = None
    build_log_dir: str | None = None
    log_level: str = "INFO"
    log_max_bytes: int = 1_000_000
    log_backup_count: int = 3

    auto_detect: bool = True

    # Build
    ignore_build_errors: tuple[str, ...] = DEFAULT_IGNORE_BUILD_ERRORS
    build_timeout: float = 60.0
    build_poll_interval: float = 1.0
    build_kill_grace: float = 1.0
    build_completion_markers: tuple[str, ...] = DEFAULT_COMPLETION_MARKERS
    show_build_output: bool = True
    # Number of godot_build_*.log files kept in build_log_dir.
    build_log_keep: int = 5

    # Launch
    settle_delay: float = 0.3
    pid_resolve_delay: float = 0.5
    breakpoints_enabled: bool = False
    detach_runtime: bool = False
    launch_args: tuple[str, ...] = ()

    # Monitor
    monitor_interval: float = 0.3
    monitor_failure_threshold: int = 2

    # Debug adapter
    netcoredbg_path: str | None = None
    adapter_env: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ADAPTER_ENV))

    def __post_init__(self) -> None:
        self.cache_dir = os.path.abspath(os.path.expanduser(self.cache_dir))
        if self.scene_cache_file is None:
            self.scene_cache_file = os.path.join(self.cache_dir, "godot_last_scene.txt")
        if self.log_file is None:
            self.log_file = os.path.join(self.cache_dir, "godot_debug.log")
        if self.build_log_dir is None:
            self.build_log_dir = self.cache_dir

        # JSON gives us lists; keep the sequence fields immutable.
        self.exclude_dirs = tuple(self.exclude_dirs)
        self.ignore_build_errors = tuple(self.ignore_build_errors)
        self.build_completion_markers = tuple(self.build_completion_markers)
        self.launch_args = tuple(self.launch_args)

        if self.build_timeout <= 0:
            raise ConfigError(f"build_timeout must be positive, got {self.build_timeout}")
        if self.monitor_failure_threshold < 1:
            raise ConfigError("monitor_failure_threshold must be at least 1")

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> DebugConfig:
        """Merge *data* over the defaults.  Unknown keys are rejected."""
        data = dict(data or {})
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        adapter_env = data.get("adapter_env")
        if adapter_env is not None:
            data["adapter_env"] = {**DEFAULT_ADAPTER_ENV, **adapter_env}

        try:
            return cls(**data)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc

    @classmethod
    def from_file(cls, path: str) -> DebugConfig:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        logger.info("Loaded configuration from %s", path)
        return cls.from_mapping(data)

    @classmethod
    def load(cls) -> DebugConfig:
        """Read the file named by ``$GODOT_DEBUG_CONFIG``, or use defaults."""
        path = os.environ.get(CONFIG_ENV_VAR)
        if path:
            return cls.from_file(path)
        return cls()

    def replace(self, **changes: Any) -> DebugConfig:
        return dataclasses.replace(self, **changes)
