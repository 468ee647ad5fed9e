"""
Centralized path management for mtd-sync.

Resolves the working directory that holds the state file and logs.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional


class PathManager:
    """Manages mtd-sync file paths."""

    APP_DIR_NAME = "mtd-sync"
    HOME_ENV_VAR = "MTD_SYNC_HOME"

    STATE_FILE = "state.json"
    LOG_DIR = "logs"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._working_dir: Optional[Path] = None

    def _default_user_dir(self) -> Path:
        """Platform-appropriate per-user data directory."""
        if sys.platform == "darwin":
            return Path.home() / "Library" / "Application Support" / self.APP_DIR_NAME
        if sys.platform.startswith("win"):
            appdata = os.environ.get("APPDATA")
            if appdata:
                return Path(appdata) / self.APP_DIR_NAME
            return Path.home() / "AppData" / "Roaming" / self.APP_DIR_NAME
        xdg = os.environ.get("XDG_CONFIG_HOME")
        if xdg:
            return Path(xdg) / self.APP_DIR_NAME
        return Path.home() / ".config" / self.APP_DIR_NAME

    @property
    def working_dir(self) -> Path:
        """Directory holding the state file; ``MTD_SYNC_HOME`` overrides it."""
        if self._working_dir is None:
            override = os.environ.get(self.HOME_ENV_VAR)
            if override:
                self._working_dir = Path(override).expanduser()
                self.logger.debug(f"Using {self.HOME_ENV_VAR} override: {self._working_dir}")
            else:
                self._working_dir = self._default_user_dir()
        return self._working_dir

    @property
    def state_path(self) -> Path:
        return self.working_dir / self.STATE_FILE

    @property
    def log_dir(self) -> Path:
        return self.working_dir / self.LOG_DIR

    def ensure_directories(self) -> None:
        self.working_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)


_path_manager: Optional[PathManager] = None


def get_path_manager() -> PathManager:
    """Process-wide path manager."""
    global _path_manager
    if _path_manager is None:
        _path_manager = PathManager()
    return _path_manager


def reset_path_manager() -> None:
    """Drop the cached manager so environment overrides are re-read."""
    global _path_manager
    _path_manager = None
