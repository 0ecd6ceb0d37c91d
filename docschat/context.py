"""Application context — runtime paths and settings for one server instance.

Every service and router receives this object instead of reading globals, so
tests can build an isolated context pointed at a temporary directory.
"""

from __future__ import annotations

import os

from docschat.config import Settings


class AppContext:
    """Holds directory paths and settings for the application."""

    def __init__(
        self,
        *,
        cwd: str,
        data_dir: str,
        config_path: str,
        settings: Settings,
    ) -> None:
        self._cwd = cwd
        self._data_dir = data_dir
        self._config_path = config_path
        self.settings = settings
        # Static paths derived from the package location
        self._app_dir = os.path.dirname(__file__)

    @property
    def data_dir(self) -> str:
        return self._data_dir

    @property
    def config_path(self) -> str:
        return self._config_path

    @property
    def database_path(self) -> str:
        return self.settings.database_path or os.path.join(self.data_dir, "docschat.db")

    # ── App-relative paths (never change) ──────────────────────────────

    @property
    def static_dir(self) -> str:
        return os.path.join(self._app_dir, "static")

    # ── Logs (stay in cwd, not in data_dir) ────────────────────────────

    @property
    def logs_dir(self) -> str:
        return os.path.join(self._cwd, "logs")

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.data_dir, self.logs_dir):
            os.makedirs(d, exist_ok=True)
