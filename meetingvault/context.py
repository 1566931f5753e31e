"""Runtime paths shared by the services and the routers.

Sessions live under ``<data_dir>/meetings``; logs stay next to the process
in ``<cwd>/logs`` so they survive pointing ``data_dir`` somewhere else.
"""

from __future__ import annotations

import os


class AppContext:
    def __init__(
        self,
        *,
        cwd: str,
        data_dir: str,
        config_path: str,
    ) -> None:
        self._cwd = cwd
        self._data_dir = data_dir
        self._config_path = config_path

    @property
    def data_dir(self) -> str:
        return self._data_dir

    @property
    def meetings_dir(self) -> str:
        return os.path.join(self._data_dir, "meetings")

    @property
    def config_path(self) -> str:
        return self._config_path

    @property
    def logs_dir(self) -> str:
        return os.path.join(self._cwd, "logs")

    def ensure_dirs(self) -> None:
        for path in (self.data_dir, self.meetings_dir, self.logs_dir):
            os.makedirs(path, exist_ok=True)
