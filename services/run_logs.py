"""Log files written during a driver run."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from hpdrivers_config.constants import IMMUTABLE_CONFIG

_CONFIGURED_ATTR = "_hpdrivers_configured"
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(log_dir: Path, *, level: int = logging.INFO, also_console: bool = True) -> Path:
    """Attach the error log (WARNING and above) and an optional console handler.

    Calling this more than once per process keeps the first configuration.
    Returns the error log path.
    """
    root = logging.getLogger()
    error_log = Path(log_dir) / IMMUTABLE_CONFIG.logs.error_log
    if getattr(root, _CONFIGURED_ATTR, False):
        return error_log
    root.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt=_TIMESTAMP_FORMAT,
    )
    error_log.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(error_log, encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        root.addHandler(console)
    setattr(root, _CONFIGURED_ATTR, True)
    return error_log


class _AppendLog:
    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = Path(path)
        self._clock = clock or datetime.now

    @property
    def path(self) -> Path:
        return self._path

    def _append(self, *fields: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        stamp = self._clock().strftime(_TIMESTAMP_FORMAT)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(" ".join((stamp, *fields)) + "\n")

    def lines(self) -> list[str]:
        if not self._path.exists():
            return []
        return self._path.read_text(encoding="utf-8").splitlines()


class InstallationLog(_AppendLog):
    def record(self, package_id: str, status: str, version: str, name: str) -> None:
        self._append(package_id, status, version, name)


class DiscoveryLog(_AppendLog):
    def record(self, model: str, feature_version: str) -> None:
        self._append(model, feature_version)
