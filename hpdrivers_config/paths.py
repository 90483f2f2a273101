"""Filesystem locations used by a run."""
from __future__ import annotations

import sys
from pathlib import Path

from hpdrivers_config.constants import IMMUTABLE_CONFIG


def get_application_directory() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path.cwd()


def get_cache_directory(working_dir: Path | str | None = None) -> Path:
    base = Path(working_dir) if working_dir is not None else get_application_directory()
    return base / IMMUTABLE_CONFIG.cache_folder


def get_log_directory(working_dir: Path | str | None = None) -> Path:
    return get_cache_directory(working_dir)
