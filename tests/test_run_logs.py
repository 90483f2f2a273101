from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pytest

from services import run_logs
from services.run_logs import DiscoveryLog, InstallationLog, configure_logging


def _is_error_log(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.FileHandler) and handler.baseFilename.endswith("HPDrivers-errors.log")


@pytest.fixture
def added_handlers():
    """Undo the error-log handler configure_logging attaches to the root logger."""
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    added: list[logging.Handler] = []

    def collect() -> list[logging.Handler]:
        added.extend(h for h in root.handlers if _is_error_log(h) and h not in before and h not in added)
        return added

    yield collect
    collect()
    for handler in added:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)
    if hasattr(root, run_logs._CONFIGURED_ATTR):
        delattr(root, run_logs._CONFIGURED_ATTR)


def _clock() -> datetime:
    return datetime(2024, 3, 1, 9, 30, 0)


def test_installation_log_appends_lines(tmp_path: Path) -> None:
    log = InstallationLog(tmp_path / "HPDrivers" / "HPDrivers.log", clock=_clock)
    assert log.lines() == []
    log.record("sp1", "Installed", "1.0", "Audio Driver")
    log.record("sp2", "Failed", "2.0", "Video Driver")
    assert log.lines() == [
        "2024-03-01 09:30:00 sp1 Installed 1.0 Audio Driver",
        "2024-03-01 09:30:00 sp2 Failed 2.0 Video Driver",
    ]


def test_discovery_log_records_model_and_release(tmp_path: Path) -> None:
    log = DiscoveryLog(tmp_path / "discovery.log", clock=_clock)
    log.record("HP EliteBook 840 G9", "22H2")
    assert log.lines() == ["2024-03-01 09:30:00 HP EliteBook 840 G9 22H2"]


def test_error_log_receives_warnings_only(tmp_path: Path, added_handlers) -> None:
    error_log = configure_logging(tmp_path, level=logging.DEBUG, also_console=False)
    assert error_log == tmp_path / "HPDrivers-errors.log"
    first = list(added_handlers())
    configure_logging(tmp_path / "elsewhere", also_console=False)
    assert added_handlers() == first
    assert not (tmp_path / "elsewhere").exists()

    logger = logging.getLogger("services.test")
    logger.info("catalog cached")
    logger.warning("download of sp1 failed")
    for handler in first:
        handler.flush()

    text = error_log.read_text(encoding="utf-8")
    assert "download of sp1 failed" in text
    assert "catalog cached" not in text
