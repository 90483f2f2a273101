from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence

import pytest

from services.environment import (
    NetworkUnavailable,
    cleanup_installation_files,
    get_battery_percent,
    run_preflight,
    suspend_bitlocker,
)
from services.system_info import HPSystemInfo
from services.versions import VersionStore


class FakeRunner:
    def __init__(self, stdout: str = "", returncode: int = 0) -> None:
        self.commands: list[tuple[str, ...]] = []
        self.stdout = stdout
        self.returncode = returncode

    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        self.commands.append(tuple(command))
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, "")


HP_INFO = HPSystemInfo(manufacturer="HP", model="HP EliteBook 840 G9", platform_id="8A78", os_build=22631, display_version="23H2")


def test_preflight_on_healthy_machine() -> None:
    report = run_preflight(HP_INFO, connectivity_check=lambda: True, battery_probe=lambda: 90, admin_check=lambda: True)
    assert report.online
    assert report.battery_percent == 90
    assert report.warnings == []


def test_preflight_collects_warnings() -> None:
    info = HPSystemInfo(manufacturer="Dell Inc.", platform_id="0A1B")
    report = run_preflight(info, connectivity_check=lambda: True, battery_probe=lambda: 20, admin_check=lambda: False)
    assert len(report.warnings) == 3
    assert "not HP" in report.warnings[0]
    assert "administrator" in report.warnings[1]
    assert "20%" in report.warnings[2]


def test_preflight_requires_network_when_online() -> None:
    with pytest.raises(NetworkUnavailable):
        run_preflight(HP_INFO, connectivity_check=lambda: False, battery_probe=lambda: None, admin_check=lambda: True)


def test_preflight_offline_skips_network_check() -> None:
    def fail() -> bool:
        raise AssertionError("network checked in offline mode")

    report = run_preflight(HP_INFO, offline=True, connectivity_check=fail, battery_probe=lambda: None, admin_check=lambda: True)
    assert not report.online


@pytest.mark.parametrize(("stdout", "returncode", "expected"), [("87\r\n", 0, 87), ("93.5", 0, 93), ("", 0, None), ("55", 1, None), ("n/a", 0, None)])
def test_battery_percent_parsing(stdout: str, returncode: int, expected: int | None) -> None:
    assert get_battery_percent(command_runner=FakeRunner(stdout, returncode)) == expected


def test_suspend_bitlocker_runs_powershell() -> None:
    runner = FakeRunner()
    assert suspend_bitlocker(command_runner=runner)
    command = runner.commands[0]
    assert command[:3] == ("powershell", "-NoProfile", "-Command")
    assert "Suspend-BitLocker -MountPoint 'C:' -RebootCount 1" in command[3]


def test_suspend_bitlocker_reports_failure() -> None:
    assert not suspend_bitlocker(command_runner=FakeRunner(returncode=1))


def test_cleanup_keeps_version_files(tmp_path: Path) -> None:
    cache_dir = tmp_path / "HPDrivers"
    cache_dir.mkdir()
    store = VersionStore(tmp_path / "SWSetup")
    store.put("sp1", "1.0")
    (cache_dir / "sp1.exe").write_bytes(b"MZ")
    (store.package_dir("sp1") / "setup.exe").write_text("setup")
    (store.package_dir("sp1") / "src").mkdir()
    (store.package_dir("sp1") / "src" / "driver.inf").write_text("inf")

    removed = cleanup_installation_files(cache_dir, store, ["sp1", "sp2"])

    assert cache_dir / "sp1.exe" in removed
    assert not (cache_dir / "sp1.exe").exists()
    assert [p.name for p in store.package_dir("sp1").iterdir()] == ["version.txt"]
    assert store.get("sp1").parts == (1, 0)
