from __future__ import annotations

import json
import subprocess
from typing import Sequence

import pytest

from services.system_info import HPSystemInfo, PlatformDetectionError, get_hp_system_info


class FakeRunner:
    def __init__(self, payload: dict | None = None, *, stdout: str | None = None, returncode: int = 0) -> None:
        self.stdout = stdout if stdout is not None else json.dumps(payload or {})
        self.returncode = returncode
        self.commands: list[tuple[str, ...]] = []

    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        self.commands.append(tuple(command))
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, "")


def test_detects_hp_platform() -> None:
    runner = FakeRunner(
        {
            "Manufacturer": "HP",
            "Model": "HP EliteBook 840 G9 Notebook PC",
            "ProductCode": "8a78",
            "OSBuild": "19045",
            "DisplayVersion": "22H2",
            "ReleaseId": "2009",
        }
    )
    info = get_hp_system_info(command_runner=runner)
    assert info.is_hp
    platform = info.to_platform()
    assert platform.platform_id == "8A78"
    assert platform.os_type == 10
    assert platform.feature_version == "22H2"
    assert platform.display_name == "HP EliteBook 840 G9 Notebook PC"
    assert runner.commands[0][:3] == ("powershell", "-NoProfile", "-Command")


def test_windows_11_build_number() -> None:
    info = HPSystemInfo(manufacturer="Hewlett-Packard", platform_id="8B41", os_build=22631, display_version="23H2")
    assert info.os_type == 11
    assert info.is_hp


def test_release_id_used_before_display_version_existed() -> None:
    info = HPSystemInfo(platform_id="83B2", os_build=19041, release_id="2004")
    assert info.feature_version == "20H1"


def test_missing_platform_id_is_fatal() -> None:
    with pytest.raises(PlatformDetectionError):
        HPSystemInfo(display_version="22H2").to_platform()


def test_unknown_feature_version_is_fatal() -> None:
    with pytest.raises(PlatformDetectionError):
        HPSystemInfo(platform_id="8A78", release_id="1909").to_platform()


@pytest.mark.parametrize("runner", [FakeRunner(stdout="not json"), FakeRunner(stdout="", returncode=1), FakeRunner(stdout="[]")])
def test_bad_detection_output_yields_empty_info(runner: FakeRunner) -> None:
    info = get_hp_system_info(command_runner=runner)
    assert info == HPSystemInfo()
