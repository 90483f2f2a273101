"""Platform detection for HP machines via WMI and the registry."""
from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass

from services.catalog import FeatureVersion, Platform
from services.runner import CommandRunner, SubprocessRunner

logger = logging.getLogger(__name__)

WINDOWS_11_FIRST_BUILD = 22000
# Releases before 20H2 only publish ReleaseId.
LEGACY_RELEASE_IDS = {
    "2004": "20H1",
    "2009": "20H2",
}

SYSTEM_INFO_SCRIPT = """
$cs = Get-CimInstance Win32_ComputerSystem
$bb = Get-CimInstance Win32_BaseBoard
$os = Get-CimInstance Win32_OperatingSystem
$cv = Get-ItemProperty 'HKLM:\\SOFTWARE\\Microsoft\\Windows NT\\CurrentVersion' -ErrorAction SilentlyContinue
$result = @{
    Manufacturer = $cs.Manufacturer
    Model = $cs.Model
    ProductCode = $bb.Product
    OSBuild = $os.BuildNumber
    DisplayVersion = $cv.DisplayVersion
    ReleaseId = $cv.ReleaseId
}
$result | ConvertTo-Json -Compress
"""


class PlatformDetectionError(RuntimeError):
    pass


@dataclass
class HPSystemInfo:
    manufacturer: str | None = None
    model: str | None = None
    platform_id: str | None = None
    os_build: int | None = None
    display_version: str | None = None
    release_id: str | None = None

    @property
    def is_hp(self) -> bool:
        return bool(self.manufacturer and re.search(r"HP|Hewlett|Packard", self.manufacturer, re.IGNORECASE))

    @property
    def os_type(self) -> int:
        if self.os_build is not None and self.os_build >= WINDOWS_11_FIRST_BUILD:
            return 11
        return 10

    @property
    def feature_version(self) -> str | None:
        for candidate in (self.display_version, LEGACY_RELEASE_IDS.get(self.release_id or "")):
            if not candidate:
                continue
            try:
                return str(FeatureVersion.parse(candidate))
            except ValueError:
                continue
        return None

    def to_platform(self) -> Platform:
        if not self.platform_id:
            raise PlatformDetectionError("Could not determine the HP platform ID (Win32_BaseBoard.Product)")
        feature_version = self.feature_version
        if not feature_version:
            raise PlatformDetectionError("Could not determine the Windows feature version (DisplayVersion)")
        return Platform(
            platform_id=self.platform_id.strip().upper(),
            os_type=self.os_type,
            feature_version=feature_version,
            model=self.model,
        )


def _parse_build(value: object) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def get_hp_system_info(*, powershell: str = "powershell", command_runner: CommandRunner | None = None) -> HPSystemInfo:
    info = HPSystemInfo()
    runner = command_runner or SubprocessRunner()
    if command_runner is None and not shutil.which(powershell):
        logger.warning("%s not found; platform detection skipped", powershell)
        return info
    try:
        result = runner.run([powershell, "-NoProfile", "-Command", SYSTEM_INFO_SCRIPT])
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("Platform detection failed: %s", exc)
        return info
    if result.returncode != 0 or not result.stdout:
        logger.warning("Platform detection returned no data: %s", (result.stderr or "").strip())
        return info
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        logger.warning("Platform detection output was not JSON: %s", exc)
        return info
    if not isinstance(data, dict):
        return info
    info.manufacturer = data.get("Manufacturer") or None
    info.model = data.get("Model") or None
    info.platform_id = data.get("ProductCode") or None
    info.os_build = _parse_build(data.get("OSBuild"))
    info.display_version = data.get("DisplayVersion") or None
    info.release_id = str(data.get("ReleaseId") or "") or None
    return info
