"""Pre-flight checks and housekeeping around a driver run."""
from __future__ import annotations

import ctypes
import logging
import shutil
import subprocess
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from hpdrivers_config.constants import IMMUTABLE_CONFIG
from services.runner import CommandRunner, SubprocessRunner, format_command_detail
from services.system_info import HPSystemInfo
from services.versions import VersionStore

logger = logging.getLogger(__name__)

MIN_BATTERY_PERCENT = 50
BATTERY_SCRIPT = "(Get-CimInstance Win32_Battery | Measure-Object -Property EstimatedChargeRemaining -Average).Average"


class NetworkUnavailable(RuntimeError):
    pass


@dataclass
class PreflightReport:
    online: bool
    battery_percent: int | None = None
    warnings: list[str] = field(default_factory=list)


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except AttributeError:
        return False


def can_reach_catalog_host(host: str | None = None, *, timeout: int = 10) -> bool:
    url = f"https://{host or IMMUTABLE_CONFIG.catalog.host}"
    request = urllib.request.Request(url, method="HEAD", headers={"User-Agent": IMMUTABLE_CONFIG.download.user_agent})
    try:
        with urllib.request.urlopen(request, timeout=timeout):
            return True
    except urllib.error.HTTPError:
        # Any HTTP status means the host answered.
        return True
    except (urllib.error.URLError, OSError):
        return False


def get_battery_percent(*, powershell: str = "powershell", command_runner: CommandRunner | None = None) -> int | None:
    runner = command_runner or SubprocessRunner()
    try:
        result = runner.run([powershell, "-NoProfile", "-Command", BATTERY_SCRIPT])
    except (OSError, subprocess.SubprocessError):
        return None
    text = (result.stdout or "").strip()
    if result.returncode != 0 or not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def run_preflight(
    info: HPSystemInfo,
    *,
    offline: bool = False,
    connectivity_check: Callable[[], bool] | None = None,
    battery_probe: Callable[[], int | None] | None = None,
    admin_check: Callable[[], bool] | None = None,
) -> PreflightReport:
    """Collect environment warnings; only a missing network is fatal, and only online."""
    report = PreflightReport(online=False)
    if not info.is_hp:
        report.warnings.append(f"Manufacturer '{info.manufacturer or 'unknown'}' is not HP; catalog lookup may fail.")
    if not (admin_check or is_admin)():
        report.warnings.append("Not running as administrator; installers may fail to apply.")
    report.battery_percent = (battery_probe or get_battery_percent)()
    if report.battery_percent is not None and report.battery_percent < MIN_BATTERY_PERCENT:
        report.warnings.append(
            f"Battery at {report.battery_percent}%; connect AC power before installing firmware or BIOS updates."
        )
    if offline:
        return report
    report.online = (connectivity_check or can_reach_catalog_host)()
    if not report.online:
        raise NetworkUnavailable(f"Cannot reach {IMMUTABLE_CONFIG.catalog.host}; check the network or use offline mode")
    return report


def suspend_bitlocker(
    *,
    mount_point: str = "C:",
    reboot_count: int = 1,
    powershell: str = "powershell",
    command_runner: CommandRunner | None = None,
) -> bool:
    runner = command_runner or SubprocessRunner()
    script = f"Suspend-BitLocker -MountPoint '{mount_point}' -RebootCount {reboot_count} -ErrorAction Stop"
    result = runner.run([powershell, "-NoProfile", "-Command", script])
    if result.returncode != 0:
        logger.warning("BitLocker suspension failed: %s", format_command_detail(result))
        return False
    logger.info("BitLocker suspended on %s for %d reboot(s)", mount_point, reboot_count)
    return True


def cleanup_installation_files(cache_dir: Path, version_store: VersionStore, package_ids: Iterable[str]) -> list[Path]:
    """Remove downloaded binaries and extracted files, keeping each version.txt."""
    removed: list[Path] = []
    keep = IMMUTABLE_CONFIG.install.version_file.lower()
    for package_id in package_ids:
        binary = Path(cache_dir) / f"{package_id}.exe"
        if binary.exists():
            binary.unlink()
            removed.append(binary)
        staging = version_store.package_dir(package_id)
        if not staging.is_dir():
            continue
        for entry in staging.iterdir():
            if entry.name.lower() == keep:
                continue
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed.append(entry)
    return removed
