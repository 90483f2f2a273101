"""Fixed settings for catalog lookup, softpaq downloads and installs."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class CatalogSetting:
    host: str
    ref_path: str
    floor_year: int


@dataclass(frozen=True)
class DownloadSetting:
    max_attempts: int
    retry_delay: float
    timeout: int
    user_agent: str


@dataclass(frozen=True)
class InstallSetting:
    swsetup_root: str
    version_file: str
    extract_switches: Tuple[str, ...]
    direct_switches: Tuple[str, ...]


@dataclass(frozen=True)
class LogSetting:
    installation_log: str
    error_log: str
    discovery_log: str


@dataclass(frozen=True)
class ImmutableConfig:
    cache_folder: str
    catalog: CatalogSetting
    download: DownloadSetting
    install: InstallSetting
    logs: LogSetting


CATALOG_SETTING = CatalogSetting(
    host="hpia.hpcloud.hp.com",
    ref_path="ref/{platform}/{platform}_64_{os_type}.0.{feature_version}.cab",
    floor_year=2020,
)

DOWNLOAD_SETTING = DownloadSetting(
    max_attempts=5,
    retry_delay=2.0,
    timeout=60,
    user_agent="Mozilla/5.0",
)

INSTALL_SETTING = InstallSetting(
    swsetup_root=r"C:\SWSetup",
    version_file="version.txt",
    extract_switches=("/s", "/e", "/f"),
    direct_switches=("/s",),
)

LOG_SETTING = LogSetting(
    installation_log="HPDrivers.log",
    error_log="HPDrivers-errors.log",
    discovery_log="HPDrivers-discovery.log",
)

IMMUTABLE_CONFIG = ImmutableConfig(
    cache_folder="HPDrivers",
    catalog=CATALOG_SETTING,
    download=DOWNLOAD_SETTING,
    install=INSTALL_SETTING,
    logs=LOG_SETTING,
)
