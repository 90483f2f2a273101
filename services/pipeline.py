"""Sequential per-softpaq processing: version check, download, install."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from services.catalog import PackageRecord
from services.run_logs import InstallationLog
from services.softpaq import (
    DownloadError,
    Downloader,
    InstallLaunchFailure,
    Installer,
    PackageContext,
    PackageState,
)
from services.versions import VersionStore, needs_update

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class PackageOutcome(str, Enum):
    INSTALLED = "Installed"
    ALREADY_INSTALLED = "AlreadyInstalled"
    DOWNLOADED = "Downloaded"
    FAILED = "Failed"


@dataclass(frozen=True)
class RunOptions:
    select_all: bool = False
    os_version: str | None = None
    show_software: bool = False
    bios: bool = False
    overwrite: bool = False
    download_only: bool = False
    offline: bool = False
    delete_installation_files: bool = False
    suspend_bitlocker: bool = False
    strict_checksum: bool = False


@dataclass
class PackageResult:
    record: PackageRecord
    outcome: PackageOutcome
    message: str
    stored_version: str = ""
    download_attempts: int = 0
    exit_code: int | None = None
    history: list[PackageState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome is not PackageOutcome.FAILED


class Pipeline:
    def __init__(
        self,
        downloader: Downloader,
        installer: Installer,
        version_store: VersionStore,
        *,
        cache_dir: Path,
        options: RunOptions | None = None,
        installation_log: InstallationLog | None = None,
    ) -> None:
        self._downloader = downloader
        self._installer = installer
        self._store = version_store
        self._cache_dir = Path(cache_dir)
        self._options = options or RunOptions()
        self._installation_log = installation_log

    def context_for(self, record: PackageRecord) -> PackageContext:
        return PackageContext(
            record=record,
            binary_path=self._cache_dir / f"{record.id}.exe",
            staging_dir=self._store.package_dir(record.id),
        )

    def run(
        self,
        records: Iterable[PackageRecord],
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> list[PackageResult]:
        record_list = list(records)
        total = len(record_list)
        results: list[PackageResult] = []
        for completed, record in enumerate(record_list, start=1):
            result = self.process(record)
            results.append(result)
            if progress_callback:
                progress_callback(completed, total, f"{result.outcome.value}: {record.name}")
        return results

    def process(self, record: PackageRecord) -> PackageResult:
        context = self.context_for(record)
        try:
            return self._process(context)
        except Exception as exc:
            logger.exception("%s: processing failed", record.id)
            if context.state is not PackageState.FAILED:
                context.advance(PackageState.FAILED)
            self._record_version(record)
            return self._finish(context, PackageOutcome.FAILED, f"{type(exc).__name__}: {exc}")

    def _process(self, context: PackageContext) -> PackageResult:
        record = context.record
        context.advance(PackageState.VERSION_CHECK)
        context.stored_version = self._store.get(record.id)
        if not needs_update(record.version, context.stored_version, overwrite=self._options.overwrite):
            context.advance(PackageState.ALREADY_INSTALLED)
            self._store.put(record.id, record.version)
            return self._finish(context, PackageOutcome.ALREADY_INSTALLED, f"{record.version} already installed")

        context.advance(PackageState.NEEDS_INSTALL)
        context.advance(PackageState.DOWNLOADING)
        try:
            report = self._downloader.fetch(record.download_url, context.binary_path, record.sha256)
        except DownloadError as exc:
            logger.error("%s: %s", record.id, exc)
            context.advance(PackageState.FAILED)
            self._record_version(record)
            return self._finish(context, PackageOutcome.FAILED, str(exc), attempts=exc.attempts)
        context.advance(PackageState.DOWNLOADED)
        if self._options.download_only:
            return self._finish(context, PackageOutcome.DOWNLOADED, f"Saved to {report.path}", attempts=report.attempts)

        context.advance(PackageState.INSTALLING)
        try:
            install = self._installer.install(context)
        except InstallLaunchFailure as exc:
            logger.error("%s: %s", record.id, exc)
            context.advance(PackageState.FAILED)
            self._record_version(record)
            return self._finish(context, PackageOutcome.FAILED, str(exc), attempts=report.attempts)
        context.advance(PackageState.INSTALLED)
        message = "Installed (reboot required)" if install.reboot_required else "Installed"
        return self._finish(
            context,
            PackageOutcome.INSTALLED,
            message,
            attempts=report.attempts,
            exit_code=install.returncode,
        )

    def _record_version(self, record: PackageRecord) -> None:
        try:
            self._store.put(record.id, record.version)
        except OSError as exc:
            logger.error("%s: could not record version %s: %s", record.id, record.version, exc)

    def _finish(
        self,
        context: PackageContext,
        outcome: PackageOutcome,
        message: str,
        *,
        attempts: int = 0,
        exit_code: int | None = None,
    ) -> PackageResult:
        record = context.record
        if self._installation_log is not None:
            try:
                self._installation_log.record(record.id, outcome.value, record.version, record.name)
            except OSError as exc:
                logger.error("Could not write installation log %s: %s", self._installation_log.path, exc)
        return PackageResult(
            record=record,
            outcome=outcome,
            message=message,
            stored_version=str(context.stored_version),
            download_attempts=attempts,
            exit_code=exit_code,
            history=list(context.history),
        )
