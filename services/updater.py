"""End-to-end driver update run: resolve, filter, select, process."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence

from hpdrivers_config.constants import IMMUTABLE_CONFIG
from hpdrivers_config.paths import get_cache_directory
from services.catalog import CatalogDocument, CatalogResolver, PackageRecord, Platform, filter_packages
from services.pipeline import PackageOutcome, PackageResult, Pipeline, ProgressCallback, RunOptions
from services.run_logs import InstallationLog
from services.softpaq import ChecksumPolicy, Downloader, Installer
from services.versions import VersionStore

logger = logging.getLogger(__name__)


class PackageSelector(Protocol):
    def select(self, packages: Sequence[PackageRecord]) -> Iterable[str]:  # pragma: no cover - protocol
        ...


class SelectAll:
    def select(self, packages: Sequence[PackageRecord]) -> Iterable[str]:
        return [package.id for package in packages]


@dataclass
class RunReport:
    platform: Platform
    catalog: CatalogDocument
    available: list[PackageRecord]
    results: list[PackageResult] = field(default_factory=list)

    def count(self, outcome: PackageOutcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)

    @property
    def failed(self) -> list[PackageResult]:
        return [result for result in self.results if result.outcome is PackageOutcome.FAILED]


class DriverUpdateService:
    def __init__(
        self,
        *,
        working_dir: Path | str | None = None,
        options: RunOptions | None = None,
        resolver: CatalogResolver | None = None,
        version_store: VersionStore | None = None,
        downloader: Downloader | None = None,
        installer: Installer | None = None,
        selector: PackageSelector | None = None,
        installation_log: InstallationLog | None = None,
    ) -> None:
        self._options = options or RunOptions()
        self._cache_dir = get_cache_directory(working_dir)
        self._store = version_store or VersionStore()
        self._resolver = resolver or CatalogResolver(self._cache_dir)
        policy = ChecksumPolicy.STRICT if self._options.strict_checksum else ChecksumPolicy.ACCEPT_EXISTING
        self._downloader = downloader or Downloader(checksum_policy=policy)
        self._installer = installer or Installer(self._store)
        self._selector = selector or SelectAll()
        self._installation_log = installation_log or InstallationLog(
            self._cache_dir / IMMUTABLE_CONFIG.logs.installation_log
        )

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def version_store(self) -> VersionStore:
        return self._store

    def select(self, packages: Sequence[PackageRecord]) -> list[PackageRecord]:
        if self._options.select_all or not packages:
            return list(packages)
        wanted = {package_id.lower() for package_id in self._selector.select(packages)}
        return [package for package in packages if package.id.lower() in wanted]

    def run(
        self,
        platform: Platform,
        *,
        progress_callback: ProgressCallback | None = None,
        before_install: Callable[[Sequence[PackageRecord]], None] | None = None,
    ) -> RunReport:
        """Resolve, filter and select, then process the chosen packages.

        ``before_install`` runs once, only when packages were chosen and will
        be installed (not for download-only runs).
        """
        catalog = self._resolver.resolve(platform, self._options.os_version, offline=self._options.offline)
        logger.info(
            "Catalog %s for %s lists %d package(s)", catalog.feature_version, platform.display_name, len(catalog)
        )
        available = filter_packages(catalog, show_software=self._options.show_software, bios=self._options.bios)
        chosen = self.select(available)
        report = RunReport(platform=platform, catalog=catalog, available=available)
        if not chosen:
            logger.info("No packages selected")
            return report
        if before_install is not None and not self._options.download_only:
            before_install(chosen)
        pipeline = Pipeline(
            self._downloader,
            self._installer,
            self._store,
            cache_dir=self._cache_dir,
            options=self._options,
            installation_log=self._installation_log,
        )
        report.results = pipeline.run(chosen, progress_callback=progress_callback)
        return report
