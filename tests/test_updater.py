from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Iterable, Sequence

import pytest

from services.catalog import CatalogDocument, Category, NoDriversAvailable, PackageRecord, Platform
from services.pipeline import PackageOutcome, RunOptions
from services.softpaq import Downloader, Installer
from services.updater import DriverUpdateService
from services.versions import VersionStore

PLATFORM = Platform(platform_id="8A78", os_type=10, feature_version="22H2", model="HP EliteBook 840 G9")


def _record(package_id: str, category: Category) -> PackageRecord:
    return PackageRecord(
        id=package_id,
        name=f"{category.value} {package_id}",
        category=category,
        version="1.0",
        download_url=f"https://ftp.hp.com/pub/softpaq/{package_id}.exe",
        silent_install=f"{package_id}.exe",
    )


RECORDS = (
    _record("sp1", Category.DRIVER),
    _record("sp2", Category.SOFTWARE),
    _record("sp3", Category.BIOS),
    _record("sp4", Category.DRIVER),
)


class FakeResolver:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[Platform, str | None, bool]] = []
        self.error = error

    def resolve(self, platform: Platform, explicit_version: str | None = None, *, offline: bool = False) -> CatalogDocument:
        self.calls.append((platform, explicit_version, offline))
        if self.error is not None:
            raise self.error
        return CatalogDocument(records=RECORDS, feature_version="22H2", requested_version="22H2", attempted_versions=("22H2",))


class FakeSelector:
    def __init__(self, choice: Iterable[str]) -> None:
        self.choice = list(choice)
        self.offered: list[list[str]] = []

    def select(self, packages: Sequence[PackageRecord]) -> Iterable[str]:
        self.offered.append([p.id for p in packages])
        return self.choice


class FakeRunner:
    def __init__(self) -> None:
        self.commands: list[tuple[str, ...]] = []

    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        self.commands.append(tuple(command))
        return subprocess.CompletedProcess(command, 0, "", "")


def _service(tmp_path: Path, options: RunOptions, *, selector=None, resolver=None) -> tuple[DriverUpdateService, FakeRunner]:
    store = VersionStore(tmp_path / "SWSetup")
    runner = FakeRunner()
    service = DriverUpdateService(
        working_dir=tmp_path,
        options=options,
        resolver=resolver or FakeResolver(),
        version_store=store,
        downloader=Downloader(transfer=lambda url, dest: dest.write_bytes(b"MZ"), sleep=lambda _: None),
        installer=Installer(store, command_runner=runner),
        selector=selector,
    )
    return service, runner


def test_select_all_installs_every_driver(tmp_path: Path) -> None:
    selector = FakeSelector([])
    service, runner = _service(tmp_path, RunOptions(select_all=True), selector=selector)
    report = service.run(PLATFORM)

    assert [r.record.id for r in report.results] == ["sp1", "sp4"]
    assert report.count(PackageOutcome.INSTALLED) == 2
    assert selector.offered == []
    assert len(runner.commands) == 2
    assert service.cache_dir == tmp_path / "HPDrivers"
    assert (tmp_path / "HPDrivers" / "HPDrivers.log").exists()


def test_selector_picks_subset(tmp_path: Path) -> None:
    selector = FakeSelector(["SP4"])
    service, _ = _service(tmp_path, RunOptions(show_software=True, bios=True), selector=selector)
    report = service.run(PLATFORM)

    assert selector.offered == [["sp1", "sp2", "sp3", "sp4"]]
    assert [r.record.id for r in report.results] == ["sp4"]
    assert [p.id for p in report.available] == ["sp1", "sp2", "sp3", "sp4"]


def test_cancelled_selection_runs_nothing(tmp_path: Path) -> None:
    service, runner = _service(tmp_path, RunOptions(), selector=FakeSelector([]))
    report = service.run(PLATFORM)
    assert report.results == []
    assert runner.commands == []
    assert not report.failed


def test_options_reach_resolver(tmp_path: Path) -> None:
    resolver = FakeResolver()
    service, _ = _service(tmp_path, RunOptions(select_all=True, os_version="21H2", offline=True), resolver=resolver)
    service.run(PLATFORM)
    assert resolver.calls == [(PLATFORM, "21H2", True)]


def test_catalog_errors_propagate(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, RunOptions(select_all=True), resolver=FakeResolver(NoDriversAvailable("nothing")))
    with pytest.raises(NoDriversAvailable):
        service.run(PLATFORM)


def test_before_install_runs_once_chosen_packages_exist(tmp_path: Path) -> None:
    seen: list[list[str]] = []
    service, runner = _service(tmp_path, RunOptions(select_all=True))
    service.run(PLATFORM, before_install=lambda packages: seen.append([p.id for p in packages]))
    assert seen == [["sp1", "sp4"]]
    assert len(runner.commands) == 2


def test_before_install_skipped_without_selection(tmp_path: Path) -> None:
    seen: list[list[str]] = []
    service, _ = _service(tmp_path, RunOptions(), selector=FakeSelector([]))
    service.run(PLATFORM, before_install=lambda packages: seen.append([p.id for p in packages]))
    assert seen == []


def test_before_install_skipped_for_download_only(tmp_path: Path) -> None:
    seen: list[list[str]] = []
    service, _ = _service(tmp_path, RunOptions(select_all=True, download_only=True))
    service.run(PLATFORM, before_install=lambda packages: seen.append([p.id for p in packages]))
    assert seen == []


def test_before_install_not_reached_when_catalog_missing(tmp_path: Path) -> None:
    seen: list[list[str]] = []
    service, _ = _service(tmp_path, RunOptions(select_all=True), resolver=FakeResolver(NoDriversAvailable("nothing")))
    with pytest.raises(NoDriversAvailable):
        service.run(PLATFORM, before_install=lambda packages: seen.append([p.id for p in packages]))
    assert seen == []
