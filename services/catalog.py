"""HP reference catalog lookup, parsing and filtering."""
from __future__ import annotations

import http.client
import logging
import os
import re
import shutil
import tempfile
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Protocol

from hpdrivers_config.constants import IMMUTABLE_CONFIG
from services.run_logs import DiscoveryLog
from services.runner import CommandRunner, SubprocessRunner, format_command_detail

logger = logging.getLogger(__name__)

FEATURE_VERSION_PATTERN = re.compile(r"^\s*(\d{2})H([12])\s*$", re.IGNORECASE)


class CatalogError(RuntimeError):
    pass


class CatalogNotFound(CatalogError):
    pass


class NoDriversAvailable(CatalogError):
    pass


class MalformedCatalog(CatalogError):
    pass


class Category(str, Enum):
    DRIVER = "Driver"
    DIAGNOSTIC = "Diagnostic"
    UTILITY = "Utility"
    DOCK = "Dock"
    SOFTWARE = "Software"
    FIRMWARE = "Firmware"
    MANAGEABILITY = "Manageability"
    BIOS = "BIOS"
    OTHER = "Other"

    @classmethod
    def classify(cls, text: str | None) -> "Category":
        """Pick the known category named earliest in ``text``.

        ``Driver - Firmware and Chipset`` is a driver, ``Software - Diagnostics``
        is software.
        """
        lowered = (text or "").lower()
        best: Category = cls.OTHER
        best_index = len(lowered) + 1
        for member in cls:
            if member is cls.OTHER:
                continue
            index = lowered.find(member.value.lower())
            if index != -1 and index < best_index:
                best = member
                best_index = index
        return best


SOFTWARE_CATEGORIES = frozenset(
    {
        Category.DIAGNOSTIC,
        Category.UTILITY,
        Category.DOCK,
        Category.SOFTWARE,
        Category.FIRMWARE,
        Category.MANAGEABILITY,
    }
)


@dataclass(frozen=True, order=True)
class FeatureVersion:
    """Windows feature release tag such as ``22H2``."""

    year: int
    half: int

    @classmethod
    def parse(cls, value: str) -> "FeatureVersion":
        match = FEATURE_VERSION_PATTERN.match(value or "")
        if not match:
            raise ValueError(f"Invalid feature version: {value!r} (expected YYH1 or YYH2)")
        return cls(int(match.group(1)), int(match.group(2)))

    def previous(self) -> "FeatureVersion":
        if self.half == 2:
            return FeatureVersion(self.year, 1)
        return FeatureVersion(self.year - 1, 2)

    @property
    def full_year(self) -> int:
        return 2000 + self.year

    def __str__(self) -> str:
        return f"{self.year:02d}H{self.half}"


def fallback_sequence(start: FeatureVersion, floor_year: int | None = None) -> Iterator[FeatureVersion]:
    floor = floor_year if floor_year is not None else IMMUTABLE_CONFIG.catalog.floor_year
    current = start
    while current.full_year >= floor:
        yield current
        current = current.previous()


@dataclass(frozen=True)
class Platform:
    platform_id: str
    os_type: int
    feature_version: str
    model: str | None = None

    def __post_init__(self) -> None:
        if self.os_type not in (10, 11):
            raise ValueError(f"Unsupported OS type: {self.os_type}")

    @property
    def display_name(self) -> str:
        return self.model or self.platform_id


@dataclass(frozen=True)
class PackageRecord:
    id: str
    name: str
    category: Category
    version: str
    download_url: str
    silent_install: str
    sha256: str = ""
    size: int = 0
    release_date: str = ""
    category_label: str = ""

    def summary(self) -> dict[str, object]:
        return {
            "Id": self.id,
            "Name": self.name,
            "Category": self.category_label or self.category.value,
            "Version": self.version,
            "Size": self.size,
            "DateReleased": self.release_date,
        }


@dataclass(frozen=True)
class CatalogDocument:
    records: tuple[PackageRecord, ...]
    feature_version: str
    requested_version: str
    attempted_versions: tuple[str, ...] = ()
    manifest_path: Path | None = None

    @property
    def fallback_steps(self) -> int:
        return max(len(self.attempted_versions) - 1, 0)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


_REQUIRED_FIELDS = (("Id", "id"), ("Version", "version"), ("Url", "url"), ("SilentInstall", "silent-install command"))


def _text(element: ET.Element, tag: str) -> str:
    return (element.findtext(tag) or "").strip()


def _normalize_url(url: str) -> str:
    if re.match(r"^[a-z][a-z0-9+.-]*://", url, re.IGNORECASE):
        return url
    return "https://" + url.lstrip("/")


def _parse_size(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_catalog(raw: bytes | str) -> list[PackageRecord]:
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise MalformedCatalog(f"Catalog is not valid XML: {exc}") from exc
    records: list[PackageRecord] = []
    seen: set[str] = set()
    for index, item in enumerate(root.iter("UpdateInfo"), start=1):
        for tag, label in _REQUIRED_FIELDS:
            if not _text(item, tag):
                raise MalformedCatalog(f"Catalog entry #{index} is missing its {label}")
        package_id = _text(item, "Id")
        if package_id.lower() in seen:
            raise MalformedCatalog(f"Catalog lists {package_id} more than once")
        seen.add(package_id.lower())
        category_label = _text(item, "Category")
        records.append(
            PackageRecord(
                id=package_id,
                name=_text(item, "Name") or package_id,
                category=Category.classify(category_label),
                version=_text(item, "Version"),
                download_url=_normalize_url(_text(item, "Url")),
                silent_install=_text(item, "SilentInstall"),
                sha256=_text(item, "Sha256").lower(),
                size=_parse_size(_text(item, "Size")),
                release_date=_text(item, "DateReleased"),
                category_label=category_label,
            )
        )
    return records


def filter_packages(
    records: Iterable[PackageRecord],
    *,
    show_software: bool = False,
    bios: bool = False,
) -> list[PackageRecord]:
    wanted = {Category.DRIVER}
    if show_software:
        wanted |= SOFTWARE_CATEGORIES
    if bios:
        wanted.add(Category.BIOS)
    return [record for record in records if record.category in wanted]


class CatalogFetcher(Protocol):
    def fetch(self, url: str, destination: Path) -> None:  # pragma: no cover - protocol
        ...


class CabExpander(Protocol):
    def expand(self, archive: Path, destination: Path) -> None:  # pragma: no cover - protocol
        ...


class HttpFetcher:
    def __init__(self, *, timeout: int | None = None, user_agent: str | None = None) -> None:
        self._timeout = timeout or IMMUTABLE_CONFIG.download.timeout
        self._user_agent = user_agent or IMMUTABLE_CONFIG.download.user_agent

    def fetch(self, url: str, destination: Path) -> None:
        request = urllib.request.Request(url, headers={"User-Agent": self._user_agent})
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_suffix(destination.suffix + ".download")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response, temp_path.open("wb") as handle:
                shutil.copyfileobj(response, handle)
            temp_path.replace(destination)
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            temp_path.unlink(missing_ok=True)
            raise RuntimeError(f"Download failed for {url}: {exc}") from exc


class CabinetExpander:
    """Expands a cabinet with expand.exe, or cabextract off Windows."""

    def __init__(self, *, command_runner: CommandRunner | None = None) -> None:
        self._runner = command_runner or SubprocessRunner()

    def expand(self, archive: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if shutil.which("expand"):
            result = self._runner.run(["expand", str(archive), str(destination)])
            if result.returncode != 0 or not destination.exists():
                raise RuntimeError(f"expand failed for {archive.name}: {format_command_detail(result)}")
            return
        if shutil.which("cabextract"):
            with tempfile.TemporaryDirectory(dir=destination.parent) as staging:
                result = self._runner.run(["cabextract", "-q", "-d", staging, str(archive)])
                extracted = next(Path(staging).rglob("*.xml"), None)
                if result.returncode != 0 or extracted is None:
                    raise RuntimeError(f"cabextract failed for {archive.name}: {format_command_detail(result)}")
                shutil.move(str(extracted), destination)
            return
        raise RuntimeError("No cabinet expander found (expand.exe or cabextract)")


class CatalogResolver:
    def __init__(
        self,
        cache_dir: Path,
        *,
        fetcher: CatalogFetcher | None = None,
        expander: CabExpander | None = None,
        discovery_log: DiscoveryLog | None = None,
        host: str | None = None,
        floor_year: int | None = None,
    ) -> None:
        self._cache_dir = Path(cache_dir)
        self._fetcher = fetcher or HttpFetcher()
        self._expander = expander or CabinetExpander()
        self._discovery_log = discovery_log or DiscoveryLog(self._cache_dir / IMMUTABLE_CONFIG.logs.discovery_log)
        self._host = host or os.getenv("HPDRIVERS_CATALOG_HOST", IMMUTABLE_CONFIG.catalog.host)
        self._floor_year = floor_year if floor_year is not None else IMMUTABLE_CONFIG.catalog.floor_year

    @staticmethod
    def manifest_stem(platform: Platform, feature_version: FeatureVersion | str) -> str:
        return f"{platform.platform_id}_64_{platform.os_type}.0.{feature_version}".lower()

    def catalog_url(self, platform: Platform, feature_version: FeatureVersion | str) -> str:
        path = IMMUTABLE_CONFIG.catalog.ref_path.format(
            platform=platform.platform_id,
            os_type=platform.os_type,
            feature_version=feature_version,
        )
        return f"https://{self._host}/{path}".lower()

    def cached_manifest(self, platform: Platform, feature_version: FeatureVersion | str) -> Path:
        return self._cache_dir / f"{self.manifest_stem(platform, feature_version)}.xml"

    def resolve(
        self,
        platform: Platform,
        explicit_version: str | None = None,
        *,
        offline: bool = False,
    ) -> CatalogDocument:
        requested = FeatureVersion.parse(explicit_version or platform.feature_version)
        if offline:
            return self._resolve_offline(platform, requested)
        if explicit_version:
            manifest = self._try_fetch(platform, requested)
            if manifest is None:
                raise CatalogNotFound(
                    f"No catalog for platform {platform.platform_id} on Windows {platform.os_type} {requested}"
                )
            return self._load(platform, manifest, requested, requested, (str(requested),))
        attempted: list[str] = []
        for candidate in fallback_sequence(requested, self._floor_year):
            attempted.append(str(candidate))
            manifest = self._try_fetch(platform, candidate)
            if manifest is not None:
                if candidate != requested:
                    logger.warning("Catalog for %s not found; using %s instead", requested, candidate)
                return self._load(platform, manifest, candidate, requested, tuple(attempted))
        raise NoDriversAvailable(
            f"No drivers available for platform {platform.platform_id} on Windows {platform.os_type} "
            f"(searched {', '.join(attempted) or 'nothing'})"
        )

    def _resolve_offline(self, platform: Platform, requested: FeatureVersion) -> CatalogDocument:
        manifest = self.cached_manifest(platform, requested)
        if not manifest.exists():
            raise CatalogNotFound(f"Offline mode: cached catalog {manifest} not found")
        return self._load(platform, manifest, requested, requested, (str(requested),))

    def _try_fetch(self, platform: Platform, feature_version: FeatureVersion) -> Path | None:
        manifest = self.cached_manifest(platform, feature_version)
        if manifest.exists():
            logger.info("Using cached catalog %s", manifest.name)
            return manifest
        archive = manifest.with_suffix(".cab")
        url = self.catalog_url(platform, feature_version)
        try:
            logger.info("Fetching catalog %s", url)
            self._fetcher.fetch(url, archive)
            self._expander.expand(archive, manifest)
        except (RuntimeError, http.client.HTTPException, OSError) as exc:
            logger.info("Catalog %s unavailable: %s", feature_version, exc)
            manifest.unlink(missing_ok=True)
            return None
        return manifest

    def _load(
        self,
        platform: Platform,
        manifest: Path,
        effective: FeatureVersion,
        requested: FeatureVersion,
        attempted: tuple[str, ...],
    ) -> CatalogDocument:
        records = parse_catalog(manifest.read_bytes())
        self._discovery_log.record(platform.display_name, str(effective))
        return CatalogDocument(
            records=tuple(records),
            feature_version=str(effective),
            requested_version=str(requested),
            attempted_versions=attempted,
            manifest_path=manifest,
        )
