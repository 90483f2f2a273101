"""Softpaq download and silent installation."""
from __future__ import annotations

import hashlib
import http.client
import logging
import re
import shlex
import shutil
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PureWindowsPath
from typing import Callable, Protocol, Sequence

from hpdrivers_config.constants import IMMUTABLE_CONFIG
from services.catalog import PackageRecord
from services.runner import CommandRunner, SubprocessRunner, format_command_detail
from services.versions import LOWEST_VERSION, Version, VersionStore

logger = logging.getLogger(__name__)

REBOOT_REQUIRED_EXIT = 3010
_QUOTED_COMMAND = re.compile(r'^\s*"([^"]*)"\s*(.*)$', re.DOTALL)


class DownloadError(RuntimeError):
    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class DownloadExhausted(DownloadError):
    pass


class ChecksumMismatch(DownloadError):
    pass


class InstallLaunchFailure(RuntimeError):
    pass


class AttemptResult(Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient-failure"


class ChecksumPolicy(str, Enum):
    # Observed behaviour: once the file exists it is kept, a mismatch is only logged.
    ACCEPT_EXISTING = "accept-existing"
    STRICT = "strict"


class PackageState(str, Enum):
    PENDING = "Pending"
    VERSION_CHECK = "VersionCheck"
    ALREADY_INSTALLED = "AlreadyInstalled"
    NEEDS_INSTALL = "NeedsInstall"
    DOWNLOADING = "Downloading"
    DOWNLOADED = "Downloaded"
    INSTALLING = "Installing"
    INSTALLED = "Installed"
    FAILED = "Failed"


@dataclass
class PackageContext:
    """Everything known about one softpaq while it moves through a run."""

    record: PackageRecord
    binary_path: Path
    staging_dir: Path
    stored_version: Version = LOWEST_VERSION
    state: PackageState = PackageState.PENDING
    history: list[PackageState] = field(default_factory=lambda: [PackageState.PENDING])

    def advance(self, state: PackageState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def package_id(self) -> str:
        return self.record.id


@dataclass
class DownloadReport:
    path: Path
    attempts: int
    checksum_verified: bool | None


@dataclass
class InstallReport:
    command: Sequence[str]
    returncode: int

    @property
    def reboot_required(self) -> bool:
        return self.returncode == REBOOT_REQUIRED_EXIT


class Transfer(Protocol):
    def __call__(self, url: str, destination: Path) -> None:  # pragma: no cover - protocol
        ...


def http_transfer(url: str, destination: Path) -> None:
    request = urllib.request.Request(url, headers={"User-Agent": IMMUTABLE_CONFIG.download.user_agent})
    with urllib.request.urlopen(request, timeout=IMMUTABLE_CONFIG.download.timeout) as response, destination.open("wb") as handle:
        shutil.copyfileobj(response, handle)


def sha256_of(path: Path, *, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class Downloader:
    def __init__(
        self,
        *,
        transfer: Transfer | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        checksum_policy: ChecksumPolicy = ChecksumPolicy.ACCEPT_EXISTING,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transfer = transfer or http_transfer
        self._max_attempts = max_attempts or IMMUTABLE_CONFIG.download.max_attempts
        self._retry_delay = IMMUTABLE_CONFIG.download.retry_delay if retry_delay is None else retry_delay
        self._checksum_policy = checksum_policy
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def fetch(self, url: str, destination: Path, expected_sha256: str | None) -> DownloadReport:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        attempts = 0
        succeeded = destination.exists()
        while not succeeded and attempts < self._max_attempts:
            if attempts:
                self._sleep(self._retry_delay)
            attempts += 1
            result = self._attempt(url, destination)
            logger.debug("Download attempt %d/%d for %s: %s", attempts, self._max_attempts, destination.name, result.value)
            succeeded = result is AttemptResult.SUCCESS
        if not succeeded:
            raise DownloadExhausted(f"Could not download {url} after {attempts} attempt(s)", attempts=attempts)
        return DownloadReport(destination, attempts, self._verify(destination, expected_sha256, attempts))

    def _attempt(self, url: str, destination: Path) -> AttemptResult:
        partial = destination.with_suffix(destination.suffix + ".download")
        partial.unlink(missing_ok=True)
        try:
            self._transfer(url, partial)
            partial.replace(destination)
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
            logger.warning("Download of %s failed: %s", url, exc)
            partial.unlink(missing_ok=True)
            return AttemptResult.TRANSIENT_FAILURE
        if not destination.exists():
            return AttemptResult.TRANSIENT_FAILURE
        return AttemptResult.SUCCESS

    def _verify(self, path: Path, expected_sha256: str | None, attempts: int) -> bool | None:
        if not expected_sha256:
            logger.warning("No SHA256 published for %s; skipping verification", path.name)
            return None
        actual = sha256_of(path)
        if actual.lower() == expected_sha256.strip().lower():
            return True
        message = f"Checksum mismatch for {path.name}: expected {expected_sha256}, got {actual}"
        if self._checksum_policy is ChecksumPolicy.STRICT:
            path.unlink(missing_ok=True)
            raise ChecksumMismatch(message, attempts=attempts)
        logger.warning("%s; keeping existing file", message)
        return False


def split_silent_install(command: str) -> tuple[str, str]:
    """Split a silent-install command into its executable and argument string."""
    match = _QUOTED_COMMAND.match(command)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    parts = command.strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0], parts[1].strip() if len(parts) > 1 else ""


def _split_arguments(arguments: str) -> list[str]:
    tokens = shlex.split(arguments, posix=False)
    return [token[1:-1] if len(token) > 1 and token[0] == token[-1] == '"' else token for token in tokens]


class Installer:
    def __init__(
        self,
        version_store: VersionStore,
        *,
        command_runner: CommandRunner | None = None,
        extract_switches: Sequence[str] | None = None,
        direct_switches: Sequence[str] | None = None,
    ) -> None:
        self._store = version_store
        self._runner = command_runner or SubprocessRunner()
        self._extract_switches = tuple(extract_switches or IMMUTABLE_CONFIG.install.extract_switches)
        self._direct_switches = tuple(direct_switches or IMMUTABLE_CONFIG.install.direct_switches)

    def install(self, context: PackageContext) -> InstallReport:
        record = context.record
        executable, arguments = split_silent_install(record.silent_install)
        try:
            if arguments:
                setup = self._extract(context, executable)
                command = [str(setup), *_split_arguments(arguments)]
            else:
                command = [str(context.binary_path), *self._direct_switches]
            logger.info("Installing %s (%s)", record.id, record.name)
            completed = self._runner.run(command)
        except OSError as exc:
            raise InstallLaunchFailure(f"Could not launch installer for {record.id}: {exc}") from exc
        if completed.returncode not in (0, REBOOT_REQUIRED_EXIT):
            # Exit status is reported only; it does not turn the install into a failure.
            logger.warning("%s installer exited with %s", record.id, format_command_detail(completed))
        self._store.put(record.id, record.version)
        return InstallReport(command, completed.returncode)

    def _extract(self, context: PackageContext, executable: str) -> Path:
        staging = context.staging_dir
        staging.mkdir(parents=True, exist_ok=True)
        command = [str(context.binary_path), *self._extract_switches, str(staging)]
        result = self._runner.run(command)
        if result.returncode != 0:
            logger.warning("Extraction of %s reported %s", context.binary_path.name, format_command_detail(result))
        setup = self._locate_setup(staging, executable)
        if setup is None:
            raise InstallLaunchFailure(f"{executable} not found after extracting {context.binary_path.name} to {staging}")
        return setup

    def _locate_setup(self, staging: Path, executable: str) -> Path | None:
        name = PureWindowsPath(executable).name.lower()
        if not name:
            return None
        matches = [path for path in staging.rglob("*") if path.is_file() and path.name.lower() == name]
        if matches:
            return min(matches, key=lambda path: (len(path.parts), str(path).lower()))
        candidate = Path(executable)
        if candidate.is_absolute() and candidate.exists():
            return candidate
        return None
