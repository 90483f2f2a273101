"""Installed-version bookkeeping for softpaqs."""
from __future__ import annotations

import functools
import logging
import os
import re
from pathlib import Path

from hpdrivers_config.constants import IMMUTABLE_CONFIG

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\d+(?:\.\d+)*")


@functools.total_ordering
class Version:
    """Dotted numeric version compared segment by segment.

    Shorter sequences are padded with zeros on the right, so ``1.2`` equals
    ``1.2.0.0``. Text that holds no digits parses to ``LOWEST_VERSION``.
    """

    __slots__ = ("parts", "raw")

    def __init__(self, parts: tuple[int, ...], raw: str = "") -> None:
        self.parts = parts
        self.raw = raw

    @classmethod
    def parse(cls, value: str | None) -> "Version":
        if not value or not value.strip():
            return LOWEST_VERSION
        cleaned = value.strip()
        match = _VERSION_PATTERN.search(cleaned)
        if not match:
            return LOWEST_VERSION
        return cls(tuple(int(part) for part in match.group(0).split(".")), cleaned)

    @property
    def is_lowest(self) -> bool:
        return self.parts == LOWEST_VERSION.parts

    def _padded(self, width: int) -> tuple[int, ...]:
        return self.parts + (0,) * (width - len(self.parts))

    def _pair(self, other: "Version") -> tuple[tuple[int, ...], tuple[int, ...]]:
        width = max(len(self.parts), len(other.parts))
        return self._padded(width), other._padded(width)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        left, right = self._pair(other)
        return left == right

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        left, right = self._pair(other)
        return left < right

    def __hash__(self) -> int:
        parts = list(self.parts)
        while len(parts) > 1 and parts[-1] == 0:
            parts.pop()
        return hash(tuple(parts))

    def __str__(self) -> str:
        if self.raw or self.is_lowest:
            return self.raw
        return ".".join(str(part) for part in self.parts)

    def __repr__(self) -> str:
        return f"Version({str(self)!r})"


# A leading -1 sorts below every parsed version, including 0.0.0.0.
LOWEST_VERSION = Version((-1,), "")


def needs_update(available: Version | str, stored: Version | str | None, *, overwrite: bool = False) -> bool:
    if overwrite:
        # Versions without digits (e.g. "A") still reinstall.
        return bool(str(available).strip())
    available_version = available if isinstance(available, Version) else Version.parse(available)
    if stored is None:
        stored_version = LOWEST_VERSION
    else:
        stored_version = stored if isinstance(stored, Version) else Version.parse(stored)
    return available_version > stored_version


class VersionStore:
    """One ``version.txt`` per softpaq under the SWSetup root."""

    def __init__(self, root: Path | str | None = None) -> None:
        if root is None:
            root = os.getenv("HPDRIVERS_SWSETUP_ROOT", IMMUTABLE_CONFIG.install.swsetup_root)
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def package_dir(self, package_id: str) -> Path:
        return self._root / package_id

    def path_for(self, package_id: str) -> Path:
        return self.package_dir(package_id) / IMMUTABLE_CONFIG.install.version_file

    def get(self, package_id: str) -> Version:
        path = self.path_for(package_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LOWEST_VERSION
        lines = text.splitlines()
        return Version.parse(lines[0] if lines else "")

    def put(self, package_id: str, version: str) -> None:
        path = self.path_for(package_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{version}\n", encoding="utf-8")
        logger.debug("Recorded %s version %s at %s", package_id, version, path)
