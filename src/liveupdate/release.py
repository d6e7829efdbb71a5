"""Release metadata handed over by the external version checker."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from liveupdate.models import UpdatePackage

if TYPE_CHECKING:
    from liveupdate.config import UpdaterSettings

_NUMBER_RE = re.compile(r"^\d+")


@dataclass(frozen=True)
class VersionInfo:
    """Version-check payload: ``{version, notes, publishedAt}``."""

    version: str  # normalised, no 'v' prefix
    notes: str = ""
    published_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "notes": self.notes,
            "publishedAt": self.published_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionInfo:
        version = str(data.get("version") or "").strip()
        if not version:
            raise ValueError("version payload is missing 'version'")
        return cls(
            version=version.removeprefix("v"),
            notes=str(data.get("notes") or ""),
            published_at=str(data.get("publishedAt") or ""),
        )


def parse_version(version: str) -> tuple[int, ...]:
    """Split a dotted version into integers; non-numeric parts count as 0."""
    parts: list[int] = []
    for piece in version.strip().removeprefix("v").split("."):
        match = _NUMBER_RE.match(piece)
        parts.append(int(match.group()) if match else 0)
    return tuple(parts)


def is_newer_version(latest: str, current: str) -> bool:
    """Return True if *latest* is newer than *current*.

    Missing trailing parts compare as zero, so ``1.2`` equals ``1.2.0``.
    """
    latest_parts = parse_version(latest)
    current_parts = parse_version(current)
    width = max(len(latest_parts), len(current_parts))
    padded_latest = latest_parts + (0,) * (width - len(latest_parts))
    padded_current = current_parts + (0,) * (width - len(current_parts))
    return padded_latest > padded_current


def package_for(info: VersionInfo, settings: UpdaterSettings) -> UpdatePackage:
    """Build the update package for ``info`` from the configured URL template."""
    return UpdatePackage(
        download_url=settings.release_url(info.version),
        target_version=info.version,
    )
