"""Archive validation run before extraction."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from liveupdate.constants import HTML_MARKERS, HTML_SNIFF_BYTES, ZIP_SIGNATURES
from liveupdate.errors import ValidationError
from liveupdate.logging import get_logger

log = get_logger("liveupdate.validator")


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for one archive; ``reason`` is set when the archive is rejected."""

    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def raise_for_error(self) -> None:
        if self.reason is not None:
            raise ValidationError(self.reason)


def has_archive_signature(header: bytes) -> bool:
    return header[:4] in ZIP_SIGNATURES


def looks_like_html(header: bytes) -> bool:
    text = header.decode("ascii", errors="ignore").lower()
    return any(marker in text for marker in HTML_MARKERS)


def validate(path: Path) -> ValidationResult:
    """Check that ``path`` holds an archive rather than an error page.

    The HTML sniff runs independently of the signature test so a page that
    happens to start with a valid signature is still rejected.
    """
    path = Path(path)
    if not path.is_file():
        return _reject(path, f"Archive does not exist: {path}")

    size = path.stat().st_size
    if size == 0:
        return _reject(path, f"Archive is empty: {path}")

    with path.open("rb") as source:
        header = source.read(HTML_SNIFF_BYTES)

    if looks_like_html(header):
        return _reject(path, "Downloaded file is an HTML page instead of an archive")

    if not has_archive_signature(header):
        return _reject(
            path,
            f"Invalid archive format (signature 0x{header[:4].hex()}, expected PK)",
        )

    log.debug("archive_validated", path=str(path), size=size)
    return ValidationResult()


def _reject(path: Path, reason: str) -> ValidationResult:
    log.warning("archive_rejected", path=str(path), reason=reason)
    return ValidationResult(reason)
