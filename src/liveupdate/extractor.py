"""Safe extraction of release archives into a scratch directory."""

from __future__ import annotations

import posixpath
import shutil
import zipfile
import zlib
from pathlib import Path

from liveupdate.errors import CorruptArchiveError, ExtractionError
from liveupdate.logging import get_logger
from liveupdate.models import ExtractionResult
from liveupdate.tree import remove_tree

log = get_logger("liveupdate.extractor")


def is_unsafe_entry(name: str) -> bool:
    """Return True for absolute entry names or names that climb out of the root."""
    normalised = posixpath.normpath(name.replace("\\", "/"))
    if normalised.startswith("/"):
        return True
    # Drive-qualified names such as ``C:/evil`` or ``C:evil``
    if len(normalised) >= 2 and normalised[1] == ":" and normalised[0].isalpha():
        return True
    return ".." in normalised.split("/")


def extract(archive_path: Path, target_dir: Path) -> ExtractionResult:
    """Extract ``archive_path`` into ``target_dir``.

    Every entry name is checked before anything is written and the first
    unsafe name aborts the whole extraction. On any failure ``target_dir`` is
    removed so no partial tree is left behind.
    """
    archive_path = Path(archive_path)
    target_dir = Path(target_dir)
    log.info("extract_started", archive=str(archive_path), target=str(target_dir))

    try:
        count = _extract(archive_path, target_dir)
    except ExtractionError as exc:
        _cleanup(target_dir)
        log.warning("extract_failed", error=str(exc), retryable=exc.retryable)
        raise
    except (OSError, EOFError, zlib.error, zipfile.BadZipFile, NotImplementedError) as exc:
        _cleanup(target_dir)
        log.warning("extract_failed", error=str(exc), retryable=False)
        raise ExtractionError(f"Extraction failed: {exc}") from exc

    log.info("extract_complete", target=str(target_dir), entries=count)
    return ExtractionResult(extracted_root=target_dir, entry_count=count)


def _extract(archive_path: Path, target_dir: Path) -> int:
    try:
        archive = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as exc:
        # Raised when no end-of-central-directory record is found.
        raise CorruptArchiveError(f"Failed to read archive: {exc}") from exc

    with archive:
        members = [member for member in archive.infolist() if member.filename]
        if not members:
            raise ExtractionError("Archive contains no entries")

        for member in members:
            if is_unsafe_entry(member.filename):
                raise ExtractionError(f"Unsafe entry path: {member.filename}")

        target_dir.mkdir(parents=True, exist_ok=True)
        root = target_dir.resolve()
        for member in members:
            name = member.filename.replace("\\", "/")
            destination = (root / name).resolve()
            if not destination.is_relative_to(root):
                raise ExtractionError(f"Unsafe entry path: {member.filename}")
            if name.endswith("/"):
                destination.mkdir(parents=True, exist_ok=True)
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as source, destination.open("wb") as target:
                shutil.copyfileobj(source, target)
            log.debug("extract_member", name=member.filename)

    return len(members)


def _cleanup(target_dir: Path) -> None:
    try:
        remove_tree(target_dir)
    except OSError as exc:
        log.warning("extract_cleanup_failed", target=str(target_dir), error=str(exc))
