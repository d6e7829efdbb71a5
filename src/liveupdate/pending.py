"""Durable queue of file replacements deferred until the next start.

The queue is a JSON array at ``<install_root>/pending-update.json``. The file
exists only while work is pending and is removed after the single drain pass
made by :func:`process_pending_updates` on the next startup. Deferred source
files are staged under ``<install_root>/.pending-update/`` so they outlive
the scratch directory they were extracted into.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

from liveupdate.config import UpdaterSettings, get_settings
from liveupdate.constants import PENDING_QUEUE_FILENAME, PENDING_STAGING_DIRNAME
from liveupdate.errors import LogicError
from liveupdate.logging import get_logger
from liveupdate.models import PendingUpdateEntry, PendingUpdateResult
from liveupdate.tree import remove_tree

log = get_logger("liveupdate.pending")


class PendingUpdateQueue:
    """Read-merge-write access to the pending-update queue file."""

    def __init__(self, install_root: Path) -> None:
        self._install_root = Path(install_root)

    @property
    def path(self) -> Path:
        return self._install_root / PENDING_QUEUE_FILENAME

    @property
    def staging_dir(self) -> Path:
        return self._install_root / PENDING_STAGING_DIRNAME

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[PendingUpdateEntry]:
        """Return queued entries; raises ``LogicError`` if the file is malformed."""
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LogicError(f"Unreadable pending-update queue {self.path}: {exc}") from exc
        if not isinstance(data, list):
            raise LogicError(f"Pending-update queue {self.path} is not a JSON array")
        try:
            return [PendingUpdateEntry.from_dict(item) for item in data]
        except (AttributeError, ValueError) as exc:
            raise LogicError(f"Malformed entry in pending-update queue: {exc}") from exc

    def load_or_empty(self) -> list[PendingUpdateEntry]:
        """Return queued entries, treating a corrupt queue as empty."""
        try:
            return self.load()
        except LogicError as exc:
            log.warning("pending_queue_corrupt", path=str(self.path), error=str(exc))
            return []

    def append(self, entries: Iterable[PendingUpdateEntry]) -> None:
        new_entries = list(entries)
        if not new_entries:
            return
        merged = [*self.load_or_empty(), *new_entries]
        self._write(merged)
        log.info("pending_queue_updated", added=len(new_entries), total=len(merged))

    def stage(self, source: Path, relative: PurePosixPath) -> Path:
        """Copy ``source`` into the staging area and return the staged path."""
        staged = self.staging_dir.joinpath(*relative.parts)
        staged.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, staged)
        return staged

    def clear(self) -> None:
        """Remove the queue file and anything left in the staging area."""
        self.path.unlink(missing_ok=True)
        try:
            remove_tree(self.staging_dir)
        except OSError as exc:
            log.warning("pending_staging_cleanup_failed", path=str(self.staging_dir), error=str(exc))

    def _write(self, entries: list[PendingUpdateEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps([entry.to_dict() for entry in entries], indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(self.path)


def process_pending_updates(install_root: Path) -> PendingUpdateResult:
    """Retry every deferred copy once, then delete the queue.

    The queue is removed whatever the per-entry outcome; entries that fail
    here are reported in the result and not retried again.
    """
    queue = PendingUpdateQueue(install_root)
    result = PendingUpdateResult()
    if not queue.exists():
        log.debug("pending_queue_absent", path=str(queue.path))
        return result

    try:
        entries = queue.load()
    except LogicError as exc:
        log.error("pending_queue_invalid", error=str(exc))
        queue.clear()
        return result

    log.info("pending_updates_started", entries=len(entries))
    for entry in entries:
        if not entry.source_path.exists():
            result.failed += 1
            result.failures.append(entry.relative_path)
            log.error("pending_update_source_missing", path=entry.relative_path)
            continue
        try:
            entry.destination_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(entry.source_path, entry.destination_path)
            result.processed += 1
            log.debug("pending_update_applied", path=entry.relative_path)
        except OSError as exc:
            result.failed += 1
            result.failures.append(entry.relative_path)
            log.error("pending_update_failed", path=entry.relative_path, error=str(exc))

    queue.clear()
    log.info("pending_updates_complete", processed=result.processed, failed=result.failed)
    return result


def run_startup_tasks(settings: UpdaterSettings | None = None) -> PendingUpdateResult:
    """First call of every application start: drain deferred replacements."""
    settings = settings or get_settings()
    return process_pending_updates(settings.install_root)
