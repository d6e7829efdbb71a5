"""Overlay a new release tree onto the live installation.

A single busy file never fails the whole update: files the running process
holds open are staged and queued for the next start instead.
"""

from __future__ import annotations

import errno
import os
import shutil
import sys
from collections.abc import Callable
from pathlib import Path

from liveupdate.constants import LOCKED_FILE_NAMES, LOCKED_FILE_SUFFIXES, WINDOWS_LOCK_ERRORS
from liveupdate.errors import ReplaceError
from liveupdate.logging import get_logger
from liveupdate.models import LockedFile, PendingUpdateEntry, ReplacementOutcome
from liveupdate.pending import PendingUpdateQueue
from liveupdate.tree import TreeEntry, is_volatile, walk_tree

log = get_logger("liveupdate.replacer")

_LOCK_ERRNOS = frozenset({errno.EBUSY, errno.EACCES, errno.EPERM, errno.ETXTBSY})


def is_likely_locked(file_name: str) -> bool:
    """Return True for runtime files that are memory-mapped while the app runs."""
    name = file_name.lower()
    return name in LOCKED_FILE_NAMES or name.endswith(LOCKED_FILE_SUFFIXES)


def is_lock_error(exc: OSError) -> bool:
    """Return True when a copy failed because the destination is in use."""
    if isinstance(exc, PermissionError):
        return True
    if getattr(exc, "winerror", None) in WINDOWS_LOCK_ERRORS:
        return True
    return exc.errno in _LOCK_ERRNOS


def _same_path(left: Path, right: Path) -> bool:
    return os.path.normcase(os.path.abspath(left)) == os.path.normcase(os.path.abspath(right))


class FileReplacer:
    """Copy a new tree over the install root, deferring locked files."""

    def __init__(
        self,
        running_executable: Path | None = None,
        exclude: Callable[[str], bool] = is_volatile,
    ) -> None:
        self._running_executable = Path(running_executable or sys.executable)
        self._exclude = exclude

    def replace(self, new_root: Path, install_root: Path) -> ReplacementOutcome:
        new_root = Path(new_root)
        install_root = Path(install_root)
        queue = PendingUpdateQueue(install_root)
        outcome = ReplacementOutcome()
        deferred: list[PendingUpdateEntry] = []

        log.info("replace_started", source=str(new_root), install_root=str(install_root))
        try:
            for entry in walk_tree(new_root, install_root, self._exclude):
                if entry.is_dir:
                    entry.destination.mkdir(parents=True, exist_ok=True)
                    continue
                self._replace_file(entry, queue, outcome, deferred)
        except OSError as exc:
            raise ReplaceError(f"File replacement failed: {exc}") from exc
        finally:
            # Entries deferred before a fatal error are still handed to the next start.
            if deferred:
                queue.append(deferred)

        log.info(
            "replace_complete",
            copied=outcome.copied_files,
            locked=len(outcome.locked_files),
            skipped=len(outcome.skipped_files),
        )
        return outcome

    def _replace_file(
        self,
        entry: TreeEntry,
        queue: PendingUpdateQueue,
        outcome: ReplacementOutcome,
        deferred: list[PendingUpdateEntry],
    ) -> None:
        relative = entry.relative.as_posix()

        if _same_path(entry.destination, self._running_executable):
            outcome.skipped_files.append(relative)
            log.info("replace_skip_running_executable", path=relative)
            return

        if is_likely_locked(entry.destination.name):
            self._defer(entry, queue, outcome, deferred, "pre-identified as memory-mapped")
            return

        try:
            shutil.copy2(entry.source, entry.destination)
        except OSError as exc:
            if not is_lock_error(exc):
                raise ReplaceError(f"Failed to replace {relative}: {exc}") from exc
            self._defer(entry, queue, outcome, deferred, str(exc))
            return
        outcome.copied_files += 1

    @staticmethod
    def _defer(
        entry: TreeEntry,
        queue: PendingUpdateQueue,
        outcome: ReplacementOutcome,
        deferred: list[PendingUpdateEntry],
        reason: str,
    ) -> None:
        relative = entry.relative.as_posix()
        staged = queue.stage(entry.source, entry.relative)
        deferred.append(
            PendingUpdateEntry(
                source_path=staged,
                destination_path=entry.destination,
                relative_path=relative,
            )
        )
        outcome.locked_files.append(LockedFile(relative_path=relative, reason=reason))
        log.info("replace_deferred", path=relative, reason=reason)
