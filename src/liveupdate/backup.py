"""Snapshots of the installation tree taken before files are replaced."""

from __future__ import annotations

import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from liveupdate.constants import BACKUP_PREFIX
from liveupdate.errors import BackupError
from liveupdate.logging import get_logger
from liveupdate.models import BackupSnapshot
from liveupdate.tree import is_volatile, remove_tree, walk_tree

log = get_logger("liveupdate.backup")


class BackupManager:
    """Copy the install tree into timestamped folders under ``backup_dir``.

    Copying is best effort: a file that cannot be read is logged and counted,
    and only a missing install root or an uncreatable snapshot folder is
    fatal.
    """

    def __init__(
        self,
        backup_dir: Path,
        exclude: Callable[[str], bool] = is_volatile,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._backup_dir = Path(backup_dir)
        self._exclude = exclude
        self._clock = clock

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def backup(self, install_root: Path) -> BackupSnapshot:
        install_root = Path(install_root)
        if not install_root.is_dir():
            raise BackupError(f"Installation directory not found: {install_root}")

        created_at = self._clock()
        backup_path = self._backup_dir / f"{BACKUP_PREFIX}{int(created_at.timestamp() * 1000)}"
        try:
            backup_path.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise BackupError(f"Cannot create backup folder {backup_path}: {exc}") from exc

        log.info("backup_started", source=str(install_root), backup=str(backup_path))
        file_count = 0
        skipped = 0
        try:
            for entry in walk_tree(install_root, backup_path, self._exclude):
                try:
                    if entry.is_dir:
                        entry.destination.mkdir(parents=True, exist_ok=True)
                    else:
                        shutil.copy2(entry.source, entry.destination, follow_symlinks=False)
                        file_count += 1
                except OSError as exc:
                    skipped += 1
                    log.warning("backup_skip_file", path=str(entry.relative), error=str(exc))
        except OSError as exc:
            raise BackupError(f"Backup of {install_root} failed: {exc}") from exc

        log.info("backup_complete", backup=str(backup_path), files=file_count, skipped=skipped)
        return BackupSnapshot(
            backup_path=backup_path,
            created_at=created_at,
            file_count=file_count,
            skipped_files=skipped,
        )

    def list_snapshots(self) -> list[Path]:
        """Return existing snapshot folders, oldest first."""
        if not self._backup_dir.is_dir():
            return []
        snapshots = [
            path
            for path in self._backup_dir.iterdir()
            if path.is_dir() and path.name.startswith(BACKUP_PREFIX)
        ]
        return sorted(snapshots, key=_snapshot_key)

    def prune(self, keep: int) -> list[Path]:
        """Delete all but the newest ``keep`` snapshots and return what was removed."""
        if keep < 1:
            raise ValueError("keep must be >= 1")

        removed: list[Path] = []
        for path in self.list_snapshots()[:-keep]:
            try:
                remove_tree(path)
                removed.append(path)
            except OSError as exc:
                log.warning("backup_prune_failed", backup=str(path), error=str(exc))
        if removed:
            log.info("backup_pruned", removed=len(removed), kept=keep)
        return removed


def _snapshot_key(path: Path) -> tuple[int, str]:
    stamp = path.name[len(BACKUP_PREFIX) :]
    return (int(stamp) if stamp.isdigit() else -1, path.name)
