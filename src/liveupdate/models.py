"""Data models for the update pipeline.

Plain dataclasses with ``to_dict`` for the UI collaborator and ``from_dict``
where the model is persisted between process runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class UpdateState(Enum):
    """Stage of an update run."""

    IDLE = "idle"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    BACKING_UP = "backing_up"
    REPLACING = "replacing"
    CLEANING_UP = "cleaning_up"
    COMPLETE = "complete"
    ERROR = "error"


# ------------------------------------------------------------------
# Per-attempt values
# ------------------------------------------------------------------


@dataclass(frozen=True)
class UpdatePackage:
    """Where to fetch a release archive and which version it holds."""

    download_url: str
    target_version: str


@dataclass(frozen=True)
class DownloadProgress:
    """Progress of a streaming download."""

    percent: int
    downloaded: int
    total: int


@dataclass(frozen=True)
class DownloadResult:
    local_path: Path
    byte_size: int
    succeeded: bool = True


@dataclass(frozen=True)
class ExtractionResult:
    extracted_root: Path
    entry_count: int

    @property
    def payload_root(self) -> Path:
        """Return the directory whose contents mirror the install root.

        Release archives often wrap the application in one top-level folder;
        in that case the folder itself is the payload.
        """
        children = list(self.extracted_root.iterdir())
        if len(children) == 1 and children[0].is_dir() and not children[0].is_symlink():
            return children[0]
        return self.extracted_root


@dataclass(frozen=True)
class BackupSnapshot:
    backup_path: Path
    created_at: datetime
    file_count: int = 0
    skipped_files: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup_path": str(self.backup_path),
            "created_at": self.created_at.isoformat(),
            "file_count": self.file_count,
            "skipped_files": self.skipped_files,
        }


# ------------------------------------------------------------------
# Replacement
# ------------------------------------------------------------------


@dataclass(frozen=True)
class LockedFile:
    """A file whose replacement was deferred until the next start."""

    relative_path: str
    reason: str


@dataclass
class ReplacementOutcome:
    locked_files: list[LockedFile] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    copied_files: int = 0

    @property
    def pending_restart(self) -> bool:
        return bool(self.locked_files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "locked_files": [f.relative_path for f in self.locked_files],
            "skipped_files": list(self.skipped_files),
            "copied_files": self.copied_files,
            "pending_restart": self.pending_restart,
        }


@dataclass(frozen=True)
class PendingUpdateEntry:
    """One deferred copy, persisted in the pending-update queue."""

    source_path: Path
    destination_path: Path
    relative_path: str
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "src": str(self.source_path),
            "dest": str(self.destination_path),
            "relativePath": self.relative_path,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingUpdateEntry:
        src = data.get("src")
        dest = data.get("dest")
        if not isinstance(src, str) or not src:
            raise ValueError("pending entry is missing 'src'")
        if not isinstance(dest, str) or not dest:
            raise ValueError("pending entry is missing 'dest'")
        return cls(
            source_path=Path(src),
            destination_path=Path(dest),
            relative_path=str(data.get("relativePath") or Path(dest).name),
            timestamp=str(data.get("timestamp") or _now_iso()),
        )


@dataclass
class PendingUpdateResult:
    processed: int = 0
    failed: int = 0
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "failures": list(self.failures),
        }


# ------------------------------------------------------------------
# Orchestrator surface
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification delivered to the UI collaborator."""

    step: str
    progress: int
    message: str
    downloaded: int | None = None
    total: int | None = None
    locked_files: int | None = None
    pending_restart: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step": self.step,
            "progress": self.progress,
            "message": self.message,
        }
        for key in ("downloaded", "total", "locked_files", "pending_restart", "error"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class UpdateResult:
    """Result of an update attempt."""

    success: bool
    state: UpdateState
    target_version: str | None = None
    message: str = ""
    error: str | None = None
    locked_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    backup_path: str | None = None
    steps_completed: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=_now_iso)
    completed_at: str | None = None

    @property
    def pending_restart(self) -> bool:
        return bool(self.locked_files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "target_version": self.target_version,
            "message": self.message,
            "error": self.error,
            "locked_files": list(self.locked_files),
            "skipped_files": list(self.skipped_files),
            "pending_restart": self.pending_restart,
            "backup_path": self.backup_path,
            "steps_completed": list(self.steps_completed),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
