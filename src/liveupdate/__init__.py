"""liveupdate - in-place self-update pipeline for desktop applications."""

__version__ = "1.0.0"

from liveupdate.errors import (  # noqa: E402
    BackupError,
    CorruptArchiveError,
    DownloadError,
    ExtractionError,
    LogicError,
    NetworkError,
    ReplaceError,
    UpdateError,
    ValidationError,
)
from liveupdate.models import UpdatePackage, UpdateResult, UpdateState  # noqa: E402
from liveupdate.orchestrator import UpdateOrchestrator  # noqa: E402
from liveupdate.pending import process_pending_updates, run_startup_tasks  # noqa: E402

__all__ = [
    "BackupError",
    "CorruptArchiveError",
    "DownloadError",
    "ExtractionError",
    "LogicError",
    "NetworkError",
    "ReplaceError",
    "UpdateError",
    "UpdateOrchestrator",
    "UpdatePackage",
    "UpdateResult",
    "UpdateState",
    "ValidationError",
    "__version__",
    "process_pending_updates",
    "run_startup_tasks",
]
