"""Exception hierarchy for the update pipeline.

Network and narrow corrupt-archive failures are retried by the orchestrator;
everything else ends the run in the ``error`` state with a single
human-readable message.
"""

from __future__ import annotations


class UpdateError(RuntimeError):
    """Base class for every failure raised by the update pipeline."""


class NetworkError(UpdateError):
    """Transport-level failure while talking to the release host."""


class DownloadError(NetworkError):
    """The release archive could not be downloaded.

    ``reason`` is a short machine-readable tag (``timeout``, ``bypass-failed``,
    ``not-an-archive`` ...); ``detail`` carries the human-readable context.
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = f"Download failed ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ValidationError(UpdateError):
    """Downloaded bytes are not a usable archive."""


class ArchiveError(UpdateError):
    """The archive is corrupt or contains unsafe entries."""


class ExtractionError(ArchiveError):
    """The archive could not be extracted."""

    retryable = False


class CorruptArchiveError(ExtractionError):
    """The archive is truncated or missing its end-of-central-directory record."""

    retryable = True


class FilesystemError(UpdateError):
    """Permission, busy or missing-path failure on the local filesystem."""


class BackupError(FilesystemError):
    """The installation snapshot could not be created."""


class ReplaceError(FilesystemError):
    """A file could not be overlaid and the failure is not a lock condition."""


class LogicError(UpdateError):
    """Persisted state is malformed or the pipeline was driven out of order."""
