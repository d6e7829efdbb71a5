"""Update orchestrator.

Sequences one update run: download → validate/extract → backup → replace →
cleanup, reporting progress to the UI collaborator and scheduling a restart
once the new files are in place.

Downloads are retried for network failures and extraction for the narrow
corrupt-archive class. Backup and replacement are never retried: a partially
applied replacement is not safe to repeat. A failed run leaves the backup in
place for manual recovery.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial
from pathlib import Path

from liveupdate.backup import BackupManager
from liveupdate.config import UpdaterSettings
from liveupdate.errors import (
    CorruptArchiveError,
    DownloadError,
    ExtractionError,
    LogicError,
    NetworkError,
    UpdateError,
)
from liveupdate.extractor import extract
from liveupdate.fetcher import Fetcher
from liveupdate.logging import get_logger
from liveupdate.models import (
    DownloadProgress,
    DownloadResult,
    ExtractionResult,
    ProgressEvent,
    ReplacementOutcome,
    UpdatePackage,
    UpdateResult,
    UpdateState,
)
from liveupdate.replacer import FileReplacer
from liveupdate.restart import relaunch_process
from liveupdate.status import TTLStore
from liveupdate.tree import remove_tree
from liveupdate.utils import timed_stage
from liveupdate.validator import validate

log = get_logger("liveupdate.orchestrator")

ProgressListener = Callable[[ProgressEvent], None]

_TRANSITIONS: dict[UpdateState, frozenset[UpdateState]] = {
    UpdateState.IDLE: frozenset({UpdateState.DOWNLOADING}),
    UpdateState.DOWNLOADING: frozenset({UpdateState.EXTRACTING, UpdateState.ERROR}),
    UpdateState.EXTRACTING: frozenset({UpdateState.BACKING_UP, UpdateState.ERROR}),
    UpdateState.BACKING_UP: frozenset({UpdateState.REPLACING, UpdateState.ERROR}),
    UpdateState.REPLACING: frozenset({UpdateState.CLEANING_UP, UpdateState.ERROR}),
    UpdateState.CLEANING_UP: frozenset({UpdateState.COMPLETE, UpdateState.ERROR}),
    UpdateState.COMPLETE: frozenset(),
    UpdateState.ERROR: frozenset(),
}


class UpdateOrchestrator:
    """Run the update pipeline for one release package.

    Only one run may be active at a time, and after a successful run the
    orchestrator refuses further runs until the process restarts.
    """

    def __init__(
        self,
        settings: UpdaterSettings,
        fetcher: Fetcher | None = None,
        backup_manager: BackupManager | None = None,
        replacer: FileReplacer | None = None,
        on_progress: ProgressListener | None = None,
        status_store: TTLStore | None = None,
        restarter: Callable[[], None] | None = None,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher or Fetcher(
            timeout_seconds=settings.download_timeout_seconds,
            max_redirects=settings.max_redirects,
        )
        self._backup_manager = backup_manager or BackupManager(settings.backup_dir)
        self._replacer = replacer or FileReplacer()
        self._on_progress = on_progress
        self._status_store = status_store
        self._restarter = restarter or partial(relaunch_process, settings.relaunch_command)
        self._lock = asyncio.Lock()
        self._state = UpdateState.IDLE
        self._restart_handle: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> UpdateState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def restart_scheduled(self) -> bool:
        return self._restart_handle is not None and not self._restart_handle.cancelled()

    def cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()

    # ------------------------------------------------------------------
    # Primary flow
    # ------------------------------------------------------------------

    async def run(self, package: UpdatePackage) -> UpdateResult:
        """Download and install ``package``; never raises for pipeline failures."""
        if self._lock.locked():
            return UpdateResult(
                success=False,
                state=self._state,
                target_version=package.target_version,
                error="Update already in progress",
            )
        if self._state is UpdateState.COMPLETE:
            return UpdateResult(
                success=False,
                state=self._state,
                target_version=package.target_version,
                error="An update was already installed; restart pending",
            )

        async with self._lock:
            return await self._do_run(package)

    async def _do_run(self, package: UpdatePackage) -> UpdateResult:
        self._state = UpdateState.IDLE
        settings = self._settings
        install_root = settings.install_root
        archive_path = settings.scratch_dir / settings.archive_name
        extract_dir = settings.scratch_dir / f"extracted_{package.target_version}"

        result = UpdateResult(
            success=False,
            state=self._state,
            target_version=package.target_version,
        )
        log.info(
            "update_started",
            version=package.target_version,
            url=package.download_url,
            install_root=str(install_root),
        )

        try:
            self._transition(UpdateState.DOWNLOADING)
            async with timed_stage("download", log, version=package.target_version):
                await self._download(package, archive_path)
            result.steps_completed.append("download")

            self._transition(UpdateState.EXTRACTING)
            async with timed_stage("extract", log, version=package.target_version):
                verdict = await asyncio.to_thread(validate, archive_path)
                verdict.raise_for_error()
                extraction = await self._extract(archive_path, extract_dir)
            result.steps_completed.append("extract")

            self._transition(UpdateState.BACKING_UP)
            self._emit(ProgressEvent("backup", 50, "Creating backup..."))
            async with timed_stage("backup", log, version=package.target_version):
                snapshot = await asyncio.to_thread(self._backup_manager.backup, install_root)
                if settings.backup_retention is not None:
                    await asyncio.to_thread(self._backup_manager.prune, settings.backup_retention)
            result.backup_path = str(snapshot.backup_path)
            result.steps_completed.append("backup")

            self._transition(UpdateState.REPLACING)
            self._emit(ProgressEvent("replace", 75, "Replacing files..."))
            async with timed_stage("replace", log, version=package.target_version):
                outcome = await asyncio.to_thread(self._replace, extraction, install_root)
            result.locked_files = [locked.relative_path for locked in outcome.locked_files]
            result.skipped_files = list(outcome.skipped_files)
            result.steps_completed.append("replace")

            self._transition(UpdateState.CLEANING_UP)
            self._emit(ProgressEvent("cleanup", 90, "Cleaning up temporary files..."))
            await asyncio.to_thread(self._discard_ephemeral, archive_path, extract_dir)
            result.steps_completed.append("cleanup")

            self._transition(UpdateState.COMPLETE)
            result.success = True
            result.message = self._completion_message(package, outcome)
            self._emit(
                ProgressEvent(
                    "complete",
                    100,
                    result.message,
                    locked_files=len(outcome.locked_files),
                    pending_restart=outcome.pending_restart,
                )
            )
            self._schedule_restart()
            log.info(
                "update_success",
                version=package.target_version,
                locked=len(outcome.locked_files),
                pending_restart=outcome.pending_restart,
            )

        except UpdateError as exc:
            await self._fail(result, str(exc), archive_path, extract_dir)
        except Exception as exc:
            log.exception("update_unexpected_error", version=package.target_version)
            await self._fail(result, f"Unexpected error: {exc}", archive_path, extract_dir)
        finally:
            result.state = self._state
            result.completed_at = datetime.now(UTC).isoformat()
            if self._status_store is not None:
                self._status_store.set("result", result.to_dict())

        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _download(self, package: UpdatePackage, archive_path: Path) -> DownloadResult:
        attempts = self._settings.download_attempts
        last_error: NetworkError | None = None
        self._emit(ProgressEvent("download", 0, "Downloading update..."))

        for attempt in range(1, attempts + 1):

            def report(progress: DownloadProgress, attempt: int = attempt) -> None:
                self._emit(
                    ProgressEvent(
                        "download",
                        progress.percent,
                        f"Downloading... {progress.percent}% (attempt {attempt}/{attempts})",
                        downloaded=progress.downloaded,
                        total=progress.total,
                    )
                )

            try:
                return await self._fetcher.download(package.download_url, archive_path, report)
            except NetworkError as exc:
                last_error = exc
                log.warning("update_download_attempt_failed", attempt=attempt, error=str(exc))
                archive_path.unlink(missing_ok=True)
                if attempt < attempts:
                    await asyncio.sleep(self._settings.download_retry_delay_seconds)

        reason = last_error.reason if isinstance(last_error, DownloadError) else "network"
        raise DownloadError(
            reason, f"gave up after {attempts} attempts; last error: {last_error}"
        ) from last_error

    async def _extract(self, archive_path: Path, extract_dir: Path) -> ExtractionResult:
        attempts = self._settings.extract_attempts
        last_error: CorruptArchiveError | None = None
        await asyncio.to_thread(remove_tree, extract_dir)

        for attempt in range(1, attempts + 1):
            self._emit(
                ProgressEvent("extract", round(attempt / attempts * 25), "Extracting files...")
            )
            try:
                return await asyncio.to_thread(extract, archive_path, extract_dir)
            except CorruptArchiveError as exc:
                last_error = exc
                log.warning("update_extract_attempt_failed", attempt=attempt, error=str(exc))
                if attempt < attempts:
                    await asyncio.sleep(self._settings.extract_retry_delay_seconds)
                    await asyncio.to_thread(remove_tree, extract_dir)

        raise ExtractionError(
            f"Extraction failed after {attempts} attempts. Last error: {last_error}"
        ) from last_error

    def _replace(self, extraction: ExtractionResult, install_root: Path) -> ReplacementOutcome:
        return self._replacer.replace(extraction.payload_root, install_root)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, target: UpdateState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise LogicError(f"Invalid update transition {self._state.value} -> {target.value}")
        log.debug("update_state", previous=self._state.value, state=target.value)
        self._state = target

    def _emit(self, event: ProgressEvent) -> None:
        if self._status_store is not None:
            self._status_store.set("progress", event.to_dict())
        if self._on_progress is None:
            return
        try:
            self._on_progress(event)
        except Exception as exc:
            log.warning("update_progress_listener_failed", step=event.step, error=str(exc))

    async def _fail(
        self,
        result: UpdateResult,
        error: str,
        archive_path: Path,
        extract_dir: Path,
    ) -> None:
        failed_stage = self._state.value
        if UpdateState.ERROR in _TRANSITIONS[self._state]:
            self._transition(UpdateState.ERROR)
        result.success = False
        result.error = error
        result.message = f"Update failed: {error}"
        log.error("update_failed", stage=failed_stage, error=error)
        self._emit(ProgressEvent("error", 0, result.message, error=error))
        await asyncio.to_thread(self._discard_ephemeral, archive_path, extract_dir)

    @staticmethod
    def _discard_ephemeral(archive_path: Path, extract_dir: Path) -> None:
        for path in (archive_path, extract_dir):
            try:
                remove_tree(path)
            except OSError as exc:
                log.warning("update_cleanup_failed", path=str(path), error=str(exc))

    def _completion_message(self, package: UpdatePackage, outcome: ReplacementOutcome) -> str:
        delay = f"{self._settings.restart_delay_seconds:g}"
        if outcome.pending_restart:
            return (
                f"Updated to {package.target_version}. "
                f"{len(outcome.locked_files)} files finish updating after the restart "
                f"in {delay} seconds..."
            )
        return f"Updated to {package.target_version}. The app restarts in {delay} seconds..."

    def _schedule_restart(self) -> None:
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(
            self._settings.restart_delay_seconds, self._restart
        )
        log.info("update_restart_scheduled", delay=self._settings.restart_delay_seconds)

    def _restart(self) -> None:
        try:
            self._restarter()
        except Exception:
            log.exception("update_restart_failed")
