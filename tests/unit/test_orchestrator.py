"""Unit tests for liveupdate.orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from liveupdate.backup import BackupManager
from liveupdate.config import UpdaterSettings
from liveupdate.errors import CorruptArchiveError, ExtractionError, LogicError
from liveupdate.extractor import extract as real_extract
from liveupdate.fetcher import Fetcher
from liveupdate.models import DownloadResult, ProgressEvent, UpdatePackage, UpdateState
from liveupdate.orchestrator import UpdateOrchestrator
from liveupdate.replacer import FileReplacer
from liveupdate.status import TTLStore

PACKAGE = UpdatePackage(download_url="https://example.com/app.zip", target_version="2.0.0")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _seed_install(install_root: Path) -> None:
    (install_root / "app.exe").write_text("exe-v1")
    (install_root / "main.js").write_text("main-v1")


def _release_files() -> dict[str, str]:
    return {"app/main.js": "main-v2", "app/app.dll": "dll-v2", "app/app.exe": "exe-v2"}


def _file_fetcher(payload: bytes) -> MagicMock:
    """Fetcher double that writes ``payload`` to the requested destination."""

    async def fake_download(url, destination, on_progress=None):
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(payload)
        return DownloadResult(local_path=destination, byte_size=len(payload))

    fetcher = MagicMock(spec=Fetcher)
    fetcher.download = AsyncMock(side_effect=fake_download)
    return fetcher


def _orchestrator(
    settings: UpdaterSettings,
    fetcher,
    events: list[ProgressEvent] | None = None,
    **kwargs,
) -> UpdateOrchestrator:
    kwargs.setdefault("replacer", FileReplacer(running_executable=settings.install_root / "app.exe"))
    kwargs.setdefault("restarter", MagicMock())
    return UpdateOrchestrator(
        settings,
        fetcher=fetcher,
        on_progress=events.append if events is not None else None,
        **kwargs,
    )


def _steps(events: list[ProgressEvent]) -> list[str]:
    ordered: list[str] = []
    for event in events:
        if not ordered or ordered[-1] != event.step:
            ordered.append(event.step)
    return ordered


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    """Tests for a run that reaches the complete state."""

    @pytest.mark.asyncio
    async def test_full_pipeline(self, settings: UpdaterSettings, zip_payload) -> None:
        _seed_install(settings.install_root)
        payload = zip_payload(_release_files())

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "application/zip"}, content=payload)

        events: list[ProgressEvent] = []
        restarter = MagicMock()
        orchestrator = _orchestrator(
            settings,
            Fetcher(transport=httpx.MockTransport(handler)),
            events,
            restarter=restarter,
        )

        result = await orchestrator.run(PACKAGE)

        assert result.success is True
        assert result.state is UpdateState.COMPLETE
        assert orchestrator.state is UpdateState.COMPLETE
        assert result.steps_completed == ["download", "extract", "backup", "replace", "cleanup"]
        assert result.locked_files == ["app.dll"]
        assert result.skipped_files == ["app.exe"]
        assert result.pending_restart is True
        assert "1 files finish updating after the restart" in result.message
        assert result.completed_at is not None

        root = settings.install_root
        assert (root / "main.js").read_text() == "main-v2"
        assert (root / "app.exe").read_text() == "exe-v1"
        assert (root / "pending-update.json").exists()
        assert (Path(result.backup_path) / "main.js").read_text() == "main-v1"
        assert not (settings.scratch_dir / "update.zip").exists()
        assert not (settings.scratch_dir / "extracted_2.0.0").exists()

        assert _steps(events) == ["download", "extract", "backup", "replace", "cleanup", "complete"]
        progress = {e.step: e.progress for e in events}
        assert progress["backup"] == 50
        assert progress["replace"] == 75
        assert progress["cleanup"] == 90
        assert progress["complete"] == 100
        assert events[-1].pending_restart is True
        assert events[-1].locked_files == 1

        assert orchestrator.restart_scheduled is True
        await asyncio.sleep(0.05)
        restarter.assert_called_once()

    @pytest.mark.asyncio
    async def test_message_without_locked_files(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        orchestrator = _orchestrator(settings, _file_fetcher(zip_payload({"main.js": "v2"})))

        result = await orchestrator.run(PACKAGE)

        assert result.success is True
        assert result.pending_restart is False
        assert result.message == "Updated to 2.0.0. The app restarts in 0 seconds..."

    @pytest.mark.asyncio
    async def test_download_retried_until_success(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        payload = zip_payload({"main.js": "v2"})
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, headers={"content-type": "application/zip"}, content=payload)

        events: list[ProgressEvent] = []
        orchestrator = _orchestrator(
            settings, Fetcher(transport=httpx.MockTransport(handler)), events
        )

        result = await orchestrator.run(PACKAGE)

        assert result.success is True
        assert calls == 3
        assert any("(attempt 3/3)" in e.message for e in events if e.step == "download")

    @pytest.mark.asyncio
    async def test_extraction_retried_for_corrupt_archive(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        attempts: list[int] = []

        def flaky_extract(archive_path, target_dir):
            attempts.append(1)
            if len(attempts) < 3:
                raise CorruptArchiveError("Failed to read archive: File is not a zip file")
            return real_extract(archive_path, target_dir)

        events: list[ProgressEvent] = []
        orchestrator = _orchestrator(
            settings, _file_fetcher(zip_payload({"main.js": "v2"})), events
        )
        with patch("liveupdate.orchestrator.extract", side_effect=flaky_extract):
            result = await orchestrator.run(PACKAGE)

        assert result.success is True
        assert len(attempts) == 3
        assert [e.progress for e in events if e.step == "extract"] == [5, 10, 15]

    @pytest.mark.asyncio
    async def test_backup_retention_prunes_old_snapshots(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        for stamp in ("1000", "2000"):
            (settings.backup_dir / f"backup_{stamp}").mkdir(parents=True)
        retained = settings.model_copy(update={"backup_retention": 1})
        manager = BackupManager(retained.backup_dir)

        orchestrator = _orchestrator(
            retained, _file_fetcher(zip_payload({"main.js": "v2"})), backup_manager=manager
        )
        result = await orchestrator.run(PACKAGE)

        assert result.success is True
        assert manager.list_snapshots() == [Path(result.backup_path)]

    @pytest.mark.asyncio
    async def test_status_store_receives_progress_and_result(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        store = TTLStore(ttl_seconds=60)
        orchestrator = _orchestrator(
            settings, _file_fetcher(zip_payload({"main.js": "v2"})), status_store=store
        )

        await orchestrator.run(PACKAGE)

        assert store.get("progress")["step"] == "complete"
        assert store.get("result")["success"] is True
        assert store.get("result")["state"] == "complete"

    @pytest.mark.asyncio
    async def test_failing_progress_listener_does_not_abort(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        orchestrator = UpdateOrchestrator(
            settings,
            fetcher=_file_fetcher(zip_payload({"main.js": "v2"})),
            replacer=FileReplacer(running_executable=settings.install_root / "app.exe"),
            on_progress=MagicMock(side_effect=RuntimeError("ui gone")),
            restarter=MagicMock(),
        )

        result = await orchestrator.run(PACKAGE)

        assert result.success is True


# ---------------------------------------------------------------------------
# Failed runs
# ---------------------------------------------------------------------------


class TestFailedRun:
    """Failures end in the error state with one readable message."""

    @pytest.mark.asyncio
    async def test_download_gives_up_after_attempts(self, settings: UpdaterSettings) -> None:
        _seed_install(settings.install_root)
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, text="error")

        events: list[ProgressEvent] = []
        restarter = MagicMock()
        orchestrator = _orchestrator(
            settings, Fetcher(transport=httpx.MockTransport(handler)), events, restarter=restarter
        )

        result = await orchestrator.run(PACKAGE)

        assert result.success is False
        assert result.state is UpdateState.ERROR
        assert calls == 3
        assert "gave up after 3 attempts" in result.error
        assert result.steps_completed == []
        assert result.message.startswith("Update failed: ")
        assert events[-1].step == "error"
        assert events[-1].progress == 0
        assert not settings.backup_dir.exists()
        assert orchestrator.restart_scheduled is False
        restarter.assert_not_called()

    @pytest.mark.asyncio
    async def test_html_download_fails_validation(self, settings: UpdaterSettings) -> None:
        _seed_install(settings.install_root)
        fetcher = _file_fetcher(b"<!DOCTYPE html><html>Sign in</html>")
        orchestrator = _orchestrator(settings, fetcher)

        result = await orchestrator.run(PACKAGE)

        assert result.success is False
        assert result.error == "Downloaded file is an HTML page instead of an archive"
        assert fetcher.download.await_count == 1
        assert not (settings.scratch_dir / "update.zip").exists()

    @pytest.mark.asyncio
    async def test_unsafe_archive_not_retried(self, settings: UpdaterSettings, zip_payload) -> None:
        _seed_install(settings.install_root)
        orchestrator = _orchestrator(settings, _file_fetcher(zip_payload({"main.js": "v2"})))

        with patch(
            "liveupdate.orchestrator.extract",
            side_effect=ExtractionError("Unsafe entry path: ../../evil.txt"),
        ) as mock_extract:
            result = await orchestrator.run(PACKAGE)

        assert result.success is False
        assert result.error == "Unsafe entry path: ../../evil.txt"
        mock_extract.assert_called_once()
        assert (settings.install_root / "main.js").read_text() == "main-v1"

    @pytest.mark.asyncio
    async def test_corrupt_archive_exhausts_attempts(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        orchestrator = _orchestrator(settings, _file_fetcher(zip_payload({"main.js": "v2"})))

        with patch(
            "liveupdate.orchestrator.extract",
            side_effect=CorruptArchiveError("Failed to read archive"),
        ) as mock_extract:
            result = await orchestrator.run(PACKAGE)

        assert result.success is False
        assert mock_extract.call_count == 5
        assert result.error.startswith("Extraction failed after 5 attempts")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        backup_manager = MagicMock(spec=BackupManager)
        backup_manager.backup.side_effect = ValueError("boom")
        orchestrator = _orchestrator(
            settings, _file_fetcher(zip_payload({"main.js": "v2"})), backup_manager=backup_manager
        )

        result = await orchestrator.run(PACKAGE)

        assert result.success is False
        assert result.error == "Unexpected error: boom"
        assert result.steps_completed == ["download", "extract"]
        assert not (settings.scratch_dir / "extracted_2.0.0").exists()

    @pytest.mark.asyncio
    async def test_run_allowed_again_after_failure(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        payload = zip_payload({"main.js": "v2"})
        fetcher = _file_fetcher(payload)
        orchestrator = _orchestrator(settings, fetcher)

        with patch(
            "liveupdate.orchestrator.extract",
            side_effect=ExtractionError("Archive contains no entries"),
        ):
            first = await orchestrator.run(PACKAGE)
        second = await orchestrator.run(PACKAGE)

        assert first.success is False
        assert second.success is True


# ---------------------------------------------------------------------------
# Concurrency and state guard
# ---------------------------------------------------------------------------


class TestRunGuards:
    """Tests for concurrent-run rejection and the state machine."""

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, settings: UpdaterSettings, zip_payload) -> None:
        _seed_install(settings.install_root)
        payload = zip_payload({"main.js": "v2"})
        release = asyncio.Event()

        async def slow_download(url, destination, on_progress=None):
            await release.wait()
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(payload)
            return DownloadResult(local_path=destination, byte_size=len(payload))

        fetcher = MagicMock(spec=Fetcher)
        fetcher.download = AsyncMock(side_effect=slow_download)
        orchestrator = _orchestrator(settings, fetcher)

        first = asyncio.create_task(orchestrator.run(PACKAGE))
        await asyncio.sleep(0.01)
        assert orchestrator.is_busy is True
        assert orchestrator.state is UpdateState.DOWNLOADING

        second = await orchestrator.run(PACKAGE)
        release.set()
        first_result = await first

        assert second.success is False
        assert second.error == "Update already in progress"
        assert first_result.success is True

    @pytest.mark.asyncio
    async def test_no_second_run_after_success(
        self, settings: UpdaterSettings, zip_payload
    ) -> None:
        _seed_install(settings.install_root)
        fetcher = _file_fetcher(zip_payload({"main.js": "v2"}))
        orchestrator = _orchestrator(settings, fetcher)

        await orchestrator.run(PACKAGE)
        again = await orchestrator.run(PACKAGE)

        assert again.success is False
        assert "restart pending" in again.error
        assert fetcher.download.await_count == 1
        orchestrator.cancel_restart()

    def test_invalid_transition_raises(self, settings: UpdaterSettings) -> None:
        orchestrator = UpdateOrchestrator(settings, restarter=MagicMock())

        with pytest.raises(LogicError, match="idle -> complete"):
            orchestrator._transition(UpdateState.COMPLETE)

        assert orchestrator.state is UpdateState.IDLE

    def test_valid_transition_sequence(self, settings: UpdaterSettings) -> None:
        orchestrator = UpdateOrchestrator(settings, restarter=MagicMock())

        for state in (
            UpdateState.DOWNLOADING,
            UpdateState.EXTRACTING,
            UpdateState.BACKING_UP,
            UpdateState.REPLACING,
            UpdateState.CLEANING_UP,
            UpdateState.COMPLETE,
        ):
            orchestrator._transition(state)

        assert orchestrator.state is UpdateState.COMPLETE
        with pytest.raises(LogicError):
            orchestrator._transition(UpdateState.ERROR)

    def test_default_restarter_uses_configured_command(self, settings: UpdaterSettings) -> None:
        settings.relaunch_command = ["/opt/app/app", "--tray"]
        orchestrator = UpdateOrchestrator(settings)

        with (
            patch("liveupdate.restart.subprocess.Popen") as mock_popen,
            patch("liveupdate.restart.logging.shutdown"),
            patch("liveupdate.restart.os._exit"),
        ):
            orchestrator._restart()

        mock_popen.assert_called_once_with(["/opt/app/app", "--tray"], close_fds=True)
