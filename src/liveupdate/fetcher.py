"""Streaming download of release archives.

Redirects are followed by hand so that an HTML interstitial returned by the
host can be recognised and bypassed instead of being saved as the archive.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import httpx

from liveupdate import constants
from liveupdate.bypass import NoMatch, find_bypass_url
from liveupdate.errors import DownloadError
from liveupdate.logging import get_logger
from liveupdate.models import DownloadProgress, DownloadResult
from liveupdate.validator import has_archive_signature

log = get_logger("liveupdate.fetcher")

ProgressCallback = Callable[[DownloadProgress], None]

_TEXTUAL_TYPES = ("application/json", "application/xml", "application/xhtml+xml")


def is_textual(content_type: str) -> bool:
    """Return True for content types a real archive is never served as."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or media_type in _TEXTUAL_TYPES


def is_interstitial(content_type: str, page: str) -> bool:
    if "text/html" in content_type.lower():
        return True
    lowered = page.lower()
    return any(marker in lowered for marker in constants.INTERSTITIAL_MARKERS)


class Fetcher:
    """Download a remote archive to a local path."""

    def __init__(
        self,
        timeout_seconds: float = constants.DOWNLOAD_TIMEOUT_SECONDS,
        max_redirects: int = constants.MAX_REDIRECTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._max_redirects = max_redirects
        self._transport = transport

    async def download(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None = None,
    ) -> DownloadResult:
        """Stream ``url`` into ``destination``.

        Raises ``DownloadError``; the partial file is removed on every
        failure path.
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        log.info("download_started", url=url, destination=str(destination))

        try:
            result = await asyncio.wait_for(
                self._download(url, destination, on_progress),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            self._discard(destination)
            raise DownloadError(
                "timeout", f"no complete response within {self._timeout:g}s"
            ) from exc
        except DownloadError as exc:
            self._discard(destination)
            log.warning("download_failed", url=url, reason=exc.reason, detail=exc.detail)
            raise
        except httpx.TimeoutException as exc:
            self._discard(destination)
            raise DownloadError("timeout", str(exc) or type(exc).__name__) from exc
        except httpx.HTTPError as exc:
            self._discard(destination)
            log.warning("download_failed", url=url, reason="network", error=str(exc))
            raise DownloadError("network", str(exc) or type(exc).__name__) from exc
        except OSError as exc:
            self._discard(destination)
            raise DownloadError("io", str(exc)) from exc

        log.info("download_complete", path=str(result.local_path), size=result.byte_size)
        return result

    async def _download(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None,
    ) -> DownloadResult:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=False,
            transport=self._transport,
            headers={"User-Agent": constants.USER_AGENT},
        ) as client:
            size = await self._fetch(client, url, destination, on_progress, hops=0)

        if size == 0 or not destination.is_file() or destination.stat().st_size == 0:
            raise DownloadError("empty-body", "downloaded file is empty")

        if destination.suffix.lower() in constants.ARCHIVE_EXTENSIONS:
            with destination.open("rb") as source:
                header = source.read(4)
            if not has_archive_signature(header):
                raise DownloadError(
                    "not-an-archive", f"file signature 0x{header.hex()} is not an archive"
                )

        return DownloadResult(local_path=destination, byte_size=size, succeeded=True)

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None,
        hops: int,
    ) -> int:
        if hops > self._max_redirects:
            raise DownloadError("too-many-redirects", f"gave up after {hops - 1} redirects")

        async with client.stream("GET", url) as response:
            status = response.status_code
            if 300 <= status < 400 and "location" in response.headers:
                next_url = str(response.url.join(response.headers["location"]))
                log.debug("download_redirect", status=status, target=next_url)
            elif not response.is_success:
                raise DownloadError("http-status", f"HTTP {status} from {url}")
            else:
                content_type = response.headers.get("content-type", "")
                if not is_textual(content_type):
                    return await self._stream_to_file(response, destination, on_progress)

                body = await response.aread()
                page = body.decode(response.encoding or "utf-8", errors="replace")
                if not is_interstitial(content_type, page):
                    destination.write_bytes(body)
                    return len(body)

                match = find_bypass_url(page, url)
                if isinstance(match, NoMatch):
                    raise DownloadError(
                        "bypass-failed", "HTML page returned and no download link was found"
                    )
                next_url = match.url
                log.info("download_interstitial_bypass", strategy=type(match).__name__)

        # The current stream is closed before following the next hop.
        return await self._fetch(client, next_url, destination, on_progress, hops + 1)

    async def _stream_to_file(
        self,
        response: httpx.Response,
        destination: Path,
        on_progress: ProgressCallback | None,
    ) -> int:
        try:
            total = int(response.headers.get("content-length") or 0)
        except ValueError:
            total = 0

        downloaded = 0
        with destination.open("wb") as target:
            async for chunk in response.aiter_bytes(constants.DOWNLOAD_CHUNK_SIZE):
                target.write(chunk)
                downloaded += len(chunk)
                if total > 0 and on_progress is not None:
                    percent = min(100, round(downloaded * 100 / total))
                    on_progress(DownloadProgress(percent, downloaded, total))
        return downloaded

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            log.warning("download_cleanup_failed", path=str(path), error=str(exc))
