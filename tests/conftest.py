"""Shared fixtures for liveupdate tests."""

from __future__ import annotations

import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

from liveupdate.config import UpdaterSettings, get_settings


def write_zip(path: Path, files: dict[str, bytes | str]) -> Path:
    """Write a zip archive containing ``files`` (name -> content) to ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            if name.endswith("/"):
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, content)
    return path


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    def _make(files: dict[str, bytes | str], name: str = "archive.zip") -> Path:
        return write_zip(tmp_path / "archives" / name, files)

    return _make


@pytest.fixture
def zip_payload(tmp_path: Path) -> Callable[[dict[str, bytes | str]], bytes]:
    """Return the raw bytes of a zip archive built from ``files``."""

    def _payload(files: dict[str, bytes | str]) -> bytes:
        return write_zip(tmp_path / "payloads" / "payload.zip", files).read_bytes()

    return _payload


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path, install_root: Path) -> UpdaterSettings:
    """Settings with every path under ``tmp_path`` and no retry delays."""
    return UpdaterSettings(
        install_root=install_root,
        temp_dir=tmp_path / "scratch",
        backup_dir=tmp_path / "backups",
        download_timeout_seconds=5,
        download_retry_delay_seconds=0,
        extract_retry_delay_seconds=0,
        restart_delay_seconds=0,
        release_url_template="https://example.com/releases/v{version}/app.zip",
        current_version="1.0.0",
    )


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
