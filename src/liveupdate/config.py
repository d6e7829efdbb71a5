"""Configuration management for liveupdate."""

import sys
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from liveupdate import __version__, constants


def default_install_root() -> Path:
    """Return the directory the running application was installed into.

    Frozen builds live next to their executable; source checkouts use the
    current working directory.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path.cwd()


def default_backup_dir() -> Path:
    """Backups live under the system temp dir, outside the install tree."""
    return Path(tempfile.gettempdir()) / constants.BACKUP_DIRNAME


class UpdaterSettings(BaseSettings):
    """Updater settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIVEUPDATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Layout
    install_root: Path = Field(
        default_factory=default_install_root, description="Live installation directory"
    )
    temp_dir: Path | None = Field(
        default=None, description="Scratch directory (defaults to <install_root>/temp)"
    )
    backup_dir: Path = Field(
        default_factory=default_backup_dir, description="Parent directory for snapshots"
    )
    archive_name: str = Field(default="update.zip", description="Downloaded archive file name")

    # Release source
    release_url_template: str = Field(
        default="https://github.com/liveupdate/app/releases/download/v{version}/app.zip",
        description="Archive URL; {version} is replaced by the target version",
    )
    current_version: str = Field(default=__version__, description="Installed version")
    relaunch_command: list[str] = Field(
        default_factory=list,
        description="Host command started after an update (JSON list); empty relaunches",
    )

    # Retry policy
    download_timeout_seconds: float = Field(default=constants.DOWNLOAD_TIMEOUT_SECONDS, gt=0)
    download_attempts: int = Field(default=constants.DOWNLOAD_ATTEMPTS, ge=1)
    download_retry_delay_seconds: float = Field(
        default=constants.DOWNLOAD_RETRY_DELAY_SECONDS, ge=0
    )
    extract_attempts: int = Field(default=constants.EXTRACT_ATTEMPTS, ge=1)
    extract_retry_delay_seconds: float = Field(
        default=constants.EXTRACT_RETRY_DELAY_SECONDS, ge=0
    )
    max_redirects: int = Field(default=constants.MAX_REDIRECTS, ge=0)
    restart_delay_seconds: float = Field(default=constants.RESTART_DELAY_SECONDS, ge=0)

    # Retention
    backup_retention: int | None = Field(
        default=None, ge=1, description="Snapshots to keep; None keeps all"
    )
    status_ttl_seconds: float = Field(default=constants.STATUS_TTL_SECONDS, gt=0)

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False, description="Also write logs to a rotating file")
    log_file_path: Path = Field(
        default=Path("logs") / "liveupdate.log", description="Rotating log file location"
    )
    log_max_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    log_backup_count: int = Field(default=3, ge=0)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def scratch_dir(self) -> Path:
        """Directory holding the downloaded archive and extracted tree."""
        return self.temp_dir if self.temp_dir is not None else self.install_root / "temp"

    @property
    def pending_queue_path(self) -> Path:
        return self.install_root / constants.PENDING_QUEUE_FILENAME

    def release_url(self, version: str) -> str:
        """Build the archive download URL for ``version``."""
        return self.release_url_template.format(version=version)


@lru_cache
def get_settings() -> UpdaterSettings:
    """Get cached settings instance."""
    return UpdaterSettings()
