"""Centralized constants for liveupdate."""

# Download
DOWNLOAD_TIMEOUT_SECONDS = 300
DOWNLOAD_CHUNK_SIZE = 64 * 1024
MAX_REDIRECTS = 20
USER_AGENT = "liveupdate/1.0"

# Archive format
ARCHIVE_EXTENSIONS = (".zip",)
ZIP_SIGNATURES = frozenset(
    {
        b"PK\x03\x04",  # local file header
        b"PK\x05\x06",  # end of central directory (empty archive)
        b"PK\x07\x08",  # data descriptor
    }
)
HTML_MARKERS = ("<html", "<!doctype")
HTML_SNIFF_BYTES = 200

# Interstitial page detection (text is matched case-insensitively)
INTERSTITIAL_MARKERS = (
    "<html",
    "<!doctype",
    "virus-scan-warning",
    "can't scan this file for viruses",
    "confirm=t",
)
CONFIRM_BYPASS_URL = "https://drive.google.com/uc?export=download&id={file_id}&confirm=t"

# Directory names never walked by backup or replacement
VOLATILE_NAMES = frozenset(
    {
        "temp",
        "backup",
        "backups",
        "node_modules",
        ".git",
        "__pycache__",
        ".pending-update",
    }
)

# Files held open or memory-mapped by the runtime while the app is running
LOCKED_FILE_NAMES = frozenset(
    {
        "icudtl.dat",
        "snapshot_blob.bin",
        "v8_context_snapshot.bin",
        "chrome_100_percent.pak",
        "chrome_200_percent.pak",
        "resources.pak",
        "d3dcompiler_47.dll",
        "libegl.dll",
        "libglesv2.dll",
        "vk_swiftshader.dll",
        "vulkan-1.dll",
    }
)
LOCKED_FILE_SUFFIXES = (".dll", ".pak", ".dat", ".bin", ".so", ".dylib")

# Windows error codes for sharing/lock violations and access denied
WINDOWS_LOCK_ERRORS = frozenset({5, 32, 33})

# Pending-update queue
PENDING_QUEUE_FILENAME = "pending-update.json"
PENDING_STAGING_DIRNAME = ".pending-update"

# Backups
BACKUP_PREFIX = "backup_"
BACKUP_DIRNAME = "LiveUpdate-Backups"

# Orchestrator
DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_RETRY_DELAY_SECONDS = 1.0
EXTRACT_ATTEMPTS = 5
EXTRACT_RETRY_DELAY_SECONDS = 2.0
RESTART_DELAY_SECONDS = 3.0
STATUS_TTL_SECONDS = 3600
