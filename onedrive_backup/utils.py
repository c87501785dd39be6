"""Utility functions for the OneDrive backup tool."""

from datetime import datetime, timezone
from typing import Optional
from urllib.parse import unquote

# =============================================================================
# Constants
# =============================================================================

GRAPH_API_URL: str = "https://graph.microsoft.com/v1.0"

# Page size requested when listing folder children
LIST_PAGE_SIZE: int = 999

# Chunk size used when streaming file content to disk (1 MB)
DOWNLOAD_CHUNK_SIZE: int = 1024 * 1024

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

DEFAULT_MAX_CONCURRENCY: int = 4
DEFAULT_BACKUP_INTERVAL_MINUTES: int = 60

# Prefix of parentReference.path for items below the drive root
DRIVE_ROOT_PREFIX: str = "/drive/root:"


# =============================================================================
# Timestamp utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp from the Graph API.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00Z")

    Returns:
        Timezone-aware datetime in UTC, or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(timestamp_str)
        except ValueError:
            # Graph may return 7 fractional digits, more than fromisoformat accepts
            if "." not in timestamp_str:
                raise
            dt = datetime.fromisoformat(timestamp_str.split(".")[0] + "+00:00")
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError):
        return None


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Remote path utilities
# =============================================================================


def normalize_remote_root(path: Optional[str]) -> str:
    """Normalize a configured OneDrive directory.

    Args:
        path: Directory as configured (e.g., "Documents/", "/Documents", "/")

    Returns:
        "" for the drive root, otherwise the path with one leading slash
        and no trailing slash (e.g., "/Documents")

    Examples:
        >>> normalize_remote_root("/")
        ''
        >>> normalize_remote_root("Documents/Work/")
        '/Documents/Work'
    """
    if not path:
        return ""
    stripped = path.replace("\\", "/").strip("/")
    return f"/{stripped}" if stripped else ""


def join_remote_path(parent: str, name: str) -> str:
    """Join a remote parent path and an item name.

    Examples:
        >>> join_remote_path("", "a.txt")
        '/a.txt'
        >>> join_remote_path("/sub", "b.txt")
        '/sub/b.txt'
    """
    return f"{parent.rstrip('/')}/{name}"


def strip_drive_root(parent_path: str) -> str:
    """Convert a parentReference.path into a path relative to the drive root.

    The Graph API percent-encodes the path, so it is decoded here.

    Examples:
        >>> strip_drive_root("/drive/root:/Documents/Work")
        '/Documents/Work'
        >>> strip_drive_root("/drive/root:")
        ''
    """
    if parent_path.startswith(DRIVE_ROOT_PREFIX):
        parent_path = parent_path[len(DRIVE_ROOT_PREFIX) :]
    else:
        # Paths of other drives look like /drives/<id>/root:/...
        marker = parent_path.find("root:")
        if marker != -1:
            parent_path = parent_path[marker + len("root:") :]
    return unquote(parent_path).rstrip("/")


def is_descendant_path(path: str, ancestor: str) -> bool:
    """Check whether a remote path lies below another remote path."""
    return path.startswith(ancestor.rstrip("/") + "/")
