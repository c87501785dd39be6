"""OneDrive Backup - mirror OneDrive accounts into local directories."""

__version__ = "0.1.0"

from .api import OneDriveClient
from .auth import TokenProvider
from .config import BackupJobConfig, load_job_from_json, load_jobs_from_directory
from .exceptions import (
    ConfigError,
    LocalIOError,
    OneDriveAPIError,
    OneDriveAuthenticationError,
    OneDriveBackupError,
    OneDriveDeltaExpiredError,
    OneDriveDownloadError,
    OneDriveInvalidResponseError,
    OneDriveNetworkError,
    OneDriveNotFoundError,
    OneDrivePermissionError,
    OneDriveRateLimitError,
)
from .scheduler import BackupScheduler

__all__ = [
    "__version__",
    "OneDriveClient",
    "TokenProvider",
    "BackupJobConfig",
    "BackupScheduler",
    "load_job_from_json",
    "load_jobs_from_directory",
    "ConfigError",
    "LocalIOError",
    "OneDriveAPIError",
    "OneDriveAuthenticationError",
    "OneDriveBackupError",
    "OneDriveDeltaExpiredError",
    "OneDriveDownloadError",
    "OneDriveInvalidResponseError",
    "OneDriveNetworkError",
    "OneDriveNotFoundError",
    "OneDrivePermissionError",
    "OneDriveRateLimitError",
]
