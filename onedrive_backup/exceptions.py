"""Custom exceptions for the OneDrive backup tool."""


class OneDriveBackupError(Exception):
    """Base exception for all backup errors."""

    pass


class OneDriveAPIError(OneDriveBackupError):
    """Base exception for Microsoft Graph API errors."""

    pass


class OneDriveAuthenticationError(OneDriveAPIError):
    """Raised when the refresh token cannot be exchanged for an access token."""

    pass


class OneDrivePermissionError(OneDriveAPIError):
    """Raised when the access token lacks the required permissions."""

    pass


class OneDriveNotFoundError(OneDriveAPIError):
    """Raised when a drive item or path does not exist."""

    pass


class OneDriveRateLimitError(OneDriveAPIError):
    """Raised when the API throttles the client."""

    pass


class OneDriveNetworkError(OneDriveAPIError):
    """Raised when the transport fails (connection errors, timeouts)."""

    pass


class OneDriveInvalidResponseError(OneDriveAPIError):
    """Raised when the API returns an invalid or unexpected response."""

    pass


class OneDriveDeltaExpiredError(OneDriveAPIError):
    """Raised when a stored delta link is no longer accepted (HTTP 410)."""

    pass


class OneDriveDownloadError(OneDriveAPIError):
    """Raised when fetching the content of a single file fails."""

    pass


class LocalIOError(OneDriveBackupError):
    """Raised when creating, moving or deleting a local path fails."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class ConfigError(OneDriveBackupError):
    """Raised when backup job configuration is missing or invalid."""

    pass
