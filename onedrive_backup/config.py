"""Backup job configuration.

Each job backs up one OneDrive account and is described by one JSON file:

.. code-block:: json

    {
      "AccountName": "Personal",
      "ClientId": "00000000-0000-0000-0000-000000000000",
      "ClientSecret": "",
      "RefreshToken": "M.C123...",
      "OneDriveDirectory": "/Documents",
      "LocalTargetDirectory": "/backup/personal",
      "BackupIntervalMinutes": 60,
      "Excluded": ["/Documents/Temp", ".tmp"],
      "MaxConcurrency": 4,
      "SyncMode": "delta"
    }

camelCase and snake_case spellings of the keys are accepted as well.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import ConfigError
from .sync.modes import SyncMode
from .utils import (
    DEFAULT_BACKUP_INTERVAL_MINUTES,
    DEFAULT_MAX_CONCURRENCY,
    normalize_remote_root,
)

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "ONEDRIVE_BACKUP_CONFIG_DIR"

_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "account_name": ("AccountName", "accountName", "account_name"),
    "client_id": ("ClientId", "clientId", "client_id"),
    "client_secret": ("ClientSecret", "clientSecret", "client_secret"),
    "refresh_token": ("RefreshToken", "refreshToken", "refresh_token"),
    "onedrive_directory": (
        "OneDriveDirectory",
        "oneDriveDirectory",
        "onedrive_directory",
    ),
    "local_target_directory": (
        "LocalTargetDirectory",
        "localTargetDirectory",
        "local_target_directory",
    ),
    "backup_interval_minutes": (
        "BackupIntervalMinutes",
        "backupIntervalMinutes",
        "backup_interval_minutes",
    ),
    "excluded": ("Excluded", "excluded"),
    "max_concurrency": ("MaxConcurrency", "maxConcurrency", "max_concurrency"),
    "sync_mode": ("SyncMode", "syncMode", "sync_mode"),
}


def _lookup(data: dict, name: str, default: Any = None) -> Any:
    for key in _FIELD_KEYS[name]:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class BackupJobConfig:
    """Configuration of one backup job (one account).

    Examples:
        >>> job = BackupJobConfig(
        ...     account_name="Personal",
        ...     client_id="app-id",
        ...     refresh_token="token",
        ...     local_target_directory="/backup/personal",
        ... )
        >>> job.sync_mode
        <SyncMode.FULL_LISTING: 'fullListing'>
    """

    account_name: str
    client_id: str
    refresh_token: str
    local_target_directory: Path
    client_secret: str = ""
    onedrive_directory: str = ""
    backup_interval_minutes: int = DEFAULT_BACKUP_INTERVAL_MINUTES
    excluded: list[str] = field(default_factory=list)
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    sync_mode: SyncMode = SyncMode.FULL_LISTING
    source: Optional[Path] = None
    """File the job was loaded from, if any"""

    def __post_init__(self) -> None:
        """Normalize and validate the configuration."""
        if isinstance(self.local_target_directory, str):
            if not self.local_target_directory.strip():
                raise ConfigError(
                    f"{self.account_name or 'job'}: LocalTargetDirectory is required"
                )
            self.local_target_directory = Path(self.local_target_directory)
        if isinstance(self.sync_mode, str) and not isinstance(
            self.sync_mode, SyncMode
        ):
            try:
                self.sync_mode = SyncMode.from_string(self.sync_mode)
            except ValueError as e:
                raise ConfigError(str(e)) from e
        self.onedrive_directory = normalize_remote_root(self.onedrive_directory)
        self.excluded = [p for p in self.excluded if p]
        self.validate()

    def validate(self) -> None:
        """Check required fields and value ranges.

        Raises:
            ConfigError: If the configuration is unusable
        """
        label = self.account_name or (str(self.source) if self.source else "job")
        if not self.account_name:
            raise ConfigError(f"{label}: AccountName is required")
        if not self.client_id:
            raise ConfigError(f"{label}: ClientId is required")
        if not self.refresh_token:
            raise ConfigError(f"{label}: RefreshToken is required")
        if self.max_concurrency < 1:
            raise ConfigError(f"{label}: MaxConcurrency must be at least 1")
        if self.backup_interval_minutes < 1:
            raise ConfigError(f"{label}: BackupIntervalMinutes must be at least 1")

    @property
    def identity(self) -> str:
        """Key that identifies this job across scheduler invocations."""
        where = self.source.resolve() if self.source else self.local_target_directory
        return f"{self.account_name}:{where}"

    @property
    def interval_seconds(self) -> float:
        return self.backup_interval_minutes * 60.0

    @classmethod
    def from_dict(
        cls, data: dict, source: Optional[Path] = None
    ) -> "BackupJobConfig":
        """Create a job from a configuration dictionary.

        Args:
            data: Parsed JSON object
            source: File the dictionary was read from

        Returns:
            BackupJobConfig instance

        Raises:
            ConfigError: If a value has the wrong type or a field is missing
        """
        if not isinstance(data, dict):
            raise ConfigError(f"{source or 'job'}: expected a JSON object")

        excluded = _lookup(data, "excluded", [])
        if isinstance(excluded, str):
            excluded = [excluded]
        if not isinstance(excluded, list):
            raise ConfigError(f"{source or 'job'}: Excluded must be a list")

        try:
            return cls(
                account_name=str(_lookup(data, "account_name", "")),
                client_id=str(_lookup(data, "client_id", "")),
                client_secret=str(_lookup(data, "client_secret", "")),
                refresh_token=str(_lookup(data, "refresh_token", "")),
                onedrive_directory=str(_lookup(data, "onedrive_directory", "")),
                local_target_directory=str(
                    _lookup(data, "local_target_directory", "")
                ),
                backup_interval_minutes=int(
                    _lookup(
                        data, "backup_interval_minutes", DEFAULT_BACKUP_INTERVAL_MINUTES
                    )
                ),
                excluded=[str(p) for p in excluded],
                max_concurrency=int(
                    _lookup(data, "max_concurrency", DEFAULT_MAX_CONCURRENCY)
                ),
                sync_mode=str(_lookup(data, "sync_mode", SyncMode.FULL_LISTING.value)),
                source=source,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{source or 'job'}: invalid value: {e}") from e

    def to_dict(self) -> dict:
        """Convert to the JSON form written by the original tool."""
        return {
            "AccountName": self.account_name,
            "ClientId": self.client_id,
            "ClientSecret": self.client_secret,
            "RefreshToken": self.refresh_token,
            "OneDriveDirectory": self.onedrive_directory,
            "LocalTargetDirectory": str(self.local_target_directory),
            "BackupIntervalMinutes": self.backup_interval_minutes,
            "Excluded": list(self.excluded),
            "MaxConcurrency": self.max_concurrency,
            "SyncMode": self.sync_mode.value,
        }


def load_job_from_json(path: Union[str, Path]) -> BackupJobConfig:
    """Load one backup job from a JSON file.

    Args:
        path: Path to the job file

    Returns:
        BackupJobConfig

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file '{path}' does not exist")
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    return BackupJobConfig.from_dict(data, source=path)


def load_jobs_from_directory(directory: Union[str, Path]) -> list[BackupJobConfig]:
    """Load every ``*.json`` job file in a config folder.

    Args:
        directory: Config folder

    Returns:
        Jobs sorted by file name

    Raises:
        ConfigError: If the folder is missing, holds no jobs, or a job is invalid
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigError(f"Config folder '{directory}' does not exist")

    jobs = [load_job_from_json(p) for p in sorted(directory.glob("*.json"))]
    if not jobs:
        raise ConfigError(f"No backup jobs configured in '{directory}'")

    logger.debug(f"Loaded {len(jobs)} job(s) from {directory}")
    return jobs


def load_jobs(path: Union[str, Path]) -> list[BackupJobConfig]:
    """Load a single job file or every job in a config folder."""
    path = Path(path)
    if path.is_dir():
        return load_jobs_from_directory(path)
    return [load_job_from_json(path)]
