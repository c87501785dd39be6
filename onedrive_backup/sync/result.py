"""Outcome of a backup run."""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .modes import SyncMode


class RunState(str, Enum):
    """Stages of a backup run, in the order a successful run passes them."""

    IDLE = "idle"
    TOKEN_ACQUIRED = "tokenAcquired"
    OBSERVED = "observed"
    RECONCILED = "reconciled"
    DOWNLOADED = "downloaded"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Statistics and final state of one backup run.

    Counters are updated from worker threads through :meth:`add`.
    """

    account_name: str
    sync_mode: SyncMode
    state: RunState = RunState.IDLE
    files_downloaded: int = 0
    files_skipped: int = 0
    files_moved: int = 0
    files_deleted: int = 0
    folders_created: int = 0
    folders_moved: int = 0
    folders_deleted: int = 0
    bytes_downloaded: int = 0
    errors: list[Exception] = field(default_factory=list)
    error: Optional[Exception] = None
    """Exception that failed the run, if any"""

    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    _lock: Any = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.PERSISTED

    def add(self, counter: str, amount: int = 1) -> None:
        """Increment a counter attribute, e.g. ``add("files_moved")``."""
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def record_error(self, error: Exception) -> None:
        """Remember an error that was recovered from."""
        with self._lock:
            self.errors.append(error)

    def to_dict(self) -> dict:
        """Summary suitable for display or JSON output."""
        return {
            "account": self.account_name,
            "mode": self.sync_mode.value,
            "state": self.state.value,
            "downloaded": self.files_downloaded,
            "skipped": self.files_skipped,
            "moved": self.files_moved,
            "deleted": self.files_deleted,
            "folders_created": self.folders_created,
            "folders_moved": self.folders_moved,
            "folders_deleted": self.folders_deleted,
            "bytes_downloaded": self.bytes_downloaded,
            "errors": len(self.errors),
            "error": str(self.error) if self.error else None,
        }
