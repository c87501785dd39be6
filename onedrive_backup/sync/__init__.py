"""Sync engine for OneDrive backup - full-listing and delta reconciliation."""

from .delta import DeltaReconciler
from .engine import STRATEGIES, BackupJobRunner
from .exclusion import ExclusionFilter, is_excluded
from .full_listing import LocalTreeReconciler
from .modes import SyncMode
from .operations import DownloadExecutor, SyncContext, SyncOperations, job_logger
from .result import RunState, SyncResult
from .scanner import DirectoryScanner, LocalTree
from .state import (
    METADATA_FILE_NAME,
    BackupMetadata,
    MetadataStore,
    RemoteFile,
    RemoteFolder,
    UpdateBatch,
)

__all__ = [
    "BackupJobRunner",
    "STRATEGIES",
    "SyncMode",
    "SyncResult",
    "RunState",
    "SyncContext",
    "SyncOperations",
    "DownloadExecutor",
    "job_logger",
    "LocalTreeReconciler",
    "DeltaReconciler",
    "ExclusionFilter",
    "is_excluded",
    "DirectoryScanner",
    "LocalTree",
    "BackupMetadata",
    "MetadataStore",
    "RemoteFile",
    "RemoteFolder",
    "UpdateBatch",
    "METADATA_FILE_NAME",
]
