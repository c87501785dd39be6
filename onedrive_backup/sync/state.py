"""Checkpoint state persisted between backup runs.

The checkpoint remembers every remote file and folder seen by the last
successful run, keyed by its current path, together with the delta link
that lets the next run fetch only what changed since then. It is stored as
JSON in the job's target directory and rewritten wholesale at the end of
each successful run.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from ..exceptions import LocalIOError
from ..utils import is_descendant_path

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = ".onedrive-backup-metadata.json"


def is_reserved_path(
    relative_path: str, reserved_name: str = METADATA_FILE_NAME
) -> bool:
    """Check whether a path belongs to the checkpoint file or its temporary copy."""
    return relative_path.lstrip("/").startswith(reserved_name)


@dataclass
class RemoteFile:
    """A remote file as last observed."""

    id: str
    """Stable drive item id, unchanged across renames and moves"""

    file_name: str
    """Current path relative to the drive root, e.g. "/Documents/a.txt" """

    size: int = 0
    last_modified: Optional[str] = None
    e_tag: str = ""
    """Version of the item including its metadata"""

    c_tag: str = ""
    """Version of the file content"""

    excluded: bool = False

    def to_dict(self) -> dict:
        """Convert to the persisted dictionary form."""
        return {
            "Id": self.id,
            "FileName": self.file_name,
            "Size": self.size,
            "LastModified": self.last_modified,
            "ETag": self.e_tag,
            "CTag": self.c_tag,
            "Excluded": self.excluded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteFile":
        """Create RemoteFile from its persisted dictionary form."""
        return cls(
            id=data.get("Id", ""),
            file_name=data.get("FileName", ""),
            size=data.get("Size", 0) or 0,
            last_modified=data.get("LastModified"),
            e_tag=data.get("ETag", "") or "",
            c_tag=data.get("CTag", "") or "",
            excluded=bool(data.get("Excluded", False)),
        )


@dataclass
class RemoteFolder:
    """A remote folder as last observed."""

    id: str
    path: str
    excluded: bool = False

    def to_dict(self) -> dict:
        """Convert to the persisted dictionary form."""
        return {"Id": self.id, "Path": self.path, "Excluded": self.excluded}

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteFolder":
        """Create RemoteFolder from its persisted dictionary form."""
        return cls(
            id=data.get("Id", ""),
            path=data.get("Path", ""),
            excluded=bool(data.get("Excluded", False)),
        )


@dataclass
class UpdateBatch:
    """All changes reported by one delta round, every page merged."""

    files: list[RemoteFile] = field(default_factory=list)
    folders: list[RemoteFolder] = field(default_factory=list)
    deleted_file_ids: list[str] = field(default_factory=list)
    deleted_folder_ids: list[str] = field(default_factory=list)
    full_resync: bool = False
    """True when the round started from a fresh delta origin, so it reports
    every item that currently exists below the root"""

    def is_empty(self) -> bool:
        return not (
            self.files
            or self.folders
            or self.deleted_file_ids
            or self.deleted_folder_ids
        )

    def extend(self, other: "UpdateBatch") -> None:
        """Append the changes of another page."""
        self.files.extend(other.files)
        self.folders.extend(other.folders)
        self.deleted_file_ids.extend(other.deleted_file_ids)
        self.deleted_folder_ids.extend(other.deleted_folder_ids)


@dataclass
class BackupMetadata:
    """Checkpoint of one backup job.

    Files and folders are keyed by their current path. An id -> path index
    is kept alongside each map so that moves and deletions reported by id
    resolve without scanning. All mutators take an internal lock because
    file changes are reconciled from several worker threads.
    """

    last_backup_time: Optional[str] = None
    total_files_backed_up: int = 0
    files: dict[str, RemoteFile] = field(default_factory=dict)
    folders: dict[str, RemoteFolder] = field(default_factory=dict)
    delta_link: Optional[str] = None

    _file_ids: dict[str, str] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _folder_ids: dict[str, str] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _lock: Any = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self._rebuild_indexes()

    def _rebuild_indexes(self) -> None:
        self._file_ids = {f.id: path for path, f in self.files.items() if f.id}
        self._folder_ids = {f.id: path for path, f in self.folders.items() if f.id}

    # -- files -------------------------------------------------------------

    def get_file(self, path: str) -> Optional[RemoteFile]:
        with self._lock:
            return self.files.get(path)

    def find_file_by_id(self, file_id: str) -> Optional[RemoteFile]:
        """Look up a file entry by its stable id."""
        with self._lock:
            path = self._file_ids.get(file_id)
            return self.files.get(path) if path is not None else None

    def put_file(self, remote_file: RemoteFile) -> None:
        """Insert or overwrite the entry at the file's current path."""
        with self._lock:
            displaced = self.files.get(remote_file.file_name)
            if displaced is not None and displaced.id != remote_file.id:
                if self._file_ids.get(displaced.id) == remote_file.file_name:
                    del self._file_ids[displaced.id]
            self.files[remote_file.file_name] = remote_file
            if remote_file.id:
                self._file_ids[remote_file.id] = remote_file.file_name

    def remove_file(
        self, path: str, file_id: Optional[str] = None
    ) -> Optional[RemoteFile]:
        """Remove the entry at path, returning it if present.

        When file_id is given, an entry at path belonging to another id is
        left in place.
        """
        with self._lock:
            current = self.files.get(path)
            if current is None or (file_id is not None and current.id != file_id):
                return None
            removed = self.files.pop(path)
            if self._file_ids.get(removed.id) == path:
                del self._file_ids[removed.id]
            return removed

    # -- folders -----------------------------------------------------------

    def folders_below(self, path: str) -> list[RemoteFolder]:
        """Return the folder entries below path, parents before children."""
        with self._lock:
            return [
                self.folders[p]
                for p in sorted(self.folders)
                if is_descendant_path(p, path)
            ]

    def find_folder_by_id(self, folder_id: str) -> Optional[RemoteFolder]:
        """Look up a folder entry by its stable id."""
        with self._lock:
            path = self._folder_ids.get(folder_id)
            return self.folders.get(path) if path is not None else None

    def put_folder(self, folder: RemoteFolder) -> None:
        """Insert or overwrite the entry at the folder's current path."""
        with self._lock:
            displaced = self.folders.get(folder.path)
            if displaced is not None and displaced.id != folder.id:
                if self._folder_ids.get(displaced.id) == folder.path:
                    del self._folder_ids[displaced.id]
            self.folders[folder.path] = folder
            if folder.id:
                self._folder_ids[folder.id] = folder.path

    def remove_folder(
        self, path: str, folder_id: Optional[str] = None
    ) -> Optional[RemoteFolder]:
        """Remove the entry at path, returning it if present.

        When folder_id is given, an entry at path belonging to another id is
        left in place.
        """
        with self._lock:
            current = self.folders.get(path)
            if current is None or (
                folder_id is not None and current.id != folder_id
            ):
                return None
            removed = self.folders.pop(path)
            if self._folder_ids.get(removed.id) == path:
                del self._folder_ids[removed.id]
            return removed

    # -- subtrees ----------------------------------------------------------

    def rebase_folder(
        self,
        old_path: str,
        new_path: str,
        is_excluded: Optional[Callable[[str], bool]] = None,
    ) -> int:
        """Re-key every entry below old_path to sit below new_path.

        Args:
            old_path: Previous folder path
            new_path: Current folder path
            is_excluded: When given, recomputes the excluded flag of every
                re-keyed entry for its new path

        Returns:
            Number of re-keyed entries
        """
        moved = 0
        with self._lock:
            for path in [p for p in self.files if is_descendant_path(p, old_path)]:
                entry = self.remove_file(path)
                if entry is not None:
                    entry.file_name = new_path + path[len(old_path) :]
                    if is_excluded is not None:
                        entry.excluded = is_excluded(entry.file_name)
                    self.put_file(entry)
                    moved += 1
            for path in [p for p in self.folders if is_descendant_path(p, old_path)]:
                folder = self.remove_folder(path)
                if folder is not None:
                    folder.path = new_path + path[len(old_path) :]
                    if is_excluded is not None:
                        folder.excluded = is_excluded(folder.path)
                    self.put_folder(folder)
                    moved += 1
        return moved

    def prune_below(self, path: str) -> int:
        """Remove every file and folder entry below path.

        Returns:
            Number of removed entries
        """
        with self._lock:
            file_paths = [p for p in self.files if is_descendant_path(p, path)]
            folder_paths = [p for p in self.folders if is_descendant_path(p, path)]
            for file_path in file_paths:
                self.remove_file(file_path)
            for folder_path in folder_paths:
                self.remove_folder(folder_path)
            return len(file_paths) + len(folder_paths)

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict:
        """Convert checkpoint to dictionary for JSON serialization."""
        with self._lock:
            return {
                "LastBackupTime": self.last_backup_time,
                "TotalFilesBackedUp": self.total_files_backed_up,
                "Files": {path: f.to_dict() for path, f in sorted(self.files.items())},
                "Folders": {
                    path: f.to_dict() for path, f in sorted(self.folders.items())
                },
                "DeltaLink": self.delta_link,
            }

    @classmethod
    def from_dict(cls, data: dict) -> "BackupMetadata":
        """Create a checkpoint from its dictionary form.

        Map keys are authoritative for the entry paths.
        """
        files = {}
        for path, entry in (data.get("Files") or {}).items():
            remote_file = RemoteFile.from_dict(entry)
            remote_file.file_name = path
            files[path] = remote_file
        folders = {}
        for path, entry in (data.get("Folders") or {}).items():
            folder = RemoteFolder.from_dict(entry)
            folder.path = path
            folders[path] = folder
        return cls(
            last_backup_time=data.get("LastBackupTime"),
            total_files_backed_up=data.get("TotalFilesBackedUp", 0) or 0,
            files=files,
            folders=folders,
            delta_link=data.get("DeltaLink"),
        )


class MetadataStore:
    """Loads and saves the checkpoint file of a backup job."""

    def __init__(self, file_name: str = METADATA_FILE_NAME):
        self.file_name = file_name

    def path_for(self, target_directory: Path) -> Path:
        """Get the checkpoint path inside a job's target directory."""
        return Path(target_directory) / self.file_name

    def load(self, path: Path) -> BackupMetadata:
        """Load a checkpoint.

        Args:
            path: Checkpoint file

        Returns:
            Parsed checkpoint, or an empty one if the file is absent or unreadable
        """
        if not path.exists():
            logger.debug(f"No checkpoint found at {path}, starting empty")
            return BackupMetadata()

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("checkpoint root is not an object")
            metadata = BackupMetadata.from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load checkpoint {path}, starting empty: {e}")
            return BackupMetadata()

        logger.debug(
            f"Loaded checkpoint with {len(metadata.files)} files and "
            f"{len(metadata.folders)} folders from {metadata.last_backup_time}"
        )
        return metadata

    def save(self, path: Path, metadata: BackupMetadata) -> None:
        """Overwrite the checkpoint file with the complete checkpoint.

        Args:
            path: Checkpoint file
            metadata: Checkpoint to persist

        Raises:
            LocalIOError: If the file cannot be written
        """
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(metadata.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise LocalIOError(f"Failed to save checkpoint: {e}", str(path)) from e

        logger.debug(f"Saved checkpoint with {len(metadata.files)} files to {path}")
