"""Local filesystem operations and downloads shared by both sync strategies."""

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from ..api import OneDriveClient
from ..exceptions import LocalIOError, OneDriveDownloadError, OneDriveNetworkError
from .exclusion import ExclusionFilter
from .result import SyncResult
from .state import BackupMetadata, RemoteFile

if TYPE_CHECKING:
    from ..config import BackupJobConfig

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, logging.LoggerAdapter]


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the account a job backs up."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"[Job-{self.extra['account']}] {msg}", kwargs


def job_logger(account_name: str, base: Optional[logging.Logger] = None) -> Log:
    """Get a logger adapter carrying a job's account context."""
    return JobLogAdapter(base or logger, {"account": account_name})


class SyncOperations:
    """Create, move and delete paths below a job's target directory.

    Every method takes paths relative to the drive root ("/sub/b.txt") and
    raises LocalIOError when the filesystem refuses the change.
    """

    def __init__(
        self,
        client: OneDriveClient,
        target_directory: Path,
        log: Optional[Log] = None,
    ):
        """Initialize sync operations.

        Args:
            client: Graph API client used for downloads
            target_directory: Local directory mirroring the remote tree
            log: Logger, usually carrying the job's account context
        """
        self.client = client
        self.target_directory = Path(target_directory)
        self.log = log or logger

    def local_path(self, relative_path: str) -> Path:
        """Map a remote path to its location in the target directory."""
        return self.target_directory / relative_path.lstrip("/\\")

    def ensure_directory(self, relative_path: str) -> bool:
        """Create a local directory and its parents.

        Returns:
            True if the directory was created, False if it already existed
        """
        path = self.local_path(relative_path)
        if path.is_dir():
            return False
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(
                f"Failed to create directory {relative_path}: {e}", relative_path
            ) from e
        self.log.info(f"Created local directory: {relative_path}")
        return True

    def delete_file(self, relative_path: str) -> bool:
        """Delete a local file.

        Returns:
            True if a file was deleted, False if none existed
        """
        path = self.local_path(relative_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LocalIOError(
                f"Failed to delete {relative_path}: {e}", relative_path
            ) from e
        self.log.info(f"Deleted local file: {relative_path}")
        return True

    def delete_directory(self, relative_path: str) -> bool:
        """Delete a local directory with everything below it.

        Returns:
            True if a directory was deleted, False if none existed
        """
        path = self.local_path(relative_path)
        if not path.is_dir():
            return False
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LocalIOError(
                f"Failed to delete directory {relative_path}: {e}", relative_path
            ) from e
        self.log.info(f"Deleted local directory: {relative_path}")
        return True

    def move_file(self, old_path: str, new_path: str) -> bool:
        """Move a local file, replacing any file at the destination.

        Returns:
            True if a file was moved, False if the source did not exist
        """
        source = self.local_path(old_path)
        destination = self.local_path(new_path)
        if not source.is_file():
            return False
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            source.replace(destination)
        except OSError as e:
            raise LocalIOError(
                f"Failed to move {old_path} -> {new_path}: {e}", old_path
            ) from e
        self.log.info(f"Moved local file: {old_path} -> {new_path}")
        return True

    def move_directory(self, old_path: str, new_path: str) -> bool:
        """Move a local directory if the destination does not exist yet.

        Returns:
            True if the directory was moved
        """
        source = self.local_path(old_path)
        destination = self.local_path(new_path)
        if not source.is_dir() or destination.exists():
            return False
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            source.rename(destination)
        except OSError as e:
            raise LocalIOError(
                f"Failed to move directory {old_path} -> {new_path}: {e}", old_path
            ) from e
        self.log.info(f"Moved local directory: {old_path} -> {new_path}")
        return True

    def download_file(self, remote_file: RemoteFile) -> int:
        """Download a remote file to its local path.

        Returns:
            Number of bytes written
        """
        return self.client.download_file(
            path=remote_file.file_name,
            output_path=self.local_path(remote_file.file_name),
        )


class DownloadExecutor:
    """Downloads file content with a bounded number of concurrent transfers.

    Each transfer holds one of ``max_concurrency`` permits. A failed
    transfer is logged and reported as False; the local file stays as it
    was, so callers leave the checkpoint entry unchanged and the file is
    fetched again on the next run.
    """

    def __init__(
        self,
        operations: SyncOperations,
        max_concurrency: int,
        result: SyncResult,
        log: Optional[Log] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.operations = operations
        self.max_concurrency = max_concurrency
        self.result = result
        self.log = log or logger
        self._permits = threading.BoundedSemaphore(max_concurrency)

    def download(self, remote_file: RemoteFile) -> bool:
        """Download one file, waiting for a free permit first.

        Returns:
            True if the file was downloaded
        """
        with self._permits:
            try:
                size = self.operations.download_file(remote_file)
            except (OneDriveDownloadError, OneDriveNetworkError) as e:
                self.log.warning(f"Failed to download {remote_file.file_name}: {e}")
                self.result.record_error(e)
                return False

        self.result.add("files_downloaded")
        self.result.add("bytes_downloaded", size)
        self.log.info(f"Downloaded: {remote_file.file_name}")
        return True

    def download_all(self, files: Iterable[RemoteFile]) -> list[RemoteFile]:
        """Download many files in parallel.

        Args:
            files: Files to download

        Returns:
            The files that were downloaded successfully
        """
        pending = list(files)
        if not pending:
            return []

        self.log.debug(
            f"Downloading {len(pending)} file(s) with {self.max_concurrency} workers"
        )
        downloaded: list[RemoteFile] = []
        with ThreadPoolExecutor(max_workers=self.max_concurrency) as executor:
            futures = {executor.submit(self.download, f): f for f in pending}
            for future in as_completed(futures):
                if future.result():
                    downloaded.append(futures[future])
        return downloaded


@dataclass
class SyncContext:
    """Everything a sync strategy needs for one run of one job."""

    job: "BackupJobConfig"
    client: OneDriveClient
    metadata: BackupMetadata
    operations: SyncOperations
    downloader: DownloadExecutor
    result: SyncResult
    log: Log
    excluded: ExclusionFilter
