"""Backup job runner: one run of one account, from token to checkpoint."""

import logging
from typing import Callable, Optional

from ..api import OneDriveClient
from ..auth import TokenProvider
from ..exceptions import LocalIOError
from ..utils import format_size, utc_now_iso
from .delta import DeltaReconciler
from .exclusion import ExclusionFilter
from .full_listing import LocalTreeReconciler
from .modes import SyncMode
from .operations import DownloadExecutor, SyncContext, SyncOperations, job_logger
from .result import RunState, SyncResult
from .state import MetadataStore

logger = logging.getLogger(__name__)

# Both strategies expose observe(), reconcile(), download() and checkpoint()
STRATEGIES = {
    SyncMode.FULL_LISTING: LocalTreeReconciler,
    SyncMode.DELTA: DeltaReconciler,
}


class BackupJobRunner:
    """Runs a backup job through its states.

    ``IDLE -> TOKEN_ACQUIRED -> OBSERVED -> RECONCILED -> DOWNLOADED ->
    PERSISTED``. Any exception moves the run to ``FAILED``; the checkpoint
    is saved exactly once, after the download phase, and only when every
    earlier phase succeeded.
    """

    def __init__(
        self,
        job,
        token_provider: Optional[TokenProvider] = None,
        client_factory: Optional[Callable[[str], OneDriveClient]] = None,
        store: Optional[MetadataStore] = None,
    ):
        """Initialize the runner.

        Args:
            job: BackupJobConfig to run
            token_provider: Exchanges the refresh token for an access token
            client_factory: Builds an API client from an access token
            store: Checkpoint persistence
        """
        self.job = job
        self.token_provider = token_provider or TokenProvider()
        self.client_factory = client_factory or OneDriveClient
        self.store = store or MetadataStore()
        self.log = job_logger(job.account_name, logger)

    def run(self) -> SyncResult:
        """Run the job once.

        Never raises; failures are reported through the returned result.

        Returns:
            SyncResult with the final state and statistics
        """
        job = self.job
        result = SyncResult(
            account_name=job.account_name,
            sync_mode=job.sync_mode,
            started_at=utc_now_iso(),
        )
        self.log.info(
            f"Starting {job.sync_mode.value} backup into {job.local_target_directory}"
        )

        try:
            self._run(result)
        except Exception as e:
            failed_in = result.state
            result.state = RunState.FAILED
            result.error = e
            self.log.error(
                f"Backup failed after state '{failed_in.value}': {e}", exc_info=True
            )
        finally:
            result.finished_at = utc_now_iso()

        if result.succeeded:
            self.log.info(
                f"Backup complete: {result.files_downloaded} downloaded "
                f"({format_size(result.bytes_downloaded)}), "
                f"{result.files_skipped} unchanged, {result.files_moved} moved, "
                f"{result.files_deleted} deleted, {len(result.errors)} error(s)"
            )
        return result

    def _run(self, result: SyncResult) -> None:
        job = self.job

        access_token = self.token_provider.refresh(
            job.client_id, job.client_secret, job.refresh_token
        )
        result.state = RunState.TOKEN_ACQUIRED

        target = job.local_target_directory
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(
                f"Cannot create target directory {target}: {e}", str(target)
            ) from e

        metadata_path = self.store.path_for(target)
        metadata = self.store.load(metadata_path)

        client = self.client_factory(access_token)
        try:
            operations = SyncOperations(client, target, log=self.log)
            context = SyncContext(
                job=job,
                client=client,
                metadata=metadata,
                operations=operations,
                downloader=DownloadExecutor(
                    operations, job.max_concurrency, result, log=self.log
                ),
                result=result,
                log=self.log,
                excluded=ExclusionFilter(job.excluded),
            )
            strategy = STRATEGIES[job.sync_mode](context)

            strategy.observe()
            result.state = RunState.OBSERVED
            strategy.reconcile()
            result.state = RunState.RECONCILED
            strategy.download()
            result.state = RunState.DOWNLOADED
            strategy.checkpoint()
        finally:
            client.close()

        metadata.last_backup_time = utc_now_iso()
        metadata.total_files_backed_up = len(metadata.files)
        self.store.save(metadata_path, metadata)
        result.state = RunState.PERSISTED
