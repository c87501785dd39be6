"""Periodic execution of backup jobs."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .config import BackupJobConfig
from .exceptions import ConfigError
from .sync.engine import BackupJobRunner
from .sync.result import SyncResult

logger = logging.getLogger(__name__)


class BackupScheduler:
    """Runs every configured job, once or on its own interval.

    Jobs are independent; the only state they share is the set of job
    identities currently running. A job whose previous run is still active
    when it comes due again is skipped, not queued.
    """

    def __init__(
        self,
        jobs: list[BackupJobConfig],
        runner_factory: Optional[Callable[[BackupJobConfig], BackupJobRunner]] = None,
    ):
        """Initialize the scheduler.

        Args:
            jobs: Jobs to run
            runner_factory: Builds the runner for a job

        Raises:
            ConfigError: If no jobs are configured
        """
        if not jobs:
            raise ConfigError("No backup jobs configured")
        self.jobs = list(jobs)
        self.runner_factory = runner_factory or BackupJobRunner
        self._running: set[str] = set()
        self._running_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def try_run(self, job: BackupJobConfig) -> Optional[SyncResult]:
        """Run a job unless a run of the same job is already in progress.

        Returns:
            The run's result, or None if the job was skipped
        """
        with self._running_lock:
            if job.identity in self._running:
                logger.warning(
                    f"[Job-{job.account_name}] Previous run still running, skipping"
                )
                return None
            self._running.add(job.identity)

        try:
            return self.runner_factory(job).run()
        finally:
            with self._running_lock:
                self._running.discard(job.identity)

    def run_once(self) -> list[Optional[SyncResult]]:
        """Run every job once, concurrently.

        Returns:
            One entry per job in configuration order; None for skipped jobs
        """
        with ThreadPoolExecutor(max_workers=len(self.jobs)) as executor:
            return list(executor.map(self.try_run, self.jobs))

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Run every job on its interval until stopped.

        Each job gets its own loop thread. A failed run does not stop its
        loop; the job is simply tried again after the next interval.

        Args:
            stop_event: Event that ends the loops; defaults to the one
                :meth:`stop` sets
        """
        if stop_event is not None:
            self._stop_event = stop_event

        logger.info(f"Scheduling {len(self.jobs)} backup job(s)")
        self._threads = [
            threading.Thread(
                target=self._job_loop,
                args=(job,),
                name=f"backup-{job.account_name}",
                daemon=True,
            )
            for job in self.jobs
        ]
        for thread in self._threads:
            thread.start()
        for thread in self._threads:
            thread.join()
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Ask all job loops to finish after their current run."""
        self._stop_event.set()

    def _job_loop(self, job: BackupJobConfig) -> None:
        while not self._stop_event.is_set():
            try:
                result = self.try_run(job)
            except Exception:
                # Keep scheduling even if a runner blows up outside its own handling
                logger.exception(f"[Job-{job.account_name}] Unexpected error")
                result = None
            if result is not None and not result.succeeded:
                logger.info(
                    f"[Job-{job.account_name}] Will retry in "
                    f"{job.backup_interval_minutes} minute(s)"
                )
            self._stop_event.wait(job.interval_seconds)
