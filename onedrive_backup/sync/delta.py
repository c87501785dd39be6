"""Delta strategy: apply one incremental change round by stable item id."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from ..delta_manager import DeltaManager
from ..exceptions import LocalIOError
from .operations import SyncContext
from .state import RemoteFile, RemoteFolder, UpdateBatch, is_reserved_path


class DeltaReconciler:
    """Applies an UpdateBatch to the target directory and the checkpoint.

    Checkpoint entries are keyed by path, so an upsert whose id is already
    known under another path is a move. Upserts are applied first (folders
    one at a time, then files on a worker pool) and deletions last, since
    the feed reports a rename as an upsert and never as delete plus create.
    """

    def __init__(
        self,
        context: SyncContext,
        delta_manager: Optional[DeltaManager] = None,
    ):
        self.context = context
        self.delta_manager = delta_manager or DeltaManager(
            context.client, root=context.job.onedrive_directory
        )
        self.update: Optional[UpdateBatch] = None
        self.next_link: Optional[str] = None

    def observe(self) -> None:
        """Collect the complete change round since the stored delta link.

        Raises:
            OneDriveAPIError: If any page of the round cannot be fetched
        """
        self.update, self.next_link = self.delta_manager.collect_update(
            self.context.metadata
        )

    def reconcile(self) -> None:
        """Apply folder upserts, file upserts and then deletions."""
        if self.update is None:
            raise RuntimeError("observe() must run before reconcile()")
        update = self.update
        ctx = self.context

        if update.is_empty():
            ctx.log.info("No remote changes since the last round")

        for folder in update.folders:
            self._guarded(self.apply_folder, folder)

        # Priors are resolved before any upsert lands, since an upsert onto a
        # path held by another id drops that id from the index
        priors = {f.id: ctx.metadata.find_file_by_id(f.id) for f in update.files}
        remaining = self._apply_displacing_moves(update.files, priors)

        if remaining:
            with ThreadPoolExecutor(max_workers=ctx.job.max_concurrency) as executor:
                futures = [
                    executor.submit(self._guarded, self.apply_file, f, priors[f.id])
                    for f in remaining
                ]
                for future in as_completed(futures):
                    # Anything but a local I/O error fails the run
                    future.result()

        for file_id in update.deleted_file_ids:
            self.delete_file(file_id)
        for folder_id in update.deleted_folder_ids:
            self.delete_folder(folder_id)

        if update.full_resync:
            self.prune_unreported()

    def download(self) -> None:
        """Retry files the checkpoint knows but the target directory lacks.

        Covers earlier failed downloads of new files and the contents of
        folders that moved out of an excluded subtree. Files reported in
        this round were already handled during reconciliation.
        """
        ctx = self.context
        reported = {f.id for f in self.update.files} if self.update else set()
        pending = [
            f
            for f in list(ctx.metadata.files.values())
            if not f.excluded
            and f.id not in reported
            and not ctx.operations.local_path(f.file_name).is_file()
        ]
        if pending:
            ctx.log.info(f"Retrying {len(pending)} missing file(s)")
        ctx.downloader.download_all(pending)

    def checkpoint(self) -> None:
        """Advance the delta link, even when the round had no changes."""
        self.context.metadata.delta_link = self.next_link

    def apply_folder(self, folder: RemoteFolder) -> None:
        """Apply one folder upsert. Never transfers content."""
        ctx = self.context
        metadata = ctx.metadata
        folder.excluded = ctx.excluded(folder.path)

        prior = metadata.find_folder_by_id(folder.id)
        metadata.put_folder(folder)
        moved = prior is not None and prior.path != folder.path
        if moved:
            metadata.remove_folder(prior.path, folder.id)

        if prior is not None and (moved or prior.excluded != folder.excluded):
            metadata.rebase_folder(prior.path, folder.path, ctx.excluded)

        if prior is not None and not prior.excluded:
            if folder.excluded:
                if ctx.operations.delete_directory(prior.path):
                    ctx.result.add("folders_deleted")
                return
            if moved and ctx.operations.move_directory(prior.path, folder.path):
                ctx.result.add("folders_moved")

        if folder.excluded:
            ctx.log.debug(f"Excluded folder: {folder.path}")
            return

        if ctx.operations.ensure_directory(folder.path):
            ctx.result.add("folders_created")

        if prior is not None and prior.excluded:
            # The subtree left the excluded area with this folder; its files
            # are fetched by download()
            for sub in metadata.folders_below(folder.path):
                if not sub.excluded and ctx.operations.ensure_directory(sub.path):
                    ctx.result.add("folders_created")

    def apply_file(
        self,
        remote_file: RemoteFile,
        prior: Optional[RemoteFile],
        source: Optional[str] = None,
    ) -> None:
        """Apply one file upsert, downloading content when it changed.

        Args:
            remote_file: File as reported by this round
            prior: Checkpoint entry of the same id before this round, if any
            source: Local path holding the prior content when it is not
                prior.file_name
        """
        ctx = self.context
        metadata = ctx.metadata
        if is_reserved_path(remote_file.file_name):
            ctx.log.warning(
                f"Skipping {remote_file.file_name}: reserved for the checkpoint"
            )
            return
        remote_file.excluded = ctx.excluded(remote_file.file_name)

        metadata.put_file(remote_file)
        moved = prior is not None and prior.file_name != remote_file.file_name
        if moved:
            metadata.remove_file(prior.file_name, remote_file.id)

        # Whether the local file at the new path holds this item's content
        in_place = not moved
        if prior is not None and not prior.excluded:
            if remote_file.excluded:
                if ctx.operations.delete_file(source or prior.file_name):
                    ctx.result.add("files_deleted")
                return
            if moved:
                in_place = ctx.operations.move_file(
                    source or prior.file_name, remote_file.file_name
                )
                if in_place:
                    ctx.result.add("files_moved")

        if remote_file.excluded:
            ctx.log.debug(f"Excluded file: {remote_file.file_name}")
            return

        if (
            prior is not None
            and in_place
            and prior.c_tag == remote_file.c_tag
            and ctx.operations.local_path(remote_file.file_name).is_file()
        ):
            ctx.log.debug(f"Content unchanged, skipping: {remote_file.file_name}")
            ctx.result.add("files_skipped")
            return

        if not ctx.downloader.download(remote_file):
            # Keep the old content version so the next round fetches it again
            remote_file.c_tag = prior.c_tag if prior is not None else ""

    def delete_file(self, file_id: str) -> None:
        """Apply a file tombstone."""
        ctx = self.context
        entry = ctx.metadata.find_file_by_id(file_id)
        if entry is None:
            return
        try:
            if (
                not entry.excluded
                and not is_reserved_path(entry.file_name)
                and ctx.operations.delete_file(entry.file_name)
            ):
                ctx.result.add("files_deleted")
        except LocalIOError as e:
            ctx.log.warning(str(e))
            ctx.result.record_error(e)
        finally:
            ctx.metadata.remove_file(entry.file_name, file_id)

    def delete_folder(self, folder_id: str) -> None:
        """Apply a folder tombstone; an id missing from the checkpoint is a no-op."""
        ctx = self.context
        entry = ctx.metadata.find_folder_by_id(folder_id)
        if entry is None:
            ctx.log.debug(f"Unknown deleted folder id {folder_id}, ignoring")
            return
        try:
            if not entry.excluded and ctx.operations.delete_directory(entry.path):
                ctx.result.add("folders_deleted")
        except LocalIOError as e:
            ctx.log.warning(str(e))
            ctx.result.record_error(e)
        finally:
            ctx.metadata.remove_folder(entry.path, folder_id)
            ctx.metadata.prune_below(entry.path)

    def prune_unreported(self) -> None:
        """Drop every entry a full resync round did not report.

        A round from a fresh delta origin lists everything that exists below
        the root and carries no tombstones, so an entry it leaves out was
        deleted remotely at some point after the stored link was issued.
        """
        ctx = self.context
        reported_files = {f.id for f in self.update.files}
        reported_folders = {f.id for f in self.update.folders}
        stale_files = [
            f.id
            for f in list(ctx.metadata.files.values())
            if f.id not in reported_files
        ]
        stale_folders = [
            f.id
            for f in sorted(
                ctx.metadata.folders.values(),
                key=lambda f: f.path.count("/"),
                reverse=True,
            )
            if f.id not in reported_folders
        ]
        if stale_files or stale_folders:
            ctx.log.info(
                f"Full resync: removing {len(stale_files)} file(s) and "
                f"{len(stale_folders)} folder(s) no longer on OneDrive"
            )
        for file_id in stale_files:
            self.delete_file(file_id)
        for folder_id in stale_folders:
            self.delete_folder(folder_id)

    def _apply_displacing_moves(
        self,
        files: list[RemoteFile],
        priors: dict[str, Optional[RemoteFile]],
    ) -> list[RemoteFile]:
        """Apply moves onto paths held by another entry, one at a time.

        Their local sources are first renamed aside, so a swap of two names
        in one round moves both contents instead of downloading one again.

        Returns:
            The upserts left for the worker pool
        """
        ctx = self.context
        displacing = []
        remaining = []
        for remote_file in files:
            prior = priors[remote_file.id]
            holder = ctx.metadata.get_file(remote_file.file_name)
            if (
                prior is not None
                and prior.file_name != remote_file.file_name
                and holder is not None
                and holder.id != remote_file.id
            ):
                displacing.append(remote_file)
            else:
                remaining.append(remote_file)

        staged: dict[str, str] = {}
        for remote_file in displacing:
            prior = priors[remote_file.id]
            if prior.excluded:
                continue
            staging = f"{prior.file_name}.{remote_file.id}.moving"
            if self._guarded(ctx.operations.move_file, prior.file_name, staging):
                staged[remote_file.id] = staging

        for remote_file in displacing:
            self._guarded(
                self.apply_file,
                remote_file,
                priors[remote_file.id],
                staged.get(remote_file.id),
            )
        return remaining

    def _guarded(self, action, *args):
        try:
            return action(*args)
        except LocalIOError as e:
            self.context.log.warning(str(e))
            self.context.result.record_error(e)
            return None
