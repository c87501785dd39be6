"""Full-listing strategy: mirror a complete remote snapshot."""

from typing import Optional

from ..drive_items_manager import DriveItemsManager, RemoteListing
from ..exceptions import LocalIOError
from .operations import SyncContext
from .scanner import DirectoryScanner
from .state import RemoteFile, is_reserved_path


def _ancestors(path: str) -> set[str]:
    """Return every proper ancestor folder of a path ("/a/b/c" -> /a, /a/b)."""
    parts = path.strip("/").split("/")
    return {"/" + "/".join(parts[:i]) for i in range(1, len(parts))}


class LocalTreeReconciler:
    """Makes the target directory match a full remote listing.

    The remote listing is ground truth on every run. The checkpoint only
    caches ETags so unchanged files are not fetched again; there is no
    identity tracking, so a rename shows up as a deletion at the old path
    plus a download at the new one.
    """

    def __init__(
        self,
        context: SyncContext,
        scanner: Optional[DirectoryScanner] = None,
    ):
        self.context = context
        self.scanner = scanner or DirectoryScanner()
        self.listing: Optional[RemoteListing] = None
        self.plan: list[RemoteFile] = []

    def observe(self) -> None:
        """Enumerate the remote tree below the configured root.

        Raises:
            OneDriveAPIError: If any page fails; nothing has been changed yet
        """
        ctx = self.context
        manager = DriveItemsManager(ctx.client, excluded=ctx.excluded)
        self.listing = manager.get_all_recursive(ctx.job.onedrive_directory)

    def reconcile(self) -> None:
        """Delete orphans, create folders and plan downloads."""
        if self.listing is None:
            raise RuntimeError("observe() must run before reconcile()")

        ctx = self.context
        remote_files = self.listing.file_paths
        remote_dirs = set(self.listing.folders)
        if ctx.job.onedrive_directory:
            remote_dirs |= _ancestors(ctx.job.onedrive_directory)

        local = self.scanner.scan(ctx.operations.target_directory)

        for path in sorted(local.files - remote_files):
            self._guarded(self._delete_file, path)
        for path in [p for p in ctx.metadata.files if p not in remote_files]:
            ctx.metadata.remove_file(path)

        # Deepest first so no parent is removed before its children
        orphan_dirs = sorted(
            local.directories - remote_dirs,
            key=lambda p: (p.count("/"), len(p)),
            reverse=True,
        )
        for path in orphan_dirs:
            self._guarded(self._delete_directory, path)
        for path in [p for p in ctx.metadata.folders if p not in remote_dirs]:
            ctx.metadata.remove_folder(path)

        for path in sorted(remote_dirs):
            self._guarded(self._create_directory, path)

        self.plan = []
        for remote_file in self.listing.files:
            if is_reserved_path(remote_file.file_name):
                ctx.log.warning(
                    f"Skipping {remote_file.file_name}: reserved for the checkpoint"
                )
                continue
            prior = ctx.metadata.get_file(remote_file.file_name)
            if (
                prior is not None
                and prior.e_tag == remote_file.e_tag
                and ctx.operations.local_path(remote_file.file_name).is_file()
            ):
                ctx.log.debug(f"Unchanged, skipping: {remote_file.file_name}")
                ctx.result.add("files_skipped")
                ctx.metadata.put_file(remote_file)
                continue
            self.plan.append(remote_file)

        ctx.log.info(
            f"{len(self.plan)} file(s) to download, "
            f"{ctx.result.files_skipped} unchanged"
        )

    def download(self) -> None:
        """Fetch planned files; only successful downloads update the checkpoint."""
        ctx = self.context
        for remote_file in ctx.downloader.download_all(self.plan):
            ctx.metadata.put_file(remote_file)

    def checkpoint(self) -> None:
        """Nothing beyond the per-file entries is recorded in this mode."""

    def _delete_file(self, path: str) -> None:
        if self.context.operations.delete_file(path):
            self.context.result.add("files_deleted")

    def _delete_directory(self, path: str) -> None:
        if self.context.operations.delete_directory(path):
            self.context.result.add("folders_deleted")

    def _create_directory(self, path: str) -> None:
        if self.context.operations.ensure_directory(path):
            self.context.result.add("folders_created")

    def _guarded(self, action, path: str) -> None:
        try:
            action(path)
        except LocalIOError as e:
            self.context.log.warning(str(e))
            self.context.result.record_error(e)
