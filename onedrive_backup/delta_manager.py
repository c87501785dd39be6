"""Manager for reading the incremental change feed of a drive."""

import logging
from typing import Optional

from .api import OneDriveClient
from .exceptions import OneDriveDeltaExpiredError
from .models import DriveItem, DriveItemsPage
from .sync.state import BackupMetadata, RemoteFile, RemoteFolder, UpdateBatch

logger = logging.getLogger(__name__)


class DeltaManager:
    """Collects one complete delta round into an UpdateBatch.

    A round starts from the checkpoint's delta link, or from a fresh delta
    origin scoped to the configured root when there is none, and follows
    @odata.nextLink until a page carries the terminal @odata.deltaLink.
    """

    def __init__(self, client: OneDriveClient, root: Optional[str] = None):
        """Initialize the delta manager.

        Args:
            client: Graph API client
            root: Configured OneDrive directory ("" or None for the drive root)
        """
        self.client = client
        self.root = root or ""

    def collect_update(self, metadata: BackupMetadata) -> tuple[UpdateBatch, str]:
        """Fetch every page of the current delta round.

        Args:
            metadata: Checkpoint holding the previous delta link; its id
                indexes classify tombstones as file or folder deletions

        Returns:
            Tuple of (merged UpdateBatch, delta link for the next round). The
            batch is flagged as a full resync when it started from a fresh origin

        Raises:
            OneDriveAPIError: If any page cannot be fetched
        """
        start_url = metadata.delta_link
        if start_url:
            try:
                return self._collect_from(start_url, metadata)
            except OneDriveDeltaExpiredError:
                logger.warning(
                    "Stored delta link expired, resynchronizing from a fresh origin"
                )
        else:
            logger.info("No delta link stored, starting from a fresh delta origin")

        origin = self.client.delta_url(self.root)
        update, next_link = self._collect_from(origin, metadata)
        update.full_resync = True
        return update, next_link

    def _collect_from(
        self, url: str, metadata: BackupMetadata
    ) -> tuple[UpdateBatch, str]:
        update = UpdateBatch()
        page_num = 0
        next_url = url

        while True:
            page_num += 1
            data = self.client.get_delta_page(next_url)
            page = DriveItemsPage.from_api_response(data)
            update.extend(self.classify_items(page.items, metadata, update))
            logger.debug("Delta page %d: %d item(s)", page_num, len(page.items))

            if page.next_link:
                next_url = page.next_link
                continue
            if page.delta_link:
                next_url = page.delta_link
            else:
                logger.warning(
                    "Delta page %d has neither nextLink nor deltaLink", page_num
                )
            break

        logger.info(
            "Delta round: %d file(s), %d folder(s), %d deleted file(s), "
            "%d deleted folder(s)",
            len(update.files),
            len(update.folders),
            len(update.deleted_file_ids),
            len(update.deleted_folder_ids),
        )
        return _latest_only(update), next_url

    def classify_items(
        self,
        items: list[DriveItem],
        metadata: BackupMetadata,
        earlier: Optional[UpdateBatch] = None,
    ) -> UpdateBatch:
        """Sort one page of delta items into upserts and tombstones.

        Args:
            items: Items of one delta page
            metadata: Checkpoint used to tell file and folder tombstones apart
            earlier: Changes from earlier pages of the same round; items
                created and deleted within one round are recognized through it

        Returns:
            UpdateBatch for the page
        """
        update = UpdateBatch()
        round_file_ids = {f.id for f in earlier.files} if earlier else set()
        round_folder_ids = {f.id for f in earlier.folders} if earlier else set()

        for item in items:
            if item.is_deleted:
                # Tombstones carry only the id
                if (
                    item.id in round_file_ids
                    or metadata.find_file_by_id(item.id) is not None
                ):
                    update.deleted_file_ids.append(item.id)
                if (
                    item.id in round_folder_ids
                    or metadata.find_folder_by_id(item.id) is not None
                ):
                    update.deleted_folder_ids.append(item.id)
                continue

            if item.is_root:
                continue

            relative_path = item.relative_path
            if not relative_path:
                logger.debug("Skipping item %s without a resolvable path", item.id)
                continue

            if item.is_folder:
                update.folders.append(RemoteFolder(id=item.id, path=relative_path))
            else:
                update.files.append(
                    RemoteFile(
                        id=item.id,
                        file_name=relative_path,
                        size=item.size,
                        last_modified=item.last_modified,
                        e_tag=item.e_tag,
                        c_tag=item.c_tag,
                    )
                )
        return update


def _latest_only(update: UpdateBatch) -> UpdateBatch:
    """Keep only the last report of each id; the feed may repeat an item."""
    files = list({f.id: f for f in update.files}.values())
    folders = list({f.id: f for f in update.folders}.values())
    return UpdateBatch(
        files=files,
        folders=folders,
        deleted_file_ids=list(dict.fromkeys(update.deleted_file_ids)),
        deleted_folder_ids=list(dict.fromkeys(update.deleted_folder_ids)),
    )
