"""Manager for enumerating the remote tree with automatic pagination."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .api import OneDriveClient
from .models import DriveItem, DriveItemsPage
from .sync.exclusion import ExclusionFilter
from .sync.state import RemoteFile
from .utils import join_remote_path, normalize_remote_root

logger = logging.getLogger(__name__)


@dataclass
class RemoteListing:
    """Snapshot of the non-excluded part of the remote tree."""

    files: list[RemoteFile] = field(default_factory=list)
    folders: set[str] = field(default_factory=set)

    @property
    def file_paths(self) -> set[str]:
        return {f.file_name for f in self.files}


class DriveItemsManager:
    """Enumerates drive items depth-first below a configured root.

    Unlike a best-effort listing, any failed page aborts the whole
    enumeration: a partial snapshot would make the reconciler delete local
    files that still exist remotely.
    """

    def __init__(
        self,
        client: OneDriveClient,
        excluded: Optional[ExclusionFilter] = None,
    ):
        """Initialize the drive items manager.

        Args:
            client: Graph API client
            excluded: Exclusion filter applied during traversal
        """
        self.client = client
        self.excluded = excluded or ExclusionFilter()

    def get_all_in_folder(
        self, item_id: Optional[str] = None, path: Optional[str] = None
    ) -> list[DriveItem]:
        """Get all children of a folder, following @odata.nextLink.

        Args:
            item_id: Folder item id (takes precedence over path)
            path: Folder path relative to the drive root

        Returns:
            All child items of the folder

        Raises:
            OneDriveAPIError: If any page cannot be fetched
        """
        url: Optional[str] = self.client.children_url(item_id=item_id, path=path)
        all_items: list[DriveItem] = []
        page_num = 0

        while url:
            page_num += 1
            page = DriveItemsPage.from_api_response(self.client.get_children_page(url))
            all_items.extend(page.items)
            logger.debug(
                "Folder %s page %d: %d item(s)",
                item_id or path or "/",
                page_num,
                len(page.items),
            )
            url = page.next_link

        return all_items

    def get_all_recursive(self, root: Optional[str] = None) -> RemoteListing:
        """Enumerate every non-excluded file and folder below root.

        Excluded folders are not descended into, so nothing below them is
        returned. The root folder itself is part of the returned folder set.

        Args:
            root: Configured OneDrive directory ("" or None for the drive root)

        Returns:
            RemoteListing with files and folder paths relative to the drive root
        """
        root_path = normalize_remote_root(root)
        listing = RemoteListing()
        if root_path:
            listing.folders.add(root_path)

        logger.info("Listing OneDrive files in directory: %s", root_path or "/")
        self._walk(listing, item_id=None, path=root_path, visited=set())
        logger.info(
            "Total files listed: %d in %d folder(s)",
            len(listing.files),
            len(listing.folders),
        )
        return listing

    def _walk(
        self,
        listing: RemoteListing,
        item_id: Optional[str],
        path: str,
        visited: set[str],
    ) -> None:
        # Prevent infinite recursion
        if item_id is not None:
            if item_id in visited:
                return
            visited.add(item_id)

        for item in self.get_all_in_folder(item_id=item_id, path=path):
            item_path = join_remote_path(path, item.name)

            if self.excluded(item_path):
                logger.debug("Excluded (file/folder): %s", item_path)
                continue

            if item.is_folder:
                listing.folders.add(item_path)
                self._walk(listing, item_id=item.id, path=item_path, visited=visited)
            else:
                listing.files.append(
                    RemoteFile(
                        id=item.id,
                        file_name=item_path,
                        size=item.size,
                        last_modified=item.last_modified,
                        e_tag=item.e_tag,
                        c_tag=item.c_tag,
                    )
                )
                logger.debug("OneDrive file: %s (ETag: %s)", item_path, item.e_tag)
