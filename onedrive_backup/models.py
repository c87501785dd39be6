"""Data models for Microsoft Graph drive item responses."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import OneDriveInvalidResponseError
from .utils import join_remote_path, strip_drive_root


@dataclass
class DriveItem:
    """A drive item as returned by the children and delta endpoints."""

    id: str
    name: str = ""
    is_folder: bool = False
    is_deleted: bool = False
    is_root: bool = False
    size: int = 0
    last_modified: Optional[str] = None
    e_tag: str = ""
    c_tag: str = ""
    parent_path: Optional[str] = None
    """parentReference.path with the drive root prefix removed"""

    @property
    def relative_path(self) -> Optional[str]:
        """Path of the item relative to the drive root, or None if unknown."""
        if self.parent_path is None or not self.name:
            return None
        return join_remote_path(self.parent_path, self.name)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "DriveItem":
        """Create a DriveItem from a Graph API item dictionary.

        Args:
            data: Item dictionary from the "value" array of a response

        Returns:
            DriveItem instance

        Raises:
            OneDriveInvalidResponseError: If the item has no id
        """
        item_id = data.get("id")
        if not item_id:
            raise OneDriveInvalidResponseError(f"Drive item without id: {data}")

        parent_path = None
        parent_ref = data.get("parentReference") or {}
        if "path" in parent_ref and parent_ref["path"] is not None:
            parent_path = strip_drive_root(parent_ref["path"])

        return cls(
            id=str(item_id),
            name=data.get("name") or "",
            is_folder="folder" in data,
            is_deleted="deleted" in data,
            is_root="root" in data,
            size=int(data.get("size") or 0),
            last_modified=data.get("lastModifiedDateTime"),
            e_tag=data.get("eTag") or "",
            c_tag=data.get("cTag") or "",
            parent_path=parent_path,
        )


@dataclass
class DriveItemsPage:
    """One page of a children listing or delta response."""

    items: list[DriveItem] = field(default_factory=list)
    next_link: Optional[str] = None
    """@odata.nextLink, present while more pages follow"""

    delta_link: Optional[str] = None
    """@odata.deltaLink, present on the last page of a delta round"""

    @classmethod
    def from_api_response(cls, data: Any) -> "DriveItemsPage":
        """Parse a paginated Graph API response.

        Args:
            data: Decoded JSON response

        Returns:
            DriveItemsPage instance

        Raises:
            OneDriveInvalidResponseError: If the response has no "value" array
        """
        if not isinstance(data, dict) or not isinstance(data.get("value"), list):
            raise OneDriveInvalidResponseError(
                "Expected a paginated response with a 'value' array"
            )
        return cls(
            items=[DriveItem.from_api_response(item) for item in data["value"]],
            next_link=data.get("@odata.nextLink"),
            delta_link=data.get("@odata.deltaLink"),
        )
