"""Synchronization strategies a backup job can use."""

from enum import Enum


class SyncMode(str, Enum):
    """How a job observes the remote tree.

    - FULL_LISTING: enumerate the whole remote tree every run and diff it
      against the local directory
    - DELTA: replay the incremental change feed from the stored delta link
    """

    FULL_LISTING = "fullListing"
    DELTA = "delta"

    @classmethod
    def from_string(cls, value: str) -> "SyncMode":
        """Parse a sync mode, accepting common spellings.

        Args:
            value: e.g. "fullListing", "full_listing", "FullListing", "delta"

        Returns:
            SyncMode value

        Raises:
            ValueError: If the value names no known mode
        """
        normalized = value.replace("_", "").replace("-", "").lower()
        for mode in cls:
            if mode.value.lower() == normalized:
                return mode
        raise ValueError(
            f"Invalid sync mode: {value!r}. "
            f"Valid modes: {', '.join(m.value for m in cls)}"
        )
