"""Local directory scanning for full-listing reconciliation."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .state import METADATA_FILE_NAME, is_reserved_path

logger = logging.getLogger(__name__)


@dataclass
class LocalTree:
    """Files and directories found below a target directory.

    Paths use the same form as remote paths: forward slashes with a leading
    slash, relative to the target directory (e.g. "/sub/b.txt").
    """

    files: set[str] = field(default_factory=set)
    directories: set[str] = field(default_factory=set)


class DirectoryScanner:
    """Scans a job's target directory.

    The checkpoint file and its temporary sibling are reserved names and
    never reported, so no reconciliation pass can delete them.

    Examples:
        >>> tree = DirectoryScanner().scan(Path("/backup/personal"))
        >>> "/Documents/a.txt" in tree.files
        True
    """

    def __init__(self, reserved_name: str = METADATA_FILE_NAME):
        self.reserved_name = reserved_name

    def is_reserved(self, relative_path: str) -> bool:
        """Check whether a path belongs to the checkpoint file."""
        return is_reserved_path(relative_path, self.reserved_name)

    def scan(self, root: Path) -> LocalTree:
        """Recursively scan a directory.

        Args:
            root: Target directory; a missing directory yields an empty tree

        Returns:
            LocalTree with all files and directories below root
        """
        tree = LocalTree()
        if root.is_dir():
            self._scan_dir(root, root, tree)
        logger.debug(
            f"Scanned {root}: {len(tree.files)} file(s), "
            f"{len(tree.directories)} dir(s)"
        )
        return tree

    def _scan_dir(self, path: Path, base_path: Path, tree: LocalTree) -> None:
        try:
            for item in path.iterdir():
                # Use as_posix() to ensure forward slashes on all platforms
                relative_path = "/" + item.relative_to(base_path).as_posix()
                if item.is_dir() and not item.is_symlink():
                    tree.directories.add(relative_path)
                    self._scan_dir(item, base_path, tree)
                elif not self.is_reserved(relative_path):
                    tree.files.add(relative_path)
        except PermissionError as e:
            logger.warning(f"Permission denied: {e}")
