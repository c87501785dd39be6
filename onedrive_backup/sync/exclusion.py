"""Exclusion rules for remote paths.

A path is excluded when any configured pattern occurs in it as a
case-insensitive substring, e.g. the pattern ``"/photos"`` excludes
``/Photos``, ``/Photos/2024/a.jpg`` and ``/Old/photos-backup``.
"""

from collections.abc import Iterable
from typing import Optional


def is_excluded(relative_path: str, patterns: Iterable[str]) -> bool:
    """Check whether a path matches any exclusion pattern.

    Args:
        relative_path: Remote path relative to the drive root
        patterns: Exclusion patterns

    Returns:
        True if any non-empty pattern is a case-insensitive substring of the path
    """
    lowered = relative_path.casefold()
    return any(pattern and pattern.casefold() in lowered for pattern in patterns)


class ExclusionFilter:
    """Stateless predicate bound to a job's pattern list.

    Examples:
        >>> excluded = ExclusionFilter(["/Temp", ".tmp"])
        >>> excluded("/temp/a.txt")
        True
        >>> excluded("/Docs/a.txt")
        False
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns: tuple[str, ...] = tuple(p for p in (patterns or ()) if p)

    def __call__(self, relative_path: str) -> bool:
        return is_excluded(relative_path, self.patterns)
