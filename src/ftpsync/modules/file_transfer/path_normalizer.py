"""Listing path normalization.

Some servers answer a listing of a relative directory with relative entry
paths ("./docs/a.txt"). The rest of the system works with canonical absolute
paths, so every listing entry passes through PathNormalizer before it leaves
the session.
"""

import re

from .transport import ListingEntry, RawEntry

RELATIVE_MARKER = "./"
SEPARATOR = "/"

_REPEATED_SEPARATORS = re.compile(r"/{2,}")


class PathNormalizer:
    """Convert listing paths to canonical absolute form."""

    @classmethod
    def normalize(
        cls,
        raw_path: str,
        working_directory: str,
        remote_root: str | None,
    ) -> str:
        """
        Normalize a listing entry's full path.

        Args:
            raw_path: Full path as reported by the server
            working_directory: Session's current working directory
            remote_root: Configured remote root (None or "" means "/")

        Returns:
            Canonical absolute path. Paths that are not relative are returned
            unchanged, so normalizing twice is a no-op.

        Examples:
            "./sub/file.txt", wd="/remote/base", root="/remote" -> "/remote/base/sub/file.txt"
            "./file.txt", wd="/remote", root="/remote" -> "/file.txt"
            "/already/absolute" -> "/already/absolute"
        """
        if not raw_path.startswith(RELATIVE_MARKER):
            return raw_path

        root = remote_root or SEPARATOR
        relative = raw_path[len(RELATIVE_MARKER) :]

        if cls._is_strictly_below(working_directory, root) and working_directory != SEPARATOR:
            base = working_directory
        else:
            base = cls.get_common_path(working_directory, root)

        return cls.collapse_separators(f"{SEPARATOR}{base}{SEPARATOR}{relative}")

    @classmethod
    def get_common_path(cls, path: str, remote_root: str | None) -> str:
        """
        Express a remote path relative to the configured remote root.

        Args:
            path: Absolute remote path
            remote_root: Configured remote root (None or "" means "/")

        Returns:
            Path without the root prefix and without surrounding separators
            ("" when path is the root itself)

        Examples:
            "/remote/base", "/remote" -> "base"
            "/remote", "/remote" -> ""
            "/elsewhere/x", "/remote" -> "elsewhere/x"
        """
        root = (remote_root or SEPARATOR).rstrip(SEPARATOR)
        common = path

        if root and (common == root or common.startswith(root + SEPARATOR)):
            common = common[len(root) :]

        return common.strip(SEPARATOR)

    @classmethod
    def collapse_separators(cls, path: str) -> str:
        """Replace runs of separators with a single one."""
        return _REPEATED_SEPARATORS.sub(SEPARATOR, path)

    @classmethod
    def to_listing_entry(
        cls,
        raw: RawEntry,
        working_directory: str,
        remote_root: str | None,
    ) -> ListingEntry:
        """Convert a transport entry into a normalized ListingEntry."""
        return ListingEntry(
            name=raw.name,
            full_path=cls.normalize(raw.full_name, working_directory, remote_root),
            type=raw.type,
            size=raw.size,
            last_modified=raw.modified,
            permissions=raw.permissions,
        )

    @staticmethod
    def _is_strictly_below(path: str, root: str) -> bool:
        """True when path starts with root but is not equal to it."""
        return path.startswith(root) and path != root
