"""Maps source-relative paths to target-relative paths."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from ..core.config import CharacterLimitations
from .path_utils import SEPARATOR, get_path_stack
from .sanitizer import TextSanitizer


class PathTransformKind(Enum):
    DIR_PATH = "dir"
    FILE_PATH = "file"


def _upper_first(segment: str) -> str:
    if not segment:
        return segment
    upper = segment[0].upper()
    # keep one-to-one mappings only ('ß' would become 'SS')
    if len(upper) != 1:
        return segment
    return upper + segment[1:]


class PathTransformer:
    """Resolves '.'/'..', collapses deep directories and sanitizes each segment."""

    def __init__(self, sanitizer: Optional[TextSanitizer] = None):
        self._sanitizer = sanitizer or TextSanitizer()

    def transform_path(
        self,
        path: str,
        kind: PathTransformKind,
        limitations: Optional[CharacterLimitations] = None,
        max_depth: Optional[int] = None,
        normalize_case: bool = False,
    ) -> tuple[str, bool]:
        """Transform `path` for the target.

        While there are more than `max_depth` directory segments, the two
        rightmost directories are joined with '_'. For FILE_PATH the last
        segment is the file name and never takes part in collapsing.

        Returns:
            (transformed path, whether anything lossy happened)

        Raises:
            PathError: if the path walks above its root.
        """
        segments, collapsed = self._get_segments(path, kind, max_depth)
        is_unsupported = collapsed

        result = []
        for segment in segments:
            if normalize_case:
                segment = _upper_first(segment)
            sanitized, part_unsupported = self._sanitizer.sanitize_path_part(limitations, segment)
            is_unsupported |= part_unsupported
            result.append(sanitized)

        return SEPARATOR.join(result), is_unsupported

    @staticmethod
    def _get_segments(path: str, kind: PathTransformKind, max_depth: Optional[int]) -> tuple[list[str], bool]:
        directories = get_path_stack(path)
        file_name = None
        if kind is PathTransformKind.FILE_PATH:
            file_name = directories.pop()

        collapsed = False
        while max_depth is not None and len(directories) > max_depth:
            collapsed = True
            right = directories.pop()
            left = directories.pop()
            directories.append(f"{left}_{right}")

        if file_name is not None:
            directories.append(file_name)
        return directories, collapsed
