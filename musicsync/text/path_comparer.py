"""Path equality with target-specific case sensitivity."""
from __future__ import annotations

from typing import Optional

from .path_utils import normalize_path


class PathComparer:
    """Compares relative paths after normalizing separators and '.'/'..'.

    `key()` yields a value suitable for sets and dict keys: two paths are
    equal under this comparer iff their keys are equal.
    """

    def __init__(self, case_sensitive: bool):
        self._case_sensitive = case_sensitive

    @property
    def case_sensitive(self) -> bool:
        return self._case_sensitive

    def _fold(self, value: str) -> str:
        return value if self._case_sensitive else value.casefold()

    def key(self, path: Optional[str]) -> Optional[str]:
        normalized = normalize_path(path)
        if normalized is None:
            return None
        return self._fold(normalized)

    def equals(self, left: Optional[str], right: Optional[str]) -> bool:
        return self.key(left) == self.key(right)

    def file_name_equals(self, left: str, right: str) -> bool:
        """Compare single path segments (no normalization)."""
        return self._fold(left) == self._fold(right)
