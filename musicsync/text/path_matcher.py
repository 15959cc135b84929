"""Glob matching for exclude lists and per-path format overrides.

Supported wildcards:
- `*` matches any run of characters inside one path segment
- `**` matches anything, including separators

Separators in globs follow path_utils: '/' everywhere, '\\' only on Windows.
"""
from __future__ import annotations

import re
from functools import lru_cache

from .path_utils import SEPARATORS, normalize_path

_SEPARATOR_CLASS = "[" + re.escape(SEPARATORS) + "]"
_NOT_SEPARATOR_CLASS = "[^" + re.escape(SEPARATORS) + "]"
_TOKEN_RE = re.compile(r"(\*\*|\*|" + _SEPARATOR_CLASS + ")")


@lru_cache(maxsize=256)
def compile_glob(glob: str, case_sensitive: bool) -> re.Pattern[str]:
    """Translate a glob into an anchored regular expression.

    Raises:
        ValueError: for '***' or '::' in the glob.
    """
    if "***" in glob:
        raise ValueError("only '*' and '**' wildcards are allowed")
    if "::" in glob:
        raise ValueError("'::' not allowed in glob")

    parts = []
    for token in _TOKEN_RE.split(glob):
        if not token:
            continue
        if token == "**":
            parts.append(".*")
        elif token == "*":
            parts.append(f"{_NOT_SEPARATOR_CLASS}*")
        elif token in SEPARATORS:
            parts.append(_SEPARATOR_CLASS)
        else:
            parts.append(re.escape(token))

    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile("^" + "".join(parts) + "$", flags)


class PathMatcher:
    """Matches relative paths against globs. Compiled globs are cached."""

    def matches(self, glob: str, path: str, case_sensitive: bool) -> bool:
        pattern = compile_glob(glob, case_sensitive)
        return pattern.match(normalize_path(path) or "") is not None

    def matches_any(self, globs: list[str], path: str, case_sensitive: bool) -> bool:
        return any(self.matches(glob, path, case_sensitive) for glob in globs)
