"""Helpers for '/'-separated relative paths.

'/' is always a separator. The host's own separators (os.sep, os.altsep)
are accepted as well, so '\\' splits paths on Windows but stays part of
the file name on POSIX. Output always uses '/'.
"""
from __future__ import annotations

import os
import re
from typing import Optional

from ..core.errors import PathError

SEPARATOR = "/"

SEPARATORS = "".join(sorted({SEPARATOR, os.sep, os.altsep or SEPARATOR}))

_SEP_CLASS = "[" + re.escape(SEPARATORS) + "]"
_SPLIT_RE = re.compile(_SEP_CLASS)
_LEVEL_CHANGE_RE = re.compile(rf"(^|{_SEP_CLASS})\.\.?({_SEP_CLASS}|$)")


def split_path(path: str) -> list[str]:
    return _SPLIT_RE.split(path)


def get_path_stack(path: str) -> list[str]:
    """Split `path` into segments, resolving '.' and '..'.

    Raises:
        PathError: if '..' walks above the first segment.
    """
    stack: list[str] = []
    for part in split_path(path):
        if part == "..":
            if not stack:
                raise PathError(f"Invalid path {path}")
            stack.pop()
        elif part == ".":
            continue
        else:
            stack.append(part)
    return stack


def normalize_path(path: Optional[str]) -> Optional[str]:
    """Canonical form used for comparisons and cache keys."""
    if path is None:
        return None
    if _LEVEL_CHANGE_RE.search(path):
        return SEPARATOR.join(get_path_stack(path))
    return SEPARATOR.join(split_path(path))


def join_path(*parts: str) -> str:
    """Join path fragments, ignoring empty ones."""
    segments = []
    for part in parts:
        segments.extend(s for s in split_path(part) if s)
    return SEPARATOR.join(segments)


def parent_path(path: str) -> str:
    """Parent of `path`; the root ('') is its own parent."""
    segments = [s for s in split_path(path) if s]
    return SEPARATOR.join(segments[:-1])


def ancestors(path: str) -> list[str]:
    """All ancestors of `path` from the direct parent up to the root ('')."""
    segments = [s for s in split_path(path) if s]
    return [SEPARATOR.join(segments[:i]) for i in range(len(segments) - 1, -1, -1)]


def file_stem(name: str) -> str:
    """File name without its last extension ('a.b.flac' -> 'a.b')."""
    index = name.rfind(".")
    if index <= 0:
        return name
    return name[:index]


def file_extension(name: str) -> str:
    index = name.rfind(".")
    if index <= 0:
        return ""
    return name[index:]
