"""Deterministic mapping of text and path segments to device-safe strings.

The sanitizer never raises for any input. Characters it cannot map are
kept (or, inside paths, replaced by '_') and reported through the
`has_unsupported` flag, which callers only use for logging.
"""
from __future__ import annotations

import threading
import unicodedata
from dataclasses import dataclass
from typing import Optional

from ..core.config import CharacterLimitations, NormalizationMode
from ..core.unicode_ranges import UNICODE_RANGES

PLACEHOLDER = "_"

PATH_UNSUPPORTED_CHARS = frozenset('"<>|:*?\\/' + "".join(chr(c) for c in range(32)))

_NO_LIMITATIONS = CharacterLimitations()


def is_valid_path(text: str) -> bool:
    return not any(ch in PATH_UNSUPPORTED_CHARS for ch in text)


def _is_single_bmp_char(text: str) -> bool:
    return len(text) == 1 and ord(text) <= 0xFFFF


@dataclass(frozen=True, slots=True)
class _CompiledLimitations:
    """Lookup tables derived once per CharacterLimitations instance."""
    replacements: dict[str, str]
    supported_chars: Optional[frozenset[str]]
    supported_ranges: Optional[tuple[tuple[int, int], ...]]
    mode: NormalizationMode

    @classmethod
    def build(cls, limitations: CharacterLimitations) -> "_CompiledLimitations":
        replacements: dict[str, str] = {}
        for item in limitations.replacements:
            # first entry wins
            replacements.setdefault(item.char, item.replacement)
        supported_chars = (
            frozenset(limitations.supported_chars) if limitations.supported_chars is not None else None
        )
        supported_ranges = (
            tuple(UNICODE_RANGES[name] for name in limitations.supported_unicode_ranges)
            if limitations.supported_unicode_ranges is not None
            else None
        )
        return cls(replacements, supported_chars, supported_ranges, limitations.normalization_mode)

    def is_supported(self, ch: str) -> bool:
        if self.supported_chars is None and self.supported_ranges is None:
            return True
        if self.supported_chars is not None and ch in self.supported_chars:
            return True
        if self.supported_ranges is not None:
            code = ord(ch)
            return any(start <= code <= end for start, end in self.supported_ranges)
        return False

    def needs_normalization(self, ch: str) -> bool:
        if self.mode is NormalizationMode.NONE:
            return False
        if self.mode is NormalizationMode.NON_BMP:
            return ord(ch) > 0xFFFF
        if self.mode is NormalizationMode.UNSUPPORTED:
            return not self.is_supported(ch)
        return True


class TextSanitizer:
    """Sanitizes tag values and path segments under CharacterLimitations.

    Thread-safe; compiled lookup tables are cached per limitations object.
    """

    def __init__(self) -> None:
        self._cache: dict[int, tuple[CharacterLimitations, _CompiledLimitations]] = {}
        self._lock = threading.Lock()

    def _compile(self, limitations: Optional[CharacterLimitations]) -> _CompiledLimitations:
        limitations = limitations or _NO_LIMITATIONS
        entry = self._cache.get(id(limitations))
        if entry is not None and entry[0] is limitations:
            return entry[1]
        compiled = _CompiledLimitations.build(limitations)
        with self._lock:
            # keep a reference to the model so its id stays unique
            self._cache[id(limitations)] = (limitations, compiled)
        return compiled

    def sanitize_path_part(
        self, limitations: Optional[CharacterLimitations], part: str
    ) -> tuple[str, bool]:
        """Sanitize one path segment. '.' and '..' are returned unchanged."""
        if part in (".", ".."):
            return part, False
        return self._sanitize(self._compile(limitations), part, is_path=True)

    def sanitize_text(
        self, limitations: Optional[CharacterLimitations], text: str
    ) -> tuple[str, bool]:
        return self._sanitize(self._compile(limitations), text, is_path=False)

    def _sanitize(self, config: _CompiledLimitations, text: str, is_path: bool) -> tuple[str, bool]:
        out: list[str] = []
        has_unsupported = False

        for ch in text:
            replacement = config.replacements.get(ch)
            if replacement is not None and (not is_path or is_valid_path(replacement)):
                to_insert = replacement
            elif config.needs_normalization(ch):
                normalized = unicodedata.normalize("NFKC", ch)
                if not is_path or is_valid_path(normalized):
                    to_insert = normalized
                else:
                    to_insert = ch
                if config.mode is NormalizationMode.NON_BMP and not _is_single_bmp_char(to_insert):
                    to_insert = PLACEHOLDER
                has_unsupported = True
            else:
                to_insert = ch

            for out_ch in to_insert:
                if is_path and out_ch in PATH_UNSUPPORTED_CHARS:
                    has_unsupported = True
                    out.append(PLACEHOLDER)
                else:
                    if not config.is_supported(out_ch):
                        # degrade gracefully: keep it, but report it
                        has_unsupported = True
                    out.append(out_ch)

        return "".join(out), has_unsupported
