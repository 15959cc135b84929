"""External cover lookup and preparation."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .temp_files import TempFileSession

logger = logging.getLogger(__name__)


def find_album_art(directory: Path, file_names: list[str]) -> Optional[Path]:
    """First existing file in `directory` named like one of `file_names`.

    Names are matched case-insensitively; `file_names` order decides.
    """
    try:
        siblings = {p.name.casefold(): p for p in directory.iterdir() if p.is_file()}
    except OSError:
        return None

    for name in file_names:
        match = siblings.get(name.casefold())
        if match is not None:
            return match
    return None


class AlbumArtPreparer:
    """Validates cover images and shrinks oversized ones with Pillow.

    ffmpeg scales embedded covers on its own; external covers are scaled
    here so a broken image is caught before it fails the conversion.
    """

    def __init__(self, session: TempFileSession):
        self._session = session

    def prepare(self, path: Path, max_size: Optional[int] = None) -> Optional[Path]:
        """Return a cover path ready for ffmpeg, or None if `path` is unusable."""
        try:
            with Image.open(path) as image:
                image.load()
                if max_size is None or max(image.size) <= max_size:
                    return path

                resized = image.copy()
                resized.thumbnail((max_size, max_size))
                return self._save(resized, image.format)
        except (OSError, UnidentifiedImageError) as e:
            logger.warning("Ignoring unreadable album art %s: %s", path, e)
            return None

    def _save(self, image: Image.Image, source_format: Optional[str]) -> Path:
        if source_format == "PNG":
            output = self._session.get_temp_file_path(".png")
            image.save(output, format="PNG")
        else:
            output = self._session.get_temp_file_path(".jpg")
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(output, format="JPEG", quality=90)
        return output
