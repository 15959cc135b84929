"""Configuration models, loaded from one or more JSON files."""
from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigError
from .unicode_ranges import UNICODE_RANGES


DEFAULT_SOURCE_EXTENSIONS = [".mp3", ".ogg", ".m4a", ".flac", ".opus", ".wma", ".wav", ".aac"]

DEFAULT_ALBUM_ART_NAMES = [
    "cover.jpg",
    "cover.png",
    "folder.jpg",
    "folder.png",
    "front.jpg",
    "front.png",
    "albumart.jpg",
    "albumart.png",
]


class _ConfigModel(BaseModel):
    """JSON keys are camelCase, Python attributes snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class NormalizationMode(str, Enum):
    """When the sanitizer applies NFKC to a character."""
    NONE = "None"                # never
    NON_BMP = "NonBmp"           # outside the Basic Multilingual Plane
    UNSUPPORTED = "Unsupported"  # not in the supported set
    ALL = "All"                  # always


class CharReplacement(_ConfigModel):
    """Replace one character with an arbitrary string."""
    char: str = Field(..., description="Exactly one Unicode character")
    replacement: str = Field(default="", description="Replacement text")

    @field_validator("char")
    @classmethod
    def single_char(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError(f"Replacement char must be a single character, got {value!r}")
        return value


class CharacterLimitations(_ConfigModel):
    """Which characters a device can display, and how to degrade the rest."""
    supported_chars: Optional[str] = Field(
        default=None,
        description="Characters the device supports (None = everything)",
    )
    supported_unicode_ranges: Optional[list[str]] = Field(
        default=None,
        description="Named Unicode blocks the device supports",
    )
    replacements: list[CharReplacement] = Field(default_factory=list)
    normalization_mode: NormalizationMode = Field(default=NormalizationMode.NONE)

    @field_validator("supported_unicode_ranges")
    @classmethod
    def known_ranges(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        unknown = [name for name in value if name not in UNICODE_RANGES]
        if unknown:
            raise ValueError(f"Invalid Unicode range(s): {', '.join(unknown)}")
        return value


class FileFormatLimitation(_ConfigModel):
    """A format the device plays natively. Unset fields match anything."""
    extension: Optional[str] = None
    codec: Optional[str] = None
    profile: Optional[str] = None
    max_channels: Optional[int] = None
    max_sample_rate_hz: Optional[int] = None
    max_bitrate: Optional[int] = Field(default=None, description="kbit/s")


class FileFormatOverride(FileFormatLimitation):
    """Per-path restriction, merged on top of the fallback encoder."""
    muxer: Optional[str] = None


class EncoderInfo(_ConfigModel):
    """How ffmpeg should produce an output file."""
    extension: str
    codec: str
    muxer: str
    profile: Optional[str] = None
    channels: Optional[int] = None
    sample_rate_hz: Optional[int] = None
    bitrate: Optional[int] = Field(default=None, description="kbit/s")
    cover_codec: Optional[str] = None
    max_cover_size: Optional[int] = None
    additional_flags: Optional[str] = None


class AlbumArtConfig(_ConfigModel):
    """External cover files picked up next to the source file."""
    file_names: list[str] = Field(default_factory=lambda: list(DEFAULT_ALBUM_ART_NAMES))
    max_size: Optional[int] = Field(default=None, description="Longest edge in pixels")


class TargetDeviceConfig(_ConfigModel):
    """Capabilities of the playback device."""
    supported_formats: list[FileFormatLimitation] = Field(default_factory=list)
    fallback_format: EncoderInfo
    path_character_limitations: Optional[CharacterLimitations] = None
    tag_character_limitations: Optional[CharacterLimitations] = None
    tag_value_delimiter: Optional[str] = None
    normalize_case: bool = False
    max_directory_depth: Optional[int] = Field(default=None, ge=1)
    album_art: AlbumArtConfig = Field(default_factory=AlbumArtConfig)

    @model_validator(mode="before")
    @classmethod
    def expand_character_limitations(cls, data: Any) -> Any:
        """A single `characterLimitations` key applies to paths and tags."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        shared = data.pop("characterLimitations", None)
        shared = data.pop("character_limitations", shared)
        if shared is not None:
            for alias, name in (
                ("pathCharacterLimitations", "path_character_limitations"),
                ("tagCharacterLimitations", "tag_character_limitations"),
            ):
                if alias not in data and name not in data:
                    data[alias] = shared
        return data


class SyncConfig(_ConfigModel):
    """Configuration for one sync run."""
    source_dir: Path = Field(..., description="Root of the music library")
    target: str = Field(..., description="file://<path> or adb://<serial>/<path>")
    device_config: TargetDeviceConfig
    source_extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCE_EXTENSIONS))
    exclude: list[str] = Field(default_factory=list, description="Globs of source paths to skip")
    path_format_overrides: dict[str, FileFormatOverride] = Field(default_factory=dict)
    workers_read: int = Field(default=1, ge=1)
    workers_convert: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    workers_write: int = Field(default=1, ge=1)
    tolerate_dst_offset: Optional[bool] = Field(
        default=None,
        description="Accept one-hour timestamp offsets (default: physical targets on Windows)",
    )
    temp_dir: Optional[Path] = None

    @field_validator("source_dir")
    @classmethod
    def expand_source(cls, value: Path) -> Path:
        value = value.expanduser().resolve()
        if not value.is_dir():
            raise ValueError(f"Source directory does not exist: {value}")
        return value

    @field_validator("source_extensions")
    @classmethod
    def normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]

    def with_overrides(self, **kwargs: Any) -> "SyncConfig":
        """Create a new config with some values overridden."""
        return self.model_copy(update=kwargs)


def _merge(base: dict, update: dict) -> dict:
    merged = dict(base)
    for key, value in update.items():
        if key == "deviceConfig" and isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(paths: list[Path]) -> SyncConfig:
    """Load and validate configuration files.

    Later files override earlier ones key by key; `deviceConfig` is
    merged one level deeper so a device profile can be kept separate
    from the per-library settings.
    """
    if not paths:
        raise ConfigError("At least one configuration file is required")

    data: dict = {}
    for path in paths:
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"{path} must contain a JSON object")
        data = _merge(data, loaded)

    try:
        return SyncConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
