"""Remux/transcode collaborator driving the ffprobe and ffmpeg executables.

Format selection is deliberately narrow: a file is stream-copied into a
container chosen by its extension when the device plays it natively and
no per-path override forbids it, otherwise it is re-encoded with the
device's fallback encoder adjusted by the matching overrides.
"""
from __future__ import annotations

import json
import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from ..core.cancellation import CancellationToken
from ..core.config import EncoderInfo, FileFormatLimitation, FileFormatOverride, SyncConfig
from ..core.errors import ConversionError, OperationCancelled
from ..core.models import ConversionResult
from ..logging.info_log import InfoLog
from ..text.path_matcher import PathMatcher
from ..text.path_utils import file_extension
from ..text.sanitizer import TextSanitizer
from .album_art import AlbumArtPreparer
from .temp_files import TempFileSession

logger = logging.getLogger(__name__)

# how often a running process is checked for cancellation
PROCESS_POLL_INTERVAL = 0.5

DEFAULT_TAG_DELIMITER = ";"

# probe tag key (lowercase) -> ffmpeg output key
TAG_KEYS = {
    "album": "album",
    "title": "title",
    "composer": "composer",
    "genre": "genre",
    "track": "track",
    "tracknumber": "track",
    "disc": "disc",
    "discnumber": "disc",
    "date": "date",
    "year": "date",
    "artist": "artist",
    "album_artist": "album_artist",
    "albumartist": "album_artist",
    "album artist": "album_artist",
    "comment": "comment",
    "description": "comment",
}


@dataclass(frozen=True, slots=True)
class AudioStreamInfo:
    codec_name: Optional[str]
    profile: Optional[str]
    channels: Optional[int]
    sample_rate_hz: Optional[int]
    bit_rate: Optional[int]  # bit/s


@dataclass(slots=True)
class MediaAnalysis:
    """The parts of `ffprobe -show_format -show_streams` we act on."""
    format_name: str = ""
    audio: Optional[AudioStreamInfo] = None
    has_embedded_cover: bool = False
    tags: list[tuple[str, str]] = field(default_factory=list)


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(text: str) -> MediaAnalysis:
    """Parse ffprobe JSON output.

    Tags are collected from the container first, then the first audio
    stream; identical key/value pairs are reported once.

    Raises:
        ConversionError: if the output is not the expected JSON.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConversionError(f"Malformed ffprobe output: {e}") from e
    if not isinstance(data, dict):
        raise ConversionError("Malformed ffprobe output: expected a JSON object")

    fmt = data.get("format") or {}
    streams = data.get("streams") or []

    analysis = MediaAnalysis(format_name=str(fmt.get("format_name", "")))
    audio_tags: dict = {}
    for stream in streams:
        codec_type = stream.get("codec_type")
        if codec_type == "audio" and analysis.audio is None:
            analysis.audio = AudioStreamInfo(
                codec_name=stream.get("codec_name"),
                profile=stream.get("profile"),
                channels=_int_or_none(stream.get("channels")),
                sample_rate_hz=_int_or_none(stream.get("sample_rate")),
                bit_rate=_int_or_none(stream.get("bit_rate")) or _int_or_none(fmt.get("bit_rate")),
            )
            audio_tags = stream.get("tags") or {}
        elif codec_type == "video":
            analysis.has_embedded_cover = True

    seen = set()
    for source in (fmt.get("tags") or {}, audio_tags):
        for key, value in source.items():
            mapped = TAG_KEYS.get(str(key).lower())
            if mapped is None:
                continue
            pair = (mapped, str(value))
            if pair not in seen:
                seen.add(pair)
                analysis.tags.append(pair)
    return analysis


def is_within_limitations(limitation: FileFormatLimitation, extension: str, audio: AudioStreamInfo) -> bool:
    """Whether the stream satisfies every field set on `limitation`.

    Unknown stream properties never satisfy a set limit.
    """
    def same(expected: Optional[str], actual: Optional[str]) -> bool:
        return expected is None or (actual is not None and expected.casefold() == actual.casefold())

    def at_most(limit: Optional[int], actual: Optional[int]) -> bool:
        return limit is None or (actual is not None and actual <= limit)

    return (
        same(limitation.extension, extension)
        and same(limitation.codec, audio.codec_name)
        and same(limitation.profile, audio.profile)
        and at_most(limitation.max_channels, audio.channels)
        and at_most(limitation.max_sample_rate_hz, audio.sample_rate_hz)
        and at_most(limitation.max_bitrate, audio.bit_rate // 1000 if audio.bit_rate is not None else None)
    )


def merge_overrides(overrides: Sequence[FileFormatOverride]) -> FileFormatOverride:
    """Combine overrides: string fields must agree, numeric limits take the minimum.

    Raises:
        ConversionError: if two overrides demand different values.
    """
    merged = overrides[0].model_dump()
    for override in overrides[1:]:
        for name in ("extension", "codec", "profile", "muxer"):
            value = getattr(override, name)
            if value is None:
                continue
            if merged[name] is not None and merged[name] != value:
                raise ConversionError(f"Multiple {name} limitations can't be merged")
            merged[name] = value
        for name in ("max_channels", "max_sample_rate_hz", "max_bitrate"):
            value = getattr(override, name)
            if value is not None and (merged[name] is None or merged[name] > value):
                merged[name] = value
    return FileFormatOverride(**merged)


def remux_encoder(extension: str, fallback: EncoderInfo) -> EncoderInfo:
    """Stream-copy settings for a source container, picked by extension.

    ffprobe's format names do not match ffmpeg's muxer names and probing
    sometimes misdetects files, so the extension decides.
    """
    ext = extension.lower()
    keep_cover = {"cover_codec": fallback.cover_codec, "max_cover_size": fallback.max_cover_size}
    if ext == ".m4a":
        return EncoderInfo(extension=extension, codec="copy", muxer="ipod",
                           additional_flags="-movflags faststart", **keep_cover)
    if ext == ".aac":
        return EncoderInfo(extension=extension, codec="copy", muxer="adts")
    if ext == ".wma":
        return EncoderInfo(extension=extension, codec="copy", muxer="asf", **keep_cover)
    if ext in (".ogg", ".opus"):
        return EncoderInfo(extension=extension, codec="copy", muxer="ogg", **keep_cover)
    if ext == ".mp3":
        return EncoderInfo(extension=extension, codec="copy", muxer="mp3", **keep_cover)
    if ext == ".flac":
        return EncoderInfo(extension=extension, codec="copy", muxer="flac", **keep_cover)
    if ext == ".wav":
        return EncoderInfo(extension=extension, codec="copy", muxer="wav")
    raise ConversionError(f"Don't know how to remux {extension}")


def override_encoder(fallback: EncoderInfo, override: FileFormatOverride) -> EncoderInfo:
    """Apply an override on top of the fallback encoder."""
    update: dict = {}
    if override.extension is not None:
        update["extension"] = override.extension
    if override.codec is not None and override.codec != fallback.codec:
        # the fallback profile belongs to the fallback codec
        update["codec"] = override.codec
        update["profile"] = None
    if override.profile is not None:
        update["profile"] = override.profile
    if override.muxer is not None:
        update["muxer"] = override.muxer
    for limit, target in (
        ("max_channels", "channels"),
        ("max_sample_rate_hz", "sample_rate_hz"),
        ("max_bitrate", "bitrate"),
    ):
        value = getattr(override, limit)
        current = getattr(fallback, target)
        if value is not None and (current is None or current > value):
            update[target] = value
    return fallback.model_copy(update=update)


def build_ffmpeg_args(
    source: Path,
    output: Path,
    encoder: EncoderInfo,
    tags: dict[str, str],
    has_embedded_cover: bool,
    external_cover: Optional[Path] = None,
    ffmpeg_path: str = "ffmpeg",
) -> list[str]:
    """Command line for one conversion. Covers are only kept when the encoder has a cover codec."""
    use_embedded = bool(encoder.cover_codec) and has_embedded_cover
    use_external = bool(encoder.cover_codec) and not use_embedded and external_cover is not None

    args = [ffmpeg_path, "-hide_banner", "-nostdin", "-y", "-i", str(source)]
    if use_external:
        args += ["-i", str(external_cover)]

    args += ["-map", "0:a"]
    if use_embedded:
        args += ["-map", "0:v", "-disposition:v", "attached_pic"]
    elif use_external:
        args += ["-map", "1:v", "-disposition:v", "attached_pic"]

    args += ["-c:a", encoder.codec]
    if encoder.channels is not None:
        args += ["-ac", str(encoder.channels)]
    if encoder.sample_rate_hz is not None:
        args += ["-ar", str(encoder.sample_rate_hz)]
    if encoder.bitrate is not None:
        args += ["-b:a", f"{encoder.bitrate}k"]
    if encoder.profile:
        args += ["-profile:a", encoder.profile]

    args += ["-map_metadata", "-1"]
    for key, value in tags.items():
        args += ["-metadata", f"{key}={value}"]

    if use_embedded or use_external:
        args += ["-c:v", encoder.cover_codec]
        if encoder.max_cover_size is not None:
            size = encoder.max_cover_size
            args += ["-vf", f"scale='min({size},iw)':'min({size},ih)':force_original_aspect_ratio=decrease"]
    else:
        args.append("-vn")

    args += ["-f", encoder.muxer]
    if encoder.additional_flags:
        args += shlex.split(encoder.additional_flags)
    args.append(str(output))
    return args


def run_process(args: list[str], cancel: Optional[CancellationToken] = None) -> tuple[int, bytes, bytes]:
    """Run an external tool, killing it if `cancel` fires.

    Returns:
        (exit code, stdout, stderr)
    """
    try:
        process = subprocess.Popen(args, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise ConversionError(f"{args[0]} not found, is it installed and on PATH?") from e

    while True:
        try:
            stdout, stderr = process.communicate(timeout=PROCESS_POLL_INTERVAL)
            return process.returncode, stdout, stderr
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_cancelled:
                process.kill()
                process.communicate()
                raise OperationCancelled(f"{args[0]} was cancelled")


class FfmpegMediaConverter:
    """MediaConverter implementation on top of ffprobe/ffmpeg.

    One instance serves all convert workers of a run; it keeps no
    per-file state.
    """

    def __init__(
        self,
        config: SyncConfig,
        session: TempFileSession,
        info_log: InfoLog,
        sanitizer: Optional[TextSanitizer] = None,
        matcher: Optional[PathMatcher] = None,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
    ):
        self._config = config
        self._device = config.device_config
        self._session = session
        self._info_log = info_log
        self._sanitizer = sanitizer or TextSanitizer()
        self._matcher = matcher or PathMatcher()
        self._album_art = AlbumArtPreparer(session)
        self._ffmpeg_path = ffmpeg_path
        self._ffprobe_path = ffprobe_path

    def analyze(self, path: Path, cancel: Optional[CancellationToken] = None) -> MediaAnalysis:
        args = [self._ffprobe_path, "-v", "error", "-print_format", "json", "-show_format", "-show_streams", str(path)]
        exit_code, stdout, stderr = run_process(args, cancel)
        if exit_code != 0:
            raise ConversionError(
                f"ffprobe failed for {path} (exit code {exit_code}): {stderr.decode('utf-8', 'replace').strip()}"
            )
        return parse_probe_output(stdout.decode("utf-8", errors="replace"))

    def select_encoder(self, original_path: str, analysis: MediaAnalysis) -> EncoderInfo:
        extension = file_extension(original_path)
        if analysis.audio is None:
            raise ConversionError(f"Missing audio stream in {original_path}")

        overrides = [
            override
            for glob, override in self._config.path_format_overrides.items()
            if self._matcher.matches(glob, original_path, case_sensitive=False)
        ]
        merged = merge_overrides(overrides) if overrides else None

        supported = any(
            is_within_limitations(limitation, extension, analysis.audio)
            for limitation in self._device.supported_formats
        )
        if supported and (merged is None or is_within_limitations(merged, extension, analysis.audio)):
            return remux_encoder(extension, self._device.fallback_format)
        if merged is not None:
            return override_encoder(self._device.fallback_format, merged)
        return self._device.fallback_format

    def sanitize_tags(self, original_path: str, tags: list[tuple[str, str]]) -> dict[str, str]:
        """Sanitize tag values and join repeated keys with the device's delimiter."""
        delimiter = self._device.tag_value_delimiter or DEFAULT_TAG_DELIMITER
        grouped: dict[str, list[str]] = {}
        for key, value in tags:
            sanitized, unsupported = self._sanitizer.sanitize_text(self._device.tag_character_limitations, value)
            if unsupported:
                self._info_log.add(f"Unsupported chars in {original_path}: {value}")
            grouped.setdefault(key, []).append(sanitized)
        return {key: delimiter.join(values) for key, values in grouped.items()}

    def convert(
        self,
        source_path: Path,
        original_path: str,
        album_art_path: Optional[Path],
        cancel: Optional[CancellationToken] = None,
    ) -> ConversionResult:
        extension = file_extension(original_path).lower()
        if extension not in self._config.source_extensions:
            raise ConversionError(f"Cannot convert {original_path}: {extension} is not a source extension")

        analysis = self.analyze(source_path, cancel)
        encoder = self.select_encoder(original_path, analysis)
        tags = self.sanitize_tags(original_path, analysis.tags)

        cover = None
        if album_art_path is not None and encoder.cover_codec and not analysis.has_embedded_cover:
            cover = self._album_art.prepare(album_art_path, self._device.album_art.max_size)

        output = self._session.get_temp_file_path(encoder.extension)
        args = build_ffmpeg_args(
            source_path, output, encoder, tags, analysis.has_embedded_cover, cover, self._ffmpeg_path
        )
        logger.debug("Running %s", shlex.join(args))

        exit_code, _, stderr = run_process(args, cancel)
        if exit_code != 0:
            output.unlink(missing_ok=True)
            raise ConversionError(
                f"ffmpeg failed for {original_path} (exit code {exit_code}): "
                f"{stderr.decode('utf-8', 'replace').strip()}"
            )
        return ConversionResult(output_path=output, extension=encoder.extension)
