# mediaclean/codecs/ffmpeg.py
"""
Video codec boundary.

The video sanitizer talks to a VideoCodec: probe a file, remux it without
metadata, encode a single track into an intermediate file, and mux
intermediates together. FFmpegVideoCodec drives the ffmpeg/ffprobe
executables; after a remux it can run an exiftool pass to nuke stragglers
(QuickTime keys, GPS, time tags, XMP) that ffmpeg leaves behind.
"""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from mediaclean import settings
from mediaclean.errors import (
    CleaningCancelledError,
    CorruptedFileError,
    ProcessingFailedError,
)
from mediaclean.progress import CancellationToken, ProgressCallback

log = logging.getLogger(__name__)

_FFMPEG_FLAGS = ["-hide_banner", "-loglevel", "error", "-y"]
_EXIFTOOL_ARGS = [
    "-all=",                    # nuke everything it knows
    "-Keys:all=",               # iOS/QuickTime keys
    "-Time:all=",               # creation/mod times in atoms
    "-GPS:all=",                # GPS & location clusters
    "-UserData:all=",
    "-ItemList:all=",
    "-QuickTime:LocationInformation=",
    "-com.apple.quicktime.location.ISO6709=",  # iOS location atom
    "-overwrite_original_in_place",
]

# protected-content sample entries and codecs
DRM_CODEC_TAGS = {"drmi", "encv", "enca"}
DRM_CODECS = {"drms"}

LOCATION_TAG_MARKERS = ("location", "iso6709")

# ftyp brand fields ffprobe reports as format tags; not user metadata
BRAND_TAGS = {"major_brand", "minor_version", "compatible_brands"}

_STDERR_TAIL = 2000


@dataclass
class StreamInfo:
    index: int
    codec_type: str
    codec_name: str = ""
    codec_tag: str = ""
    bit_rate: Optional[int] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pix_fmt: Optional[str] = None
    color_primaries: Optional[str] = None
    color_transfer: Optional[str] = None
    color_space: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def is_hdr(self) -> bool:
        return self.color_transfer in ("smpte2084", "arib-std-b67") or self.color_primaries == "bt2020"

    @property
    def is_drm_protected(self) -> bool:
        return self.codec_tag in DRM_CODEC_TAGS or self.codec_name in DRM_CODECS


@dataclass
class VideoProbe:
    duration: float = 0.0
    bit_rate: Optional[int] = None
    format_name: str = ""
    format_tags: Dict[str, str] = field(default_factory=dict)
    streams: List[StreamInfo] = field(default_factory=list)
    chapters: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def video_streams(self) -> List[StreamInfo]:
        return [s for s in self.streams if s.codec_type == "video"]

    @property
    def audio_streams(self) -> List[StreamInfo]:
        return [s for s in self.streams if s.codec_type == "audio"]

    @property
    def user_tags(self) -> Dict[str, str]:
        return {k: v for k, v in self.format_tags.items() if k.lower() not in BRAND_TAGS}

    @property
    def is_drm_protected(self) -> bool:
        return any(s.is_drm_protected for s in self.streams)

    def location_tags(self) -> List[str]:
        """Names of format/stream tags that carry a location."""
        found = [k for k in self.format_tags if _is_location_key(k)]
        for s in self.streams:
            found += [k for k in s.tags if _is_location_key(k)]
        return found


@dataclass(frozen=True)
class TrackJob:
    """One track to re-encode into its own intermediate file."""

    media: str  # "video" | "audio"
    stream_index: int
    codec: str
    bit_rate: int
    pix_fmt: Optional[str] = None
    profile: Optional[str] = None
    tag: Optional[str] = None
    color_primaries: Optional[str] = None
    color_transfer: Optional[str] = None
    color_space: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


def _is_location_key(key: str) -> bool:
    k = key.lower()
    return any(m in k for m in LOCATION_TAG_MARKERS)


def _int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe(data: Dict[str, Any]) -> VideoProbe:
    """Build a VideoProbe from ffprobe's JSON output."""
    fmt = data.get("format") or {}
    streams = []
    for s in data.get("streams") or []:
        streams.append(StreamInfo(
            index=_int(s.get("index")) or 0,
            codec_type=s.get("codec_type", ""),
            codec_name=s.get("codec_name", ""),
            codec_tag=s.get("codec_tag_string", ""),
            bit_rate=_int(s.get("bit_rate")),
            duration=_float(s.get("duration")),
            width=_int(s.get("width")),
            height=_int(s.get("height")),
            pix_fmt=s.get("pix_fmt"),
            color_primaries=s.get("color_primaries"),
            color_transfer=s.get("color_transfer"),
            color_space=s.get("color_space"),
            sample_rate=_int(s.get("sample_rate")),
            channels=_int(s.get("channels")),
            tags=dict(s.get("tags") or {}),
        ))
    duration = _float(fmt.get("duration"))
    if duration is None:
        duration = max((s.duration or 0.0 for s in streams), default=0.0)
    return VideoProbe(
        duration=duration,
        bit_rate=_int(fmt.get("bit_rate")),
        format_name=fmt.get("format_name", ""),
        format_tags=dict(fmt.get("tags") or {}),
        streams=streams,
        chapters=list(data.get("chapters") or []),
    )


def container_format(destination: Path) -> str:
    """ffmpeg muxer for a destination, chosen by its suffix."""
    suffix = Path(destination).suffix.lower()
    if suffix == ".mov":
        return "mov"
    if suffix == ".m4v":
        return "ipod"
    return "mp4"


def _output_args(destination: Path) -> List[str]:
    return [
        "-map_metadata", "-1",
        "-map_chapters", "-1",
        "-fflags", "+bitexact",
        "-movflags", "+faststart",
        "-f", container_format(destination),
        str(destination),
    ]


def exiftool_enabled() -> bool:
    if settings.EXIFTOOL_PASS == "off":
        return False
    if settings.EXIFTOOL_PASS == "on":
        return True
    return shutil.which(settings.EXIFTOOL) is not None


class VideoCodec(ABC):
    """Probe/remux/encode/mux operations the video sanitizer relies on."""

    @abstractmethod
    def probe(self, path: Path) -> VideoProbe: ...

    @abstractmethod
    def remux(self, source: Path, destination: Path, duration: float = 0.0,
              on_progress: Optional[ProgressCallback] = None,
              cancel: Optional[CancellationToken] = None) -> None: ...

    @abstractmethod
    def encode_track(self, source: Path, destination: Path, job: TrackJob, duration: float = 0.0,
                     on_progress: Optional[ProgressCallback] = None,
                     cancel: Optional[CancellationToken] = None) -> None: ...

    @abstractmethod
    def mux(self, tracks: Sequence[Path], destination: Path,
            cancel: Optional[CancellationToken] = None) -> None: ...


class FFmpegVideoCodec(VideoCodec):

    def __init__(self, ffmpeg: str | None = None, ffprobe: str | None = None,
                 exiftool: str | None = None, use_exiftool: bool | None = None):
        self.ffmpeg = ffmpeg or settings.FFMPEG
        self.ffprobe = ffprobe or settings.FFPROBE
        self.exiftool = exiftool or settings.EXIFTOOL
        self.use_exiftool = exiftool_enabled() if use_exiftool is None else use_exiftool

    def probe(self, path: Path) -> VideoProbe:
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            "-show_chapters",
            str(path),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise ProcessingFailedError(f"{self.ffprobe} is not installed") from e
        except subprocess.CalledProcessError as e:
            log.debug(f"ffprobe failed on {path}: {e.stderr}")
            raise CorruptedFileError() from e
        try:
            return parse_probe(json.loads(result.stdout or "{}"))
        except ValueError as e:
            raise CorruptedFileError() from e

    def remux(self, source, destination, duration=0.0, on_progress=None, cancel=None):
        # Preserve audio/video bytes, drop every container/global metadata block.
        args = [
            "-i", str(source),
            "-map", "0:v",
            "-map", "0:a?",
            "-c", "copy",
        ] + _output_args(destination)
        self._run(args, duration, on_progress, cancel)
        if self.use_exiftool:
            self._exiftool_strip(Path(destination))

    def encode_track(self, source, destination, job, duration=0.0, on_progress=None, cancel=None):
        args = ["-i", str(source), "-map", f"0:{job.stream_index}", "-sn", "-dn"]
        if job.media == "video":
            args += ["-an", "-c:v", job.codec, "-b:v", str(job.bit_rate)]
            if job.profile:
                args += ["-profile:v", job.profile]
            if job.pix_fmt:
                args += ["-pix_fmt", job.pix_fmt]
            if job.tag:
                args += ["-tag:v", job.tag]
            if job.color_primaries:
                args += ["-color_primaries", job.color_primaries]
            if job.color_transfer:
                args += ["-color_trc", job.color_transfer]
            if job.color_space:
                args += ["-colorspace", job.color_space]
        else:
            args += ["-vn", "-c:a", job.codec, "-b:a", str(job.bit_rate)]
            if job.sample_rate:
                args += ["-ar", str(job.sample_rate)]
            if job.channels:
                args += ["-ac", str(job.channels)]
        args += ["-map_metadata", "-1", "-map_chapters", "-1", "-fflags", "+bitexact",
                 "-f", "mp4", str(destination)]
        self._run(args, duration, on_progress, cancel)

    def mux(self, tracks, destination, cancel=None):
        args = []
        for t in tracks:
            args += ["-i", str(t)]
        for i in range(len(tracks)):
            args += ["-map", str(i)]
        args += ["-c", "copy"] + _output_args(destination)
        self._run(args, 0.0, None, cancel)

    def _exiftool_strip(self, path: Path) -> None:
        try:
            subprocess.run([self.exiftool] + _EXIFTOOL_ARGS + [str(path)], check=True, capture_output=True)
        except FileNotFoundError as e:
            raise ProcessingFailedError(f"{self.exiftool} is not installed") from e
        except subprocess.CalledProcessError as e:
            tail = (e.stderr or b"").decode("utf-8", "replace")[-_STDERR_TAIL:].strip()
            raise ProcessingFailedError(f"exiftool exited with status {e.returncode}: {tail}") from e

    def _run(self, args: List[str], duration: float,
             on_progress: Optional[ProgressCallback],
             cancel: Optional[CancellationToken]) -> None:
        """
        Run one ffmpeg pump, feeding ``out_time`` from ``-progress pipe:1`` to
        ``on_progress`` as a fraction of ``duration``.

        On cancellation ffmpeg is asked to finish its outputs ("q" on stdin)
        and CleaningCancelledError is raised once it has exited.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        cmd = [self.ffmpeg] + _FFMPEG_FLAGS + ["-progress", "pipe:1", "-nostats"] + args
        log.debug(f"Executing: {' '.join(cmd)}")
        # stderr goes to a file so a chatty ffmpeg never blocks on a full pipe
        with tempfile.TemporaryFile() as errfile:
            try:
                proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=errfile)
            except OSError as e:
                raise ProcessingFailedError(f"cannot start {self.ffmpeg}: {e}") from e
            stopping = False
            for raw in proc.stdout:
                if cancel is not None and cancel.cancelled and not stopping:
                    stopping = True
                    _request_stop(proc)
                if stopping:
                    continue
                key, _, value = raw.decode("ascii", "replace").strip().partition("=")
                if key == "out_time_us" and on_progress is not None and duration > 0:
                    micros = _int(value)
                    if micros is not None and micros >= 0:
                        on_progress(min(micros / 1_000_000 / duration, 1.0))
            proc.stdout.close()
            returncode = proc.wait()
            if proc.stdin is not None and not proc.stdin.closed:
                try:
                    proc.stdin.close()
                except OSError:
                    pass
            if stopping or (cancel is not None and cancel.cancelled):
                log.info(f"ffmpeg PID {proc.pid} stopped on cancellation")
                raise CleaningCancelledError()
            if returncode != 0:
                errfile.seek(0)
                tail = errfile.read().decode("utf-8", "replace")[-_STDERR_TAIL:].strip()
                log.error(f"ffmpeg exited with status {returncode}: {tail}")
                raise ProcessingFailedError(f"ffmpeg exited with status {returncode}: {tail}")


def _request_stop(proc: subprocess.Popen) -> None:
    try:
        proc.stdin.write(b"q")
        proc.stdin.flush()
        proc.stdin.close()
    except (BrokenPipeError, OSError, ValueError):
        proc.terminate()
