# mediaclean/cleaners/videos.py
"""
Video metadata cleaner (MP4/MOV/M4V, plus AVI/MKV/WebM sources).
Strategies:
  fastRemux  FFmpeg remux with stream copy into a container written with an
             empty metadata set (-map_metadata -1, chapters dropped,
             +faststart), an optional ExifTool pass for stragglers, then a
             verification pass over the output.
  reencode   Each track is re-encoded into its own intermediate by an
             independent ffmpeg pump (H.264 or HEVC for HDR, AAC audio), and
             the intermediates are muxed with no metadata.
  smartAuto  fastRemux first; if it fails or the output still carries
             something sensitive, throw it away and re-encode.
"""
from __future__ import annotations

import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, List, Optional

from mediaclean import settings
from mediaclean.cleaners.inspector import inspect_video
from mediaclean.codecs.ffmpeg import FFmpegVideoCodec, TrackJob, VideoCodec, VideoProbe
from mediaclean.errors import (
    CleaningCancelledError,
    CleaningError,
    CorruptedFileError,
    DrmProtectedError,
    MediaNotFoundError,
    PermissionDeniedError,
    ProcessingFailedError,
    UnsupportedFormatError,
)
from mediaclean.models import CleaningConfiguration, MetadataFinding, MetadataKind, VideoStrategy
from mediaclean.progress import CancellationToken, ProgressCallback, ProgressReporter

log = logging.getLogger(__name__)

SensitivityPolicy = Callable[[MetadataFinding], bool]

DURATION_TOLERANCE = 1.0  # seconds
DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 2


def location_only(finding: MetadataFinding) -> bool:
    """Default policy: only findings that can leak a physical location trigger a re-encode."""
    return finding.detected and finding.sensitive


def _known(value: Optional[str]) -> Optional[str]:
    return value if value and value not in ("unknown", "reserved") else None


def plan_tracks(probe: VideoProbe, config: CleaningConfiguration) -> List[TrackJob]:
    """One job for the first video track and one for the first audio track, if any."""
    video = probe.video_streams[0]
    estimate = video.bit_rate or probe.bit_rate or settings.VIDEO_BITRATE_FLOOR
    bit_rate = max(settings.VIDEO_BITRATE_FLOOR, min(estimate, settings.VIDEO_BITRATE_CEILING))
    colors = dict(
        color_primaries=_known(video.color_primaries),
        color_transfer=_known(video.color_transfer),
        color_space=_known(video.color_space),
    )
    if config.preserve_hdr and video.is_hdr:
        jobs = [TrackJob("video", video.index, "libx265", bit_rate,
                         pix_fmt="yuv420p10le", tag="hvc1", **colors)]
    else:
        jobs = [TrackJob("video", video.index, "libx264", bit_rate,
                         pix_fmt="yuv420p", profile="main", **colors)]
    if probe.audio_streams:
        audio = probe.audio_streams[0]
        jobs.append(TrackJob(
            "audio", audio.index, "aac", settings.AUDIO_BITRATE,
            sample_rate=audio.sample_rate or DEFAULT_SAMPLE_RATE,
            channels=audio.channels or DEFAULT_CHANNELS,
        ))
    return jobs


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"Could not remove partial output {path}: {e}")


class VideoSanitizer:

    def __init__(self, codec: VideoCodec | None = None, sensitivity: SensitivityPolicy | None = None):
        self.codec = codec or FFmpegVideoCodec()
        self.sensitivity = sensitivity or location_only

    def sanitize(self, source, destination, config: CleaningConfiguration,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel: Optional[CancellationToken] = None) -> List[MetadataFinding]:
        source = Path(source)
        destination = Path(destination)
        config = config.validated()
        cancel = cancel or CancellationToken()
        reporter = ProgressReporter(on_progress)

        if not source.is_file():
            raise MediaNotFoundError()
        if not os.access(source, os.R_OK):
            raise PermissionDeniedError()
        probe = self.codec.probe(source)
        if probe.is_drm_protected:
            raise DrmProtectedError()
        if not probe.video_streams:
            raise UnsupportedFormatError("No video track found")
        findings = inspect_video(source, self.codec, probe)

        strategy = config.video_strategy
        log.info(f"Cleaning {source.name} with {strategy.value}")
        try:
            if strategy is VideoStrategy.FAST_REMUX:
                self._fast_remux(source, destination, probe, reporter.update, cancel)
            elif strategy is VideoStrategy.REENCODE:
                self._reencode(source, destination, probe, config, reporter.update, cancel)
            else:
                self._smart_auto(source, destination, probe, config, reporter, cancel)
        except CleaningCancelledError:
            _discard(destination)
            reporter.reset()
            raise
        except BaseException:
            _discard(destination)
            raise
        reporter.complete()
        return findings

    def _fast_remux(self, source: Path, destination: Path, probe: VideoProbe,
                    progress: ProgressCallback, cancel: CancellationToken) -> List[MetadataFinding]:
        self.codec.remux(source, destination, probe.duration, progress, cancel)
        return self._verify(destination, probe)

    def _verify(self, output: Path, source_probe: VideoProbe) -> List[MetadataFinding]:
        """Re-open the remuxed output; returns what metadata it still carries."""
        try:
            probe = self.codec.probe(output)
        except CorruptedFileError as e:
            raise ProcessingFailedError("Verification could not read the output") from e
        drift = abs(probe.duration - source_probe.duration)
        if drift > DURATION_TOLERANCE:
            raise ProcessingFailedError(
                f"Duration mismatch after remux ({probe.duration:.2f}s vs {source_probe.duration:.2f}s)"
            )
        if not probe.video_streams:
            raise ProcessingFailedError("No video track survived the remux")
        residual = inspect_video(output, self.codec, probe)
        if any(f.kind is MetadataKind.QUICKTIME_LOCATION for f in residual):
            raise ProcessingFailedError("Location metadata survived the remux")
        return residual

    def _smart_auto(self, source: Path, destination: Path, probe: VideoProbe,
                    config: CleaningConfiguration, reporter: ProgressReporter,
                    cancel: CancellationToken) -> None:
        fast = reporter.span(0.0, 0.5)
        try:
            residual = self._fast_remux(source, destination, probe, fast.update, cancel)
        except CleaningCancelledError:
            raise
        except (CleaningError, OSError) as e:
            log.warning(f"Fast remux of {source.name} failed ({e}); re-encoding")
        else:
            leftover = [f for f in residual if self.sensitivity(f)]
            if not leftover:
                return
            log.warning(
                f"Fast remux of {source.name} still carries "
                f"{', '.join(f.kind.value for f in leftover)}; re-encoding"
            )
        _discard(destination)
        self._reencode(source, destination, probe, config, reporter.span(0.5, 1.0).update, cancel)

    def _reencode(self, source: Path, destination: Path, probe: VideoProbe,
                  config: CleaningConfiguration, progress: ProgressCallback,
                  cancel: CancellationToken) -> None:
        jobs = plan_tracks(probe, config)
        with tempfile.TemporaryDirectory(prefix="mediaclean-") as td:
            outputs = [Path(td) / f"{job.media}-{job.stream_index}.mp4" for job in jobs]
            with ThreadPoolExecutor(max_workers=config.max_concurrent_operations) as pool:
                futures = [
                    pool.submit(
                        self.codec.encode_track, source, out, job, probe.duration,
                        progress if job.media == "video" else None, cancel,
                    )
                    for job, out in zip(jobs, outputs)
                ]
                wait(futures)
            errors = [f.exception() for f in futures if f.exception() is not None]
            for e in errors:
                if isinstance(e, CleaningCancelledError):
                    raise e
            if errors:
                raise errors[0]
            cancel.raise_if_cancelled()
            self.codec.mux(outputs, destination, cancel)
