# mediaclean/models.py
"""
Value objects shared by the sanitizers, the cache and the batch orchestrator.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from mediaclean import settings
from mediaclean.errors import (
    ErrorKind,
    MediaNotFoundError,
    NetworkRequiredError,
    UnsupportedFormatError,
)

QUALITY_RANGE = (0.5, 1.0)
CONCURRENCY_RANGE = (1, 8)


def _clamp(value, low, high):
    return max(low, min(value, high))


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class VideoStrategy(str, Enum):
    FAST_REMUX = "fastRemux"
    REENCODE = "reencode"
    SMART_AUTO = "smartAuto"


class MetadataKind(str, Enum):
    # image
    EXIF = "EXIF"
    IPTC = "IPTC"
    XMP = "XMP"
    GPS = "GPS"
    ORIENTATION = "Orientation"
    COLOR_PROFILE = "Color Profile"
    THUMBNAIL = "Thumbnail"
    PNG_TEXT = "PNG Text Chunks"
    # video
    QUICKTIME_LOCATION = "QuickTime Location"
    QUICKTIME_USER_DATA = "QuickTime User Data"
    CHAPTERS = "Chapters"
    VIDEO_METADATA = "Video Metadata"


class OutcomeState(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class MediaAsset:
    locator: Path
    kind: MediaKind
    size: int
    library_id: Optional[str] = None
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "locator", Path(self.locator))
        if not self.name:
            object.__setattr__(self, "name", self.locator.name)

    @classmethod
    def from_path(cls, path, library_id: Optional[str] = None) -> "MediaAsset":
        text = str(path)
        if text.startswith(("http://", "https://")):
            raise NetworkRequiredError()
        p = Path(path)
        ext = p.suffix.lower()
        if ext in settings.IMAGE_EXTENSIONS:
            kind = MediaKind.IMAGE
        elif ext in settings.VIDEO_EXTENSIONS:
            kind = MediaKind.VIDEO
        else:
            raise UnsupportedFormatError(f"Unsupported file format: {ext or p.name}")
        try:
            size = p.stat().st_size
        except FileNotFoundError:
            raise MediaNotFoundError(f"File not found: {p}") from None
        return cls(locator=p, kind=kind, size=size, library_id=library_id)


@dataclass(frozen=True)
class CleaningConfiguration:
    """
    Resolved cleaning settings. Out-of-range quality and concurrency values
    saturate to the nearest bound instead of raising.
    """

    remove_gps: bool = True
    remove_all_metadata: bool = True
    heic_to_jpeg: bool = False
    heic_quality: float = 0.85
    jpeg_quality: float = 0.90
    bake_orientation: bool = True
    force_srgb: bool = True
    video_strategy: VideoStrategy = VideoStrategy.SMART_AUTO
    preserve_hdr: bool = False
    max_concurrent_operations: int = 4
    # caller-layer options, never part of the output bytes
    preserve_file_date: bool = False
    delete_original_file: bool = False
    save_to_library: bool = False

    def __post_init__(self):
        object.__setattr__(self, "heic_quality", float(_clamp(self.heic_quality, *QUALITY_RANGE)))
        object.__setattr__(self, "jpeg_quality", float(_clamp(self.jpeg_quality, *QUALITY_RANGE)))
        object.__setattr__(
            self,
            "max_concurrent_operations",
            int(_clamp(self.max_concurrent_operations, *CONCURRENCY_RANGE)),
        )
        object.__setattr__(self, "video_strategy", VideoStrategy(self.video_strategy))

    def validated(self) -> "CleaningConfiguration":
        return dataclasses.replace(self)

    def replace(self, **changes) -> "CleaningConfiguration":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class MetadataFinding:
    kind: MetadataKind
    detected: bool = True
    field_count: int = 0
    sensitive: bool = False

    def __str__(self) -> str:
        return f"{self.kind.value} ({self.field_count})"


def removed_kinds(findings, retained=()) -> Tuple[MetadataKind, ...]:
    """Kinds that were detected and not deliberately carried into the output."""
    return tuple(f.kind for f in findings if f.detected and f.kind not in retained)


@dataclass(frozen=True)
class CleaningOutcome:
    asset: MediaAsset
    state: OutcomeState
    index: int = 0
    findings: Tuple[MetadataFinding, ...] = ()
    removed: Tuple[MetadataKind, ...] = ()
    elapsed: float = 0.0
    output_size: Optional[int] = None
    output_locator: Optional[Path] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def __post_init__(self):
        object.__setattr__(self, "findings", tuple(self.findings))
        object.__setattr__(self, "removed", tuple(self.removed))
        if self.state is OutcomeState.COMPLETED:
            if self.error is not None or self.output_size is None:
                raise ValueError("completed outcome needs an output size and no error")
        elif self.output_size is not None:
            raise ValueError("failed outcome cannot carry an output size")

    @classmethod
    def completed(cls, asset, *, index=0, findings=(), removed=(), elapsed=0.0,
                  output_size: int, output_locator=None) -> "CleaningOutcome":
        return cls(
            asset=asset,
            state=OutcomeState.COMPLETED,
            index=index,
            findings=findings,
            removed=removed,
            elapsed=elapsed,
            output_size=output_size,
            output_locator=output_locator,
        )

    @classmethod
    def failed(cls, asset, error: BaseException, *, index=0, elapsed=0.0) -> "CleaningOutcome":
        return cls(
            asset=asset,
            state=OutcomeState.FAILED,
            index=index,
            elapsed=elapsed,
            error=str(error) or error.__class__.__name__,
            error_kind=getattr(error, "kind", ErrorKind.PROCESSING_FAILED),
        )

    @property
    def success(self) -> bool:
        return self.state is OutcomeState.COMPLETED

    @property
    def space_saved(self) -> Optional[int]:
        if not self.success:
            return None
        return self.asset.size - self.output_size
