# mediaclean/cleaners/inspector.py
"""
Metadata detection.

Inspection is best-effort: every probe is wrapped on its own, and a probe that
cannot read its block is logged and skipped, so a damaged block only means
fewer findings. Nothing here writes to the source.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from PIL import ExifTags, Image, IptcImagePlugin

from mediaclean.codecs.ffmpeg import VideoCodec, VideoProbe
from mediaclean.models import MetadataFinding, MetadataKind
from mediaclean.utils.isobmff import ContainerScan, scan_container
from mediaclean.utils.png import count_text_chunks
from mediaclean.utils.signature import detect_extension

log = logging.getLogger(__name__)

T = TypeVar("T")

# IFD0 entries that only point at sub-IFDs
_POINTER_TAGS = {ExifTags.IFD.Exif, ExifTags.IFD.GPSInfo, ExifTags.IFD.Interop}

_ISOBMFF_EXTENSIONS = {".mp4", ".mov", ".m4v", ".heic"}


def _safely(label: str, fn: Callable[[], T]) -> Optional[T]:
    try:
        return fn()
    except Exception as e:
        log.debug(f"Skipping {label} probe: {e}")
        return None


def _exif_count(exif: Image.Exif) -> int:
    base = sum(1 for tag in exif if tag not in _POINTER_TAGS)
    return base + sum(1 for tag in exif.get_ifd(ExifTags.IFD.Exif) if tag not in _POINTER_TAGS)


def _iptc_count(image: Image.Image) -> int:
    info = IptcImagePlugin.getiptcinfo(image)
    return len(info) if info else 0


def _xmp_count(image: Image.Image) -> int:
    packet = image.info.get("xmp") or image.info.get("XML:com.adobe.xmp")
    return 1 if packet else 0


def _orientation(exif: Image.Exif) -> int:
    return int(exif.get(ExifTags.Base.Orientation, 1))


def inspect_image(image: Image.Image, data: bytes | None = None) -> List[MetadataFinding]:
    """
    Findings for a decoded image. ``data`` is the raw source, used for
    checks Pillow does not surface (PNG textual chunks).
    """
    findings: List[MetadataFinding] = []

    def add(kind, count, sensitive=False):
        if count:
            findings.append(MetadataFinding(kind, detected=True, field_count=count, sensitive=sensitive))

    exif = _safely("EXIF", image.getexif)
    if exif is not None:
        add(MetadataKind.EXIF, _safely("EXIF", lambda: _exif_count(exif)))
        add(MetadataKind.GPS, _safely("GPS", lambda: len(exif.get_ifd(ExifTags.IFD.GPSInfo))), sensitive=True)
        orientation = _safely("orientation", lambda: _orientation(exif))
        if orientation not in (None, 1):
            add(MetadataKind.ORIENTATION, 1)
        add(MetadataKind.THUMBNAIL, _safely("thumbnail", lambda: len(exif.get_ifd(ExifTags.IFD.IFD1))))

    add(MetadataKind.IPTC, _safely("IPTC", lambda: _iptc_count(image)))
    add(MetadataKind.XMP, _safely("XMP", lambda: _xmp_count(image)))
    if image.info.get("icc_profile"):
        add(MetadataKind.COLOR_PROFILE, 1)
    if data:
        add(MetadataKind.PNG_TEXT, _safely("PNG text", lambda: count_text_chunks(data)))
    return findings


def _scan(path: Path) -> ContainerScan:
    with Path(path).open("rb") as fh:
        head = fh.read(16)
    if detect_extension(head) not in _ISOBMFF_EXTENSIONS:
        return ContainerScan()
    return scan_container(path)


def inspect_video(path: Path, codec: VideoCodec, probe: VideoProbe | None = None) -> List[MetadataFinding]:
    """Findings for a video file. ``probe`` can be passed when the caller already has one."""
    findings: List[MetadataFinding] = []
    if probe is None:
        probe = _safely("ffprobe", lambda: codec.probe(path))
    scan = _safely("container", lambda: _scan(path))

    if probe is not None and probe.user_tags:
        findings.append(MetadataFinding(MetadataKind.VIDEO_METADATA, field_count=len(probe.user_tags)))

    locations = 0
    if probe is not None:
        locations += len(probe.location_tags())
    if scan is not None:
        locations += scan.location_atoms + len(scan.location_keys)
    if locations:
        findings.append(MetadataFinding(MetadataKind.QUICKTIME_LOCATION, field_count=locations, sensitive=True))

    if scan is not None and scan.user_data_atoms:
        findings.append(MetadataFinding(MetadataKind.QUICKTIME_USER_DATA, field_count=scan.user_data_atoms))

    if probe is not None and probe.chapters:
        findings.append(MetadataFinding(MetadataKind.CHAPTERS, field_count=len(probe.chapters)))
    return findings
