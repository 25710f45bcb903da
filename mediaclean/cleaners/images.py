# mediaclean/cleaners/images.py
"""
Image metadata cleaning:
1) Decode the pixels and record what metadata the source carries.
2) Bake the EXIF orientation into the pixels and normalize to sRGB.
3) Re-encode with no metadata attached at all, so EXIF/GPS/IPTC/XMP and
   thumbnails are absent by construction rather than zeroed.
4) For PNGs, also drop textual chunks (tEXt, zTXt, iTXt, tIME) from the
   encoded stream, since some encoders add them on their own.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Tuple

from mediaclean.cleaners.inspector import inspect_image
from mediaclean.codecs.pillow import HEIF, JPEG, PNG, WEBP, ImageCodec, PillowImageCodec
from mediaclean.errors import CorruptedFileError, MediaNotFoundError, PermissionDeniedError
from mediaclean.models import CleaningConfiguration, MetadataFinding, MetadataKind
from mediaclean.utils.png import strip_png_text_chunks

log = logging.getLogger(__name__)

_HEIF_EXTENSIONS = {".heic", ".heif"}
_JPEG_EXTENSIONS = {".jpg", ".jpeg"}


def determine_output_format(path, config: CleaningConfiguration, codec: ImageCodec | None = None) -> str:
    """Output container for a source, by extension. RAW and unknown types become JPEG."""
    codec = codec or PillowImageCodec()
    ext = Path(path).suffix.lower()
    if ext in _HEIF_EXTENSIONS:
        if config.heic_to_jpeg or not codec.supports(HEIF):
            return JPEG
        return HEIF
    if ext in _JPEG_EXTENSIONS:
        return JPEG
    if ext == ".png":
        return PNG
    if ext == ".webp":
        return WEBP if codec.supports(WEBP) else JPEG
    return JPEG


def retained_kinds(config: CleaningConfiguration) -> Tuple[MetadataKind, ...]:
    """Finding kinds deliberately carried into the output."""
    return () if config.force_srgb else (MetadataKind.COLOR_PROFILE,)


def _read(source: Path) -> bytes:
    try:
        return source.read_bytes()
    except FileNotFoundError:
        raise MediaNotFoundError() from None
    except PermissionError:
        raise PermissionDeniedError() from None
    except OSError as e:
        raise CorruptedFileError(f"Cannot read {source.name}: {e}") from e


class ImageSanitizer:

    def __init__(self, codec: ImageCodec | None = None):
        self.codec = codec or PillowImageCodec()

    def sanitize(self, source, config: CleaningConfiguration) -> Tuple[bytes, List[MetadataFinding]]:
        source = Path(source)
        config = config.validated()
        data = _read(source)
        image = self.codec.decode(data)
        findings = inspect_image(image, data)

        fmt = determine_output_format(source, config, self.codec)
        source_icc = image.info.get("icc_profile")

        if config.bake_orientation:
            orientation = self.codec.orientation(image)
            if orientation != 1:
                image = self.codec.bake_orientation(image, orientation)

        icc_profile = None
        if config.force_srgb:
            if not self.codec.is_srgb(image):
                image = self.codec.to_srgb(image)
        else:
            icc_profile = source_icc

        quality = None
        if fmt == JPEG:
            quality = config.jpeg_quality
        elif fmt == HEIF:
            quality = config.heic_quality

        out = self.codec.encode(image, fmt, quality=quality, icc_profile=icc_profile)
        if fmt == PNG:
            out = strip_png_text_chunks(out)
        log.info(f"Cleaned {source.name} -> {fmt} ({len(findings)} metadata blocks found)")
        return out, findings
