# mediaclean/codecs/pillow.py
"""
Image codec boundary.

The image sanitizer only talks to an ImageCodec: decode, read orientation,
bake orientation into pixels, normalize to sRGB, encode. PillowImageCodec is
the implementation used everywhere; HEIC/HEIF support comes from pillow-heif.
"""
from __future__ import annotations

import io
import logging
import struct
from abc import ABC, abstractmethod

from PIL import ExifTags, Image, ImageCms, UnidentifiedImageError, features
from pillow_heif import register_heif_opener

from mediaclean.errors import (
    CorruptedFileError,
    ProcessingFailedError,
    UnsupportedFormatError,
)

register_heif_opener()

log = logging.getLogger(__name__)

JPEG = "JPEG"
PNG = "PNG"
WEBP = "WEBP"
HEIF = "HEIF"

# EXIF orientation -> exact transpose. 5-8 swap width and height.
_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}

_CMS_MODES = {"RGB", "RGBA", "CMYK", "L"}


class ImageCodec(ABC):
    """Decode/transform/encode operations the image sanitizer relies on."""

    @abstractmethod
    def decode(self, data: bytes) -> Image.Image: ...

    @abstractmethod
    def orientation(self, image: Image.Image) -> int: ...

    @abstractmethod
    def bake_orientation(self, image: Image.Image, orientation: int) -> Image.Image: ...

    @abstractmethod
    def is_srgb(self, image: Image.Image) -> bool: ...

    @abstractmethod
    def to_srgb(self, image: Image.Image) -> Image.Image: ...

    @abstractmethod
    def encode(self, image: Image.Image, fmt: str, quality: float | None = None,
               icc_profile: bytes | None = None) -> bytes: ...

    @abstractmethod
    def supports(self, fmt: str) -> bool: ...


class PillowImageCodec(ImageCodec):

    def decode(self, data: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(data))
        except UnidentifiedImageError as e:
            raise UnsupportedFormatError() from e
        try:
            image.load()
        except (OSError, SyntaxError, ValueError) as e:
            log.debug(f"Decode failed: {e}")
            raise CorruptedFileError() from e
        return image

    def orientation(self, image: Image.Image) -> int:
        try:
            value = int(image.getexif().get(ExifTags.Base.Orientation, 1))
        except (TypeError, ValueError):
            return 1
        return value if value in range(1, 9) else 1

    def bake_orientation(self, image: Image.Image, orientation: int) -> Image.Image:
        method = _TRANSPOSE.get(orientation)
        if method is None:
            return image
        try:
            return image.transpose(method)
        except (MemoryError, ValueError) as e:
            raise ProcessingFailedError(f"Cannot create buffer for orientation baking: {e}") from e

    def is_srgb(self, image: Image.Image) -> bool:
        icc = image.info.get("icc_profile")
        if not icc:
            # untagged RGB/grey data is interpreted as sRGB
            return image.mode not in ("CMYK", "LAB", "YCbCr")
        try:
            desc = ImageCms.getProfileDescription(ImageCms.ImageCmsProfile(io.BytesIO(icc)))
        except (ImageCms.PyCMSError, OSError) as e:
            log.debug(f"Unreadable ICC profile: {e}")
            return False
        return "srgb" in desc.lower().replace(" ", "")

    def to_srgb(self, image: Image.Image) -> Image.Image:
        mode = "RGBA" if "A" in image.getbands() else "RGB"
        icc = image.info.get("icc_profile")
        try:
            if icc and image.mode in _CMS_MODES:
                source = ImageCms.ImageCmsProfile(io.BytesIO(icc))
                target = ImageCms.createProfile("sRGB")
                out_mode = mode if image.mode in ("RGB", "RGBA") else "RGB"
                converted = ImageCms.profileToProfile(image, source, target, outputMode=out_mode)
            else:
                converted = image.convert(mode)
        except (ImageCms.PyCMSError, OSError, ValueError, MemoryError) as e:
            raise ProcessingFailedError(f"Cannot create context for color conversion: {e}") from e
        converted.info.pop("icc_profile", None)
        return converted

    def encode(self, image: Image.Image, fmt: str, quality: float | None = None,
               icc_profile: bytes | None = None) -> bytes:
        # Fresh copy: Pillow caches the parsed Exif on an image once getexif()
        # ran, and the HEIF writer serializes that cache instead of image.info.
        image = _prepare_mode(image, fmt).copy()
        # Nothing from the source may ride along: Pillow falls back to
        # image.info for comments, ICC and EXIF in several encoders.
        image.info = {k: image.info[k] for k in ("transparency",) if k in image.info}
        params = {}
        if quality is not None:
            params["quality"] = int(round(quality * 100))
        if icc_profile:
            params["icc_profile"] = icc_profile
        if fmt == JPEG:
            params["optimize"] = True
        buf = io.BytesIO()
        try:
            image.save(buf, format=fmt, **params)
        except (OSError, ValueError, KeyError, struct.error) as e:
            raise ProcessingFailedError(f"Cannot finalize image destination: {e}") from e
        return buf.getvalue()

    def supports(self, fmt: str) -> bool:
        if fmt == WEBP:
            return features.check("webp")
        Image.init()
        return fmt in Image.SAVE


def _prepare_mode(image: Image.Image, fmt: str) -> Image.Image:
    has_alpha = "A" in image.getbands() or "transparency" in image.info
    if fmt == JPEG:
        if image.mode not in ("RGB", "L", "CMYK"):
            return image.convert("RGB")
    elif fmt in (HEIF, WEBP):
        if image.mode not in ("RGB", "RGBA"):
            return image.convert("RGBA" if has_alpha else "RGB")
    elif fmt == PNG:
        if image.mode in ("CMYK", "YCbCr", "LAB"):
            return image.convert("RGB")
    return image
