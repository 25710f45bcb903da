# mediaclean/utils/signature.py
"""
Lightweight magic-number checks: reject extension-spoofed uploads and name
cleaned outputs after what they really contain.
"""
from __future__ import annotations

def _starts(data: bytes, prefix: bytes) -> bool:
    return data.startswith(prefix)

def _has(data: bytes, offset: int, token: bytes) -> bool:
    return data[offset:offset+len(token)] == token

# --- Image checks ---
def _is_jpeg(data: bytes) -> bool:
    return _starts(data, b"\xFF\xD8\xFF")

def _is_png(data: bytes) -> bool:
    return _starts(data, b"\x89PNG\r\n\x1a\n")

def _is_gif(data: bytes) -> bool:
    return _starts(data, b"GIF87a") or _starts(data, b"GIF89a")

def _is_tiff(data: bytes) -> bool:
    return _starts(data, b"MM\x00*") or _starts(data, b"II*\x00")

def _is_webp(data: bytes) -> bool:
    return len(data) >= 12 and _has(data, 0, b"RIFF") and _has(data, 8, b"WEBP")

def _is_bmp(data: bytes) -> bool:
    return _starts(data, b"BM")

# --- ISO base media (HEIF stills and MP4/MOV video share the ftyp box) ---
_HEIF_BRANDS = {b"heic", b"heix", b"heim", b"heis", b"hevc", b"hevx", b"mif1", b"msf1", b"avif"}
_QUICKTIME_BRANDS = {b"qt  "}
_M4V_BRANDS = {b"M4V ", b"M4VH", b"M4VP"}

def _ftyp_brand(data: bytes) -> bytes | None:
    if len(data) >= 12 and _has(data, 4, b"ftyp"):
        return data[8:12]
    return None

def _is_avi(data: bytes) -> bool:
    return len(data) >= 12 and _starts(data, b"RIFF") and _has(data, 8, b"AVI ")

def _is_matroska(data: bytes) -> bool:
    return _starts(data, b"\x1A\x45\xDF\xA3")

_EQUIV = {
    "jpg": {"jpg", "jpeg"},
    "tiff": {"tif", "tiff", "dng", "cr2", "nef", "arw"},
    "heic": {"heic", "heif"},
    "mp4": {"mp4", "mov", "m4v"},
    "mkv": {"mkv", "webm"},
}

def detect_extension(data: bytes) -> str | None:
    """Return a normalized extension (with dot), or None if unsupported."""
    if _is_jpeg(data): return ".jpg"
    if _is_png(data):  return ".png"
    if _is_gif(data):  return ".gif"
    if _is_tiff(data): return ".tiff"
    if _is_webp(data): return ".webp"
    if _is_bmp(data):  return ".bmp"
    brand = _ftyp_brand(data)
    if brand is not None:
        if brand in _HEIF_BRANDS: return ".heic"
        if brand in _QUICKTIME_BRANDS: return ".mov"
        if brand in _M4V_BRANDS: return ".m4v"
        return ".mp4"
    if _is_avi(data):      return ".avi"
    if _is_matroska(data): return ".mkv"
    return None

def ext_equivalent(a: str, b: str) -> bool:
    """True if extensions are the same or within an equivalence family."""
    a = a.lstrip(".").lower()
    b = b.lstrip(".").lower()
    if a == b: return True
    for fam in _EQUIV.values():
        if a in fam and b in fam:
            return True
    return False
