# mediaclean/utils/png.py
"""
PNG chunk walking.

A PNG stream is the 8-byte signature followed by chunks laid out as
[4-byte big-endian length][4-byte type][data][4-byte CRC].
"""
from __future__ import annotations

import struct
from typing import Iterator, NamedTuple

from mediaclean.errors import ProcessingFailedError

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# textual and timestamp chunks; some encoders emit these regardless of what they were given
TEXT_CHUNKS = frozenset({b"tEXt", b"iTXt", b"zTXt", b"tIME"})


class Chunk(NamedTuple):
    type: bytes
    start: int
    end: int  # exclusive, includes the CRC


def iter_chunks(data: bytes) -> Iterator[Chunk]:
    """Yield chunks up to and including IEND. Stops quietly at a truncated chunk."""
    pos = len(PNG_SIGNATURE)
    total = len(data)
    while pos + 12 <= total:
        (length,) = struct.unpack(">I", data[pos:pos + 4])
        ctype = data[pos + 4:pos + 8]
        end = pos + 12 + length
        if end > total:
            break
        yield Chunk(ctype, pos, end)
        pos = end
        if ctype == b"IEND":
            break


def is_png(data: bytes) -> bool:
    return data[:8] == PNG_SIGNATURE


def count_text_chunks(data: bytes) -> int:
    if not is_png(data):
        return 0
    return sum(1 for c in iter_chunks(data) if c.type in TEXT_CHUNKS)


def strip_png_text_chunks(data: bytes) -> bytes:
    """Copy every chunk except tEXt/iTXt/zTXt/tIME, keeping order and IEND."""
    if len(data) <= len(PNG_SIGNATURE) or not is_png(data):
        raise ProcessingFailedError("Invalid PNG signature")
    out = bytearray(PNG_SIGNATURE)
    for chunk in iter_chunks(data):
        if chunk.type in TEXT_CHUNKS:
            continue
        out += data[chunk.start:chunk.end]
    return bytes(out)
