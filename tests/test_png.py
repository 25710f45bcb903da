# tests/test_png.py
import struct
import zlib

import pytest

from mediaclean.errors import ProcessingFailedError
from mediaclean.utils.png import PNG_SIGNATURE, count_text_chunks, iter_chunks, strip_png_text_chunks


def _chunk(ctype: bytes, data: bytes = b"") -> bytes:
    crc = zlib.crc32(ctype + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + ctype + data + struct.pack(">I", crc)


def _png(*chunks: bytes) -> bytes:
    ihdr = _chunk(b"IHDR", struct.pack(">IIBBBBB", 1, 1, 8, 0, 0, 0, 0))
    idat = _chunk(b"IDAT", zlib.compress(b"\x00\x00"))
    return PNG_SIGNATURE + ihdr + b"".join(chunks) + idat + _chunk(b"IEND")


def test_text_and_time_chunks_removed_in_order():
    gama = _chunk(b"gAMA", struct.pack(">I", 45455))
    data = _png(
        _chunk(b"tEXt", b"Author\x00Alice"),
        gama,
        _chunk(b"zTXt", b"Comment\x00\x00" + zlib.compress(b"secret")),
        _chunk(b"iTXt", b"Place\x00\x00\x00\x00\x00Paris"),
        _chunk(b"tIME", struct.pack(">HBBBBB", 2024, 5, 1, 12, 0, 0)),
    )
    assert count_text_chunks(data) == 4

    out = strip_png_text_chunks(data)

    assert [c.type for c in iter_chunks(out)] == [b"IHDR", b"gAMA", b"IDAT", b"IEND"]
    assert gama in out
    assert b"Alice" not in out


def test_clean_png_is_unchanged():
    data = _png()
    assert strip_png_text_chunks(data) == data


def test_trailing_bytes_after_iend_are_dropped():
    data = _png() + b"garbage"
    out = strip_png_text_chunks(data)
    assert out.endswith(_chunk(b"IEND"))


def test_truncated_chunk_stops_walk():
    data = _png(_chunk(b"tEXt", b"a\x00b"))
    cut = data[:-20]
    assert [c.type for c in iter_chunks(cut)][-1] != b"IEND"
    assert count_text_chunks(cut) == 1


@pytest.mark.parametrize("data", [b"", PNG_SIGNATURE, b"\xff\xd8\xff\xe0" + b"\x00" * 20])
def test_invalid_signature(data):
    with pytest.raises(ProcessingFailedError) as exc:
        strip_png_text_chunks(data)
    assert "Invalid PNG signature" in str(exc.value)
