# mediaclean/utils/isobmff.py
"""
Minimal ISO-BMFF / QuickTime box walker.

Only the parts of the tree that can hold metadata are visited:
moov -> udta / meta / trak -> (udta / meta). Sample data (mdat) is skipped
with a seek, and the moov box is read into memory once.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, NamedTuple

MAX_MOOV_BYTES = 64 * 1024 * 1024

LOCATION_ATOM = b"\xa9xyz"
LOCATION_MARKERS = (b"location", b"iso6709")


class Box(NamedTuple):
    type: bytes
    start: int
    payload: int  # offset of the first byte after the header
    end: int


@dataclass
class ContainerScan:
    user_data_atoms: int = 0
    location_atoms: int = 0
    location_keys: List[str] = field(default_factory=list)

    @property
    def has_location(self) -> bool:
        return bool(self.location_atoms or self.location_keys)


def iter_boxes(data: bytes, start: int = 0, end: int | None = None) -> Iterator[Box]:
    end = len(data) if end is None else end
    pos = start
    while pos + 8 <= end:
        size, btype = struct.unpack(">I4s", data[pos:pos + 8])
        header = 8
        if size == 1:
            if pos + 16 > end:
                return
            (size,) = struct.unpack(">Q", data[pos + 8:pos + 16])
            header = 16
        elif size == 0:
            size = end - pos
        if size < header or pos + size > end:
            return
        yield Box(btype, pos, pos + header, pos + size)
        pos += size


def _meta_children_start(data: bytes, box: Box) -> int:
    # ISO 'meta' is a full box (4 bytes version/flags); QuickTime 'meta' is not
    if data[box.payload + 4:box.payload + 8] == b"hdlr":
        return box.payload
    return box.payload + 4


def _scan_keys(data: bytes, box: Box, scan: ContainerScan) -> None:
    pos = box.payload + 8  # version/flags + entry_count
    while pos + 8 <= box.end:
        (size,) = struct.unpack(">I", data[pos:pos + 4])
        if size < 8 or pos + size > box.end:
            return
        value = data[pos + 8:pos + size]
        if any(m in value.lower() for m in LOCATION_MARKERS):
            scan.location_keys.append(value.decode("utf-8", "replace"))
        pos += size


def _scan_meta(data: bytes, box: Box, scan: ContainerScan) -> None:
    for child in iter_boxes(data, _meta_children_start(data, box), box.end):
        if child.type == b"keys":
            _scan_keys(data, child, scan)


def _scan_udta(data: bytes, box: Box, scan: ContainerScan) -> None:
    for child in iter_boxes(data, box.payload, box.end):
        scan.user_data_atoms += 1
        if child.type == LOCATION_ATOM:
            scan.location_atoms += 1
        elif child.type == b"meta":
            _scan_meta(data, child, scan)


def _scan_moov(data: bytes, start: int, end: int, scan: ContainerScan) -> None:
    for box in iter_boxes(data, start, end):
        if box.type == b"udta":
            _scan_udta(data, box, scan)
        elif box.type == b"meta":
            _scan_meta(data, box, scan)
        elif box.type == b"trak":
            _scan_moov(data, box.payload, box.end, scan)


def _read_moov(path: Path) -> bytes:
    with path.open("rb") as fh:
        fh.seek(0, 2)
        total = fh.tell()
        pos = 0
        while pos + 8 <= total:
            fh.seek(pos)
            header = fh.read(16)
            size, btype = struct.unpack(">I4s", header[:8])
            hlen = 8
            if size == 1:
                (size,) = struct.unpack(">Q", header[8:16])
                hlen = 16
            elif size == 0:
                size = total - pos
            if size < hlen:
                break
            if btype == b"moov":
                if size > MAX_MOOV_BYTES:
                    raise ValueError(f"moov box too large to scan ({size} bytes)")
                fh.seek(pos)
                return fh.read(size)
            pos += size
    return b""


def scan_container(path: Path) -> ContainerScan:
    """Count user-data atoms and location atoms/keys under moov."""
    scan = ContainerScan()
    moov = _read_moov(Path(path))
    if not moov:
        return scan
    header = 16 if struct.unpack(">I", moov[:4])[0] == 1 else 8
    _scan_moov(moov, header, len(moov), scan)
    return scan
