# mediaclean/storage.py
"""
Output sink.

The sanitizers never decide where cleaned files go. Image bytes are handed to
``save``; video writers get a destination from ``generate_output_path`` up
front. Library saves and deletion of the original are caller-layer steps run
only after a successful outcome.
"""
from __future__ import annotations

import errno
import logging
import os
import shutil
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional, Protocol

from mediaclean import settings
from mediaclean.errors import (
    InsufficientSpaceError,
    MediaNotFoundError,
    PermissionDeniedError,
    ProcessingFailedError,
)
from mediaclean.models import CleaningConfiguration, MediaAsset, MediaKind
from mediaclean.utils.signature import detect_extension

log = logging.getLogger(__name__)

# headroom kept free on the output volume
SPACE_MARGIN = 10 * 1024 * 1024


class StorageSink(Protocol):

    def save(self, data: bytes, asset: MediaAsset, config: CleaningConfiguration) -> Path: ...

    def generate_output_path(self, asset: MediaAsset, config: CleaningConfiguration) -> Path: ...

    def finalize(self, path: Path, asset: MediaAsset, config: CleaningConfiguration) -> None: ...

    def save_to_library(self, path: Path, kind: MediaKind) -> Path: ...

    def delete_original(self, asset: MediaAsset) -> None: ...


def video_extension(source: Path) -> str:
    """Cleaned videos are always ISO-BMFF; keep .mov/.m4v, everything else becomes .mp4."""
    ext = Path(source).suffix.lower()
    return ext if ext in (".mov", ".m4v", ".mp4") else ".mp4"


def _copy_mtime(source: Path, target: Path) -> None:
    try:
        st = source.stat()
        os.utime(target, (st.st_atime, st.st_mtime))
    except OSError as e:
        log.warning(f"Could not carry file date from {source.name}: {e}")


class LocalStorage:
    """
    Writes ``{stem}_clean{ext}`` files into an output directory, or next to
    each source when ``beside_source`` is set.
    """

    def __init__(self, output_dir: Path | None = None, library_dir: Path | None = None,
                 prefix: str = "", beside_source: bool = False):
        self.output_dir = Path(output_dir or settings.OUTPUT_DIR)
        self.library_dir = Path(library_dir or settings.LIBRARY_DIR)
        self.prefix = prefix
        self.beside_source = beside_source

    def _directory(self, asset: MediaAsset) -> Path:
        folder = asset.locator.parent if self.beside_source else self.output_dir
        folder.mkdir(parents=True, exist_ok=True)
        return folder

    def _target(self, asset: MediaAsset, ext: str) -> Path:
        folder = self._directory(asset)
        stem = Path(asset.name).stem or asset.locator.stem
        path = folder / f"{self.prefix}{stem}_clean{ext}"
        if path.exists():
            path = folder / f"{self.prefix}{uuid.uuid4().hex[:8]}_{stem}_clean{ext}"
        return path

    def _ensure_space(self, asset: MediaAsset, needed: int) -> None:
        free = shutil.disk_usage(self._directory(asset)).free
        if free < needed + SPACE_MARGIN:
            raise InsufficientSpaceError()

    def save(self, data: bytes, asset: MediaAsset, config: CleaningConfiguration) -> Path:
        self._ensure_space(asset, len(data))
        ext = detect_extension(data) or asset.locator.suffix.lower()
        target = self._target(asset, ext)
        # write under a temp name then rename, so a partial file never shows up
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except PermissionError:
            tmp.unlink(missing_ok=True)
            raise PermissionDeniedError() from None
        except OSError as e:
            tmp.unlink(missing_ok=True)
            if e.errno == errno.ENOSPC:
                raise InsufficientSpaceError() from e
            raise ProcessingFailedError(f"Cannot write {target.name}: {e}") from e
        self.finalize(target, asset, config)
        log.info(f"Saved {target.name} ({len(data)} bytes)")
        return target

    def generate_output_path(self, asset: MediaAsset, config: CleaningConfiguration) -> Path:
        self._ensure_space(asset, asset.size)
        return self._target(asset, video_extension(asset.locator))

    def finalize(self, path: Path, asset: MediaAsset, config: CleaningConfiguration) -> None:
        if config.preserve_file_date:
            _copy_mtime(asset.locator, path)

    def save_to_library(self, path: Path, kind: MediaKind) -> Path:
        folder = self.library_dir / MediaKind(kind).value
        folder.mkdir(parents=True, exist_ok=True)
        dest = folder / path.name
        if dest.exists():
            dest = folder / f"{uuid.uuid4().hex[:8]}_{path.name}"
        try:
            shutil.copy2(path, dest)
        except PermissionError:
            raise PermissionDeniedError() from None
        log.info(f"Added {path.name} to library")
        return dest

    def delete_original(self, asset: MediaAsset) -> None:
        try:
            asset.locator.unlink()
        except FileNotFoundError:
            raise MediaNotFoundError() from None
        except PermissionError:
            raise PermissionDeniedError() from None
        log.info(f"Deleted original {asset.locator.name}")

    def purge_expired(self, retention: Optional[timedelta] = None,
                      extra_dirs: Iterable[Path] = ()) -> int:
        """Remove files older than ``retention`` from the output (and any extra) directories."""
        retention = retention if retention is not None else settings.RETENTION
        cutoff = datetime.now() - retention
        removed = 0
        for root in (self.output_dir, *extra_dirs):
            if not root.is_dir():
                continue
            for p in root.glob("*"):
                try:
                    if p.is_file() and datetime.fromtimestamp(p.stat().st_mtime) < cutoff:
                        p.unlink(missing_ok=True)
                        removed += 1
                except OSError as e:
                    log.debug(f"Skipping {p.name} during purge: {e}")
        return removed
