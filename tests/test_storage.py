# tests/test_storage.py
import os
import time
from collections import namedtuple
from pathlib import Path

import pytest

from mediaclean.errors import InsufficientSpaceError, MediaNotFoundError
from mediaclean.models import CleaningConfiguration, MediaAsset, MediaKind
from mediaclean.storage import LocalStorage, video_extension

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16


def _asset(tmp_path: Path, name: str, data: bytes = b"\x00" * 10) -> MediaAsset:
    path = tmp_path / name
    path.write_bytes(data)
    return MediaAsset.from_path(path)


def test_output_named_after_real_format(tmp_path: Path):
    storage = LocalStorage(output_dir=tmp_path / "out")
    asset = _asset(tmp_path, "IMG_0001.HEIC")
    path = storage.save(JPEG, asset, CleaningConfiguration(heic_to_jpeg=True))
    assert path.name == "IMG_0001_clean.jpg"
    assert path.read_bytes() == JPEG
    assert [p.name for p in path.parent.iterdir()] == [path.name]


def test_collision_gets_unique_name(tmp_path: Path):
    storage = LocalStorage(output_dir=tmp_path / "out")
    asset = _asset(tmp_path, "a.jpg")
    first = storage.save(JPEG, asset, CleaningConfiguration())
    second = storage.save(JPEG, asset, CleaningConfiguration())
    assert first != second
    assert second.name.endswith("_a_clean.jpg")


def test_preserve_file_date(tmp_path: Path):
    storage = LocalStorage(output_dir=tmp_path / "out")
    asset = _asset(tmp_path, "old.jpg")
    stamp = time.time() - 86400 * 365
    os.utime(asset.locator, (stamp, stamp))

    kept = storage.save(JPEG, asset, CleaningConfiguration(preserve_file_date=True))
    fresh = storage.save(JPEG, asset, CleaningConfiguration())

    assert abs(kept.stat().st_mtime - stamp) < 1
    assert fresh.stat().st_mtime > stamp + 1000


@pytest.mark.parametrize("name, ext", [("a.mov", ".mov"), ("a.M4V", ".m4v"), ("a.mkv", ".mp4"), ("a.avi", ".mp4")])
def test_video_output_extension(name, ext):
    assert video_extension(Path(name)) == ext


def test_generate_output_path(tmp_path: Path):
    storage = LocalStorage(output_dir=tmp_path / "out", prefix="batch_")
    path = storage.generate_output_path(_asset(tmp_path, "clip.webm"), CleaningConfiguration())
    assert path == tmp_path / "out" / "batch_clip_clean.mp4"
    assert not path.exists()


def test_beside_source(tmp_path: Path):
    folder = tmp_path / "album"
    folder.mkdir()
    storage = LocalStorage(output_dir=tmp_path / "unused", beside_source=True)
    path = storage.save(JPEG, _asset(folder, "p.jpg"), CleaningConfiguration())
    assert path.parent == folder


def test_insufficient_space(tmp_path: Path, monkeypatch):
    Usage = namedtuple("Usage", "total used free")
    monkeypatch.setattr("mediaclean.storage.shutil.disk_usage", lambda p: Usage(100, 100, 0))
    storage = LocalStorage(output_dir=tmp_path / "out")
    with pytest.raises(InsufficientSpaceError):
        storage.save(JPEG, _asset(tmp_path, "a.jpg"), CleaningConfiguration())


def test_library_and_delete_original(tmp_path: Path):
    storage = LocalStorage(output_dir=tmp_path / "out", library_dir=tmp_path / "lib")
    asset = _asset(tmp_path, "clip.mov")
    out = storage.generate_output_path(asset, CleaningConfiguration())
    out.write_bytes(b"clean")

    copy = storage.save_to_library(out, MediaKind.VIDEO)
    assert copy == tmp_path / "lib" / "video" / "clip_clean.mov"
    assert copy.read_bytes() == b"clean"

    storage.delete_original(asset)
    assert not asset.locator.exists()
    with pytest.raises(MediaNotFoundError):
        storage.delete_original(asset)


def test_purge_expired(tmp_path: Path):
    out = tmp_path / "out"
    uploads = tmp_path / "uploads"
    out.mkdir()
    uploads.mkdir()
    old = out / "old_clean.jpg"
    stale_upload = uploads / "x.jpg"
    new = out / "new_clean.jpg"
    for p in (old, stale_upload, new):
        p.write_bytes(b"x")
    stamp = time.time() - 3600
    os.utime(old, (stamp, stamp))
    os.utime(stale_upload, (stamp, stamp))

    removed = LocalStorage(output_dir=out).purge_expired(extra_dirs=[uploads])

    assert removed == 2
    assert [p.name for p in out.iterdir()] == ["new_clean.jpg"]
    assert list(uploads.iterdir()) == []
