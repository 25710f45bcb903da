# tests/test_batch.py
import asyncio
import threading
import time
from pathlib import Path

from PIL import Image

from mediaclean.batch import BatchOrchestrator
from mediaclean.cache import ResultCache
from mediaclean.errors import ErrorKind, ProcessingFailedError
from mediaclean.models import CleaningConfiguration, MediaAsset, MediaKind, MetadataFinding, MetadataKind
from mediaclean.storage import LocalStorage

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class FakeImageSanitizer:
    def __init__(self, delays=None, on_call=None):
        self.delays = delays or {}
        self.on_call = on_call
        self.calls = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def sanitize(self, source, config):
        with self._lock:
            self.calls.append(Path(source).name)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.on_call:
                self.on_call(Path(source))
            time.sleep(self.delays.get(Path(source).name, 0.02))
            return JPEG_BYTES, [MetadataFinding(MetadataKind.EXIF, field_count=1)]
        finally:
            with self._lock:
                self.active -= 1


class FakeVideoSanitizer:
    def __init__(self, fail=False):
        self.fail = fail

    def sanitize(self, source, destination, config, on_progress=None, cancel=None):
        Path(destination).write_bytes(b"\x00" * 10)
        if self.fail:
            raise ProcessingFailedError("ffmpeg exited with status 1")
        return [MetadataFinding(MetadataKind.QUICKTIME_LOCATION, field_count=1, sensitive=True)]


def _assets(tmp_path: Path, count: int, ext=".jpg"):
    assets = []
    for i in range(count):
        p = tmp_path / f"item{i}{ext}"
        p.write_bytes(b"\x00" * 100)
        assets.append(MediaAsset.from_path(p))
    return assets


def _run(orchestrator, assets, config=None, **kwargs):
    return asyncio.run(orchestrator.run(assets, config or CleaningConfiguration(), **kwargs))


def test_one_corrupted_item_does_not_abort_batch(tmp_path: Path):
    src = tmp_path / "src"
    src.mkdir()
    assets = []
    for i in range(5):
        p = src / f"photo{i}.jpg"
        Image.effect_noise((128, 128), 40 + i).convert("RGB").save(p, quality=95)
        if i == 2:
            data = p.read_bytes()
            p.write_bytes(data[: len(data) // 2])
        assets.append(MediaAsset.from_path(p))

    progress, completed = [], []
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"))
    outcomes = _run(orchestrator, assets, on_progress=progress.append, on_item_complete=completed.append)

    assert len(outcomes) == 5
    assert completed == outcomes
    failed = [o for o in outcomes if not o.success]
    assert [o.index for o in failed] == [2]
    assert failed[0].error_kind is ErrorKind.CORRUPTED_FILE
    assert failed[0].output_size is None
    assert sorted(o.index for o in outcomes) == [0, 1, 2, 3, 4]
    for o in outcomes:
        if o.success:
            assert o.output_locator.is_file()
            assert o.output_locator.name.endswith("_clean.jpg")
    assert progress[-1] == 1.0
    assert progress == sorted(progress)


def test_in_flight_items_never_exceed_window(tmp_path: Path):
    sanitizer = FakeImageSanitizer(delays={a: 0.05 for a in (f"item{i}.jpg" for i in range(6))})
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"),
                                     image_sanitizer=sanitizer, max_in_flight=2)
    outcomes = _run(orchestrator, _assets(tmp_path, 6))
    assert all(o.success for o in outcomes)
    assert sanitizer.peak == 2


def test_outcomes_arrive_in_completion_order(tmp_path: Path):
    sanitizer = FakeImageSanitizer(delays={"item0.jpg": 0.4})
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"),
                                     image_sanitizer=sanitizer, max_in_flight=2)
    outcomes = _run(orchestrator, _assets(tmp_path, 4))
    assert [o.index for o in outcomes] == [1, 2, 3, 0]


def test_cancel_stops_dispatch_and_resets_progress(tmp_path: Path):
    holder = {}
    sanitizer = FakeImageSanitizer(on_call=lambda src: holder["orch"].cancel())
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"),
                                     image_sanitizer=sanitizer, max_in_flight=1)
    holder["orch"] = orchestrator
    progress = []

    outcomes = _run(orchestrator, _assets(tmp_path, 5), on_progress=progress.append)

    assert len(outcomes) == 1
    assert sanitizer.calls == ["item0.jpg"]
    assert progress[-1] == 0.0
    # the next run is not affected by the previous cancel
    assert not orchestrator.cancelled


def test_cancel_before_run_is_honoured(tmp_path: Path):
    sanitizer = FakeImageSanitizer()
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"), image_sanitizer=sanitizer)
    orchestrator.cancel()
    assert orchestrator.cancelled
    progress = []

    outcomes = _run(orchestrator, _assets(tmp_path, 3), on_progress=progress.append)

    assert outcomes == []
    assert sanitizer.calls == []
    assert progress == [0.0]

    outcomes = _run(orchestrator, _assets(tmp_path, 3))
    assert len(outcomes) == 3


def test_second_run_is_served_from_cache(tmp_path: Path):
    sanitizer = FakeImageSanitizer()
    cache = ResultCache()
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"),
                                     image_sanitizer=sanitizer, cache=cache)
    assets = _assets(tmp_path, 2)

    _run(orchestrator, assets)
    again = _run(orchestrator, assets, CleaningConfiguration(preserve_file_date=True))

    assert len(sanitizer.calls) == 2
    assert all(o.success for o in again)
    assert len(cache) == 2


def test_video_goes_straight_to_output_path(tmp_path: Path):
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"),
                                     video_sanitizer=FakeVideoSanitizer())
    [outcome] = _run(orchestrator, _assets(tmp_path, 1, ext=".mov"))
    assert outcome.success
    assert outcome.asset.kind is MediaKind.VIDEO
    assert outcome.output_locator.name == "item0_clean.mov"
    assert outcome.output_size == 10
    assert outcome.space_saved == 90
    assert outcome.removed == (MetadataKind.QUICKTIME_LOCATION,)


def test_failed_video_leaves_no_partial_output(tmp_path: Path):
    out_dir = tmp_path / "out"
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=out_dir),
                                     video_sanitizer=FakeVideoSanitizer(fail=True))
    [outcome] = _run(orchestrator, _assets(tmp_path, 1, ext=".mkv"))
    assert not outcome.success
    assert outcome.error_kind is ErrorKind.PROCESSING_FAILED
    assert list(out_dir.iterdir()) == []


def test_empty_batch(tmp_path: Path):
    progress = []
    orchestrator = BatchOrchestrator(LocalStorage(output_dir=tmp_path / "out"))
    assert _run(orchestrator, [], on_progress=progress.append) == []
    assert progress == [1.0]
