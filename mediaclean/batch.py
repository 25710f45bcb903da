# mediaclean/batch.py
"""
Batch orchestration.

A fixed pool of worker tasks pulls ``(index, asset)`` pairs from a queue, so
at most ``max_in_flight`` sanitizations run at once and the next item starts
as soon as one finishes. Blocking work runs in threads via
``asyncio.to_thread``. Outcomes come back to the coordinating coroutine over a
single result queue and are recorded in completion order; use
``CleaningOutcome.index`` to restore submission order.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from mediaclean import settings
from mediaclean.cache import ResultCache
from mediaclean.cleaners.images import ImageSanitizer, retained_kinds
from mediaclean.cleaners.videos import VideoSanitizer
from mediaclean.errors import CleaningCancelledError
from mediaclean.models import (
    CleaningConfiguration,
    CleaningOutcome,
    MediaAsset,
    MediaKind,
    MetadataFinding,
    MetadataKind,
    removed_kinds,
)
from mediaclean.progress import CancellationToken, ProgressCallback, ProgressReporter
from mediaclean.storage import StorageSink

log = logging.getLogger(__name__)

ItemCallback = Callable[[CleaningOutcome], None]

_Result = Tuple[List[MetadataFinding], Tuple[MetadataKind, ...], int, Path]


def _current_size(asset: MediaAsset) -> int:
    try:
        return asset.locator.stat().st_size
    except OSError:
        return asset.size


class BatchOrchestrator:

    def __init__(self, sink: StorageSink,
                 image_sanitizer: ImageSanitizer | None = None,
                 video_sanitizer: VideoSanitizer | None = None,
                 cache: ResultCache | None = None,
                 max_in_flight: int | None = None):
        self.sink = sink
        self.image_sanitizer = image_sanitizer or ImageSanitizer()
        self.video_sanitizer = video_sanitizer or VideoSanitizer()
        self.cache = cache if cache is not None else ResultCache()
        self.max_in_flight = max(1, int(max_in_flight or settings.BATCH_CONCURRENCY))
        self._token = CancellationToken()

    def cancel(self) -> None:
        """Stop dispatching; in-flight video pumps stop at their next progress boundary.

        A cancel issued before ``run`` starts applies to that run, which then
        returns without dispatching anything.
        """
        log.info("Batch cancellation requested")
        self._token.cancel()

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    async def run(self, assets: Iterable[MediaAsset], config: CleaningConfiguration,
                  on_progress: Optional[ProgressCallback] = None,
                  on_item_complete: Optional[ItemCallback] = None) -> List[CleaningOutcome]:
        token = self._token
        try:
            return await self._run(list(assets), config.validated(), token, on_progress, on_item_complete)
        finally:
            # the next run starts with a fresh token
            self._token = CancellationToken()

    async def _run(self, assets: List[MediaAsset], config: CleaningConfiguration,
                   token: CancellationToken, on_progress: Optional[ProgressCallback],
                   on_item_complete: Optional[ItemCallback]) -> List[CleaningOutcome]:
        reporter = ProgressReporter(on_progress)
        outcomes: List[CleaningOutcome] = []
        total = len(assets)
        if token.cancelled:
            log.info("Batch cancelled before it started")
            reporter.reset()
            return outcomes
        if not total:
            reporter.complete()
            return outcomes

        pending: asyncio.Queue = asyncio.Queue()
        for item in enumerate(assets):
            pending.put_nowait(item)
        results: asyncio.Queue = asyncio.Queue()

        async def worker():
            while not token.cancelled:
                try:
                    index, asset = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcome = await asyncio.to_thread(self._process, index, asset, config, token)
                await results.put(outcome)

        async def drain():
            try:
                await asyncio.gather(*workers)
            finally:
                await results.put(None)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.max_in_flight, total))]
        closer = asyncio.create_task(drain())
        try:
            while True:
                outcome = await results.get()
                if outcome is None:
                    break
                outcomes.append(outcome)
                if len(outcomes) == total:
                    reporter.complete()
                else:
                    reporter.update(len(outcomes) / total)
                if on_item_complete is not None:
                    try:
                        on_item_complete(outcome)
                    except Exception as e:
                        log.warning(f"Item listener raised: {e}")
        except asyncio.CancelledError:
            token.cancel()
            for w in workers:
                w.cancel()
            closer.cancel()
            raise
        await closer

        if token.cancelled:
            log.info(f"Batch cancelled after {len(outcomes)}/{total} items")
            reporter.reset()
        else:
            failed = sum(1 for o in outcomes if not o.success)
            log.info(f"Batch finished: {total - failed} cleaned, {failed} failed")
        return outcomes

    def _process(self, index: int, asset: MediaAsset, config: CleaningConfiguration,
                 token: CancellationToken) -> CleaningOutcome:
        start = time.monotonic()
        try:
            token.raise_if_cancelled()
            if asset.kind is MediaKind.IMAGE:
                findings, removed, size, path = self._clean_image(asset, config)
            else:
                findings, removed, size, path = self._clean_video(asset, config, token)
        except CleaningCancelledError as e:
            log.info(f"Cancelled {asset.name}")
            return CleaningOutcome.failed(asset, e, index=index, elapsed=time.monotonic() - start)
        except Exception as e:
            log.error(f"Failed to clean {asset.name}: {e}")
            return CleaningOutcome.failed(asset, e, index=index, elapsed=time.monotonic() - start)
        return CleaningOutcome.completed(
            asset,
            index=index,
            findings=findings,
            removed=removed,
            elapsed=time.monotonic() - start,
            output_size=size,
            output_locator=path,
        )

    def _clean_image(self, asset: MediaAsset, config: CleaningConfiguration) -> _Result:
        key = self.cache.make_key(asset.locator, config)
        entry = self.cache.get(key, _current_size(asset))
        if entry is not None:
            log.debug(f"Cache hit for {asset.name}")
            data, findings = entry.data, list(entry.findings)
        else:
            data, findings = self.image_sanitizer.sanitize(asset.locator, config)
            self.cache.set(key, data, findings, _current_size(asset))
        path = self.sink.save(data, asset, config)
        return findings, removed_kinds(findings, retained_kinds(config)), len(data), path

    def _clean_video(self, asset: MediaAsset, config: CleaningConfiguration,
                     token: CancellationToken) -> _Result:
        destination = self.sink.generate_output_path(asset, config)
        try:
            findings = self.video_sanitizer.sanitize(asset.locator, destination, config, cancel=token)
            size = destination.stat().st_size
        except BaseException:
            destination.unlink(missing_ok=True)
            raise
        self.sink.finalize(destination, asset, config)
        return findings, removed_kinds(findings), size, destination
