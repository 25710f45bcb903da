# mediaclean/progress.py
"""
Progress reporting and cooperative cancellation shared by the video pumps and
the batch orchestrator.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from mediaclean.errors import CleaningCancelledError

log = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# highest fraction reported before the writer confirms completion
IN_FLIGHT_CEILING = 0.99


class CancellationToken:
    """Thread-safe flag checked between items and between samples."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CleaningCancelledError()


class ProgressReporter:
    """
    Forwards fractions to an optional callback.

    Reported values only move forward and stay at or below 0.99 until
    ``complete()`` is called, which emits exactly 1.0. ``reset()`` drops the
    value back to 0.0 to signal an incomplete run. A reporter can hand out a
    ``span()`` that maps its own [0, 1] range onto a sub-range of the parent.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._lock = threading.Lock()
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def update(self, fraction: float) -> None:
        fraction = max(0.0, min(fraction, IN_FLIGHT_CEILING))
        with self._lock:
            if fraction <= self._value:
                return
            self._value = fraction
        self._emit(fraction)

    def complete(self) -> None:
        with self._lock:
            self._value = 1.0
        self._emit(1.0)

    def reset(self) -> None:
        with self._lock:
            self._value = 0.0
        self._emit(0.0)

    def span(self, start: float, end: float) -> "ProgressSpan":
        return ProgressSpan(self, start, end)

    def _emit(self, value: float) -> None:
        if self._callback is None:
            return
        try:
            self._callback(value)
        except Exception as e:
            # listeners must never break a sanitization
            log.warning(f"Progress listener raised: {e}")


class ProgressSpan:
    def __init__(self, parent: ProgressReporter, start: float, end: float):
        self._parent = parent
        self._start = start
        self._end = end

    def update(self, fraction: float) -> None:
        fraction = max(0.0, min(fraction, 1.0))
        self._parent.update(self._start + (self._end - self._start) * fraction)

    def complete(self) -> None:
        if self._end >= 1.0:
            self._parent.complete()
        else:
            self._parent.update(self._end)

    def reset(self) -> None:
        self._parent.reset()

    def span(self, start: float, end: float) -> "ProgressSpan":
        width = self._end - self._start
        return ProgressSpan(self._parent, self._start + width * start, self._start + width * end)
