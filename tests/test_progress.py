# tests/test_progress.py
import pytest

from mediaclean.errors import CleaningCancelledError
from mediaclean.progress import CancellationToken, ProgressReporter


def test_progress_is_monotonic_and_capped():
    seen = []
    reporter = ProgressReporter(seen.append)
    for value in (0.1, 0.3, 0.2, 0.3, 1.0, 2.0):
        reporter.update(value)
    reporter.complete()
    assert seen == [0.1, 0.3, 0.99, 1.0]


def test_reset_signals_incomplete_run():
    seen = []
    reporter = ProgressReporter(seen.append)
    reporter.update(0.4)
    reporter.reset()
    reporter.update(0.1)
    assert seen == [0.4, 0.0, 0.1]


def test_spans_map_onto_parent_range():
    seen = []
    reporter = ProgressReporter(seen.append)
    fast = reporter.span(0.0, 0.5)
    fast.update(0.5)
    fast.update(1.0)
    slow = reporter.span(0.5, 1.0)
    slow.update(0.5)
    slow.complete()
    assert seen == [0.25, 0.5, 0.75, 1.0]


def test_listener_errors_do_not_propagate():
    def boom(_):
        raise RuntimeError("listener bug")

    reporter = ProgressReporter(boom)
    reporter.update(0.5)
    reporter.complete()
    assert reporter.value == 1.0


def test_cancellation_token():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled
    with pytest.raises(CleaningCancelledError):
        token.raise_if_cancelled()
