from __future__ import annotations

from typing import List
from unittest.mock import Mock

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tos.errors import CancelledError, TosClientError, TosServerError, UnexpectedStatusCodeError
from tos.retry import (
    NoRetryClassifier,
    Retryer,
    RetryDecision,
    ServerErrorClassifier,
    StatusCodeClassifier,
    backoff_intervals,
    parse_retry_after,
    retry_count_header,
)


def _server_error(status: int, retry_after=None) -> TosServerError:
    return TosServerError("boom", status_code=status, code="InternalError", retry_after=retry_after)


def _flaky(failures: List[BaseException], result: str = "ok") -> Mock:
    """Return a work callable raising ``failures`` in order, then returning ``result``."""
    return Mock(side_effect=[*failures, result])


@pytest.mark.parametrize(
    "error,expected",
    [
        (None, RetryDecision.NO_RETRY),
        (_server_error(500), RetryDecision.RETRY),
        (_server_error(503), RetryDecision.RETRY),
        (_server_error(429), RetryDecision.RETRY),
        (_server_error(404), RetryDecision.NO_RETRY),
        (UnexpectedStatusCodeError(502, [200]), RetryDecision.RETRY),
        (TosClientError("slow", timeout=True), RetryDecision.RETRY),
        (TosClientError("bad input"), RetryDecision.NO_RETRY),
    ],
)
def test_status_code_classifier(error, expected) -> None:
    assert StatusCodeClassifier().classify(error) is expected


def test_server_error_classifier_skips_throttling() -> None:
    classifier = ServerErrorClassifier()

    assert classifier.classify(_server_error(429)) is RetryDecision.NO_RETRY
    assert classifier.classify(_server_error(500)) is RetryDecision.RETRY
    assert classifier.classify(TosClientError("slow", timeout=True)) is RetryDecision.RETRY


def test_no_retry_classifier_never_retries() -> None:
    assert NoRetryClassifier().classify(_server_error(503)) is RetryDecision.NO_RETRY


def test_retryer_replays_with_backoff_schedule() -> None:
    sleeps: List[float] = []
    work = _flaky([_server_error(503), _server_error(500)])

    result = Retryer([0.1, 0.2, 0.4], jitter=0, sleep=sleeps.append).run(work, StatusCodeClassifier())

    assert result == "ok"
    assert sleeps == [0.1, 0.2]
    assert [call.args[0] for call in work.call_args_list] == [0, 1, 2]


def test_retryer_gives_up_after_schedule_is_exhausted() -> None:
    sleeps: List[float] = []
    errors = [_server_error(503) for _ in range(4)]
    work = Mock(side_effect=errors)

    with pytest.raises(TosServerError) as excinfo:
        Retryer([0.1, 0.2, 0.4], jitter=0, sleep=sleeps.append).run(work, StatusCodeClassifier())

    assert excinfo.value is errors[-1]
    assert work.call_count == 4
    assert sleeps == [0.1, 0.2, 0.4]


def test_retryer_stops_on_non_retryable_error() -> None:
    sleeps: List[float] = []
    work = _flaky([_server_error(403)])

    with pytest.raises(TosServerError):
        Retryer([0.1], jitter=0, sleep=sleeps.append).run(work, StatusCodeClassifier())
    assert work.call_count == 1
    assert sleeps == []


def test_retryer_without_schedule_runs_once() -> None:
    work = Mock(side_effect=_server_error(503))

    with pytest.raises(TosServerError):
        Retryer([]).run(work, StatusCodeClassifier())
    work.assert_called_once_with(0)


def test_retry_after_caps_the_delay() -> None:
    sleeps: List[float] = []
    work = _flaky([_server_error(429, retry_after=0)])

    Retryer([5.0], jitter=0, sleep=sleeps.append).run(work, StatusCodeClassifier())

    assert sleeps == [0.0]


def test_jitter_scales_delay_within_bounds() -> None:
    sleeps: List[float] = []
    bounds: List[tuple] = []

    def rand(low: float, high: float) -> float:
        bounds.append((low, high))
        return high

    Retryer([1.0], jitter=0.25, sleep=sleeps.append, rand=rand).run(
        _flaky([_server_error(500)]), StatusCodeClassifier()
    )

    assert bounds == [(0.75, 1.25)]
    assert sleeps == [1.25]


def test_cancellation_between_attempts_raises_cancelled() -> None:
    """A hook firing while the loop sleeps stops the next attempt."""
    checks: List[int] = []

    def cancelled() -> bool:
        checks.append(1)
        return len(checks) > 1

    work = _flaky([_server_error(503)])

    with pytest.raises(CancelledError):
        Retryer([0.0], jitter=0, sleep=lambda _: None).run(work, StatusCodeClassifier(), cancelled=cancelled)
    assert work.call_count == 1


def test_cancelled_hook_suppresses_retry_of_failure() -> None:
    work = _flaky([_server_error(503)])

    with pytest.raises(TosServerError):
        Retryer([0.0], jitter=0, sleep=lambda _: None).run(
            work, StatusCodeClassifier(), cancelled=lambda: True
        )
    assert work.call_count == 1


@given(st.integers(min_value=0, max_value=10), st.floats(min_value=0.01, max_value=5))
def test_backoff_intervals_double(count: int, base: float) -> None:
    intervals = backoff_intervals(count, base)

    assert len(intervals) == count
    for previous, current in zip(intervals, intervals[1:]):
        assert current == pytest.approx(previous * 2)


@pytest.mark.parametrize(
    "value,expected",
    [(None, None), ("", None), ("3", 3), (" 7 ", 7), ("-1", None), ("Wed, 21 Oct 2026 07:28:00 GMT", None)],
)
def test_parse_retry_after(value, expected) -> None:
    assert parse_retry_after(value) == expected


def test_retry_count_header_format() -> None:
    assert retry_count_header(2, 3) == "attempt=2; max=3"
