"""Retry classification and the backoff loop that drives request replays.

A request is replayed only when its classifier says so:

========================================  ==========
Outcome                                   Decision
========================================  ==========
success                                   no retry
server error with 5xx or 429              retry
error whose ``timeout`` flag is set       retry
any other server or client error          no retry
========================================  ==========

:class:`ServerErrorClassifier` is the variant for non-idempotent POST
operations and never retries 429.  The loop itself is a
:class:`tenacity.Retrying` controller: attempts are bounded by the length of
the precomputed backoff schedule, delays are jittered, and a ``Retry-After``
hint caps the computed delay.
"""

from __future__ import annotations

import enum
import logging
import random
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .errors import CancelledError, TosServerError, UnexpectedStatusCodeError

__all__ = [
    "RetryDecision",
    "Classifier",
    "NoRetryClassifier",
    "StatusCodeClassifier",
    "ServerErrorClassifier",
    "Retryer",
    "backoff_intervals",
    "parse_retry_after",
    "retry_count_header",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_JITTER = 0.25


class RetryDecision(enum.Enum):
    NO_RETRY = "no_retry"
    RETRY = "retry"


def _status_of(err: BaseException) -> Optional[int]:
    if isinstance(err, (TosServerError, UnexpectedStatusCodeError)):
        return err.status_code
    return None


def _is_timeout(err: BaseException) -> bool:
    return bool(getattr(err, "timeout", False))


class Classifier:
    """Decide whether a failed attempt may be replayed."""

    def classify(self, err: Optional[BaseException]) -> RetryDecision:  # pragma: no cover
        raise NotImplementedError


class NoRetryClassifier(Classifier):
    def classify(self, err: Optional[BaseException]) -> RetryDecision:
        return RetryDecision.NO_RETRY


class StatusCodeClassifier(Classifier):
    """Retry 5xx, 429 and timeouts."""

    def classify(self, err: Optional[BaseException]) -> RetryDecision:
        if err is None:
            return RetryDecision.NO_RETRY
        status = _status_of(err)
        if status is not None and (status >= 500 or status == 429):
            return RetryDecision.RETRY
        if _is_timeout(err):
            return RetryDecision.RETRY
        return RetryDecision.NO_RETRY


class ServerErrorClassifier(Classifier):
    """Retry 5xx and timeouts only; used by POST operations."""

    def classify(self, err: Optional[BaseException]) -> RetryDecision:
        if err is None:
            return RetryDecision.NO_RETRY
        status = _status_of(err)
        if status is not None and status >= 500:
            return RetryDecision.RETRY
        if _is_timeout(err):
            return RetryDecision.RETRY
        return RetryDecision.NO_RETRY


def backoff_intervals(max_count: int, base: float) -> List[float]:
    """Return ``[base * 2**n for n in range(max_count)]``."""
    return [base * (2 ** n) for n in range(max(0, max_count))]


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse an integral ``Retry-After`` header; anything else is ignored."""
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def retry_count_header(attempt: int, max_count: int) -> str:
    return f"attempt={attempt}; max={max_count}"


class _JitteredBackoff(wait_base):
    """Wait ``backoff[n]`` scaled by jitter, capped by the failure's Retry-After."""

    def __init__(self, backoff: Sequence[float], jitter: float, rand: Callable[[float, float], float]) -> None:
        self._backoff = list(backoff)
        self._jitter = jitter
        self._rand = rand

    def __call__(self, retry_state: RetryCallState) -> float:
        index = min(max(retry_state.attempt_number - 1, 0), len(self._backoff) - 1)
        delay = self._backoff[index]
        if self._jitter > 0:
            delay *= self._rand(1 - self._jitter, 1 + self._jitter)

        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            retry_after = getattr(outcome.exception(), "retry_after", None)
            if retry_after is not None and retry_after >= 0:
                delay = min(float(retry_after), delay)
        return max(delay, 0.0)


class Retryer:
    """Run a unit of work until it succeeds or its classifier gives up.

    Args:
        backoff: Delay schedule; its length is the maximum number of retries.
        jitter: Relative jitter applied to each delay.
        sleep: Sleep function (injected by tests).
        rand: ``uniform(a, b)`` source for jitter.
    """

    def __init__(
        self,
        backoff: Sequence[float],
        jitter: float = DEFAULT_JITTER,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.backoff = list(backoff)
        self.jitter = jitter
        self._sleep = sleep
        self._rand = rand

    @property
    def max_retry_count(self) -> int:
        return len(self.backoff)

    def run(
        self,
        work: Callable[[int], T],
        classifier: Classifier,
        *,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> T:
        """Call ``work(retry_count)`` until it returns.

        ``work`` raises on failure; the raised error is classified and, when
        retryable, the loop sleeps and calls ``work`` again with the next
        retry count.  The last error propagates unchanged.
        """
        if not self.backoff:
            return work(0)

        def _should_retry(exc: BaseException) -> bool:
            if cancelled is not None and cancelled():
                return False
            return classifier.classify(exc) is RetryDecision.RETRY

        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "request attempt failed, retrying",
                extra={
                    "attempt": retry_state.attempt_number,
                    "max_retry_count": self.max_retry_count,
                    "sleep_seconds": round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0.0,
                    "error": str(exc),
                },
            )

        controller = Retrying(
            retry=retry_if_exception(_should_retry),
            wait=_JitteredBackoff(self.backoff, self.jitter, self._rand),
            stop=stop_after_attempt(len(self.backoff) + 1),
            sleep=self._sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

        for attempt in controller:
            with attempt:
                retry_count = attempt.retry_state.attempt_number - 1
                if retry_count > 0 and cancelled is not None and cancelled():
                    raise CancelledError()
                result = work(retry_count)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result  # type: ignore[possibly-undefined]
