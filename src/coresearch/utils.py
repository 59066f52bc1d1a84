from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Event
from typing import Optional

from .errors import SearchCancelled

logger = logging.getLogger(__name__)


def compute_backoff_seconds(
    attempt: int,
    *,
    base: float = 3.0,
    cap: float = 30.0,
    jitter: float = 1.0,
    rng: Optional[random.Random] = None,
) -> float:
    """Exponential backoff for the given 1-based attempt, capped, plus jitter in ``[0, jitter)``.

    attempt=1 -> base, attempt=2 -> 2*base, ... never more than ``cap`` before jitter.
    """
    exponent = max(attempt, 1) - 1
    delay = min(base * (2**exponent), cap)
    if jitter > 0:
        delay += (rng or random).random() * jitter
    return delay


class CancelToken:
    """Cooperative cancellation flag shared between a caller and one running search.

    Every blocking wait inside a search goes through :meth:`sleep`, so a
    ``cancel()`` from another thread wakes it immediately.
    """

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SearchCancelled("search was cancelled")

    def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds and seconds > 0 and self._event.wait(seconds):
            raise SearchCancelled("search was cancelled while waiting")


def cancellable_sleep(seconds: float, cancel: CancelToken) -> None:
    cancel.sleep(seconds)


@dataclass
class SearchCounters:
    pages: int = 0
    records: int = 0
    retries: int = 0
    errors: int = 0


@contextmanager
def telemetry_span(
    name: str,
    counters: Optional[SearchCounters] = None,
    log: Optional[logging.Logger] = None,
):
    start = time.monotonic()
    try:
        yield
    finally:
        duration_ms = int((time.monotonic() - start) * 1000)
        msg = f"telemetry span name={name} duration_ms={duration_ms}"
        if counters is not None:
            msg += (
                f" pages={counters.pages} records={counters.records}"
                f" retries={counters.retries} errors={counters.errors}"
            )
        (log or logger).info(msg)
