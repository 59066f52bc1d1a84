from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import Settings
from .connectors.base import Connector, RawRecord
from .connectors.core import COREConnector
from .errors import FetchError, PaginationBudgetExceeded, SearchCancelled
from .utils import CancelToken, SearchCounters, cancellable_sleep, telemetry_span


@dataclass
class FetchAllResult:
    records: list[RawRecord] = field(default_factory=list)
    error: FetchError | None = None
    pages: int = 0
    retries: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def partial(self) -> bool:
        """True when the search failed after some records had already been collected."""
        return self.error is not None and bool(self.records)


class PaginationDriver:
    """Walks a connector's scroll cursor until the server runs out of pages.

    Pages are fetched strictly one after another with a fixed politeness delay
    between them. A failed page ends the search but keeps the records already
    collected; the error is returned next to them instead of being raised.
    """

    def __init__(
        self,
        connector: Connector,
        *,
        inter_page_delay_seconds: float = 3.0,
        max_pages: int | None = 200,
        max_elapsed_seconds: float | None = None,
        sleep: Callable[[float, CancelToken], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.connector = connector
        self.inter_page_delay_seconds = inter_page_delay_seconds
        self.max_pages = max_pages
        self.max_elapsed_seconds = max_elapsed_seconds
        self._sleep = sleep or cancellable_sleep
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings, connector: Connector | None = None, **kwargs):
        return cls(
            connector or COREConnector(settings),
            inter_page_delay_seconds=settings.inter_page_delay_seconds,
            max_pages=settings.max_pages,
            max_elapsed_seconds=settings.max_elapsed_seconds,
            **kwargs,
        )

    def _budget_error(self, pages: int, started: float) -> PaginationBudgetExceeded | None:
        if self.max_pages is not None and pages >= self.max_pages:
            return PaginationBudgetExceeded(f"stopped after reaching max_pages={self.max_pages}")
        if self.max_elapsed_seconds is not None:
            elapsed = self._clock() - started
            if elapsed >= self.max_elapsed_seconds:
                return PaginationBudgetExceeded(
                    f"stopped after {elapsed:.1f}s (max_elapsed_seconds={self.max_elapsed_seconds})"
                )
        return None

    def fetch_all(self, query: str, cancel: CancelToken | None = None) -> FetchAllResult:
        cancel = cancel or CancelToken()
        result = FetchAllResult()
        counters = SearchCounters()
        cursor: str | None = None
        started = self._clock()

        with telemetry_span("fetch_all", counters, self.logger):
            while True:
                if result.pages:
                    try:
                        self._sleep(self.inter_page_delay_seconds, cancel)
                    except SearchCancelled as exc:
                        result.error = exc
                        break
                try:
                    page = self.connector.fetch_page(query, cursor, attempt=1, cancel=cancel)
                except FetchError as exc:
                    result.error = exc
                    break

                result.pages += 1
                result.retries += page.attempts - 1
                if not page.records:
                    break
                result.records.extend(page.records)
                if not page.next_cursor:
                    break
                cursor = page.next_cursor

                budget_error = self._budget_error(result.pages, started)
                if budget_error is not None:
                    result.error = budget_error
                    break

            counters.pages = result.pages
            counters.records = len(result.records)
            counters.retries = result.retries
            if result.error is not None:
                counters.errors = 1
                self.logger.warning(
                    "Search for %r stopped early (%s): %s; keeping %s records",
                    query,
                    result.error.kind,
                    result.error,
                    len(result.records),
                )
        return result


def fetch_all(
    query: str,
    *,
    endpoint: str | None = None,
    settings: Settings | None = None,
    cancel: CancelToken | None = None,
) -> FetchAllResult:
    """Fetch every page for ``query`` from the configured search endpoint."""
    settings = settings or Settings.from_env()
    connector = COREConnector(settings, endpoint=endpoint)
    return PaginationDriver.from_settings(settings, connector).fetch_all(query, cancel=cancel)
