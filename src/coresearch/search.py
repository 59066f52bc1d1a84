from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config import Settings
from .connectors.base import Connector
from .errors import FetchError
from .normalize import NormalizedRecord, normalize
from .pagination import FetchAllResult, PaginationDriver
from .utils import CancelToken


@dataclass
class SearchReport:
    query: str
    results: list[NormalizedRecord] = field(default_factory=list)
    error: FetchError | None = None
    pages: int = 0
    retries: int = 0

    @property
    def partial(self) -> bool:
        return self.error is not None and bool(self.results)

    def error_dict(self) -> dict[str, str] | None:
        if self.error is None:
            return None
        return {"kind": self.error.kind, "message": str(self.error)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "count": len(self.results),
            "results": [r.to_dict() for r in self.results],
            "error": self.error_dict(),
            "partial": self.partial,
            "pages": self.pages,
            "retries": self.retries,
        }


def run_search(
    query: str,
    settings: Settings,
    *,
    connector: Connector | None = None,
    max_pages: int | None = None,
    cancel: CancelToken | None = None,
) -> tuple[SearchReport, FetchAllResult]:
    """Fetch all pages for ``query`` and normalize what was collected, even after a failure."""
    driver = PaginationDriver.from_settings(settings, connector)
    if max_pages is not None:
        driver.max_pages = max_pages
    fetched = driver.fetch_all(query, cancel=cancel)
    report = SearchReport(
        query=query,
        results=normalize(fetched.records),
        error=fetched.error,
        pages=fetched.pages,
        retries=fetched.retries,
    )
    return report, fetched
