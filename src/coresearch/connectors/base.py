from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..utils import CancelToken


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


@dataclass
class Link:
    """One entry of a record's ``links`` list, e.g. ``{"type": "download", "url": "..."}``."""

    type: str | None = None
    url: str | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Link:
        return cls(type=_str_or_none(data.get("type")), url=_str_or_none(data.get("url")))


@dataclass
class RawRecord:
    """Search result as returned by the server. Every field may be missing.

    - title / abstract: None when absent or not a string
    - links: empty when absent; entries that are not objects are dropped
    """

    title: str | None = None
    abstract: str | None = None
    links: list[Link] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> RawRecord:
        if not isinstance(data, Mapping):
            return cls()
        raw_links = data.get("links")
        links: list[Link] = []
        if isinstance(raw_links, list):
            links = [Link.from_json(entry) for entry in raw_links if isinstance(entry, Mapping)]
        return cls(
            title=_str_or_none(data.get("title")),
            abstract=_str_or_none(data.get("abstract")),
            links=links,
        )


@dataclass
class Page:
    records: list[RawRecord]
    # None means the server has no further pages
    next_cursor: str | None = None
    attempts: int = 1


class Connector:
    source_name: str

    def fetch_page(
        self,
        query: str,
        cursor: str | None = None,
        *,
        attempt: int = 1,
        cancel: CancelToken | None = None,
    ) -> Page:  # pragma: no cover
        """Fetch one page of results for ``query`` starting at ``cursor``.

        Raises a ``FetchError`` subclass when the page cannot be retrieved.
        """
        raise NotImplementedError
