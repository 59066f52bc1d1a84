from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .connectors.base import Link, RawRecord
from .errors import MalformedInputError

logger = logging.getLogger(__name__)

NO_TITLE = "No title available"
NO_DESCRIPTION = "No description available"
NO_LINK = "#"


@dataclass(frozen=True)
class NormalizedRecord:
    title: str
    description: str
    display_link: str
    download_link: str

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "description": self.description,
            "displayLink": self.display_link,
            "downloadLink": self.download_link,
        }


def _first_link_url(links: list[Link], link_type: str) -> str:
    # Only the first link of the requested type is considered
    for link in links:
        if link.type == link_type:
            return link.url or NO_LINK
    return NO_LINK


def normalize_record(raw: RawRecord | Mapping[str, Any] | Any) -> NormalizedRecord:
    record = raw if isinstance(raw, RawRecord) else RawRecord.from_json(raw)
    return NormalizedRecord(
        title=record.title or NO_TITLE,
        description=record.abstract or NO_DESCRIPTION,
        display_link=_first_link_url(record.links, "display"),
        download_link=_first_link_url(record.links, "download"),
    )


def normalize(raw: Any) -> list[NormalizedRecord]:
    """Map raw search records to display records with every field filled in.

    Never raises: input that is not a sequence of records yields an empty list
    and a warning on this module's logger.
    """
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes, bytearray)):
        err = MalformedInputError(f"expected a sequence of records, got {type(raw).__name__}")
        logger.warning("Cannot normalize results: %s", err)
        return []
    return [normalize_record(item) for item in raw]
