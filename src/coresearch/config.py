import os
from dataclasses import dataclass

DEFAULT_SEARCH_URL = "https://api.core.ac.uk/v3/search/works"


def _optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


@dataclass
class Settings:
    core_api_key: str | None = None
    search_url: str = DEFAULT_SEARCH_URL
    page_size: int = 5
    request_timeout_seconds: float = 30
    # Politeness throttle between pages, separate from 429 backoff
    inter_page_delay_seconds: float = 3.0
    # Backoff for rate-limited (429) responses
    max_retries: int = 5
    backoff_base_seconds: float = 3.0
    backoff_cap_seconds: float = 30.0
    backoff_jitter_seconds: float = 1.0
    # Pagination ceiling
    max_pages: int = 200
    max_elapsed_seconds: float | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            core_api_key=os.environ.get("CORE_API_KEY") or None,
            search_url=os.environ.get("CORE_SEARCH_URL", DEFAULT_SEARCH_URL),
            page_size=int(os.environ.get("CORE_PAGE_SIZE", "5")),
            request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "30")),
            inter_page_delay_seconds=float(os.environ.get("INTER_PAGE_DELAY_SECONDS", "3")),
            max_retries=int(os.environ.get("MAX_RETRIES", "5")),
            backoff_base_seconds=float(os.environ.get("BACKOFF_BASE_SECONDS", "3")),
            backoff_cap_seconds=float(os.environ.get("BACKOFF_CAP_SECONDS", "30")),
            backoff_jitter_seconds=float(os.environ.get("BACKOFF_JITTER_SECONDS", "1")),
            max_pages=int(os.environ.get("MAX_PAGES", "200")),
            max_elapsed_seconds=_optional_float(os.environ.get("MAX_ELAPSED_SECONDS")),
        )
