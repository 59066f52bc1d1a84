from __future__ import annotations


class FetchError(Exception):
    """Base class for failures surfaced while fetching search pages."""

    kind = "fetch_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransientRateLimit(FetchError):
    """HTTP 429 from the search API; retried inside the connector."""

    kind = "rate_limited"


class RetryExhausted(FetchError):
    kind = "retry_exhausted"

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class HttpError(FetchError):
    kind = "http_error"

    def __init__(self, status_code: int, status_text: str) -> None:
        super().__init__(f"Failed to fetch results: {status_code} {status_text}".strip())
        self.status_code = status_code
        self.status_text = status_text


class TransportError(FetchError):
    """No usable response: connection failure or an unparseable body."""

    kind = "transport_error"


class FetchTimeout(TransportError):
    kind = "timeout"


class SearchCancelled(FetchError):
    kind = "cancelled"


class PaginationBudgetExceeded(FetchError):
    kind = "budget_exceeded"


class MalformedInputError(ValueError):
    """Diagnostic for normalizer input that is not a sequence of records. Logged, never raised."""
