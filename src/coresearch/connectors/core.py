from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable
from typing import Any

import requests
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from ..config import DEFAULT_SEARCH_URL, Settings
from ..errors import (
    FetchTimeout,
    HttpError,
    RetryExhausted,
    TransientRateLimit,
    TransportError,
)
from ..utils import CancelToken, cancellable_sleep, compute_backoff_seconds
from .base import Connector, Page, RawRecord

BASE_URL = DEFAULT_SEARCH_URL

SleepFn = Callable[[float, CancelToken], None]


class COREConnector(Connector):
    """Page fetcher for the CORE v3 works search, using its scroll pagination.

    A 429 response is retried against the same cursor with capped exponential
    backoff plus jitter; every other failure is raised to the caller at once.
    """

    source_name = "core"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        endpoint: str | None = None,
        session: requests.Session | None = None,
        sleep: SleepFn | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.endpoint = endpoint or self.settings.search_url or BASE_URL
        self.session = session or requests.Session()
        self._sleep = sleep or cancellable_sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def _auth_headers(self) -> dict[str, str]:
        api_key = self.settings.core_api_key
        if not api_key:
            raise RuntimeError("CORE_API_KEY is required to use the CORE connector")
        return {"Authorization": f"Bearer {api_key}"}

    def build_params(self, query: str, cursor: str | None) -> dict[str, str]:
        params: dict[str, str] = {"q": query, "limit": str(self.settings.page_size)}
        if cursor:
            params["scrollId"] = cursor
        else:
            # Ask the server to open a new scroll context
            params["scroll"] = "true"
        return params

    def backoff_seconds(self, attempt: int) -> float:
        return compute_backoff_seconds(
            attempt,
            base=self.settings.backoff_base_seconds,
            cap=self.settings.backoff_cap_seconds,
            jitter=self.settings.backoff_jitter_seconds,
            rng=self._rng,
        )

    def fetch_page(
        self,
        query: str,
        cursor: str | None = None,
        *,
        attempt: int = 1,
        cancel: CancelToken | None = None,
    ) -> Page:
        cancel = cancel or CancelToken()
        headers = self._auth_headers()
        params = self.build_params(query, cursor)
        first_attempt = max(attempt, 1)
        max_retries = self.settings.max_retries

        def _wait(retry_state: RetryCallState) -> float:
            return self.backoff_seconds(first_attempt + retry_state.attempt_number - 1)

        def _log_retry(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self.logger.warning(
                "Rate limited by %s; retrying in %.2fs (attempt %s/%s)",
                self.source_name,
                delay,
                first_attempt + retry_state.attempt_number - 1,
                max_retries,
            )

        retrying = Retrying(
            retry=retry_if_exception_type(TransientRateLimit),
            # attempts first_attempt..max_retries may back off; one more request follows the last sleep
            stop=stop_after_attempt(max(max_retries - first_attempt + 2, 1)),
            wait=_wait,
            sleep=lambda seconds: self._sleep(seconds, cancel),
            before_sleep=_log_retry,
        )
        try:
            for attempt_manager in retrying:
                with attempt_manager:
                    data = self._request(params, headers, cancel)
                    used = attempt_manager.retry_state.attempt_number
                    page = self._parse_page(data, attempts=used)
                    self.logger.debug(
                        "Fetched %s page: records=%s attempts=%s has_next=%s",
                        self.source_name,
                        len(page.records),
                        used,
                        page.next_cursor is not None,
                    )
                    return page
        except RetryError as exc:
            attempts = exc.last_attempt.attempt_number
            self.logger.warning(
                "Giving up on %s page after %s rate-limited attempts", self.source_name, attempts
            )
            raise RetryExhausted(
                "Max retries reached. Failed to fetch results.", attempts=attempts
            ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _request(self, params: dict[str, str], headers: dict[str, str], cancel: CancelToken) -> Any:
        cancel.raise_if_cancelled()
        timeout = self.settings.request_timeout_seconds
        # requests applies its timeout per socket read; the deadline bounds the whole response
        deadline = self._clock() + timeout
        try:
            with self.session.get(
                self.endpoint, params=params, headers=headers, timeout=timeout, stream=True
            ) as r:
                if r.status_code == 429:
                    raise TransientRateLimit("Too many requests")
                if not r.ok:
                    raise HttpError(r.status_code, r.reason or "")
                body = self._read_body(r, deadline, timeout, cancel)
        except requests.Timeout as exc:
            raise FetchTimeout(f"request timed out after {timeout}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"request failed: {exc}") from exc
        try:
            return json.loads(body)
        except ValueError as exc:
            raise TransportError("response body is not valid JSON") from exc

    def _read_body(
        self, r: requests.Response, deadline: float, timeout: float, cancel: CancelToken
    ) -> bytes:
        chunks: list[bytes] = []
        for chunk in r.iter_content(chunk_size=8192):
            if chunk:
                chunks.append(chunk)
            cancel.raise_if_cancelled()
            if self._clock() > deadline:
                raise FetchTimeout(f"response not received within {timeout}s")
        return b"".join(chunks)

    @staticmethod
    def _parse_page(data: Any, attempts: int) -> Page:
        # CORE v3 scroll shape: {"totalHits": ..., "results": [...], "scrollId": "..."}
        if not isinstance(data, dict):
            raise TransportError("expected a JSON object in the response body")
        results = data.get("results")
        if not isinstance(results, list):
            raise TransportError("response body has no results list")
        cursor = data.get("scrollId")
        if cursor is not None and not isinstance(cursor, str):
            cursor = str(cursor)
        return Page(
            records=[RawRecord.from_json(item) for item in results],
            next_cursor=cursor or None,
            attempts=attempts,
        )
