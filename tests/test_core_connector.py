from __future__ import annotations

import json
import logging
import random
from typing import Any

import pytest
import requests

from coresearch.config import Settings
from coresearch.connectors.core import COREConnector
from coresearch.errors import (
    FetchTimeout,
    HttpError,
    RetryExhausted,
    SearchCancelled,
    TransportError,
)
from coresearch.utils import CancelToken


class _FakeResponse:
    def __init__(
        self, status_code: int = 200, body: Any = None, reason: str = "OK", chunks: int = 1
    ) -> None:
        self.status_code = status_code
        self.reason = reason
        raw = body if isinstance(body, bytes) else json.dumps(body).encode()
        size = max(len(raw) // chunks, 1)
        self._chunks = [raw[i : i + size] for i in range(0, len(raw), size)]
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def iter_content(self, chunk_size: int = 1):
        yield from self._chunks

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.closed = True


class _FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, *, params=None, headers=None, timeout=None, stream=False):  # type: ignore[no-untyped-def]
        self.calls.append(
            {"url": url, "params": dict(params or {}), "headers": headers, "timeout": timeout, "stream": stream}
        )
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float, cancel: CancelToken) -> None:
        cancel.raise_if_cancelled()
        self.delays.append(seconds)


def _settings(**overrides: Any) -> Settings:
    base = dict(core_api_key="test-key", search_url="https://example.invalid/search")
    base.update(overrides)
    return Settings(**base)


def _connector(responses: list[Any], **overrides: Any) -> tuple[COREConnector, _FakeSession, _RecordingSleep]:
    session = _FakeSession(responses)
    sleep = _RecordingSleep()
    connector = COREConnector(
        _settings(**overrides), session=session, sleep=sleep, rng=random.Random(7)
    )
    return connector, session, sleep


def _ok(results: list[dict[str, Any]], scroll_id: str | None = None) -> _FakeResponse:
    body: dict[str, Any] = {"totalHits": len(results), "results": results}
    if scroll_id is not None:
        body["scrollId"] = scroll_id
    return _FakeResponse(200, body)


def test_first_page_opens_scroll_and_sends_bearer_token():
    connector, session, _ = _connector([_ok([{"title": "A"}], scroll_id="c1")])

    page = connector.fetch_page("deep learning")

    call = session.calls[0]
    assert call["url"] == "https://example.invalid/search"
    assert call["params"] == {"q": "deep learning", "limit": "5", "scroll": "true"}
    assert call["headers"] == {"Authorization": "Bearer test-key"}
    assert call["timeout"] == 30
    assert call["stream"] is True
    assert [r.title for r in page.records] == ["A"]
    assert page.next_cursor == "c1"
    assert page.attempts == 1


def test_later_pages_send_cursor_instead_of_scroll_flag():
    connector, session, _ = _connector([_ok([])])

    page = connector.fetch_page("q", "c42")

    assert session.calls[0]["params"] == {"q": "q", "limit": "5", "scrollId": "c42"}
    assert page.records == []
    assert page.next_cursor is None


def test_missing_api_key_is_a_configuration_error():
    connector, session, _ = _connector([], core_api_key=None)
    with pytest.raises(RuntimeError):
        connector.fetch_page("q")
    assert session.calls == []


def test_two_rate_limits_then_success_backs_off_twice_on_same_cursor():
    limited = _FakeResponse(429, reason="Too Many Requests")
    success = _ok([{"title": "x"}, {"title": "y"}], scroll_id="c2")
    connector, session, sleep = _connector([limited, limited, success], backoff_jitter_seconds=0.0)

    page = connector.fetch_page("q", "c1")

    assert sleep.delays == [3.0, 6.0]
    assert [r.title for r in page.records] == ["x", "y"]
    assert page.attempts == 3
    assert {c["params"]["scrollId"] for c in session.calls} == {"c1"}


def test_backoff_delays_include_bounded_jitter():
    connector, _, sleep = _connector([_FakeResponse(429)] * 2 + [_ok([])])
    connector.fetch_page("q")
    assert len(sleep.delays) == 2
    assert 3.0 <= sleep.delays[0] < 4.0
    assert 6.0 <= sleep.delays[1] < 7.0


def test_rate_limit_budget_exhausted_after_five_retries(caplog):
    connector, session, sleep = _connector([_FakeResponse(429)] * 6, backoff_jitter_seconds=0.0)

    with caplog.at_level(logging.WARNING, logger="coresearch.connectors.core"):
        with pytest.raises(RetryExhausted) as excinfo:
            connector.fetch_page("q")

    assert len(session.calls) == 6
    assert sleep.delays == [3.0, 6.0, 12.0, 24.0, 30.0]
    assert excinfo.value.attempts == 6
    assert sum("Rate limited" in rec.getMessage() for rec in caplog.records) == 5


def test_starting_attempt_counts_against_budget():
    connector, session, sleep = _connector([_FakeResponse(429)] * 2, backoff_jitter_seconds=0.0)

    with pytest.raises(RetryExhausted):
        connector.fetch_page("q", attempt=5)

    assert sleep.delays == [30.0]
    assert len(session.calls) == 2


def test_other_http_errors_are_not_retried():
    connector, session, sleep = _connector([_FakeResponse(503, reason="Service Unavailable")])

    with pytest.raises(HttpError) as excinfo:
        connector.fetch_page("q")

    assert excinfo.value.status_code == 503
    assert excinfo.value.status_text == "Service Unavailable"
    assert "Service Unavailable" in str(excinfo.value)
    assert len(session.calls) == 1
    assert sleep.delays == []


def test_network_failure_is_transport_error():
    connector, session, sleep = _connector([requests.ConnectionError("boom")])
    with pytest.raises(TransportError):
        connector.fetch_page("q")
    assert len(session.calls) == 1 and sleep.delays == []


def test_request_timeout_is_reported_as_timeout():
    connector, _, _ = _connector([requests.ReadTimeout("slow")], request_timeout_seconds=2)
    with pytest.raises(FetchTimeout):
        connector.fetch_page("q")


@pytest.mark.parametrize(
    "body",
    [b"not json", ["not", "an", "object"], {"scrollId": "c1"}, {"results": "nope"}],
)
def test_malformed_bodies_are_transport_errors(body):
    connector, session, _ = _connector([_FakeResponse(200, body)])
    with pytest.raises(TransportError):
        connector.fetch_page("q")
    assert len(session.calls) == 1


def test_loose_records_are_parsed_without_failing():
    body = {
        "results": [
            {"title": None, "abstract": 5, "links": [{"type": "display", "url": "u"}, "junk"]},
            "not a record",
        ],
        "scrollId": "",
    }
    connector, _, _ = _connector([_FakeResponse(200, body)])

    page = connector.fetch_page("q")

    first, second = page.records
    assert first.title is None and first.abstract is None
    assert [(link.type, link.url) for link in first.links] == [("display", "u")]
    assert second.title is None and second.links == []
    assert page.next_cursor is None


def test_cancelled_token_stops_before_any_request():
    connector, session, _ = _connector([_ok([])])
    token = CancelToken()
    token.cancel()
    with pytest.raises(SearchCancelled):
        connector.fetch_page("q", cancel=token)
    assert session.calls == []


def test_cancel_during_backoff_issues_no_further_request():
    token = CancelToken()

    def cancelling_sleep(seconds: float, cancel: CancelToken) -> None:
        token.cancel()
        cancel.sleep(seconds)

    session = _FakeSession([_FakeResponse(429), _ok([])])
    connector = COREConnector(_settings(), session=session, sleep=cancelling_sleep)

    with pytest.raises(SearchCancelled):
        connector.fetch_page("q", cancel=token)
    assert len(session.calls) == 1


def test_slow_body_past_total_deadline_is_timeout():
    ticks = iter([0.0, 1.0, 2.5])
    session = _FakeSession([_FakeResponse(200, {"results": [{"title": "a"}] * 50}, chunks=4)])
    connector = COREConnector(
        _settings(request_timeout_seconds=2), session=session, sleep=_RecordingSleep(),
        clock=lambda: next(ticks),
    )

    with pytest.raises(FetchTimeout, match="within 2s"):
        connector.fetch_page("q")
    assert len(session.calls) == 1


def test_response_is_closed_after_reading():
    response = _ok([{"title": "a"}])
    connector, _, _ = _connector([response])
    connector.fetch_page("q")
    assert response.closed
