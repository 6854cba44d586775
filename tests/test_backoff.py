"""再試行判定と待機時間計算のテスト。"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from saasgate.errors import (
    SaasClientError,
    SaasHttpStatusError,
    SaasNetworkError,
    SaasRateLimitedError,
    SaasServerError,
    SaasTimeoutError,
)
from saasgate.http import (
    BackoffPolicy,
    classify_response,
    classify_transport_error,
    exponential_backoff,
    parse_retry_after,
    should_retry_error,
    should_retry_http_status,
)

_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _status_error(status: int, retry_after: str | None = None) -> SaasHttpStatusError:
    request = httpx.Request("GET", "https://api.example.invalid/x")
    headers = {"Retry-After": retry_after} if retry_after is not None else None
    response = httpx.Response(status_code=status, headers=headers, request=request)
    return classify_response(response)


def test_backoff_sequence_doubles_and_caps() -> None:
    policy = BackoffPolicy()

    assert [policy.backoff_ms(n) for n in range(4)] == [1000, 2000, 4000, 8000]
    assert policy.backoff_ms(5) == 30000
    assert policy.backoff_ms(40) == 30000
    assert policy.backoff_ms(500) == 30000


def test_exponential_backoff_with_zero_base_never_waits() -> None:
    assert exponential_backoff(attempt=3, base_ms=0, cap_ms=30000) == 0


@pytest.mark.parametrize("attempt", [0, 1, 4, 9])
def test_numeric_retry_after_overrides_backoff(attempt: int) -> None:
    decision = BackoffPolicy().decide(_status_error(429, "2"), attempt=attempt)

    assert decision.delay_ms == 2000
    assert decision.source == "retry_after"


def test_retry_after_http_date_in_future() -> None:
    target = _NOW + timedelta(seconds=5)

    assert parse_retry_after(format_datetime(target, usegmt=True), now=_NOW.timestamp()) == 5000


def test_retry_after_http_date_in_past_is_zero() -> None:
    past = format_datetime(_NOW - timedelta(minutes=10), usegmt=True)

    assert parse_retry_after(past, now=_NOW.timestamp()) == 0
    decision = BackoffPolicy().decide(_status_error(503, past), attempt=3, now=_NOW.timestamp())
    assert decision.delay_ms == 0
    assert decision.source == "retry_after"


@pytest.mark.parametrize("value", [None, "", "soon", "-3", "1.5"])
def test_unparseable_retry_after_falls_back_to_backoff(value: str | None) -> None:
    assert parse_retry_after(value) is None
    decision = BackoffPolicy().decide(_status_error(503, value), attempt=1)

    assert decision.delay_ms == 2000
    assert decision.source == "backoff"


def test_retry_after_zero_is_honored() -> None:
    decision = BackoffPolicy().decide(_status_error(429, "0"), attempt=2)

    assert decision.delay_ms == 0
    assert decision.source == "retry_after"


def test_status_classification() -> None:
    assert should_retry_http_status(429)
    assert should_retry_http_status(500)
    assert should_retry_http_status(503)
    assert should_retry_http_status(599)
    assert not should_retry_http_status(400)
    assert not should_retry_http_status(404)
    assert not should_retry_http_status(403)

    assert isinstance(_status_error(429), SaasRateLimitedError)
    assert isinstance(_status_error(502), SaasServerError)
    assert isinstance(_status_error(404), SaasClientError)
    assert not should_retry_error(_status_error(404))
    assert should_retry_error(_status_error(504))


def test_transport_errors_are_retryable_network_failures() -> None:
    request = httpx.Request("GET", "https://api.example.invalid/x")

    timeout = classify_transport_error(httpx.ReadTimeout("slow", request=request))
    connect = classify_transport_error(httpx.ConnectError("refused", request=request))

    assert isinstance(timeout, SaasTimeoutError)
    assert isinstance(timeout, SaasNetworkError)
    assert isinstance(connect, SaasNetworkError)
    assert not isinstance(connect, SaasTimeoutError)
    assert should_retry_error(timeout)
    assert should_retry_error(connect)


def test_network_failure_uses_backoff() -> None:
    policy = BackoffPolicy(base_delay_ms=250, cap_delay_ms=1000)
    error = SaasNetworkError("down")

    assert policy.is_retryable(error)
    assert [policy.decide(error, attempt=n).delay_ms for n in range(4)] == [250, 500, 1000, 1000]
