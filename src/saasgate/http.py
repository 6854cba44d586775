"""再試行判定と待機時間計算。"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

import httpx

from saasgate.config import DEFAULT_BASE_DELAY_MS, DEFAULT_CAP_DELAY_MS, RetryConfig
from saasgate.errors import (
    SaasClientError,
    SaasErrorContext,
    SaasHttpStatusError,
    SaasNetworkError,
    SaasRateLimitedError,
    SaasRequestError,
    SaasServerError,
    SaasTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

_DIGITS = re.compile(r"^\d+$")


@dataclass(slots=True)
class WaitDecision:
    """待機時間決定結果。

    Attributes:
        delay_ms: 待機ミリ秒。
        source: 待機根拠（``retry_after`` または ``backoff``）。
    """

    delay_ms: int
    source: str

    @property
    def seconds(self) -> float:
        """待機秒。"""

        return self.delay_ms / 1000.0


def parse_retry_after(value: str | None, *, now: float | None = None) -> int | None:
    """Retry-Afterヘッダをミリ秒へ変換する。

    整数秒を優先し、次にHTTP日付として解釈する。過去の日付は0になる。

    Args:
        value: ヘッダ値。
        now: 現在時刻（UNIX秒）。未指定時は現在時刻。

    Returns:
        待機ミリ秒。解釈できない場合はNone。
    """

    if not value:
        return None
    text = value.strip()
    if _DIGITS.match(text):
        return int(text) * 1000
    try:
        dt = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    current = time.time() if now is None else now
    return max(0, int(round((dt.timestamp() - current) * 1000)))


def should_retry_http_status(status_code: int) -> bool:
    """HTTPステータスから再試行可否を判定する。"""

    return status_code == 429 or status_code >= 500


def should_retry_error(error: SaasRequestError) -> bool:
    """分類済み例外の再試行可否を判定する。"""

    if isinstance(error, SaasHttpStatusError):
        return should_retry_http_status(error.status)
    return isinstance(error, SaasNetworkError)


def exponential_backoff(*, attempt: int, base_ms: int, cap_ms: int) -> int:
    """ゆらぎなしの指数バックオフでミリ秒を計算する。"""

    exponent = min(max(attempt, 0), 64)
    return max(0, min(cap_ms, base_ms * (2 ** exponent)))


def decide_wait(*, retry_after_ms: int | None, backoff_ms: int) -> WaitDecision:
    """待機ミリ秒を統合決定する。Retry-Afterが解釈できればそれを優先する。"""

    if retry_after_ms is None:
        return WaitDecision(delay_ms=backoff_ms, source="backoff")
    return WaitDecision(delay_ms=retry_after_ms, source="retry_after")


def classify_transport_error(
    exc: httpx.TransportError,
    *,
    context: SaasErrorContext | None = None,
) -> SaasNetworkError:
    """httpxの通信例外を分類する。"""

    if isinstance(exc, httpx.TimeoutException):
        return SaasTimeoutError(f"要求がタイムアウトしました: {exc!s}", context=context)
    return SaasNetworkError(f"応答を受信できませんでした: {exc!s}", context=context)


def classify_response(
    response: httpx.Response,
    *,
    context: SaasErrorContext | None = None,
) -> SaasHttpStatusError:
    """エラーステータスのレスポンスを例外へ変換する。"""

    status = int(response.status_code)
    if status == 429:
        klass: type[SaasHttpStatusError] = SaasRateLimitedError
    elif status >= 500:
        klass = SaasServerError
    else:
        klass = SaasClientError
    reason = response.reason_phrase or "Unknown"
    return klass(
        f"HTTP {status} {reason}",
        status=status,
        response=response,
        retry_after=response.headers.get("Retry-After"),
        context=context,
    )


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """再試行可否と待機時間を決める状態を持たないポリシー。

    Attributes:
        base_delay_ms: 指数バックオフの基準ミリ秒。
        cap_delay_ms: 待機上限ミリ秒。
    """

    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    cap_delay_ms: int = DEFAULT_CAP_DELAY_MS

    @classmethod
    def from_retry_config(cls, config: RetryConfig) -> BackoffPolicy:
        """再試行設定からポリシーを作る。"""

        return cls(base_delay_ms=config.base_delay_ms, cap_delay_ms=config.cap_delay_ms)

    def is_retryable(self, error: SaasRequestError) -> bool:
        """例外が再試行対象か判定する。"""

        return should_retry_error(error)

    def backoff_ms(self, attempt: int) -> int:
        """試行番号（0始まり）に対する指数バックオフ。"""

        return exponential_backoff(
            attempt=attempt,
            base_ms=self.base_delay_ms,
            cap_ms=self.cap_delay_ms,
        )

    def decide(
        self,
        error: SaasRequestError,
        *,
        attempt: int,
        now: float | None = None,
    ) -> WaitDecision:
        """失敗した試行の後に待つ時間を決める。

        Args:
            error: 失敗内容。
            attempt: 失敗した試行の番号（0始まり）。
            now: 現在時刻（UNIX秒）。

        Returns:
            待機時間決定結果。
        """

        retry_after = None
        if isinstance(error, SaasHttpStatusError):
            retry_after = parse_retry_after(error.retry_after, now=now)
        return decide_wait(retry_after_ms=retry_after, backoff_ms=self.backoff_ms(attempt))


def build_request_headers(
    user_agent: str,
    *,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """標準ヘッダを構築する。"""

    headers = {
        "Accept": "application/json",
        "Accept-Encoding": "gzip",
        "User-Agent": user_agent,
    }
    if extra:
        headers.update(extra)
    return headers
