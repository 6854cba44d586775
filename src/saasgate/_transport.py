"""レート制御と再試行を伴う要求実行。"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from saasgate.errors import (
    SaasErrorContext,
    SaasNetworkError,
    SaasRequestError,
    SaasRetryExhaustedError,
    SaasTimeoutError,
)
from saasgate.http import BackoffPolicy, classify_response, classify_transport_error
from saasgate.registry import LimiterRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RequestAttempt:
    """1回の試行の記録。

    Attributes:
        attempt_index: 試行番号（0始まり）。
        provider: プロバイダ名。
        started_at: 送信開始時刻（monotonic秒）。
    """

    attempt_index: int
    provider: str | None
    started_at: float


async def _send_once(
    *,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    attempt: RequestAttempt,
    timeout_ms: int,
    request_kwargs: Mapping[str, Any],
) -> httpx.Response:
    """1回だけ送信し、失敗を分類済み例外へ変換する。

    httpxのタイムアウトは接続・読み込みなど操作ごとに効くため、
    試行全体にも ``timeout_ms`` の上限をかける。
    """

    attempt.started_at = time.monotonic()
    context = SaasErrorContext(method=method, request_url=url, provider=attempt.provider)
    try:
        async with asyncio.timeout(timeout_ms / 1000.0):
            response = await client.request(method, url, **request_kwargs)
    except httpx.TransportError as exc:
        raise classify_transport_error(exc, context=context) from exc
    except TimeoutError as exc:
        raise SaasTimeoutError(
            f"要求が{timeout_ms}ms以内に完了しませんでした。", context=context
        ) from exc
    logger.debug(
        "%s %s -> %d (attempt=%d, provider=%s, %.0fms)",
        method,
        url,
        response.status_code,
        attempt.attempt_index + 1,
        attempt.provider,
        (time.monotonic() - attempt.started_at) * 1000,
    )
    if response.is_error:
        context.request_url = str(response.request.url)
        raise classify_response(response, context=context)
    return response


async def perform_request(
    *,
    client: httpx.AsyncClient,
    registry: LimiterRegistry,
    provider: str | None,
    method: str,
    url: str,
    max_retries: int,
    timeout_ms: int,
    policy: BackoffPolicy,
    request_kwargs: Mapping[str, Any],
) -> httpx.Response:
    """要求をレート制御と再試行つきで実行する。

    再試行のたびにリミッタの許可を取り直す。

    Args:
        client: 送信に使うhttpxクライアント。
        registry: リミッタレジストリ。
        provider: レート制御に用いるプロバイダ名。
        method: HTTPメソッド。
        url: 要求先。
        max_retries: 初回を含む最大試行回数。
        timeout_ms: 1回の試行全体にかける上限ミリ秒。
        policy: 再試行ポリシー。
        request_kwargs: ``httpx.AsyncClient.request`` へ渡す追加引数。

    Returns:
        成功したレスポンス。

    Raises:
        SaasRequestError: 再試行対象外の失敗。
        SaasRetryExhaustedError: 再試行対象の失敗が最大試行回数まで続いた。
    """

    budget = max(1, max_retries)
    for index in range(budget):
        attempt = RequestAttempt(attempt_index=index, provider=provider, started_at=time.monotonic())

        async def task(attempt: RequestAttempt = attempt) -> httpx.Response:
            return await _send_once(
                client=client,
                method=method,
                url=url,
                attempt=attempt,
                timeout_ms=timeout_ms,
                request_kwargs=request_kwargs,
            )

        try:
            return await registry.execute(task, provider)
        except SaasRequestError as exc:
            exc.attempts = index + 1
            if not policy.is_retryable(exc):
                raise
            if index + 1 >= budget:
                raise SaasRetryExhaustedError(exc, attempts=index + 1) from exc
            wait = policy.decide(exc, attempt=index)
            logger.warning(
                "Request failed (attempt %d/%d): %s %s: %s. Retrying in %dms (%s)...",
                index + 1,
                budget,
                method,
                url,
                exc,
                wait.delay_ms,
                wait.source,
            )
            await asyncio.sleep(wait.seconds)

    raise SaasNetworkError(
        "要求の実行に失敗しました。",
        context=SaasErrorContext(method=method, request_url=url, provider=provider),
    )
