"""公開クライアント実装。"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from saasgate._transport import perform_request
from saasgate.config import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_CAP_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    HttpClientConfig,
    RetryConfig,
)
from saasgate.enums import AuthScheme
from saasgate.http import BackoffPolicy, build_request_headers
from saasgate.registry import LimiterRegistry, get_registry
from saasgate.validation import (
    normalize_auth_scheme,
    normalize_provider,
    validate_retry_config,
    validate_timeout_ms,
)


class HttpClient:
    """レート制御と再試行を備えた非同期HTTPクライアント。"""

    def __init__(
        self,
        *,
        base_url: str = "",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        provider: str | None = None,
        headers: Mapping[str, str] | None = None,
        retry_base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        retry_cap_delay_ms: int = DEFAULT_CAP_DELAY_MS,
        user_agent: str = DEFAULT_USER_AGENT,
        registry: LimiterRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """クライアントを初期化する。

        Args:
            base_url: APIベースURL。
            timeout_ms: 1試行あたりのタイムアウトミリ秒。
            max_retries: 初回を含む最大試行回数。
            provider: レート制御に用いるプロバイダ名。未指定なら全体リミッタのみ。
            headers: 全要求に付与するヘッダ。
            retry_base_delay_ms: バックオフ基準ミリ秒。
            retry_cap_delay_ms: バックオフ上限ミリ秒。
            user_agent: User-Agent。
            registry: リミッタレジストリ。未指定ならプロセス共通のもの。
            http_client: 外部httpx.AsyncClient。

        Raises:
            SaasConfigError: 設定値が不正な場合。
        """

        retry = validate_retry_config(
            RetryConfig(
                max_retries=max_retries,
                base_delay_ms=retry_base_delay_ms,
                cap_delay_ms=retry_cap_delay_ms,
            )
        )
        self._config = HttpClientConfig(
            base_url=base_url,
            timeout_ms=validate_timeout_ms(timeout_ms),
            max_retries=retry.max_retries,
            provider=normalize_provider(provider),
            headers=build_request_headers(user_agent, extra=headers),
        )
        self._retry = retry
        self._policy = BackoffPolicy.from_retry_config(retry)
        self._registry = registry if registry is not None else get_registry()
        self._auth_header: str | None = None

        self._owns_client = http_client is None
        if http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=base_url,
                timeout=self._config.timeout_ms / 1000.0,
                follow_redirects=True,
            )
        else:
            self._http_client = http_client

    @property
    def config(self) -> HttpClientConfig:
        """クライアント設定。"""

        return self._config

    @property
    def provider(self) -> str | None:
        """レート制御に用いるプロバイダ名。"""

        return self._config.provider

    @property
    def registry(self) -> LimiterRegistry:
        """使用中のリミッタレジストリ。"""

        return self._registry

    def set_auth_header(self, token: str, scheme: AuthScheme | str = AuthScheme.BEARER) -> None:
        """以後の要求にAuthorizationヘッダを付与する。"""

        self._auth_header = f"{normalize_auth_scheme(scheme).value} {token}"

    def clear_auth_header(self) -> None:
        """Authorizationヘッダを解除する。"""

        self._auth_header = None

    def _build_headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(self._config.headers)
        if self._auth_header is not None:
            merged["Authorization"] = self._auth_header
        if headers:
            merged.update(headers)
        return merged

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
    ) -> httpx.Response:
        """レート制御と再試行つきで要求を送る。

        Args:
            method: HTTPメソッド。
            path: ベースURLからの相対パスまたは絶対URL。
            body: 本文。dict/listはJSON、str/bytesはそのまま送る。
            params: クエリパラメータ。
            headers: この要求だけに付与するヘッダ。
            timeout_ms: この要求だけのタイムアウトミリ秒。

        Returns:
            成功したレスポンス。

        Raises:
            SaasRequestError: 再試行対象外の失敗。
            SaasRetryExhaustedError: 最大試行回数まで失敗が続いた。
        """

        timeout = validate_timeout_ms(timeout_ms) if timeout_ms is not None else self._config.timeout_ms
        request_kwargs: dict[str, Any] = {
            "headers": self._build_headers(headers),
            "timeout": timeout / 1000.0,
        }
        if params is not None:
            request_kwargs["params"] = dict(params)
        if isinstance(body, (str, bytes)):
            request_kwargs["content"] = body
        elif body is not None:
            request_kwargs["json"] = body
        return await perform_request(
            client=self._http_client,
            registry=self._registry,
            provider=self._config.provider,
            method=method.upper(),
            url=path,
            max_retries=self._config.max_retries,
            timeout_ms=timeout,
            policy=self._policy,
            request_kwargs=request_kwargs,
        )

    async def get(self, path: str, **options: Any) -> httpx.Response:
        """GET要求。"""

        return await self.request("GET", path, **options)

    async def post(self, path: str, body: Any = None, **options: Any) -> httpx.Response:
        """POST要求。"""

        return await self.request("POST", path, body=body, **options)

    async def put(self, path: str, body: Any = None, **options: Any) -> httpx.Response:
        """PUT要求。"""

        return await self.request("PUT", path, body=body, **options)

    async def patch(self, path: str, body: Any = None, **options: Any) -> httpx.Response:
        """PATCH要求。"""

        return await self.request("PATCH", path, body=body, **options)

    async def delete(self, path: str, **options: Any) -> httpx.Response:
        """DELETE要求。"""

        return await self.request("DELETE", path, **options)

    async def aclose(self) -> None:
        """内部Clientをクローズする。"""

        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> HttpClient:
        """非同期コンテキスト開始。"""

        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """非同期コンテキスト終了。"""

        await self.aclose()


def create_http_client(**kwargs: Any) -> HttpClient:
    """プロバイダ用のHTTPクライアントを作る。"""

    return HttpClient(**kwargs)
