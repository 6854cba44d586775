"""例外定義。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from saasgate.enums import FailureKind

if TYPE_CHECKING:
    import httpx


@dataclass(slots=True)
class SaasErrorContext:
    """例外に付随する共通コンテキスト。

    Attributes:
        method: HTTPメソッド。
        request_url: リクエストURL。
        provider: レート制限に用いたプロバイダ名。
    """

    method: str | None = None
    request_url: str | None = None
    provider: str | None = None


class SaasError(Exception):
    """ライブラリ例外の基底クラス。

    Attributes:
        origin: 例外発生元。
        context: 追加コンテキスト。
    """

    def __init__(
        self,
        message: str,
        *,
        origin: str,
        context: SaasErrorContext | None = None,
    ) -> None:
        super().__init__(message)
        self.origin = origin
        self.context = context or SaasErrorContext()


class SaasRequestError(SaasError):
    """1回のHTTP要求に由来する例外の基底。

    Attributes:
        attempts: 例外送出までに行った試行回数。
    """

    kind: FailureKind = FailureKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        origin: str,
        context: SaasErrorContext | None = None,
    ) -> None:
        super().__init__(message, origin=origin, context=context)
        self.attempts = 1


class SaasNetworkError(SaasRequestError):
    """応答を受信できなかった通信失敗。"""

    kind = FailureKind.NETWORK

    def __init__(self, message: str, *, context: SaasErrorContext | None = None) -> None:
        super().__init__(message, origin="transport", context=context)


class SaasTimeoutError(SaasNetworkError):
    """タイムアウト。通信失敗として再試行対象になる。"""

    kind = FailureKind.TIMEOUT


class SaasHttpStatusError(SaasRequestError):
    """エラーステータス応答。

    Attributes:
        status: HTTPステータス。
        response: 受信したレスポンス。
        retry_after: Retry-Afterヘッダの生値。
    """

    kind = FailureKind.CLIENT

    def __init__(
        self,
        message: str,
        *,
        status: int,
        response: httpx.Response | None = None,
        retry_after: str | None = None,
        context: SaasErrorContext | None = None,
    ) -> None:
        super().__init__(message, origin="server_response", context=context)
        self.status = status
        self.response = response
        self.retry_after = retry_after


class SaasRateLimitedError(SaasHttpStatusError):
    """HTTP 429。"""

    kind = FailureKind.RATE_LIMITED


class SaasServerError(SaasHttpStatusError):
    """HTTP 5xx。"""

    kind = FailureKind.SERVER


class SaasClientError(SaasHttpStatusError):
    """429以外の4xx。再試行しない。"""

    kind = FailureKind.CLIENT


class SaasRetryExhaustedError(SaasRequestError):
    """再試行予算を使い切った。

    Attributes:
        last_error: 最後の試行で発生した例外。
    """

    def __init__(self, last_error: SaasRequestError, *, attempts: int) -> None:
        super().__init__(
            f"{attempts}回試行しましたが失敗しました: {last_error}",
            origin=last_error.origin,
            context=last_error.context,
        )
        self.last_error = last_error
        self.attempts = attempts
        self.kind = last_error.kind

    @property
    def status(self) -> int | None:
        """最後の失敗のHTTPステータス（通信失敗ならNone）。"""

        return getattr(self.last_error, "status", None)


class SaasConfigError(SaasError, ValueError):
    """設定値不正。構築時に送出される。"""

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message, origin="client_validation")
        self.field = field


class SaasCredentialsError(SaasError):
    """資格情報が見つからない、または利用できない。"""

    def __init__(self, message: str, *, provider: str, profile: str) -> None:
        super().__init__(message, origin="credentials", context=SaasErrorContext(provider=provider))
        self.provider = provider
        self.profile = profile


class SaasProfileError(SaasError, ValueError):
    """プロファイル操作の不正。"""

    def __init__(self, message: str, *, profile: str) -> None:
        super().__init__(message, origin="client_validation")
        self.profile = profile
