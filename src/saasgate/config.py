"""設定値定義。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from saasgate.enums import Provider

SERVICE_NAME = "saasgate"
DEFAULT_PROFILE = "default"
DEFAULT_CONFIG_DIR = Path.home() / ".saasgate"
DEFAULT_USER_AGENT = "saasgate/0.1.0"

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1_000
DEFAULT_CAP_DELAY_MS = 30_000
TOKEN_EXPIRY_BUFFER_MS = 60_000


@dataclass(slots=True, frozen=True)
class LimiterConfig:
    """トークンバケット設定。

    Attributes:
        max_concurrent: 同時実行上限（0は無制限）。
        min_time_ms: 送信開始間の最小間隔ミリ秒（0は間隔なし）。
        reservoir: リザーバ容量（最大バースト数）。
        reservoir_refresh_amount: 1回の補充量。
        reservoir_refresh_interval_ms: 補充周期ミリ秒（0は補充なし）。
    """

    max_concurrent: int = 5
    min_time_ms: int = 100
    reservoir: int = 10
    reservoir_refresh_amount: int = 10
    reservoir_refresh_interval_ms: int = 1_000


DEFAULT_LIMITER_CONFIG = LimiterConfig()

PROVIDER_LIMITS: dict[str, LimiterConfig] = {
    # 100 req / 10s
    Provider.HUBSPOT.value: LimiterConfig(
        max_concurrent=10,
        min_time_ms=100,
        reservoir=100,
        reservoir_refresh_amount=100,
        reservoir_refresh_interval_ms=10_000,
    ),
    Provider.META.value: LimiterConfig(
        max_concurrent=5,
        min_time_ms=100,
        reservoir=10,
        reservoir_refresh_amount=10,
        reservoir_refresh_interval_ms=1_000,
    ),
    # 5 req / s
    Provider.SEMRUSH.value: LimiterConfig(
        max_concurrent=5,
        min_time_ms=200,
        reservoir=5,
        reservoir_refresh_amount=5,
        reservoir_refresh_interval_ms=1_000,
    ),
}


@dataclass(slots=True, frozen=True)
class RetryConfig:
    """再試行設定。

    Attributes:
        max_retries: 初回を含む最大試行回数。
        base_delay_ms: 指数バックオフの基準ミリ秒。
        cap_delay_ms: 待機上限ミリ秒。
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    cap_delay_ms: int = DEFAULT_CAP_DELAY_MS


@dataclass(slots=True)
class HttpClientConfig:
    """HTTPクライアント設定。

    Attributes:
        base_url: ベースURL。
        timeout_ms: 1試行あたりのタイムアウトミリ秒。
        max_retries: 初回を含む最大試行回数。
        provider: レート制限に用いるプロバイダ名。
        headers: 全要求に付与する既定ヘッダ。
    """

    base_url: str = ""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    provider: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
