"""全体リミッタとプロバイダ別リミッタの管理。"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from threading import Lock
from typing import TypeVar

from saasgate.config import DEFAULT_LIMITER_CONFIG, PROVIDER_LIMITS, LimiterConfig
from saasgate.limiter import LimiterStats, TokenBucketLimiter
from saasgate.validation import normalize_provider, validate_limiter_config

T = TypeVar("T")

logger = logging.getLogger(__name__)


class LimiterRegistry:
    """全体リミッタ1つと、それに連結したプロバイダ別リミッタを保持する。

    プロバイダ別リミッタは初回アクセス時に生成され、以後は同一インスタンスを
    返し続ける。破棄や再生成は行わない。
    """

    def __init__(
        self,
        *,
        global_config: LimiterConfig = DEFAULT_LIMITER_CONFIG,
        provider_limits: Mapping[str, LimiterConfig] | None = None,
        default_provider_config: LimiterConfig = DEFAULT_LIMITER_CONFIG,
    ) -> None:
        """レジストリを初期化する。

        Args:
            global_config: 全体リミッタ設定。
            provider_limits: 既定表に上書きするプロバイダ別設定。
            default_provider_config: 表にないプロバイダの設定。

        Raises:
            SaasConfigError: いずれかの設定が不正な場合。
        """

        limits = dict(PROVIDER_LIMITS)
        for provider, config in (provider_limits or {}).items():
            key = normalize_provider(provider)
            if key is None:
                continue
            limits[key] = validate_limiter_config(config)
        self._limits = limits
        self._default_provider_config = validate_limiter_config(default_provider_config)
        self._global = TokenBucketLimiter(global_config, name="global")
        self._limiters: dict[str, TokenBucketLimiter] = {}
        self._lock = Lock()

    @property
    def global_limiter(self) -> TokenBucketLimiter:
        """全体リミッタ。"""

        return self._global

    def config_for(self, provider: str | None = None) -> LimiterConfig:
        """プロバイダに適用される設定を返す。"""

        key = normalize_provider(provider)
        if key is None:
            return self._global.config
        return self._limits.get(key, self._default_provider_config)

    def get_limiter(self, provider: str | None = None) -> TokenBucketLimiter:
        """プロバイダ用リミッタを返す。未指定なら全体リミッタ。

        Args:
            provider: プロバイダ名。

        Returns:
            全体リミッタに連結済みのリミッタ。
        """

        key = normalize_provider(provider)
        if key is None:
            return self._global
        limiter = self._limiters.get(key)
        if limiter is not None:
            return limiter
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                limiter = TokenBucketLimiter(
                    self.config_for(key),
                    name=key,
                    chained=self._global,
                )
                self._limiters[key] = limiter
                logger.debug("created limiter %r", limiter)
        return limiter

    async def execute(
        self,
        task: Callable[[], Awaitable[T]],
        provider: str | None = None,
    ) -> T:
        """レート制御下でタスクを実行する。"""

        return await self.get_limiter(provider).schedule(task)

    def get_stats(self, provider: str | None = None) -> LimiterStats:
        """リミッタの現在値を返す。未生成のリミッタは生成せず初期値を返す。"""

        key = normalize_provider(provider)
        if key is None:
            return self._global.stats()
        limiter = self._limiters.get(key)
        if limiter is None:
            return LimiterStats(
                queued=0,
                running=0,
                reservoir_remaining=self.config_for(key).reservoir,
                done=0,
            )
        return limiter.stats()

    def providers(self) -> list[str]:
        """生成済みプロバイダ別リミッタの名前。"""

        with self._lock:
            return sorted(self._limiters)


_registry: LimiterRegistry | None = None
_registry_lock = Lock()


def get_registry() -> LimiterRegistry:
    """プロセス共通のレジストリを返す。初回呼び出し時に生成する。"""

    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = LimiterRegistry()
    return _registry
