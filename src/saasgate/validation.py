"""設定値の正規化と構築時バリデーション。"""

from __future__ import annotations

from dataclasses import fields

from saasgate.config import LimiterConfig, RetryConfig
from saasgate.enums import AuthScheme
from saasgate.errors import SaasConfigError


def _require_non_negative_int(value: object, *, name: str) -> int:
    # bool は int のサブクラスなので明示的に除外する
    if isinstance(value, bool) or not isinstance(value, int):
        raise SaasConfigError(f"{name} は整数で指定してください: {value!r}", field=name)
    if value < 0:
        raise SaasConfigError(f"{name} は0以上を指定してください: {value}", field=name)
    return value


def validate_limiter_config(config: LimiterConfig) -> LimiterConfig:
    """リミッタ設定を検証する。

    Args:
        config: 検証対象。

    Returns:
        検証済みの設定（同一オブジェクト）。

    Raises:
        SaasConfigError: 負値または整数以外を含む場合。
    """

    for item in fields(config):
        _require_non_negative_int(getattr(config, item.name), name=item.name)
    return config


def validate_retry_config(config: RetryConfig) -> RetryConfig:
    """再試行設定を検証する。"""

    if _require_non_negative_int(config.max_retries, name="max_retries") < 1:
        raise SaasConfigError("max_retries は1以上を指定してください。", field="max_retries")
    _require_non_negative_int(config.base_delay_ms, name="base_delay_ms")
    _require_non_negative_int(config.cap_delay_ms, name="cap_delay_ms")
    return config


def validate_timeout_ms(value: int) -> int:
    """タイムアウトミリ秒を検証する。"""

    if _require_non_negative_int(value, name="timeout_ms") == 0:
        raise SaasConfigError("timeout_ms は1以上を指定してください。", field="timeout_ms")
    return value


def normalize_provider(value: str | None) -> str | None:
    """プロバイダ名を正規化する。空文字はNoneとして扱う。"""

    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def normalize_auth_scheme(value: AuthScheme | str) -> AuthScheme:
    """認証スキームを正規化する。

    Raises:
        SaasConfigError: 未対応のスキームの場合。
    """

    if isinstance(value, AuthScheme):
        return value
    text = str(value).strip().lower()
    for scheme in AuthScheme:
        if scheme.value.lower() == text:
            return scheme
    raise SaasConfigError(f"未対応の認証スキームです: {value!r}", field="scheme")
