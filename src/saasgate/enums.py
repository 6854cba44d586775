"""列挙型定義。"""

from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    """既定レート制限を持つSaaSプロバイダ。

    Attributes:
        HUBSPOT: HubSpot。
        SEMRUSH: Semrush。
        META: Meta (Facebook Marketing API)。
    """

    HUBSPOT = "hubspot"
    SEMRUSH = "semrush"
    META = "meta"


class AuthScheme(StrEnum):
    """Authorizationヘッダのスキーム。

    Attributes:
        BEARER: Bearerトークン。
        BASIC: Basic認証。
    """

    BEARER = "Bearer"
    BASIC = "Basic"


class TokenType(StrEnum):
    """保存済み資格情報の種別。

    Attributes:
        API_KEY: APIキー。
        BEARER: 固定Bearerトークン。
        OAUTH: OAuthアクセストークン。
    """

    API_KEY = "api_key"
    BEARER = "bearer"
    OAUTH = "oauth"


class FailureKind(StrEnum):
    """要求失敗の分類。

    Attributes:
        NETWORK: 応答を受信できなかった。
        TIMEOUT: タイムアウト（通信失敗として扱う）。
        RATE_LIMITED: HTTP 429。
        SERVER: HTTP 5xx。
        CLIENT: 429以外の4xx。
    """

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    CLIENT = "client"
