"""資格情報の保存と取得。

OSのキーチェーン（keyring）が使えない環境では、設定ディレクトリ配下の
平文JSONファイルへ保存する。どちらを使うかはプロセス内で1回だけ判定する。
"""

from __future__ import annotations

import json
import logging
import time
import warnings
from dataclasses import asdict, dataclass
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, Any, Protocol

import keyring
import keyring.errors
from keyring.backends import fail as fail_backend
from keyring.backends import null as null_backend

from saasgate.config import SERVICE_NAME, TOKEN_EXPIRY_BUFFER_MS
from saasgate.enums import AuthScheme, TokenType
from saasgate.errors import SaasCredentialsError
from saasgate.profiles import ProfileManager, write_json_atomic

if TYPE_CHECKING:
    from saasgate.client import HttpClient

logger = logging.getLogger(__name__)

_INDEX_ACCOUNT = "__accounts__"


class CredentialStore(Protocol):
    """資格情報ストアの共通契約。"""

    def get_password(self, account: str) -> str | None: ...

    def set_password(self, account: str, secret: str) -> None: ...

    def delete_password(self, account: str) -> bool: ...

    def find_credentials(self) -> list[tuple[str, str]]: ...


class FileCredentialStore:
    """平文JSONファイルによるストア。keyringが使えない場合の代替。"""

    secure = False

    def __init__(self, path: Path, *, service: str = SERVICE_NAME) -> None:
        self._path = path
        self._service = service
        self._lock = Lock()
        self._entries = self._load()

    @property
    def path(self) -> Path:
        """保存先。"""

        return self._path

    def _key(self, account: str) -> str:
        return f"{self._service}:{account}"

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            loaded = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", self._path, exc)
            return {}
        if not isinstance(loaded, dict):
            return {}
        return {str(k): str(v) for k, v in loaded.items()}

    def _save(self) -> None:
        write_json_atomic(self._path, self._entries, mode=0o600)

    def get_password(self, account: str) -> str | None:
        return self._entries.get(self._key(account))

    def set_password(self, account: str, secret: str) -> None:
        with self._lock:
            self._entries[self._key(account)] = secret
            self._save()

    def delete_password(self, account: str) -> bool:
        with self._lock:
            if self._entries.pop(self._key(account), None) is None:
                return False
            self._save()
            return True

    def find_credentials(self) -> list[tuple[str, str]]:
        prefix = f"{self._service}:"
        return [
            (key[len(prefix):], secret)
            for key, secret in self._entries.items()
            if key.startswith(prefix)
        ]


class KeyringCredentialStore:
    """OSキーチェーンによるストア。

    keyring はアカウントを列挙できないため、アカウント名の一覧を
    別エントリとして保持する。
    """

    secure = True

    def __init__(self, *, service: str = SERVICE_NAME) -> None:
        self._service = service
        self._lock = Lock()

    def _accounts(self) -> list[str]:
        raw = keyring.get_password(self._service, _INDEX_ACCOUNT)
        if not raw:
            return []
        try:
            accounts = json.loads(raw)
        except json.JSONDecodeError:
            return []
        return [str(a) for a in accounts] if isinstance(accounts, list) else []

    def _write_accounts(self, accounts: list[str]) -> None:
        keyring.set_password(self._service, _INDEX_ACCOUNT, json.dumps(sorted(set(accounts))))

    def get_password(self, account: str) -> str | None:
        return keyring.get_password(self._service, account)

    def set_password(self, account: str, secret: str) -> None:
        with self._lock:
            keyring.set_password(self._service, account, secret)
            accounts = self._accounts()
            if account not in accounts:
                self._write_accounts([*accounts, account])

    def delete_password(self, account: str) -> bool:
        with self._lock:
            try:
                keyring.delete_password(self._service, account)
            except keyring.errors.PasswordDeleteError:
                return False
            self._write_accounts([a for a in self._accounts() if a != account])
            return True

    def find_credentials(self) -> list[tuple[str, str]]:
        found: list[tuple[str, str]] = []
        for account in self._accounts():
            secret = keyring.get_password(self._service, account)
            if secret is not None:
                found.append((account, secret))
        return found


@lru_cache(maxsize=1)
def keyring_available() -> bool:
    """利用可能なkeyringバックエンドがあるか判定する（結果はキャッシュ）。"""

    try:
        backend = keyring.get_keyring()
    except keyring.errors.KeyringError as exc:
        logger.debug("keyring backend probe failed: %s", exc)
        return False
    return not isinstance(backend, (fail_backend.Keyring, null_backend.Keyring))


def resolve_credential_store(config_dir: Path) -> CredentialStore:
    """使用するストアを決定する。"""

    if keyring_available():
        return KeyringCredentialStore()
    return FileCredentialStore(config_dir / ".credentials")


@dataclass(slots=True)
class Credentials:
    """保存する資格情報。

    Attributes:
        token: APIキーまたはアクセストークン。
        token_type: 種別。
        refresh_token: OAuthリフレッシュトークン。
        expires_at: 失効時刻（UNIXミリ秒）。
    """

    token: str
    token_type: TokenType = TokenType.BEARER
    refresh_token: str | None = None
    expires_at: int | None = None

    def to_json(self) -> str:
        """保存用JSONへ変換する。"""

        payload = {k: v for k, v in asdict(self).items() if v is not None}
        payload["token_type"] = self.token_type.value
        return json.dumps(payload, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> Credentials | None:
        """保存済みJSONから復元する。壊れていればNone。"""

        try:
            payload: Any = json.loads(text)
            return cls(
                token=str(payload["token"]),
                token_type=TokenType(payload.get("token_type", TokenType.BEARER.value)),
                refresh_token=payload.get("refresh_token"),
                expires_at=payload.get("expires_at"),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None


class AuthManager:
    """プロバイダとプロファイルの組ごとに資格情報を管理する。"""

    def __init__(
        self,
        *,
        profiles: ProfileManager | None = None,
        store: CredentialStore | None = None,
    ) -> None:
        self._profiles = profiles or ProfileManager()
        self._store = store if store is not None else resolve_credential_store(self._profiles.config_dir)
        self._warned_fallback = False

    @property
    def store(self) -> CredentialStore:
        """使用中のストア。"""

        return self._store

    def resolve_profile(self, profile: str | None = None) -> str:
        """プロファイル名を確定する。未指定なら有効なプロファイル。"""

        return profile or self._profiles.get_active_profile()

    def _account(self, provider: str, profile: str | None) -> str:
        return f"{provider}:{self.resolve_profile(profile)}"

    def is_secure_storage_available(self) -> bool:
        """OSキーチェーンを使っているか。"""

        return bool(getattr(self._store, "secure", False))

    def set_credentials(
        self,
        provider: str,
        credentials: Credentials,
        profile: str | None = None,
    ) -> None:
        """資格情報を保存する。"""

        if not self.is_secure_storage_available() and not self._warned_fallback:
            warnings.warn(
                "OSキーチェーンが利用できないため、資格情報を平文ファイルに保存します。",
                UserWarning,
                stacklevel=2,
            )
            self._warned_fallback = True
        self._store.set_password(self._account(provider, profile), credentials.to_json())

    def get_credentials(self, provider: str, profile: str | None = None) -> Credentials | None:
        """保存済み資格情報を返す。"""

        raw = self._store.get_password(self._account(provider, profile))
        if not raw:
            return None
        return Credentials.from_json(raw)

    def has_credentials(self, provider: str, profile: str | None = None) -> bool:
        """資格情報が保存されているか。"""

        return self.get_credentials(provider, profile) is not None

    def delete_credentials(self, provider: str, profile: str | None = None) -> bool:
        """資格情報を削除する。"""

        return self._store.delete_password(self._account(provider, profile))

    def is_token_expired(
        self,
        provider: str,
        profile: str | None = None,
        *,
        now_ms: int | None = None,
    ) -> bool:
        """トークンが失効済みか（失効60秒前から失効扱い）。"""

        credentials = self.get_credentials(provider, profile)
        if credentials is None or not credentials.expires_at:
            return False
        current = int(time.time() * 1000) if now_ms is None else now_ms
        return current >= credentials.expires_at - TOKEN_EXPIRY_BUFFER_MS

    def get_token(
        self,
        provider: str,
        profile: str | None = None,
        *,
        now_ms: int | None = None,
    ) -> str | None:
        """有効なトークンを返す。未保存または失効済みならNone。"""

        credentials = self.get_credentials(provider, profile)
        if credentials is None:
            return None
        if self.is_token_expired(provider, profile, now_ms=now_ms):
            return None
        return credentials.token

    def list_providers(self, profile: str | None = None) -> list[str]:
        """プロファイルに資格情報が保存されているプロバイダ一覧。"""

        suffix = f":{self.resolve_profile(profile)}"
        return sorted(
            account.split(":", 1)[0]
            for account, _ in self._store.find_credentials()
            if account.endswith(suffix)
        )

    def clear_profile(self, profile: str | None = None) -> list[str]:
        """プロファイルの資格情報をすべて削除する。

        Returns:
            削除したプロバイダ名。
        """

        removed = []
        for provider in self.list_providers(profile):
            if self.delete_credentials(provider, profile):
                removed.append(provider)
        return removed


def apply_credentials(
    client: HttpClient,
    auth: AuthManager,
    provider: str,
    profile: str | None = None,
    *,
    scheme: AuthScheme | str = AuthScheme.BEARER,
) -> None:
    """保存済みトークンをクライアントのAuthorizationヘッダへ設定する。

    Raises:
        SaasCredentialsError: 有効なトークンがない場合。
    """

    token = auth.get_token(provider, profile)
    if token is None:
        name = auth.resolve_profile(profile)
        raise SaasCredentialsError(
            f"{provider} の有効な資格情報がありません（profile={name}）。"
            f" saasgate login {provider} を実行してください。",
            provider=provider,
            profile=name,
        )
    client.set_auth_header(token, scheme)
