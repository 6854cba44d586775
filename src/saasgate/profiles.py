"""プロファイル設定の永続化。"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Any

from saasgate.config import DEFAULT_CONFIG_DIR, DEFAULT_PROFILE
from saasgate.errors import SaasProfileError

logger = logging.getLogger(__name__)

_DEFAULT_DOCUMENT: dict[str, Any] = {
    "active_profile": DEFAULT_PROFILE,
    "profiles": {DEFAULT_PROFILE: {}},
}


def write_json_atomic(path: Path, payload: Any, *, mode: int | None = None) -> None:
    """JSONを一時ファイル経由で置き換え保存する。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(payload, ensure_ascii=False, indent=2)
    fd, tmp_path = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        if mode is not None:
            os.chmod(tmp_path, mode)
        Path(tmp_path).replace(path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


class ProfileManager:
    """プロファイル単位の設定をJSONファイルで管理する。

    ファイル形式::

        {"active_profile": "default",
         "profiles": {"default": {"default_provider": "hubspot",
                                  "providers": {"hubspot": {...}}}}}
    """

    def __init__(self, config_dir: str | Path | None = None) -> None:
        self._config_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR
        self._path = self._config_dir / "config.json"
        self._lock = Lock()
        self._document = self._load()

    @property
    def config_dir(self) -> Path:
        """設定ディレクトリ。"""

        return self._config_dir

    @property
    def path(self) -> Path:
        """設定ファイルのパス。"""

        return self._path

    def _load(self) -> dict[str, Any]:
        document = copy.deepcopy(_DEFAULT_DOCUMENT)
        if not self._path.exists():
            return document
        try:
            loaded = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Error loading config %s: %s", self._path, exc)
            return document
        if not isinstance(loaded, dict):
            logger.error("Error loading config %s: top-level value is not an object", self._path)
            return document
        document.update(loaded)
        if not isinstance(document.get("profiles"), dict):
            document["profiles"] = {DEFAULT_PROFILE: {}}
        return document

    def _save(self) -> None:
        write_json_atomic(self._path, self._document)

    def get_active_profile(self) -> str:
        """有効なプロファイル名を返す。"""

        return str(self._document.get("active_profile") or DEFAULT_PROFILE)

    def set_active_profile(self, profile: str) -> None:
        """有効なプロファイルを切り替える。存在しなければ作成する。"""

        with self._lock:
            self._document["profiles"].setdefault(profile, {})
            self._document["active_profile"] = profile
            self._save()

    def list_profiles(self) -> list[str]:
        """プロファイル名一覧。"""

        return list(self._document["profiles"])

    def get_profile(self, profile: str | None = None) -> dict[str, Any]:
        """プロファイル設定を返す。存在しなければ空dict。"""

        name = profile or self.get_active_profile()
        return copy.deepcopy(self._document["profiles"].get(name, {}))

    def update_profile(self, profile: str, values: dict[str, Any]) -> None:
        """プロファイル設定を浅くマージして更新する。"""

        with self._lock:
            current = self._document["profiles"].setdefault(profile, {})
            current.update(values)
            self._save()

    def delete_profile(self, profile: str) -> bool:
        """プロファイルを削除する。

        Returns:
            削除した場合True。

        Raises:
            SaasProfileError: ``default`` を削除しようとした場合。
        """

        if profile == DEFAULT_PROFILE:
            raise SaasProfileError("default プロファイルは削除できません。", profile=profile)
        with self._lock:
            if profile not in self._document["profiles"]:
                return False
            del self._document["profiles"][profile]
            if self._document.get("active_profile") == profile:
                self._document["active_profile"] = DEFAULT_PROFILE
            self._save()
            return True

    def get_provider_config(self, provider: str, profile: str | None = None) -> dict[str, Any]:
        """プロファイル内のプロバイダ別設定を返す。"""

        providers = self.get_profile(profile).get("providers") or {}
        return dict(providers.get(provider, {}))

    def set_provider_config(
        self,
        provider: str,
        values: dict[str, Any],
        profile: str | None = None,
    ) -> None:
        """プロファイル内のプロバイダ別設定を置き換える。"""

        name = profile or self.get_active_profile()
        with self._lock:
            current = self._document["profiles"].setdefault(name, {})
            current.setdefault("providers", {})[provider] = dict(values)
            self._save()
