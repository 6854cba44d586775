"""プロファイル設定のテスト。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from saasgate.errors import SaasProfileError
from saasgate.profiles import ProfileManager


def test_defaults_without_config_file(tmp_path: Path) -> None:
    profiles = ProfileManager(tmp_path)

    assert profiles.get_active_profile() == "default"
    assert profiles.list_profiles() == ["default"]
    assert profiles.get_profile() == {}
    assert not profiles.path.exists()


def test_set_active_profile_creates_and_persists(tmp_path: Path) -> None:
    profiles = ProfileManager(tmp_path)

    profiles.set_active_profile("client-a")

    reloaded = ProfileManager(tmp_path)
    assert reloaded.get_active_profile() == "client-a"
    assert reloaded.list_profiles() == ["default", "client-a"]
    stored = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert stored["active_profile"] == "client-a"


def test_default_profile_cannot_be_deleted(tmp_path: Path) -> None:
    profiles = ProfileManager(tmp_path)

    with pytest.raises(SaasProfileError):
        profiles.delete_profile("default")


def test_deleting_active_profile_falls_back_to_default(tmp_path: Path) -> None:
    profiles = ProfileManager(tmp_path)
    profiles.set_active_profile("agency")

    assert profiles.delete_profile("agency") is True
    assert profiles.delete_profile("agency") is False
    assert profiles.get_active_profile() == "default"


def test_provider_config_round_trip(tmp_path: Path) -> None:
    profiles = ProfileManager(tmp_path)
    profiles.set_provider_config("hubspot", {"portal_id": "123"})
    profiles.update_profile("default", {"default_provider": "hubspot"})

    reloaded = ProfileManager(tmp_path)
    assert reloaded.get_provider_config("hubspot") == {"portal_id": "123"}
    assert reloaded.get_provider_config("meta") == {}
    assert reloaded.get_profile()["default_provider"] == "hubspot"
    assert reloaded.get_provider_config("hubspot", profile="missing") == {}


def test_corrupt_config_file_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")

    profiles = ProfileManager(tmp_path)

    assert profiles.get_active_profile() == "default"
    assert profiles.list_profiles() == ["default"]
