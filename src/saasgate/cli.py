"""CLIエントリポイント。"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from saasgate.config import DEFAULT_PROFILE
from saasgate.enums import Provider, TokenType

_TOKEN_TYPES = {
    Provider.HUBSPOT: TokenType.BEARER,
    Provider.SEMRUSH: TokenType.API_KEY,
    Provider.META: TokenType.OAUTH,
}

_TOKEN_HINTS = {
    Provider.HUBSPOT: "HubSpot Private App token",
    Provider.SEMRUSH: "Semrush API key",
    Provider.META: "Meta access token",
}


def _require_typer() -> Any:
    try:
        import typer
    except ImportError as exc:
        raise RuntimeError(
            "CLIには typer が必要です。pip install 'saasgate[cli]' を実行してください。"
        ) from exc
    return typer


def _parse_provider(value: str) -> Provider:
    try:
        return Provider(value.strip().lower())
    except ValueError as exc:
        supported = ", ".join(p.value for p in Provider)
        raise ValueError(f"未対応のプロバイダです: {value}（対応: {supported}）") from exc


def _dump_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True, default=str)


def build_app() -> Any:
    """CLIアプリを構築する。"""

    typer = _require_typer()
    from saasgate.credentials import AuthManager, Credentials
    from saasgate.profiles import ProfileManager
    from saasgate.registry import LimiterRegistry

    app = typer.Typer(no_args_is_help=True)
    config_app = typer.Typer(no_args_is_help=True, help="プロファイル設定を操作する。")
    app.add_typer(config_app, name="config")

    state: dict[str, Path | None] = {"config_dir": None}

    def _profiles() -> ProfileManager:
        return ProfileManager(state["config_dir"])

    def _provider_or_exit(value: str) -> Provider:
        try:
            return _parse_provider(value)
        except ValueError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=2) from exc

    @app.callback()
    def main(
        config_dir: Path | None = typer.Option(
            None,
            "--config-dir",
            envvar="SAASGATE_CONFIG_DIR",
            help="設定ディレクトリ（既定: ~/.saasgate）。",
        ),
    ) -> None:
        """SaaS API 呼び出しの資格情報とレート制限を管理する。"""

        state["config_dir"] = config_dir

    @app.command("login")
    def login_command(
        service: str = typer.Argument(..., help="hubspot / semrush / meta"),
        profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p"),
        token: str | None = typer.Option(None, "--token"),
        force: bool = typer.Option(False, "--force", help="既存の資格情報を確認なしで上書きする。"),
    ) -> None:
        """プロバイダの資格情報を保存する。"""

        provider = _provider_or_exit(service)
        profiles = _profiles()
        profiles.set_active_profile(profile)
        auth = AuthManager(profiles=profiles)

        if auth.has_credentials(provider.value, profile) and not force:
            if not typer.confirm("資格情報が既に存在します。上書きしますか？", default=False):
                typer.echo("ログインを中止しました。")
                return

        secret = token or typer.prompt(_TOKEN_HINTS[provider], hide_input=True)
        auth.set_credentials(
            provider.value,
            Credentials(token=secret, token_type=_TOKEN_TYPES[provider]),
            profile,
        )
        typer.echo(f"{provider.value} の資格情報を保存しました（profile={profile}）。")

    @app.command("logout")
    def logout_command(
        service: str | None = typer.Argument(None, help="hubspot / semrush / meta"),
        profile: str | None = typer.Option(None, "--profile", "-p"),
        all_: bool = typer.Option(False, "--all", help="プロファイルの資格情報をすべて削除する。"),
    ) -> None:
        """保存済みの資格情報を削除する。"""

        auth = AuthManager(profiles=_profiles())
        name = auth.resolve_profile(profile)
        if all_:
            removed = auth.clear_profile(name)
            typer.echo(f"{len(removed)}件の資格情報を削除しました（profile={name}）。")
            return
        if service is None:
            typer.echo("プロバイダを指定するか --all を指定してください。", err=True)
            raise typer.Exit(code=2)
        provider = _provider_or_exit(service)
        if auth.delete_credentials(provider.value, name):
            typer.echo(f"{provider.value} の資格情報を削除しました（profile={name}）。")
        else:
            typer.echo(f"{provider.value} の資格情報はありません（profile={name}）。")

    @config_app.command("show")
    def config_show_command() -> None:
        """有効なプロファイルとプロファイル一覧を表示する。"""

        profiles = _profiles()
        typer.echo(
            _dump_json(
                {
                    "active_profile": profiles.get_active_profile(),
                    "profiles": profiles.list_profiles(),
                    "config_path": str(profiles.path),
                }
            )
        )

    @config_app.command("use")
    def config_use_command(profile: str = typer.Argument(...)) -> None:
        """有効なプロファイルを切り替える。"""

        profiles = _profiles()
        previous = profiles.get_active_profile()
        profiles.set_active_profile(profile)
        typer.echo(f'"{previous}" から "{profile}" へ切り替えました。')

    @app.command("limits")
    def limits_command(provider: str | None = typer.Argument(None)) -> None:
        """適用されるレート制限設定を表示する。"""

        registry = LimiterRegistry()
        if provider is None:
            payload = {"global": asdict(registry.config_for(None))}
            for item in Provider:
                payload[item.value] = asdict(registry.config_for(item.value))
        else:
            payload = {provider: asdict(registry.config_for(provider))}
        typer.echo(_dump_json(payload))

    return app


def app_entry() -> None:
    """CLIアプリを起動する。"""

    build_app()()


if __name__ == "__main__":
    app_entry()
