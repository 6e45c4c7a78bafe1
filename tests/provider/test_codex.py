import json
from pathlib import Path

import httpx
import pytest
import respx

from usageprobe.config import CodexSettings, Settings
from usageprobe.context import ProbeContext
from usageprobe.models import RateWindow, UsageSnapshot
from usageprobe.provider.codex import CodexProvider, CodexStrategy, resolve_codex_strategy

USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"


def _settings(debug: "bool" = False, source: "str" = "auto") -> "Settings":
    return Settings(debug_mode=debug, codex=CodexSettings(source=source))


class FakeCLI:
    def __init__(self) -> "None":
        self.calls = 0

    async def fetch(self, keep_alive: "bool" = False) -> "UsageSnapshot":
        self.calls += 1
        return UsageSnapshot(
            provider="codex",
            source="cli",
            primary=RateWindow(used_percent=5, window_minutes=300),
        )


def _write_auth(home: "Path", payload: "str") -> "None":
    home.mkdir(parents=True, exist_ok=True)
    (home / "auth.json").write_text(payload)


class TestResolveCodexStrategy:
    def test_credentials_select_oauth(self) -> "None":
        assert resolve_codex_strategy(_settings(), True) == CodexStrategy("oauth")
        assert resolve_codex_strategy(_settings(), False) == CodexStrategy("cli")

    def test_debug_cli_is_honored(self) -> "None":
        assert resolve_codex_strategy(_settings(True, "cli"), True).source == "cli"

    def test_debug_oauth_needs_credentials(self) -> "None":
        assert resolve_codex_strategy(_settings(True, "oauth"), False).source == "cli"
        assert resolve_codex_strategy(_settings(True, "oauth"), True).source == "oauth"

    def test_cli_selection_ignored_outside_debug(self) -> "None":
        assert resolve_codex_strategy(_settings(False, "cli"), True).source == "oauth"


class TestCodexProvider:
    @pytest.mark.asyncio
    @respx.mock
    async def test_oauth_with_auth_file(self, tmp_path: "Path") -> "None":
        home = tmp_path / ".codex"
        _write_auth(home, json.dumps({"tokens": {"access_token": "at"}}))
        respx.get(USAGE_URL).mock(
            return_value=httpx.Response(
                200, json={"rate_limit": {"primary_window": {"used_percent": 30}}}
            )
        )
        cli = FakeCLI()
        provider = CodexProvider(ProbeContext(env={}, home=tmp_path), home=home, cli=cli)
        snapshot = await provider.fetch(_settings())
        await provider.close()
        assert snapshot.source == "oauth"
        assert snapshot.primary.used_percent == 30
        assert cli.calls == 0

    @pytest.mark.asyncio
    async def test_cli_without_auth_file(self, tmp_path: "Path") -> "None":
        cli = FakeCLI()
        provider = CodexProvider(ProbeContext(env={}, home=tmp_path), cli=cli)
        snapshot = await provider.fetch(_settings())
        await provider.close()
        assert snapshot.source == "cli"
        assert cli.calls == 1

    @pytest.mark.asyncio
    async def test_unusable_auth_file_falls_to_cli(self, tmp_path: "Path") -> "None":
        home = tmp_path / ".codex"
        _write_auth(home, "{broken")
        cli = FakeCLI()
        provider = CodexProvider(ProbeContext(env={}, home=tmp_path), home=home, cli=cli)
        assert (await provider.fetch(_settings())).source == "cli"
        await provider.close()

    @pytest.mark.asyncio
    async def test_debug_cli_skips_auth_file(self, tmp_path: "Path") -> "None":
        home = tmp_path / ".codex"
        _write_auth(home, json.dumps({"tokens": {"access_token": "at"}}))
        cli = FakeCLI()
        provider = CodexProvider(ProbeContext(env={}, home=tmp_path), home=home, cli=cli)
        assert (await provider.fetch(_settings(True, "cli"))).source == "cli"
        await provider.close()

    def test_source_label(self, tmp_path: "Path") -> "None":
        provider = CodexProvider(ProbeContext(env={}, home=tmp_path), cli=FakeCLI())
        assert provider.source_label(_settings(True, "cli")) == "Codex CLI"
        assert provider.source_label(_settings(False, "cli")).startswith("Auto")
