from pathlib import Path

from usageprobe.cli import parse_args
from usageprobe.config import Config

_ENV_KEYS = (
    "USAGEPROBE_LOG_LEVEL",
    "USAGEPROBE_DEBUG",
    "USAGEPROBE_PROVIDERS",
    "USAGEPROBE_KEEP_CLI_SESSIONS",
    "USAGEPROBE_CLAUDE_SOURCE",
    "USAGEPROBE_CLAUDE_WEB_EXTRAS",
    "USAGEPROBE_CODEX_SOURCE",
    "CODEX_HOME",
)


def _clear_env(monkeypatch: "object") -> "None":
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfigFromEnv:
    def test_defaults(self, monkeypatch: "object") -> "None":
        _clear_env(monkeypatch)
        config = Config.from_env()
        assert config.log_level == "info"
        assert config.providers == ["claude", "codex"]
        assert config.debug_mode is False
        assert config.claude_source == "auto"
        assert config.codex_home == Path.home() / ".codex"

    def test_reads_env_vars(self, monkeypatch: "object", tmp_path: "Path") -> "None":
        _clear_env(monkeypatch)
        monkeypatch.setenv("USAGEPROBE_DEBUG", "1")
        monkeypatch.setenv("USAGEPROBE_PROVIDERS", "zai, Copilot")
        monkeypatch.setenv("USAGEPROBE_CLAUDE_SOURCE", "web")
        monkeypatch.setenv("USAGEPROBE_CLAUDE_WEB_EXTRAS", "true")
        monkeypatch.setenv("USAGEPROBE_CODEX_SOURCE", "cli")
        monkeypatch.setenv("CODEX_HOME", str(tmp_path))
        config = Config.from_env()
        assert config.debug_mode is True
        assert config.providers == ["zai", "copilot"]
        assert config.claude_source == "web"
        assert config.claude_web_extras is True
        assert config.codex_source == "cli"
        assert config.codex_home == tmp_path

    def test_unknown_source_falls_back_to_auto(self, monkeypatch: "object") -> "None":
        _clear_env(monkeypatch)
        monkeypatch.setenv("USAGEPROBE_CLAUDE_SOURCE", "carrier-pigeon")
        assert Config.from_env().claude_source == "auto"


class TestSettingsSnapshot:
    def test_settings_reflect_config(self) -> "None":
        config = Config(debug_mode=True, claude_source="oauth", codex_source="cli")
        settings = config.settings()
        assert settings.debug_mode is True
        assert settings.claude.source == "oauth"
        assert settings.codex.source == "cli"

    def test_settings_do_not_follow_later_changes(self) -> "None":
        config = Config()
        settings = config.settings()
        config.debug_mode = True
        assert settings.debug_mode is False


class TestParseArgs:
    def test_flags_override_env(self, monkeypatch: "object") -> "None":
        _clear_env(monkeypatch)
        monkeypatch.setenv("USAGEPROBE_LOG_LEVEL", "warning")
        config = parse_args(
            [
                "--provider",
                "claude",
                "--debug",
                "--claude.source",
                "cli",
                "--claude.web-extras",
                "--json",
                "--log.level",
                "debug",
            ]
        )
        assert config.providers == ["claude"]
        assert config.debug_mode is True
        assert config.claude_source == "cli"
        assert config.claude_web_extras is True
        assert config.json_output is True
        assert config.log_level == "debug"

    def test_env_kept_without_flags(self, monkeypatch: "object") -> "None":
        _clear_env(monkeypatch)
        monkeypatch.setenv("USAGEPROBE_LOG_LEVEL", "warning")
        monkeypatch.setenv("USAGEPROBE_DEBUG", "1")
        config = parse_args([])
        assert config.log_level == "warning"
        assert config.debug_mode is True

    def test_all_providers(self, monkeypatch: "object") -> "None":
        _clear_env(monkeypatch)
        config = parse_args(["--provider", "all"])
        assert config.providers == ["claude", "codex", "zai", "copilot"]
