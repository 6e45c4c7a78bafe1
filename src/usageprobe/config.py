import os
from dataclasses import dataclass, field
from pathlib import Path

CLAUDE_SOURCES = ("auto", "oauth", "web", "cli")
CODEX_SOURCES = ("auto", "oauth", "cli")


def _flag(name: "str") -> "bool":
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def _choice(name: "str", choices: "tuple[str, ...]") -> "str":
    value = os.environ.get(name, "").strip().lower()
    return value if value in choices else "auto"


@dataclass(frozen=True, slots=True)
class ClaudeSettings:
    # only honored in debug mode, "auto" otherwise
    source: "str" = "auto"
    # opt-in for augmenting the CLI snapshot with web-derived spend
    web_extras: "bool" = False


@dataclass(frozen=True, slots=True)
class CodexSettings:
    source: "str" = "auto"


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Settings is the settings snapshot a strategy decides from.
    It is taken once per fetch and never changes during it.
    """

    debug_mode: "bool" = False
    keep_cli_sessions_alive: "bool" = False
    claude: "ClaudeSettings" = field(default_factory=ClaudeSettings)
    codex: "CodexSettings" = field(default_factory=CodexSettings)


@dataclass
class Config:
    log_level: "str" = "info"
    providers: "list[str]" = field(default_factory=lambda: ["claude", "codex"])
    debug_mode: "bool" = False
    keep_cli_sessions_alive: "bool" = False
    claude_source: "str" = "auto"
    claude_web_extras: "bool" = False
    codex_source: "str" = "auto"
    codex_home: "Path" = field(default_factory=lambda: Path.home() / ".codex")
    claude_home: "Path" = field(default_factory=lambda: Path.home() / ".claude")
    json_output: "bool" = False
    show_sessions: "bool" = False

    @classmethod
    def from_env(cls) -> "Config":
        codex_home = os.environ.get("CODEX_HOME", "").strip()
        providers = [
            name.strip().lower()
            for name in os.environ.get("USAGEPROBE_PROVIDERS", "").split(",")
            if name.strip()
        ]
        return cls(
            providers=providers or ["claude", "codex"],
            log_level=os.environ.get("USAGEPROBE_LOG_LEVEL", "info").strip().lower()
            or "info",
            debug_mode=_flag("USAGEPROBE_DEBUG"),
            keep_cli_sessions_alive=_flag("USAGEPROBE_KEEP_CLI_SESSIONS"),
            claude_source=_choice("USAGEPROBE_CLAUDE_SOURCE", CLAUDE_SOURCES),
            claude_web_extras=_flag("USAGEPROBE_CLAUDE_WEB_EXTRAS"),
            codex_source=_choice("USAGEPROBE_CODEX_SOURCE", CODEX_SOURCES),
            codex_home=Path(codex_home).expanduser()
            if codex_home
            else Path.home() / ".codex",
        )

    def settings(self) -> "Settings":
        """
        snapshots the current configuration for one fetch.
        """
        return Settings(
            debug_mode=self.debug_mode,
            keep_cli_sessions_alive=self.keep_cli_sessions_alive,
            claude=ClaudeSettings(
                source=self.claude_source,
                web_extras=self.claude_web_extras,
            ),
            codex=CodexSettings(source=self.codex_source),
        )
