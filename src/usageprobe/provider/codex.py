from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import structlog

from usageprobe.config import CODEX_SOURCES, Settings
from usageprobe.context import ProbeContext
from usageprobe.errors import NoCredentialsError
from usageprobe.models import UsageSnapshot
from usageprobe.provider.base import SettingDescriptor
from usageprobe.provider.codex_cli import CodexCLIFetcher
from usageprobe.provider.codex_oauth import (
    CodexOAuthFetcher,
    codex_home,
    load_codex_credentials,
    resolve_usage_url,
)

logger = structlog.get_logger()

SOURCE_LABELS = {
    "auto": "Auto (OAuth, else CLI)",
    "oauth": "OAuth API",
    "cli": "Codex CLI",
}


@dataclass(frozen=True, slots=True)
class CodexStrategy:
    # "oauth" or "cli"
    source: "str"


def resolve_codex_strategy(settings: "Settings", has_credentials: "bool") -> "CodexStrategy":
    """
    OAuth when auth.json holds a token, the CLI otherwise. In debug
    mode an explicit source is honored; "oauth" still needs a token.
    """
    if settings.debug_mode and settings.codex.source == "cli":
        return CodexStrategy(source="cli")
    return CodexStrategy(source="oauth" if has_credentials else "cli")


class CodexProvider:
    def __init__(
        self,
        context: "ProbeContext",
        home: "Path | None" = None,
        oauth: "CodexOAuthFetcher | None" = None,
        cli: "CodexCLIFetcher | None" = None,
    ) -> "None":
        self._context = context
        self._home = home or codex_home(context.env, context.home)
        self._oauth = oauth or CodexOAuthFetcher()
        self._cli = cli or CodexCLIFetcher(context)

    @property
    def name(self) -> "str":
        return "codex"

    def source_label(self, settings: "Settings") -> "str":
        selected = settings.codex.source if settings.debug_mode else "auto"
        return SOURCE_LABELS.get(selected, SOURCE_LABELS["auto"])

    def settings_contributions(self) -> "Sequence[SettingDescriptor]":
        return (
            SettingDescriptor(
                key="codex.source",
                title="Usage source",
                kind="choice",
                default="auto",
                choices=CODEX_SOURCES,
                advanced=True,
            ),
            SettingDescriptor(
                key="keep_cli_sessions_alive",
                title="Keep the Codex CLI running between fetches",
                kind="toggle",
                default=False,
            ),
        )

    async def close(self) -> "None":
        await self._oauth.close()

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        credentials = None
        if not (settings.debug_mode and settings.codex.source == "cli"):
            try:
                credentials = load_codex_credentials(self._home)
            except NoCredentialsError as e:
                logger.debug("codex_credentials_unusable", error=str(e))

        strategy = resolve_codex_strategy(settings, credentials is not None)
        logger.info("codex_strategy", source=strategy.source)

        if strategy.source == "oauth":
            assert credentials is not None
            url = resolve_usage_url(self._context.env, self._home)
            return await self._oauth.fetch(credentials, url)
        return await self._cli.fetch(keep_alive=settings.keep_cli_sessions_alive)
