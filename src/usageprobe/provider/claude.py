import asyncio
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Sequence

import structlog

from usageprobe.config import CLAUDE_SOURCES, Settings
from usageprobe.context import ProbeContext
from usageprobe.errors import NoCredentialsError
from usageprobe.models import BrowserSessionInfo, UsageSnapshot
from usageprobe.provider.base import SettingDescriptor
from usageprobe.provider.claude_cli import ClaudeCLIFetcher
from usageprobe.provider.claude_oauth import ClaudeOAuthFetcher, load_credentials
from usageprobe.provider.claude_web import ClaudeWebFetcher
from usageprobe.session import CLAUDE_SESSION, extract_browser_session

logger = structlog.get_logger()

SOURCE_LABELS = {
    "auto": "Auto (web session, else CLI)",
    "oauth": "OAuth API",
    "web": "Web (browser session)",
    "cli": "Claude CLI",
}


@dataclass(frozen=True, slots=True)
class ClaudeStrategy:
    # "oauth", "web" or "cli"
    source: "str"
    use_web_extras: "bool" = False


def resolve_claude_strategy(
    settings: "Settings",
    has_web_session: "bool",
) -> "ClaudeStrategy":
    """
    picks the Claude source without doing any I/O.

    Outside debug mode: the web session when one is extractable, the
    CLI otherwise. In debug mode the selected source is honored, except
    that "web" falls back to "cli" when no session exists; web extras
    only apply to the CLI source with a session and the opt-in set.
    """
    if not settings.debug_mode:
        return ClaudeStrategy(source="web" if has_web_session else "cli")

    selected = settings.claude.source
    if selected not in CLAUDE_SOURCES or selected == "auto":
        source = "web" if has_web_session else "cli"
    elif selected == "web" and not has_web_session:
        source = "cli"
    else:
        source = selected

    use_web_extras = source == "cli" and settings.claude.web_extras and has_web_session
    return ClaudeStrategy(source=source, use_web_extras=use_web_extras)


def _needs_session_lookup(settings: "Settings") -> "bool":
    if not settings.debug_mode:
        return True
    selected = settings.claude.source
    if selected == "oauth":
        return False
    if selected == "cli":
        return settings.claude.web_extras
    return True


def _lookup_browser_session() -> "BrowserSessionInfo | None":
    try:
        return extract_browser_session(CLAUDE_SESSION)
    except NoCredentialsError:
        return None


class ClaudeProvider:
    """
    ClaudeProvider fetches Claude usage from the OAuth API, the
    claude.ai web API (browser session) or the Claude CLI, with the
    source fixed up front by resolve_claude_strategy.
    """

    def __init__(
        self,
        context: "ProbeContext",
        claude_home: "Path | None" = None,
        oauth: "ClaudeOAuthFetcher | None" = None,
        web: "ClaudeWebFetcher | None" = None,
        cli: "ClaudeCLIFetcher | None" = None,
        session_lookup: "Callable[[], BrowserSessionInfo | None]" = _lookup_browser_session,
    ) -> "None":
        self._context = context
        self._claude_home = claude_home or context.home / ".claude"
        self._oauth = oauth or ClaudeOAuthFetcher()
        self._web = web or ClaudeWebFetcher()
        self._cli = cli or ClaudeCLIFetcher(context)
        self._session_lookup = session_lookup

    @property
    def name(self) -> "str":
        return "claude"

    def source_label(self, settings: "Settings") -> "str":
        selected = settings.claude.source if settings.debug_mode else "auto"
        return SOURCE_LABELS.get(selected, SOURCE_LABELS["auto"])

    def settings_contributions(self) -> "Sequence[SettingDescriptor]":
        return (
            SettingDescriptor(
                key="claude.source",
                title="Usage source",
                kind="choice",
                default="auto",
                choices=CLAUDE_SOURCES,
                advanced=True,
            ),
            SettingDescriptor(
                key="claude.web_extras",
                title="Add web spend data to CLI usage",
                kind="toggle",
                default=False,
                advanced=True,
            ),
            SettingDescriptor(
                key="keep_cli_sessions_alive",
                title="Keep the Claude CLI running between fetches",
                kind="toggle",
                default=False,
            ),
        )

    async def close(self) -> "None":
        await self._oauth.close()
        await self._web.close()

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        session: "BrowserSessionInfo | None" = None
        if _needs_session_lookup(settings):
            # cookie stores are read with blocking I/O
            session = await asyncio.to_thread(self._session_lookup)

        strategy = resolve_claude_strategy(settings, session is not None)
        logger.info(
            "claude_strategy",
            source=strategy.source,
            web_extras=strategy.use_web_extras,
            session_source=session.source_label if session else None,
        )

        if strategy.source == "oauth":
            credentials = load_credentials(self._claude_home, self._context.env)
            if credentials is None:
                raise NoCredentialsError(
                    "No Claude OAuth credentials found. Run `claude` and log in."
                )
            return await self._oauth.fetch(credentials)

        if strategy.source == "web":
            assert session is not None
            return await self._web.fetch(session)

        snapshot = await self._cli.fetch(keep_alive=settings.keep_cli_sessions_alive)
        if strategy.use_web_extras and session is not None:
            snapshot = await self._with_web_extras(snapshot, session)
        return snapshot

    async def _with_web_extras(
        self,
        snapshot: "UsageSnapshot",
        session: "BrowserSessionInfo",
    ) -> "UsageSnapshot":
        cost, organization = await self._web.extras(session, snapshot.login_method)
        if cost is None:
            return snapshot
        cli_org = snapshot.account_organization
        if cli_org and organization and cli_org.strip().lower() != organization.strip().lower():
            # browser and CLI are logged into different accounts
            logger.warning(
                "claude_web_extras_account_mismatch",
                cli_organization=cli_org,
                web_organization=organization,
            )
            return snapshot
        return replace(snapshot, cost=cost)
