from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import structlog

from usageprobe.cookies.base import CookieImportError, CookieSource
from usageprobe.cookies.chromium import (
    CookieLoader,
    browser_cookie3_loader,
    chromium_cookie_sources,
    discover_profiles,
)
from usageprobe.cookies.local_storage import find_local_storage_tokens
from usageprobe.cookies.safari import SafariCookieSource
from usageprobe.errors import NoCredentialsError
from usageprobe.logging import mask_secret
from usageprobe.models import BrowserSessionInfo, CookieRecord

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class SessionCookieSpec:
    """
    SessionCookieSpec names the cookie that carries a provider's
    session secret and the shape the secret must have.
    """

    provider: "str"
    cookie_name: "str"
    prefix: "str"
    domains: "tuple[str, ...]"


CLAUDE_SESSION = SessionCookieSpec(
    provider="Claude",
    cookie_name="sessionKey",
    prefix="sk-ant-",
    domains=("claude.ai",),
)

WORKOS_REFRESH_MARKER = "workos:refresh-token"
WORKOS_ACCESS_MARKER = "workos:access-token"


def find_session_key(
    cookies: "Iterable[CookieRecord]",
    cookie_spec: "SessionCookieSpec" = CLAUDE_SESSION,
) -> "str | None":
    """
    returns the trimmed value of the session cookie when it carries
    the required prefix. Anything else is "no key here", not an error.
    """
    for cookie in cookies:
        if cookie.name != cookie_spec.cookie_name:
            continue
        value = cookie.value.strip()
        if value.startswith(cookie_spec.prefix):
            return value
    return None


def default_cookie_sources(
    home: "Path | None" = None,
    loader: "CookieLoader" = browser_cookie3_loader,
) -> "list[CookieSource]":
    """
    Safari first, it needs no keychain prompt, then every Chromium
    profile.
    """
    sources: "list[CookieSource]" = [SafariCookieSource(home=home)]
    sources.extend(chromium_cookie_sources(home, loader))
    return sources


def extract_browser_session(
    cookie_spec: "SessionCookieSpec" = CLAUDE_SESSION,
    sources: "Sequence[CookieSource] | None" = None,
) -> "BrowserSessionInfo":
    """
    walks the cookie sources in order and returns the first valid
    session. Browser failures are logged and skipped; only finding
    nothing anywhere is an error.
    """
    if sources is None:
        sources = default_cookie_sources()

    for source in sources:
        try:
            cookies = source.load(cookie_spec.domains)
        except CookieImportError as e:
            logger.debug("cookie_source_skipped", source=source.label, reason=str(e))
            continue

        key = find_session_key(cookies, cookie_spec)
        if key is None:
            logger.debug(
                "session_cookie_missing",
                source=source.label,
                cookie_count=len(cookies),
            )
            continue

        logger.debug(
            "session_cookie_found",
            source=source.label,
            session_key=mask_secret(key),
        )
        return BrowserSessionInfo(
            session_key=key,
            cookie_count=len(cookies),
            source_label=source.label,
        )

    raise NoCredentialsError(
        f"No {cookie_spec.provider} session cookie found. Log in to "
        f"{cookie_spec.domains[0]} in Safari or a Chromium-based browser."
    )


def has_browser_session(
    cookie_spec: "SessionCookieSpec" = CLAUDE_SESSION,
    sources: "Sequence[CookieSource] | None" = None,
) -> "bool":
    try:
        extract_browser_session(cookie_spec, sources)
    except NoCredentialsError:
        return False
    return True


@dataclass(frozen=True, slots=True)
class WorkOSTokens:
    refresh_token: "str"
    access_token: "str | None"
    source_label: "str"


def find_workos_tokens(home: "Path | None" = None) -> "list[WorkOSTokens]":
    """
    recovers WorkOS refresh/access tokens that web apps keep in
    local storage rather than cookies, one entry per profile.
    """
    profiles = discover_profiles(home)
    access = {
        token.source_label: token.token
        for token in find_local_storage_tokens(profiles, WORKOS_ACCESS_MARKER)
    }
    return [
        WorkOSTokens(
            refresh_token=token.token,
            access_token=access.get(token.source_label),
            source_label=token.source_label,
        )
        for token in find_local_storage_tokens(profiles, WORKOS_REFRESH_MARKER)
    ]
