import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import httpx
import structlog

from usageprobe.decoding import as_mapping, as_str, from_epoch
from usageprobe.errors import AuthenticationError, MalformedResponseError, NoCredentialsError
from usageprobe.models import UsageSnapshot
from usageprobe.provider.claude_usage import extra_usage_cost, login_method_from_tier, map_windows
from usageprobe.provider.http import get_json

logger = structlog.get_logger()

CLAUDE_OAUTH_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
OAUTH_BETA = "oauth-2025-04-20"
OAUTH_TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"
CREDENTIALS_FILE = ".credentials.json"


@dataclass(frozen=True, slots=True)
class ClaudeOAuthCredentials:
    access_token: "str"
    refresh_token: "str | None" = None
    expires_at: "datetime | None" = None
    scopes: "tuple[str, ...]" = ()
    rate_limit_tier: "str | None" = None
    # tokens handed in through the environment carry no expiry
    from_env: "bool" = False

    @property
    def is_expired(self) -> "bool":
        if self.from_env:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at <= datetime.now(timezone.utc)


def parse_credentials(data: "str | bytes") -> "ClaudeOAuthCredentials":
    """
    parses the claudeAiOauth block of the Claude CLI credentials file.
    """
    try:
        payload = json.loads(data)
    except ValueError as e:
        raise NoCredentialsError("Claude OAuth credentials file is not valid JSON.") from e

    block = as_mapping(payload.get("claudeAiOauth")) if isinstance(payload, dict) else None
    if block is None:
        raise NoCredentialsError("Claude OAuth credentials are missing the claudeAiOauth block.")
    access_token = as_str(block.get("accessToken"))
    if access_token is None:
        raise NoCredentialsError("Claude OAuth credentials have no access token.")

    scopes = block.get("scopes")
    return ClaudeOAuthCredentials(
        access_token=access_token,
        refresh_token=as_str(block.get("refreshToken")),
        expires_at=from_epoch(block.get("expiresAt"), milliseconds=True),
        scopes=tuple(s for s in scopes if isinstance(s, str)) if isinstance(scopes, list) else (),
        rate_limit_tier=as_str(block.get("rateLimitTier")),
    )


def load_credentials(
    claude_home: "Path",
    env: "Mapping[str, str]",
) -> "ClaudeOAuthCredentials | None":
    """
    returns the OAuth credentials from the environment or the Claude
    CLI credentials file, or None when neither exists.
    """
    token = env.get(OAUTH_TOKEN_ENV, "").strip()
    if token:
        return ClaudeOAuthCredentials(access_token=token, from_env=True)

    path = claude_home / CREDENTIALS_FILE
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("claude_credentials_unreadable", path=str(path), error=str(e))
        return None
    return parse_credentials(data)


def map_oauth_usage(
    payload: "Any",
    rate_limit_tier: "str | None" = None,
) -> "UsageSnapshot":
    """
    maps an OAuth usage payload to a snapshot: five_hour is primary,
    seven_day secondary and the model-scoped week tertiary.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError("Claude OAuth usage response is not an object.")
    primary, secondary, tertiary = map_windows(payload)
    if primary is None:
        raise MalformedResponseError("Claude OAuth usage response has no five_hour window.")

    login_method = login_method_from_tier(rate_limit_tier)
    cost = None
    extra = as_mapping(payload.get("extra_usage"))
    if extra is not None and extra.get("is_enabled") is True:
        cost = extra_usage_cost(
            extra.get("used_credits"),
            extra.get("monthly_limit"),
            extra.get("currency"),
            login_method,
        )

    return UsageSnapshot(
        provider="claude",
        source="oauth",
        primary=primary,
        secondary=secondary,
        tertiary=tertiary,
        cost=cost,
        login_method=login_method,
    )


class ClaudeOAuthFetcher:
    """
    ClaudeOAuthFetcher reads usage from the Anthropic OAuth usage API
    with the Claude CLI's own OAuth token.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient | None" = None,
        url: "str" = CLAUDE_OAUTH_USAGE_URL,
    ) -> "None":
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._url = url

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, credentials: "ClaudeOAuthCredentials") -> "UsageSnapshot":
        if credentials.is_expired:
            raise AuthenticationError(
                "Claude OAuth token expired. Run `claude` to refresh the login."
            )
        payload = await get_json(
            self._client,
            self._url,
            "Claude OAuth",
            headers={
                "Authorization": f"Bearer {credentials.access_token}",
                "anthropic-beta": OAUTH_BETA,
                "Accept": "application/json",
            },
            auth_hint="Run `claude` to refresh the login.",
        )
        return map_oauth_usage(payload, credentials.rate_limit_tier)
