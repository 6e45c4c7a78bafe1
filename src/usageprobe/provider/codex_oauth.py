import base64
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import httpx
import structlog

from usageprobe.decoding import (
    FieldExtractor,
    FixedField,
    SubstringHeuristic,
    as_int,
    as_mapping,
    as_number,
    as_str,
    from_epoch,
)
from usageprobe.errors import MalformedResponseError, NoCredentialsError
from usageprobe.models import RateWindow, UsageSnapshot
from usageprobe.overrides import resolve_setting
from usageprobe.provider.http import get_json

logger = structlog.get_logger()

DEFAULT_CHATGPT_BASE_URL = "https://chatgpt.com/backend-api/"
CHATGPT_USAGE_PATH = "/wham/usage"
CODEX_USAGE_PATH = "/api/codex/usage"
BASE_URL_ENV = "CODEX_CHATGPT_BASE_URL"
BASE_URL_CONFIG_KEY = "chatgpt_base_url"
AUTH_FILE = "auth.json"
CONFIG_FILE = "config.toml"
UNAUTHORIZED_HINT = "Codex OAuth token expired or invalid. Run `codex` to re-authenticate."

_WINDOW_KEYS = ("primary_window", "secondary_window", "tertiary_window")


@dataclass(frozen=True, slots=True)
class CodexCredentials:
    access_token: "str"
    account_id: "str | None" = None
    refresh_token: "str | None" = None
    id_token: "str | None" = None


@dataclass(frozen=True, slots=True)
class CodexCredits:
    has_credits: "bool"
    unlimited: "bool"
    balance: "float | None"


def codex_home(env: "Mapping[str, str]", home: "Path") -> "Path":
    value = env.get("CODEX_HOME", "").strip()
    return Path(value).expanduser() if value else home / ".codex"


def parse_auth_file(data: "str | bytes") -> "CodexCredentials":
    """
    parses the Codex CLI auth.json. ChatGPT logins carry a tokens
    block, API-key logins only OPENAI_API_KEY.
    """
    try:
        payload = json.loads(data)
    except ValueError as e:
        raise NoCredentialsError("Codex auth.json is not valid JSON.") from e
    if not isinstance(payload, dict):
        raise NoCredentialsError("Codex auth.json is not an object.")

    tokens = as_mapping(payload.get("tokens"))
    if tokens is not None:
        access_token = as_str(tokens.get("access_token"))
        if access_token is not None:
            return CodexCredentials(
                access_token=access_token,
                account_id=as_str(tokens.get("account_id")),
                refresh_token=as_str(tokens.get("refresh_token")),
                id_token=as_str(tokens.get("id_token")),
            )
    api_key = as_str(payload.get("OPENAI_API_KEY"))
    if api_key is not None:
        return CodexCredentials(access_token=api_key)
    raise NoCredentialsError("Codex auth.json has no access token. Run `codex` to log in.")


def load_codex_credentials(home: "Path") -> "CodexCredentials | None":
    path = home / AUTH_FILE
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("codex_auth_unreadable", path=str(path), error=str(e))
        return None
    return parse_auth_file(data)


def decode_jwt_payload(token: "str | None") -> "dict[str, Any]":
    """
    returns the unverified claims of a JWT, or {} when the token is
    not a decodable JWT.
    """
    if not token:
        return {}
    parts = token.split(".")
    if len(parts) < 2:
        return {}
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except ValueError:
        return {}
    return claims if isinstance(claims, dict) else {}


def identity_from_id_token(id_token: "str | None") -> "tuple[str | None, str | None]":
    """
    returns (email, plan) from the id-token claims. The plan may sit
    at the top level or under the OpenAI auth namespace.
    """
    claims = decode_jwt_payload(id_token)
    auth = as_mapping(claims.get("https://api.openai.com/auth")) or {}
    profile = as_mapping(claims.get("https://api.openai.com/profile")) or {}
    email = as_str(claims.get("email")) or as_str(profile.get("email"))
    plan = as_str(claims.get("chatgpt_plan_type")) or as_str(auth.get("chatgpt_plan_type"))
    return email, plan


def normalize_base_url(value: "str | None") -> "str":
    base = (value or "").strip() or DEFAULT_CHATGPT_BASE_URL
    base = base.rstrip("/")
    chatgpt_hosts = ("https://chatgpt.com", "https://chat.openai.com")
    if base.startswith(chatgpt_hosts) and "/backend-api" not in base:
        base += "/backend-api"
    return base


def resolve_usage_url(
    env: "Mapping[str, str]",
    home: "Path",
) -> "str":
    """
    builds the usage URL from CODEX_CHATGPT_BASE_URL, then the
    chatgpt_base_url key of $CODEX_HOME/config.toml, then the default.
    """
    base = normalize_base_url(
        resolve_setting(
            BASE_URL_ENV,
            config_path=home / CONFIG_FILE,
            config_key=BASE_URL_CONFIG_KEY,
            env=env,
        )
    )
    path = CHATGPT_USAGE_PATH if "/backend-api" in base else CODEX_USAGE_PATH
    return base + path


def window_from_payload(entry: "Any") -> "RateWindow | None":
    body = as_mapping(entry)
    if body is None:
        return None
    used = as_number(body.get("used_percent"))
    if used is None:
        return None
    seconds = as_int(body.get("limit_window_seconds"))
    return RateWindow(
        used_percent=used,
        window_minutes=seconds // 60 if seconds else None,
        resets_at=from_epoch(body.get("reset_at")),
    )


TERTIARY_WINDOW = FieldExtractor(
    [
        FixedField("tertiary_window"),
        SubstringHeuristic(["spark", "gpt 5 3"], exclude=_WINDOW_KEYS),
    ],
    accept=window_from_payload,
)


def parse_credits(payload: "Any") -> "CodexCredits | None":
    body = as_mapping(payload)
    if body is None:
        return None
    return CodexCredits(
        has_credits=body.get("has_credits") is True,
        unlimited=body.get("unlimited") is True,
        balance=as_number(body.get("balance")),
    )


def plan_type(value: "Any") -> "str | None":
    # unknown plan strings pass through untouched
    return as_str(value)


def map_codex_usage(
    payload: "Any",
    email: "str | None" = None,
    fallback_plan: "str | None" = None,
) -> "UsageSnapshot":
    if not isinstance(payload, dict):
        raise MalformedResponseError("Invalid response from Codex usage API.")
    rate_limit = as_mapping(payload.get("rate_limit")) or {}

    primary = window_from_payload(rate_limit.get("primary_window"))
    secondary = window_from_payload(rate_limit.get("secondary_window"))
    match = TERTIARY_WINDOW.extract(rate_limit)
    tertiary = match.value if match else None
    if match is not None and match.strategy != "fixed field":
        logger.debug("codex_tertiary_window_alias", key=match.key, strategy=match.strategy)

    credits = parse_credits(payload.get("credits"))
    if primary is None and secondary is None and credits is None:
        raise MalformedResponseError("Codex usage response has no rate limits or credits.")

    return UsageSnapshot(
        provider="codex",
        source="oauth",
        primary=primary,
        secondary=secondary,
        tertiary=tertiary,
        credits_remaining=credits.balance if credits else None,
        account_email=email,
        login_method=plan_type(payload.get("plan_type")) or fallback_plan,
    )


class CodexOAuthFetcher:
    """
    CodexOAuthFetcher reads Codex usage from the ChatGPT backend with
    the access token the Codex CLI stored in auth.json.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient | None" = None,
        user_agent: "str" = "usageprobe",
    ) -> "None":
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._user_agent = user_agent

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(
        self,
        credentials: "CodexCredentials",
        url: "str",
    ) -> "UsageSnapshot":
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "User-Agent": self._user_agent,
            "Accept": "application/json",
        }
        if credentials.account_id:
            headers["ChatGPT-Account-Id"] = credentials.account_id

        payload = await get_json(
            self._client,
            url,
            "Codex",
            headers=headers,
            auth_hint=UNAUTHORIZED_HINT,
        )
        email, plan = identity_from_id_token(credentials.id_token)
        return map_codex_usage(payload, email=email, fallback_plan=plan)
