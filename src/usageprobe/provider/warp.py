import platform
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

import httpx
import structlog

from usageprobe.config import Settings
from usageprobe.context import ProbeContext
from usageprobe.decoding import as_int, as_mapping, as_str, parse_iso8601
from usageprobe.errors import MalformedResponseError, NoCredentialsError, ServerError
from usageprobe.models import RateWindow, UsageSnapshot
from usageprobe.overrides import resolve_token
from usageprobe.provider.base import SettingDescriptor
from usageprobe.provider.http import post_json

logger = structlog.get_logger()

WARP_GRAPHQL_URL = "https://app.warp.dev/graphql/v2?op=GetRequestLimitInfo"
WARP_TOKEN_ENVS = ("WARP_API_KEY", "WARP_TOKEN")
# the edge limiter answers 429 unless the agent looks like the desktop app
WARP_USER_AGENT = "Warp/1.0"

REQUEST_LIMIT_QUERY = """
query GetRequestLimitInfo($requestContext: RequestContext!) {
  user(requestContext: $requestContext) {
    __typename
    ... on UserOutput {
      user {
        requestLimitInfo {
          isUnlimited
          nextRefreshTime
          requestLimit
          requestsUsedSinceLastRefresh
        }
        bonusGrants {
          requestCreditsGranted
          requestCreditsRemaining
          expiration
        }
        workspaces {
          bonusGrantsInfo {
            grants {
              requestCreditsGranted
              requestCreditsRemaining
              expiration
            }
          }
        }
      }
    }
  }
}
"""


@dataclass(frozen=True, slots=True)
class BonusGrant:
    granted: "int"
    remaining: "int"
    expiration: "datetime | None"


def _bool(value: "Any") -> "bool":
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _grants(user: "Mapping[str, Any]") -> "list[BonusGrant]":
    """
    collects user-level and workspace-level bonus grants.
    """
    entries: "list[Any]" = []
    user_grants = user.get("bonusGrants")
    if isinstance(user_grants, list):
        entries.extend(user_grants)
    workspaces = user.get("workspaces")
    for workspace in workspaces if isinstance(workspaces, list) else ():
        info = as_mapping((as_mapping(workspace) or {}).get("bonusGrantsInfo")) or {}
        workspace_grants = info.get("grants")
        if isinstance(workspace_grants, list):
            entries.extend(workspace_grants)

    grants: "list[BonusGrant]" = []
    for entry in entries:
        body = as_mapping(entry)
        if body is None:
            continue
        grants.append(
            BonusGrant(
                granted=as_int(body.get("requestCreditsGranted")) or 0,
                remaining=as_int(body.get("requestCreditsRemaining")) or 0,
                expiration=parse_iso8601(body.get("expiration")),
            )
        )
    return grants


def bonus_window(grants: "Sequence[BonusGrant]") -> "RateWindow | None":
    """
    folds all grants into one window. The description names the
    credits expiring at the earliest expiry that still has any left.
    """
    total = sum(grant.granted for grant in grants)
    remaining = sum(grant.remaining for grant in grants)
    if total <= 0 and remaining <= 0:
        return None

    if total > 0:
        used_percent = (total - remaining) / total * 100.0
    else:
        used_percent = 0.0

    expiring = [g for g in grants if g.remaining > 0 and g.expiration is not None]
    description = None
    if expiring:
        earliest = min(g.expiration for g in expiring)
        credits = sum(g.remaining for g in expiring if g.expiration == earliest)
        description = f"{credits} credits expire on {earliest:%Y-%m-%d %H:%M} UTC"
    return RateWindow(used_percent=used_percent, reset_description=description)


def _error_messages(errors: "Any") -> "list[str]":
    messages = []
    for error in errors if isinstance(errors, list) else ():
        text = as_str(error) or as_str((as_mapping(error) or {}).get("message"))
        if text:
            messages.append(text)
    return messages


def map_warp_usage(payload: "Any") -> "UsageSnapshot":
    body = as_mapping(payload)
    if body is None:
        raise MalformedResponseError("Warp response is not an object.")
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        summary = " | ".join(_error_messages(errors)[:3]) or "GraphQL request failed."
        raise ServerError(200, summary, message=f"Warp API error: {summary}")

    outer = as_mapping((as_mapping(body.get("data")) or {}).get("user"))
    if outer is None:
        raise MalformedResponseError("Warp response is missing data.user.")
    user = as_mapping(outer.get("user"))
    limit_info = as_mapping(user.get("requestLimitInfo")) if user else None
    if user is None or limit_info is None:
        type_name = as_str(outer.get("__typename"))
        if type_name and type_name != "UserOutput":
            raise MalformedResponseError(f"Warp returned unexpected user type {type_name!r}.")
        raise MalformedResponseError("Warp response has no requestLimitInfo.")

    unlimited = _bool(limit_info.get("isUnlimited"))
    limit = as_int(limit_info.get("requestLimit")) or 0
    used = as_int(limit_info.get("requestsUsedSinceLastRefresh")) or 0
    if unlimited:
        primary = RateWindow(used_percent=0.0, reset_description="Unlimited")
    else:
        primary = RateWindow(
            used_percent=used / limit * 100.0 if limit > 0 else 0.0,
            resets_at=parse_iso8601(limit_info.get("nextRefreshTime")),
            reset_description=f"{used}/{limit} credits",
        )

    return UsageSnapshot(
        provider="warp",
        source="api",
        primary=primary,
        secondary=bonus_window(_grants(user)),
    )


def request_body() -> "dict[str, Any]":
    os_context = {
        "category": "macOS",
        "name": "macOS",
        "version": platform.mac_ver()[0] or "0.0.0",
    }
    return {
        "query": REQUEST_LIMIT_QUERY,
        "variables": {"requestContext": {"clientContext": {}, "osContext": os_context}},
        "operationName": "GetRequestLimitInfo",
    }


class WarpProvider:
    """
    WarpProvider reads the AI request allowance and bonus credits
    through Warp's GraphQL API with a personal API key.
    """

    def __init__(
        self,
        context: "ProbeContext",
        client: "httpx.AsyncClient | None" = None,
        profile_paths: "list[Path] | None" = None,
    ) -> "None":
        self._context = context
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._profile_paths = profile_paths or [context.home / ".profile"]

    @property
    def name(self) -> "str":
        return "warp"

    def source_label(self, settings: "Settings") -> "str":
        return "Warp API"

    def settings_contributions(self) -> "Sequence[SettingDescriptor]":
        return (
            SettingDescriptor(
                key=WARP_TOKEN_ENVS[0],
                title="Warp API key",
                kind="secret",
                default=None,
            ),
        )

    async def close(self) -> "None":
        await self._client.aclose()

    def _token(self) -> "str | None":
        for key in WARP_TOKEN_ENVS:
            token = resolve_token(key, self._profile_paths, env=self._context.env)
            if token:
                return token
        return None

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        token = self._token()
        if token is None:
            raise NoCredentialsError(
                f"Warp API key not found. Set {WARP_TOKEN_ENVS[0]} in ~/.profile."
            )
        body = request_body()
        os_context = body["variables"]["requestContext"]["osContext"]
        payload = await post_json(
            self._client,
            WARP_GRAPHQL_URL,
            "Warp",
            body,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": WARP_USER_AGENT,
                "x-warp-client-id": "warp-app",
                "x-warp-os-category": os_context["category"],
                "x-warp-os-name": os_context["name"],
                "x-warp-os-version": os_context["version"],
            },
        )
        snapshot = map_warp_usage(payload)
        logger.debug(
            "warp_usage_parsed",
            used_percent=snapshot.primary.used_percent,
            bonus=snapshot.secondary is not None,
        )
        return snapshot
