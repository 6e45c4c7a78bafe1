from dataclasses import dataclass
from typing import Any, Sequence

import httpx
import structlog

from usageprobe.config import Settings
from usageprobe.context import ProbeContext
from usageprobe.decoding import (
    FieldExtractor,
    FixedField,
    SubstringHeuristic,
    as_mapping,
    as_number,
    as_str,
)
from usageprobe.errors import MalformedResponseError, NoCredentialsError
from usageprobe.models import RateWindow, UsageSnapshot, clamp_percent
from usageprobe.provider.base import SettingDescriptor
from usageprobe.provider.http import get_json

logger = structlog.get_logger()

COPILOT_USER_URL = "https://api.github.com/copilot_internal/user"
COPILOT_TOKEN_ENV = "COPILOT_API_TOKEN"
EDITOR_HEADERS = {
    "Accept": "application/json",
    "Editor-Version": "vscode/1.96.2",
    "Editor-Plugin-Version": "copilot-chat/0.26.7",
    "User-Agent": "GitHubCopilotChat/0.26.7",
    "X-Github-Api-Version": "2025-04-01",
}


@dataclass(frozen=True, slots=True)
class QuotaSnapshot:
    entitlement: "float"
    remaining: "float"
    percent_remaining: "float | None"
    quota_id: "str"

    @property
    def is_placeholder(self) -> "bool":
        return (
            self.entitlement == 0
            and self.remaining == 0
            and not self.percent_remaining
            and not self.quota_id
        )

    def rate_window(self) -> "RateWindow | None":
        if self.percent_remaining is None:
            return None
        return RateWindow(used_percent=100.0 - self.percent_remaining)


def parse_quota(entry: "Any") -> "QuotaSnapshot | None":
    """
    reads one quota entry; numbers may arrive as strings. Without
    percent_remaining the percent is derived from remaining/entitlement.
    Placeholder entries (all zero, no id) give None.
    """
    body = as_mapping(entry)
    if body is None:
        return None
    entitlement = as_number(body.get("entitlement"))
    remaining = as_number(body.get("remaining"))
    percent = as_number(body.get("percent_remaining"))
    if percent is None and entitlement and entitlement > 0 and remaining is not None:
        percent = remaining / entitlement * 100.0
    quota = QuotaSnapshot(
        entitlement=entitlement or 0.0,
        remaining=remaining or 0.0,
        percent_remaining=clamp_percent(percent) if percent is not None else None,
        quota_id=as_str(body.get("quota_id")) or "",
    )
    return None if quota.is_placeholder else quota


def _usable(entry: "Any") -> "QuotaSnapshot | None":
    quota = parse_quota(entry)
    return quota if quota is not None and quota.percent_remaining is not None else None


PREMIUM_QUOTA = FieldExtractor(
    [
        FixedField("premium_interactions"),
        SubstringHeuristic(["premium", "completion", "code"], exclude=("chat",)),
    ],
    accept=_usable,
)
CHAT_QUOTA = FieldExtractor(
    [FixedField("chat"), SubstringHeuristic(["chat"])],
    accept=_usable,
)


def select_quotas(snapshots: "Any") -> "tuple[QuotaSnapshot | None, QuotaSnapshot | None]":
    """
    returns (premium, chat). When neither is recognisable the first
    usable entry is reported as chat.
    """
    body = as_mapping(snapshots) or {}
    chat_match = CHAT_QUOTA.extract(body)
    # a key already claimed as chat is not also premium
    rest = {k: v for k, v in body.items() if chat_match is None or k != chat_match.key}
    premium_match = PREMIUM_QUOTA.extract(rest)
    premium = premium_match.value if premium_match else None
    chat = chat_match.value if chat_match else None
    if premium is None and chat is None:
        for value in body.values():
            chat = _usable(value)
            if chat is not None:
                break
    return premium, chat


def map_copilot_usage(payload: "Any") -> "UsageSnapshot":
    body = as_mapping(payload)
    if body is None:
        raise MalformedResponseError("Copilot usage response is not an object.")
    premium, chat = select_quotas(body.get("quota_snapshots"))
    premium_window = premium.rate_window() if premium else None
    chat_window = chat.rate_window() if chat else None
    if premium_window is None and chat_window is None:
        raise MalformedResponseError("Copilot usage response has no usable quota.")

    plan = as_str(body.get("copilot_plan")) or "unknown"
    # chat stays in secondary on chat-only plans so slot labels keep their meaning
    return UsageSnapshot(
        provider="copilot",
        source="api",
        primary=premium_window,
        secondary=chat_window,
        login_method=plan.capitalize(),
    )


class CopilotProvider:
    """
    CopilotProvider reads the premium-interaction and chat quotas of a
    GitHub Copilot subscription.
    """

    def __init__(
        self,
        context: "ProbeContext",
        client: "httpx.AsyncClient | None" = None,
        url: "str" = COPILOT_USER_URL,
    ) -> "None":
        self._context = context
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._url = url

    @property
    def name(self) -> "str":
        return "copilot"

    def source_label(self, settings: "Settings") -> "str":
        return "GitHub API"

    def settings_contributions(self) -> "Sequence[SettingDescriptor]":
        return (
            SettingDescriptor(
                key=COPILOT_TOKEN_ENV,
                title="GitHub token",
                kind="secret",
                default=None,
            ),
        )

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        token = self._context.env.get(COPILOT_TOKEN_ENV, "").strip()
        if not token:
            raise NoCredentialsError(f"GitHub token not found. Set {COPILOT_TOKEN_ENV}.")
        payload = await get_json(
            self._client,
            self._url,
            "Copilot",
            headers={"Authorization": f"token {token}", **EDITOR_HEADERS},
            auth_hint="Check the GitHub token has Copilot access.",
        )
        snapshot = map_copilot_usage(payload)
        logger.debug(
            "copilot_usage",
            plan=snapshot.login_method,
            chat_only=snapshot.primary is None,
        )
        return snapshot
