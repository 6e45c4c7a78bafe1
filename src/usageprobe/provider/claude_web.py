from dataclasses import replace
from typing import Any

import httpx
import structlog

from usageprobe.decoding import as_mapping, as_str
from usageprobe.errors import MalformedResponseError, NoCredentialsError, UsageError
from usageprobe.models import BrowserSessionInfo, ProviderCostSnapshot, UsageSnapshot
from usageprobe.provider.claude_usage import extra_usage_cost, map_windows
from usageprobe.provider.http import get_json

logger = structlog.get_logger()

CLAUDE_WEB_BASE_URL = "https://claude.ai/api"
WEB_AUTH_HINT = "Log in to claude.ai again in your browser."


def map_web_usage(
    payload: "Any",
    organization: "str | None" = None,
) -> "UsageSnapshot":
    if not isinstance(payload, dict):
        raise MalformedResponseError("Claude web usage response is not an object.")
    primary, secondary, tertiary = map_windows(payload)
    if primary is None:
        raise MalformedResponseError(
            "Claude web usage response has no five_hour utilization."
        )
    return UsageSnapshot(
        provider="claude",
        source="web",
        primary=primary,
        secondary=secondary,
        tertiary=tertiary,
        account_organization=organization,
    )


def map_overage_spend_limit(
    payload: "Any",
    login_method: "str | None" = None,
) -> "ProviderCostSnapshot | None":
    """
    maps an overage_spend_limit payload to a monthly cost snapshot.
    Disabled or incomplete limits give None.
    """
    body = as_mapping(payload)
    if body is None or body.get("is_enabled") is not True:
        return None
    currency = as_str(body.get("currency"))
    if currency is None:
        return None
    return extra_usage_cost(
        body.get("used_credits"),
        body.get("monthly_credit_limit"),
        currency,
        login_method,
    )


class ClaudeWebFetcher:
    """
    ClaudeWebFetcher calls the claude.ai web API with a session key
    taken from the user's browser cookies.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient | None" = None,
        base_url: "str" = CLAUDE_WEB_BASE_URL,
    ) -> "None":
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._base_url = base_url.rstrip("/")

    async def close(self) -> "None":
        await self._client.aclose()

    def _headers(self, session: "BrowserSessionInfo") -> "dict[str, str]":
        return {
            "Cookie": f"sessionKey={session.session_key}",
            "Accept": "application/json",
        }

    async def organization(self, session: "BrowserSessionInfo") -> "tuple[str, str | None]":
        """
        returns the (uuid, name) of the first organization.
        """
        payload = await get_json(
            self._client,
            f"{self._base_url}/organizations",
            "Claude web",
            headers=self._headers(session),
            auth_hint=WEB_AUTH_HINT,
        )
        if not isinstance(payload, list) or not payload:
            raise NoCredentialsError("Claude web session has no organization.")
        first = as_mapping(payload[0])
        uuid = as_str(first.get("uuid")) if first else None
        if uuid is None:
            raise MalformedResponseError("Claude organization has no uuid.")
        return uuid, as_str(first.get("name"))

    async def spend_limit(
        self,
        session: "BrowserSessionInfo",
        org_id: "str",
        login_method: "str | None" = None,
    ) -> "ProviderCostSnapshot | None":
        """
        best-effort: any failure is logged and gives None.
        """
        try:
            payload = await get_json(
                self._client,
                f"{self._base_url}/organizations/{org_id}/overage_spend_limit",
                "Claude web",
                headers=self._headers(session),
            )
        except UsageError as e:
            logger.debug("claude_spend_limit_unavailable", error=str(e))
            return None
        return map_overage_spend_limit(payload, login_method)

    async def fetch(self, session: "BrowserSessionInfo") -> "UsageSnapshot":
        org_id, org_name = await self.organization(session)
        payload = await get_json(
            self._client,
            f"{self._base_url}/organizations/{org_id}/usage",
            "Claude web",
            headers=self._headers(session),
            auth_hint=WEB_AUTH_HINT,
        )
        snapshot = map_web_usage(payload, organization=org_name)
        cost = await self.spend_limit(session, org_id)
        logger.debug(
            "claude_web_usage",
            source=session.source_label,
            has_cost=cost is not None,
        )
        if cost is None:
            return snapshot
        return replace(snapshot, cost=cost)

    async def extras(
        self,
        session: "BrowserSessionInfo",
        login_method: "str | None" = None,
    ) -> "tuple[ProviderCostSnapshot | None, str | None]":
        """
        web-derived extras for augmenting a CLI snapshot, with the
        organization name they belong to. Failures are logged and give
        (None, None).
        """
        try:
            org_id, org_name = await self.organization(session)
        except UsageError as e:
            logger.debug("claude_web_extras_unavailable", error=str(e))
            return None, None
        return await self.spend_limit(session, org_id, login_method), org_name
