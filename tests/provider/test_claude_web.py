import httpx
import pytest
import respx

from usageprobe.errors import AuthenticationError, NoCredentialsError
from usageprobe.models import BrowserSessionInfo
from usageprobe.provider.claude_web import (
    CLAUDE_WEB_BASE_URL,
    ClaudeWebFetcher,
    map_overage_spend_limit,
    map_web_usage,
)

SESSION = BrowserSessionInfo(session_key="sk-ant-sid01-abc", cookie_count=12, source_label="Safari")
ORG = "9f0c4c2e-org"
ORGS_URL = f"{CLAUDE_WEB_BASE_URL}/organizations"
USAGE_URL = f"{ORGS_URL}/{ORG}/usage"
SPEND_URL = f"{ORGS_URL}/{ORG}/overage_spend_limit"

USAGE = {
    "five_hour": {"utilization": 12, "resets_at": "2026-10-19T18:00:00+00:00"},
    "seven_day": {"utilization": 55, "resets_at": "2026-10-24T00:00:00+00:00"},
}
SPEND = {
    "is_enabled": True,
    "used_credits": 420,
    "monthly_credit_limit": 2000,
    "currency": "eur",
}


class TestMapping:
    def test_web_usage(self) -> "None":
        snapshot = map_web_usage(USAGE, organization="Acme")
        assert snapshot.source == "web"
        assert snapshot.primary.used_percent == 12
        assert snapshot.secondary.used_percent == 55
        assert snapshot.tertiary is None
        assert snapshot.account_organization == "Acme"

    def test_spend_limit(self) -> "None":
        cost = map_overage_spend_limit(SPEND)
        assert (cost.used, cost.limit, cost.currency_code) == (4.2, 20.0, "EUR")

    def test_spend_limit_needs_currency_and_enabled(self) -> "None":
        assert map_overage_spend_limit(dict(SPEND, currency=None)) is None
        assert map_overage_spend_limit(dict(SPEND, is_enabled=False)) is None
        assert map_overage_spend_limit("nope") is None


class TestClaudeWebFetcher:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_with_spend(self) -> "None":
        orgs = respx.get(ORGS_URL).mock(
            return_value=httpx.Response(200, json=[{"uuid": ORG, "name": "Acme"}])
        )
        respx.get(USAGE_URL).mock(return_value=httpx.Response(200, json=USAGE))
        respx.get(SPEND_URL).mock(return_value=httpx.Response(200, json=SPEND))

        fetcher = ClaudeWebFetcher()
        snapshot = await fetcher.fetch(SESSION)
        await fetcher.close()

        assert orgs.calls.last.request.headers["Cookie"] == "sessionKey=sk-ant-sid01-abc"
        assert snapshot.account_organization == "Acme"
        assert snapshot.cost.used == 4.2

    @pytest.mark.asyncio
    @respx.mock
    async def test_spend_failure_keeps_usage(self) -> "None":
        respx.get(ORGS_URL).mock(return_value=httpx.Response(200, json=[{"uuid": ORG}]))
        respx.get(USAGE_URL).mock(return_value=httpx.Response(200, json=USAGE))
        respx.get(SPEND_URL).mock(return_value=httpx.Response(500))

        fetcher = ClaudeWebFetcher()
        snapshot = await fetcher.fetch(SESSION)
        await fetcher.close()
        assert snapshot.cost is None
        assert snapshot.primary.used_percent == 12

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_organization(self) -> "None":
        respx.get(ORGS_URL).mock(return_value=httpx.Response(200, json=[]))
        fetcher = ClaudeWebFetcher()
        with pytest.raises(NoCredentialsError):
            await fetcher.fetch(SESSION)
        await fetcher.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_stale_session(self) -> "None":
        respx.get(ORGS_URL).mock(return_value=httpx.Response(403, text="forbidden"))
        fetcher = ClaudeWebFetcher()
        with pytest.raises(AuthenticationError):
            await fetcher.fetch(SESSION)
        # extras never raise
        assert await fetcher.extras(SESSION) == (None, None)
        await fetcher.close()
