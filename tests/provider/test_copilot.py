from pathlib import Path

import httpx
import pytest
import respx

from usageprobe.config import Settings
from usageprobe.context import ProbeContext
from usageprobe.errors import MalformedResponseError, NoCredentialsError
from usageprobe.provider.copilot import (
    COPILOT_USER_URL,
    CopilotProvider,
    map_copilot_usage,
    parse_quota,
    select_quotas,
)

PREMIUM = {
    "entitlement": 300,
    "remaining": 240,
    "percent_remaining": 80.0,
    "quota_id": "premium_interactions",
}
CHAT = {"entitlement": "500", "remaining": "125", "quota_id": "chat"}
PLACEHOLDER = {"entitlement": 0, "remaining": 0, "percent_remaining": 0, "quota_id": ""}


class TestParseQuota:
    def test_string_numbers_derive_percent(self) -> "None":
        quota = parse_quota(CHAT)
        assert quota.percent_remaining == 25.0
        assert quota.rate_window().used_percent == 75.0

    def test_placeholder(self) -> "None":
        assert parse_quota(PLACEHOLDER) is None

    def test_no_percent_available(self) -> "None":
        quota = parse_quota({"entitlement": 0, "remaining": 3, "quota_id": "x"})
        assert quota.percent_remaining is None
        assert quota.rate_window() is None


class TestSelectQuotas:
    def test_named_slots(self) -> "None":
        premium, chat = select_quotas({"chat": CHAT, "premium_interactions": PREMIUM})
        assert premium.percent_remaining == 80.0
        assert chat.percent_remaining == 25.0

    def test_renamed_keys(self) -> "None":
        premium, chat = select_quotas({"chat_messages": CHAT, "premium_requests": PREMIUM})
        assert premium.quota_id == "premium_interactions"
        assert chat.quota_id == "chat"

    def test_placeholder_premium_skipped(self) -> "None":
        premium, chat = select_quotas({"premium_interactions": PLACEHOLDER, "chat": CHAT})
        assert premium is None
        assert chat.percent_remaining == 25.0

    def test_unknown_keys_fall_back_to_first_usable(self) -> "None":
        premium, chat = select_quotas({"weird": PLACEHOLDER, "other": PREMIUM})
        assert premium is None
        assert chat.percent_remaining == 80.0


class TestMapCopilotUsage:
    def test_both_windows(self) -> "None":
        snapshot = map_copilot_usage(
            {
                "copilot_plan": "individual",
                "quota_snapshots": {"premium_interactions": PREMIUM, "chat": CHAT},
            }
        )
        assert snapshot.primary.used_percent == 20.0
        assert snapshot.secondary.used_percent == 75.0
        assert snapshot.login_method == "Individual"

    def test_chat_only_stays_secondary(self) -> "None":
        snapshot = map_copilot_usage({"quota_snapshots": {"chat": CHAT}})
        assert snapshot.primary is None
        assert snapshot.secondary.used_percent == 75.0
        assert snapshot.login_method == "Unknown"

    def test_no_usable_quota(self) -> "None":
        with pytest.raises(MalformedResponseError):
            map_copilot_usage({"quota_snapshots": {"chat": PLACEHOLDER}})


class TestCopilotProvider:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch(self, tmp_path: "Path") -> "None":
        route = respx.get(COPILOT_USER_URL).mock(
            return_value=httpx.Response(
                200,
                json={"copilot_plan": "business", "quota_snapshots": {"chat": CHAT}},
            )
        )
        provider = CopilotProvider(ProbeContext(env={"COPILOT_API_TOKEN": "gho_x"}, home=tmp_path))
        snapshot = await provider.fetch(Settings())
        await provider.close()

        request = route.calls.last.request
        assert request.headers["Authorization"] == "token gho_x"
        assert request.headers["Editor-Version"].startswith("vscode/")
        assert snapshot.login_method == "Business"

    @pytest.mark.asyncio
    async def test_missing_token(self, tmp_path: "Path") -> "None":
        provider = CopilotProvider(ProbeContext(env={}, home=tmp_path))
        with pytest.raises(NoCredentialsError):
            await provider.fetch(Settings())
        await provider.close()
