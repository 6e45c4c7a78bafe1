import enum
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Mapping, Sequence
from urllib.parse import urlencode

import httpx
import structlog

from usageprobe.config import Settings
from usageprobe.context import ProbeContext
from usageprobe.decoding import as_int, as_mapping, as_str, from_epoch
from usageprobe.errors import (
    AuthenticationError,
    MalformedResponseError,
    NoCredentialsError,
    ServerError,
    UsageError,
)
from usageprobe.models import RateWindow, UsageSnapshot, utcnow
from usageprobe.overrides import resolve_token, with_scheme
from usageprobe.provider.base import SettingDescriptor
from usageprobe.provider.http import get_json

logger = structlog.get_logger()

MINIMAX_REMAINS_PATH = "/v1/api/openplatform/coding_plan/remains"
MINIMAX_CODING_PLAN_PATH = "/user-center/payment/coding-plan"
MINIMAX_TOKEN_ENV = "MINIMAX_API_KEY"
MINIMAX_COOKIE_ENV = "MINIMAX_COOKIE"
MINIMAX_REGION_ENV = "MINIMAX_API_REGION"
MINIMAX_GROUP_ENV = "MINIMAX_GROUP_ID"
MINIMAX_HOST_ENV = "MINIMAX_HOST"
MINIMAX_REMAINS_URL_ENV = "MINIMAX_REMAINS_URL"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
)
# base_resp status for an expired console session
STATUS_LOGIN_REQUIRED = 1004


class MiniMaxRegion(enum.Enum):
    GLOBAL = "global"
    CHINA = "cn"

    @property
    def platform_base(self) -> "str":
        if self is MiniMaxRegion.CHINA:
            return "https://platform.minimaxi.com"
        return "https://platform.minimax.io"

    @property
    def api_base(self) -> "str":
        if self is MiniMaxRegion.CHINA:
            return "https://api.minimaxi.com"
        return "https://api.minimax.io"


def parse_region(value: "str | None") -> "MiniMaxRegion":
    try:
        return MiniMaxRegion((value or "").strip().lower() or "global")
    except ValueError:
        logger.warning("minimax_unknown_region", region=value)
        return MiniMaxRegion.GLOBAL


def _pick(body: "Mapping[str, Any]", *keys: "str") -> "Any":
    # the console page serves camelCase, the API snake_case
    for key in keys:
        if key in body:
            return body[key]
    return None


def _epoch(value: "Any") -> "datetime | None":
    number = as_int(value)
    if number is None:
        return None
    if number > 1_000_000_000_000:
        return from_epoch(number, milliseconds=True)
    if number > 1_000_000_000:
        return from_epoch(number)
    return None


def _plan_name(data: "Mapping[str, Any]") -> "str | None":
    card = as_mapping(_pick(data, "current_combo_card", "currentComboCard")) or {}
    candidates = (
        _pick(data, "current_subscribe_title", "currentSubscribeTitle"),
        _pick(data, "plan_name", "planName"),
        _pick(data, "combo_title", "comboTitle"),
        _pick(data, "current_plan_title", "currentPlanTitle"),
        card.get("title"),
    )
    for candidate in candidates:
        name = as_str(candidate)
        if name:
            return name
    return None


def _check_base_resp(body: "Mapping[str, Any]", data: "Mapping[str, Any]") -> "None":
    base = as_mapping(_pick(data, "base_resp", "baseResp")) or as_mapping(
        _pick(body, "base_resp", "baseResp")
    )
    if base is None:
        return
    status = as_int(base.get("status_code"))
    if not status:
        return
    message = as_str(base.get("status_msg")) or f"status_code {status}"
    lowered = message.lower()
    if status == STATUS_LOGIN_REQUIRED or any(
        word in lowered for word in ("cookie", "log in", "login")
    ):
        raise AuthenticationError(f"MiniMax session is invalid or expired: {message}")
    raise ServerError(status, message, message=f"MiniMax API error ({status}): {message}")


def map_minimax_remains(
    payload: "Any",
    source: "str" = "web",
    now: "datetime | None" = None,
) -> "UsageSnapshot":
    """
    maps the coding_plan/remains body to a snapshot. Only the first
    model_remains entry is read; its usage count is what is left in
    the current interval, not what was spent.
    """
    now = now or utcnow()
    body = as_mapping(payload)
    if body is None:
        raise MalformedResponseError("MiniMax response is not an object.")
    data = as_mapping(body.get("data")) or body
    _check_base_resp(body, data)

    remains = _pick(data, "model_remains", "modelRemains")
    first = as_mapping(remains[0]) if isinstance(remains, list) and remains else None
    if first is None:
        raise MalformedResponseError("MiniMax response has no coding plan data.")

    total = as_int(_pick(first, "current_interval_total_count", "currentIntervalTotalCount"))
    remaining = as_int(_pick(first, "current_interval_usage_count", "currentIntervalUsageCount"))
    plan = _plan_name(data)
    if not total or total <= 0 or remaining is None:
        if plan is None:
            raise MalformedResponseError("MiniMax response has no coding plan data.")
        return UsageSnapshot(provider="minimax", source=source, updated_at=now, login_method=plan)

    used = max(0, total - remaining)
    start = _epoch(_pick(first, "start_time", "startTime"))
    end = _epoch(_pick(first, "end_time", "endTime"))
    window_minutes = None
    if start and end and end > start:
        window_minutes = int((end - start).total_seconds() // 60) or None

    resets_at = end if end and end > now else None
    remains_time = as_int(_pick(first, "remains_time", "remainsTime"))
    if resets_at is None and remains_time and remains_time > 0:
        # larger values are milliseconds
        seconds = remains_time / 1000 if remains_time > 1_000_000 else remains_time
        resets_at = now + timedelta(seconds=seconds)

    return UsageSnapshot(
        provider="minimax",
        source=source,
        primary=RateWindow(
            used_percent=used / total * 100.0,
            window_minutes=window_minutes,
            resets_at=resets_at,
            reset_description=f"{used}/{total} prompts",
        ),
        updated_at=now,
        login_method=plan,
    )


def resolve_remains_url(
    env: "Mapping[str, str]",
    region: "MiniMaxRegion",
    api: "bool",
) -> "str":
    """
    the API host serves token requests, the platform host serves
    cookie requests. MINIMAX_REMAINS_URL beats MINIMAX_HOST, which
    beats the region default.
    """
    url = env.get(MINIMAX_REMAINS_URL_ENV, "").strip()
    if url:
        return with_scheme(url)
    host = env.get(MINIMAX_HOST_ENV, "").strip()
    if host:
        return with_scheme(host).rstrip("/") + MINIMAX_REMAINS_PATH
    base = region.api_base if api else region.platform_base
    return base + MINIMAX_REMAINS_PATH


class MiniMaxProvider:
    """
    MiniMaxProvider reads the coding-plan allowance, either with an
    API token or with a console cookie header copied from a browser.
    A token rejected by the global host is retried once against the
    China mainland host.
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
        return "minimax"

    @property
    def region(self) -> "MiniMaxRegion":
        return parse_region(self._context.env.get(MINIMAX_REGION_ENV))

    def source_label(self, settings: "Settings") -> "str":
        if resolve_token(MINIMAX_TOKEN_ENV, self._profile_paths, env=self._context.env):
            return "MiniMax API"
        return "MiniMax web"

    def settings_contributions(self) -> "Sequence[SettingDescriptor]":
        return (
            SettingDescriptor(
                key=MINIMAX_TOKEN_ENV,
                title="MiniMax API token",
                kind="secret",
                default=None,
            ),
            SettingDescriptor(
                key=MINIMAX_COOKIE_ENV,
                title="MiniMax cookie header",
                kind="secret",
                default=None,
            ),
            SettingDescriptor(
                key=MINIMAX_REGION_ENV,
                title="MiniMax region",
                kind="choice",
                default=MiniMaxRegion.GLOBAL.value,
                choices=tuple(region.value for region in MiniMaxRegion),
            ),
        )

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        token = resolve_token(MINIMAX_TOKEN_ENV, self._profile_paths, env=self._context.env)
        cookie = self._context.env.get(MINIMAX_COOKIE_ENV, "").strip()
        if token is not None:
            try:
                return await self._fetch_with_token(token)
            except AuthenticationError:
                if not cookie:
                    raise
                logger.info("minimax_token_rejected_trying_cookie")
        if cookie:
            return await self._fetch_with_cookie(cookie)
        raise NoCredentialsError(
            f"MiniMax credentials not found. Set {MINIMAX_TOKEN_ENV} or {MINIMAX_COOKIE_ENV}."
        )

    async def _token_request(self, token: "str", region: "MiniMaxRegion") -> "UsageSnapshot":
        payload = await get_json(
            self._client,
            resolve_remains_url(self._context.env, region, api=True),
            "MiniMax",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "MM-API-Source": "usageprobe",
            },
        )
        return map_minimax_remains(payload, source="api")

    async def _fetch_with_token(self, token: "str") -> "UsageSnapshot":
        region = self.region
        env = self._context.env
        overridden = any(
            env.get(key, "").strip() for key in (MINIMAX_REMAINS_URL_ENV, MINIMAX_HOST_ENV)
        )
        if region is not MiniMaxRegion.GLOBAL or overridden:
            return await self._token_request(token, region)
        try:
            return await self._token_request(token, region)
        except AuthenticationError as rejected:
            logger.debug("minimax_global_rejected_retrying_china")
            try:
                return await self._token_request(token, MiniMaxRegion.CHINA)
            except UsageError as e:
                logger.debug("minimax_china_retry_failed", error=str(e))
                raise rejected from e

    async def _fetch_with_cookie(self, cookie: "str") -> "UsageSnapshot":
        region = self.region
        url = resolve_remains_url(self._context.env, region, api=False)
        group_id = self._context.env.get(MINIMAX_GROUP_ENV, "").strip()
        if group_id:
            url = f"{url}{'&' if '?' in url else '?'}{urlencode({'GroupId': group_id})}"
        payload = await get_json(
            self._client,
            url,
            "MiniMax",
            headers={
                "Cookie": cookie,
                "Accept": "application/json, text/plain, */*",
                "X-Requested-With": "XMLHttpRequest",
                "User-Agent": BROWSER_USER_AGENT,
                "Origin": region.platform_base,
                "Referer": region.platform_base + MINIMAX_CODING_PLAN_PATH,
            },
            auth_hint=f"Copy a fresh cookie header into {MINIMAX_COOKIE_ENV}.",
        )
        return map_minimax_remains(payload)
