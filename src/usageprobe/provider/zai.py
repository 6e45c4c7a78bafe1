import enum
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

import httpx
import structlog

from usageprobe.config import Settings
from usageprobe.context import ProbeContext
from usageprobe.decoding import as_int, as_mapping, as_number, as_str, from_epoch
from usageprobe.errors import MalformedResponseError, NoCredentialsError, ServerError
from usageprobe.models import RateWindow, UsageSnapshot
from usageprobe.overrides import resolve_token, with_scheme
from usageprobe.provider.base import SettingDescriptor
from usageprobe.provider.http import get_json

logger = structlog.get_logger()

ZAI_QUOTA_URL = "https://api.z.ai/api/monitor/usage/quota/limit"
ZAI_QUOTA_PATH = "/api/monitor/usage/quota/limit"
ZAI_TOKEN_ENV = "Z_AI_API_KEY"
ZAI_QUOTA_URL_ENV = "Z_AI_QUOTA_URL"
ZAI_HOST_ENV = "Z_AI_API_HOST"


class LimitType(enum.Enum):
    TIME = "TIME_LIMIT"
    TOKENS = "TOKENS_LIMIT"


class LimitUnit(enum.Enum):
    UNKNOWN = 0
    DAYS = 1
    HOURS = 3
    MINUTES = 5


_UNIT_MINUTES = {LimitUnit.MINUTES: 1, LimitUnit.HOURS: 60, LimitUnit.DAYS: 24 * 60}
_UNIT_LABELS = {LimitUnit.MINUTES: "minute", LimitUnit.HOURS: "hour", LimitUnit.DAYS: "day"}


@dataclass(frozen=True, slots=True)
class ZaiLimit:
    type: "LimitType"
    unit: "LimitUnit"
    number: "int"
    usage: "int"
    current_value: "int"
    remaining: "int"
    percentage: "float"
    next_reset: "datetime | None" = None

    @property
    def used_percent(self) -> "float":
        # usage is the window's capacity; prefer counts over the rounded percentage
        if self.usage > 0:
            used = max(self.usage - self.remaining, self.current_value)
            used = max(0, min(self.usage, used))
            return used / self.usage * 100.0
        return self.percentage

    @property
    def window_minutes(self) -> "int | None":
        if self.number <= 0 or self.unit not in _UNIT_MINUTES:
            return None
        return self.number * _UNIT_MINUTES[self.unit]

    @property
    def window_label(self) -> "str | None":
        if self.number <= 0 or self.unit not in _UNIT_LABELS:
            return None
        label = _UNIT_LABELS[self.unit]
        return f"{self.number} {label if self.number == 1 else label + 's'} window"

    def rate_window(self) -> "RateWindow":
        description = self.window_label
        if description is None and self.type is LimitType.TIME:
            description = "Monthly"
        return RateWindow(
            used_percent=self.used_percent,
            window_minutes=self.window_minutes if self.type is LimitType.TOKENS else None,
            resets_at=self.next_reset,
            reset_description=description,
        )


def parse_limit(entry: "Any") -> "ZaiLimit | None":
    body = as_mapping(entry)
    if body is None:
        return None
    try:
        limit_type = LimitType(body.get("type"))
    except ValueError:
        return None
    try:
        unit = LimitUnit(as_int(body.get("unit")))
    except ValueError:
        unit = LimitUnit.UNKNOWN
    return ZaiLimit(
        type=limit_type,
        unit=unit,
        number=as_int(body.get("number")) or 0,
        usage=as_int(body.get("usage")) or 0,
        current_value=as_int(body.get("currentValue")) or 0,
        remaining=as_int(body.get("remaining")) or 0,
        percentage=as_number(body.get("percentage")) or 0.0,
        next_reset=from_epoch(body.get("nextResetTime"), milliseconds=True),
    )


def map_zai_usage(payload: "Any") -> "UsageSnapshot":
    """
    maps the quota/limit envelope to a snapshot. The token limit is
    primary; the time limit is primary only when it is the sole limit
    and secondary otherwise.
    """
    body = as_mapping(payload)
    if body is None:
        raise MalformedResponseError("z.ai quota response is not an object.")
    if body.get("success") is not True or as_int(body.get("code")) != 200:
        code = as_int(body.get("code")) or 0
        detail = as_str(body.get("msg")) or "request was not successful"
        raise ServerError(code, detail, message=f"z.ai API error ({code}): {detail}")

    data = as_mapping(body.get("data")) or {}
    limits = data.get("limits")
    token_limit = time_limit = None
    for entry in limits if isinstance(limits, list) else ():
        limit = parse_limit(entry)
        if limit is None:
            logger.debug("zai_limit_skipped", entry=entry)
            continue
        if limit.type is LimitType.TOKENS:
            token_limit = limit
        else:
            time_limit = limit

    primary_limit = token_limit or time_limit
    if primary_limit is None:
        raise MalformedResponseError("z.ai quota response has no token or time limit.")
    secondary_limit = time_limit if token_limit is not None else None

    return UsageSnapshot(
        provider="zai",
        source="api",
        primary=primary_limit.rate_window(),
        secondary=secondary_limit.rate_window() if secondary_limit else None,
        login_method="z.ai",
    )


def resolve_quota_url(env: "Mapping[str, str]") -> "str":
    url = env.get(ZAI_QUOTA_URL_ENV, "").strip()
    if url:
        return with_scheme(url)
    host = env.get(ZAI_HOST_ENV, "").strip()
    if host:
        return with_scheme(host).rstrip("/") + ZAI_QUOTA_PATH
    return ZAI_QUOTA_URL


class ZaiProvider:
    """
    ZaiProvider reads the z.ai coding-plan quota with an API token.
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
        return "zai"

    def source_label(self, settings: "Settings") -> "str":
        return "z.ai API"

    def settings_contributions(self) -> "Sequence[SettingDescriptor]":
        return (
            SettingDescriptor(
                key=ZAI_TOKEN_ENV,
                title="z.ai API token",
                kind="secret",
                default=None,
            ),
        )

    async def close(self) -> "None":
        await self._client.aclose()

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        token = resolve_token(ZAI_TOKEN_ENV, self._profile_paths, env=self._context.env)
        if token is None:
            raise NoCredentialsError(
                f"z.ai API token not found. Set {ZAI_TOKEN_ENV} in ~/.profile."
            )
        payload = await get_json(
            self._client,
            resolve_quota_url(self._context.env),
            "z.ai",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        return map_zai_usage(payload)
