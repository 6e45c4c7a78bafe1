from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def clamp_percent(value: "float") -> "float":
    return max(0.0, min(100.0, float(value)))


def utcnow() -> "datetime":
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class RateWindow:
    """
    RateWindow represents one rate-limited quota window
    (5-hour, weekly, token-bucket...). used_percent is clamped
    into [0, 100] on construction, whoever produced it.
    """

    used_percent: "float"
    window_minutes: "int | None" = None
    resets_at: "datetime | None" = None
    reset_description: "str | None" = None

    def __post_init__(self) -> "None":
        object.__setattr__(self, "used_percent", clamp_percent(self.used_percent))

    @property
    def remaining_percent(self) -> "float":
        return 100.0 - self.used_percent


@dataclass(frozen=True, slots=True)
class ProviderCostSnapshot:
    """
    ProviderCostSnapshot represents metered spend, kept apart
    from the percentage quotas.
    """

    used: "float"
    limit: "float"
    currency_code: "str"
    # billing period label, e.g. "Monthly"
    period: "str | None" = None
    resets_at: "datetime | None" = None
    updated_at: "datetime" = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    """
    UsageSnapshot is the canonical result of one successful fetch.
    It is produced once and replaced on the next fetch, never
    updated in place.
    """

    provider: "str"
    source: "str"
    primary: "RateWindow | None" = None
    secondary: "RateWindow | None" = None
    tertiary: "RateWindow | None" = None
    cost: "ProviderCostSnapshot | None" = None
    credits_remaining: "float | None" = None
    updated_at: "datetime" = field(default_factory=utcnow)
    account_email: "str | None" = None
    account_organization: "str | None" = None
    login_method: "str | None" = None

    def windows(self) -> "dict[str, RateWindow]":
        """
        returns the populated windows keyed by slot name.
        """
        slots = {
            "primary": self.primary,
            "secondary": self.secondary,
            "tertiary": self.tertiary,
        }
        return {slot: window for slot, window in slots.items() if window is not None}

    def to_dict(self) -> "dict[str, Any]":
        """
        returns a JSON-ready dict; datetimes become ISO-8601 strings.
        """
        return _jsonable(asdict(self))


def _jsonable(value: "Any") -> "Any":
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


@dataclass(frozen=True, slots=True)
class CookieRecord:
    name: "str"
    value: "str"
    domain: "str"
    # browser/profile label, e.g. "Chrome Profile 1"
    source_label: "str"


@dataclass(frozen=True, slots=True)
class BrowserSessionInfo:
    """
    BrowserSessionInfo is a validated session secret together with
    where it came from. It lives for a single fetch attempt.
    """

    session_key: "str"
    cookie_count: "int"
    source_label: "str"


@dataclass(frozen=True, slots=True)
class LocalStorageToken:
    token: "str"
    source_label: "str"
    path: "str"


@dataclass(frozen=True, slots=True)
class TerminalGeometry:
    rows: "int"
    cols: "int"
    # seconds
    timeout: "float"


@dataclass(frozen=True, slots=True)
class TerminalCaptureResult:
    """
    TerminalCaptureResult holds the raw screen text of one capture,
    keyed to the geometry and timeout it was taken with.
    """

    text: "str"
    geometry: "TerminalGeometry"
    final_state: "str"
    stopped_early: "bool" = False

    @property
    def rows(self) -> "int":
        return self.geometry.rows

    @property
    def cols(self) -> "int":
        return self.geometry.cols

    @property
    def timeout(self) -> "float":
        return self.geometry.timeout
