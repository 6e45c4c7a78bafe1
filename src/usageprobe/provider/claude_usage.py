"""
mapping shared by the Claude OAuth and web usage payloads. Both
report named windows as {"utilization": n, "resets_at": iso}.
"""

from typing import Any, Mapping

from usageprobe.decoding import (
    FieldExtractor,
    FixedField,
    KnownAliases,
    SubstringHeuristic,
    as_mapping,
    as_number,
    as_str,
    parse_iso8601,
)
from usageprobe.models import ProviderCostSnapshot, RateWindow

FIVE_HOUR_MINUTES = 5 * 60
WEEK_MINUTES = 7 * 24 * 60

# after converting cents to dollars, a limit this high means the
# upstream already sent major units
IMPLAUSIBLE_LIMIT = 1000.0


def _has_utilization(value: "Any") -> "Mapping[str, Any] | None":
    entry = as_mapping(value)
    if entry is None or as_number(entry.get("utilization")) is None:
        return None
    return entry


# sonnet-only weekly window, then the older opus window, then any
# other model-scoped weekly window
TERTIARY_WINDOW = FieldExtractor(
    [
        FixedField("seven_day_sonnet"),
        KnownAliases("seven_day_opus"),
        SubstringHeuristic(["sonnet", "opus"]),
    ],
    accept=_has_utilization,
)


def window_from_entry(
    entry: "Mapping[str, Any] | None",
    minutes: "int",
    fallback_reset: "Any" = None,
) -> "RateWindow | None":
    if entry is None:
        return None
    utilization = as_number(entry.get("utilization"))
    if utilization is None:
        return None
    resets_at = parse_iso8601(entry.get("resets_at"))
    if resets_at is None and fallback_reset is not None:
        resets_at = parse_iso8601(fallback_reset)
    return RateWindow(
        used_percent=utilization,
        window_minutes=minutes,
        resets_at=resets_at,
    )


def map_windows(
    payload: "Mapping[str, Any]",
) -> "tuple[RateWindow | None, RateWindow | None, RateWindow | None]":
    """
    returns (five-hour, weekly, model-scoped weekly) windows. A
    model-scoped window without its own reset borrows the weekly one.
    """
    five_hour = as_mapping(payload.get("five_hour"))
    seven_day = as_mapping(payload.get("seven_day"))
    weekly_reset = seven_day.get("resets_at") if seven_day else None

    match = TERTIARY_WINDOW.extract(payload)
    tertiary = (
        window_from_entry(match.value, WEEK_MINUTES, fallback_reset=weekly_reset)
        if match
        else None
    )
    return (
        window_from_entry(five_hour, FIVE_HOUR_MINUTES),
        window_from_entry(seven_day, WEEK_MINUTES),
        tertiary,
    )


def login_method_from_tier(tier: "str | None") -> "str | None":
    """
    maps a rate-limit tier such as "default_claude_max_20x" to a plan
    name.
    """
    tier = (tier or "").lower()
    for fragment, label in (
        ("enterprise", "Claude Enterprise"),
        ("team", "Claude Team"),
        ("max", "Claude Max"),
        ("pro", "Claude Pro"),
    ):
        if fragment in tier:
            return label
    return None


def rescale_extra_usage(
    cost: "ProviderCostSnapshot",
    login_method: "str | None",
) -> "ProviderCostSnapshot":
    """
    divides once more by 100 when a non-Enterprise limit is
    implausibly high.
    """
    if login_method == "Claude Enterprise" or cost.limit < IMPLAUSIBLE_LIMIT:
        return cost
    return ProviderCostSnapshot(
        used=cost.used / 100.0,
        limit=cost.limit / 100.0,
        currency_code=cost.currency_code,
        period=cost.period,
        resets_at=cost.resets_at,
        updated_at=cost.updated_at,
    )


def extra_usage_cost(
    used_minor: "Any",
    limit_minor: "Any",
    currency: "Any",
    login_method: "str | None",
) -> "ProviderCostSnapshot | None":
    """
    builds the monthly spend snapshot from minor-unit (cents) amounts.
    """
    used = as_number(used_minor)
    limit = as_number(limit_minor)
    if used is None or limit is None:
        return None
    cost = ProviderCostSnapshot(
        used=used / 100.0,
        limit=limit / 100.0,
        currency_code=(as_str(currency) or "USD").upper(),
        period="Monthly",
    )
    return rescale_extra_usage(cost, login_method)
