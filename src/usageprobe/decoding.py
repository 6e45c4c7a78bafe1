"""
best-effort helpers for decoding JSON whose schema drifts upstream.

Optional fields are located through an ordered list of named
extraction strategies:

 1. fixed field - the documented key;
 2. known aliases - keys the upstream has used before;
 3. substring heuristic - any other key whose normalized text
    contains one of a few telling fragments.

The first strategy that yields a usable value wins. The order is
explicit in each FieldExtractor, so it can be inspected and tested.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

_KEY_SEPARATORS = re.compile(r"[-_.\s]+")


def as_number(value: "Any") -> "float | None":
    """
    accepts numbers and numeric strings ("12", " 3.5 ", "1,024").
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def as_int(value: "Any") -> "int | None":
    number = as_number(value)
    return None if number is None else int(number)


def as_str(value: "Any") -> "str | None":
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def as_mapping(value: "Any") -> "Mapping[str, Any] | None":
    return value if isinstance(value, Mapping) else None


def normalize_key(key: "str") -> "str":
    """
    lowercases a key and turns "-", "_", "." runs into single spaces,
    so "gpt-5.3_codex" becomes "gpt 5 3 codex".
    """
    return _KEY_SEPARATORS.sub(" ", key.lower()).strip()


@dataclass(frozen=True, slots=True)
class ExtractionMatch:
    strategy: "str"
    key: "str"
    value: "Any"


class FixedField:
    name = "fixed field"

    def __init__(self, key: "str") -> "None":
        self.key = key

    def candidates(self, payload: "Mapping[str, Any]") -> "list[str]":
        return [self.key] if self.key in payload else []


class KnownAliases:
    name = "known aliases"

    def __init__(self, *keys: "str") -> "None":
        self.keys = keys

    def candidates(self, payload: "Mapping[str, Any]") -> "list[str]":
        return [key for key in self.keys if key in payload]


class SubstringHeuristic:
    name = "substring heuristic"

    def __init__(
        self,
        fragments: "Sequence[str]",
        exclude: "Sequence[str]" = (),
    ) -> "None":
        self.fragments = tuple(normalize_key(fragment) for fragment in fragments)
        self.exclude = frozenset(exclude)

    def candidates(self, payload: "Mapping[str, Any]") -> "list[str]":
        found: "list[str]" = []
        for key in payload:
            if key in self.exclude:
                continue
            normalized = normalize_key(key)
            if any(fragment in normalized for fragment in self.fragments):
                found.append(key)
        return found


class FieldExtractor:
    """
    tries each strategy in order and returns the first candidate the
    accept callable turns into a value (None means "not usable").
    """

    def __init__(
        self,
        strategies: "Sequence[FixedField | KnownAliases | SubstringHeuristic]",
        accept: "Callable[[Any], Any] | None" = None,
    ) -> "None":
        self.strategies = tuple(strategies)
        self._accept = accept or (lambda value: value)

    @property
    def order(self) -> "list[str]":
        return [strategy.name for strategy in self.strategies]

    def extract(self, payload: "Mapping[str, Any] | None") -> "ExtractionMatch | None":
        if not payload:
            return None
        for strategy in self.strategies:
            for key in strategy.candidates(payload):
                value = self._accept(payload[key])
                if value is not None:
                    return ExtractionMatch(strategy=strategy.name, key=key, value=value)
        return None


_FRACTION = re.compile(r"\.(\d+)")


def parse_iso8601(value: "Any") -> "datetime | None":
    """
    parses ISO-8601 timestamps with or without fractional seconds and
    with a "Z" or numeric offset. Naive values are taken as UTC.
    """
    text = as_str(value)
    if text is None:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat wants at most 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def from_epoch(value: "Any", milliseconds: "bool" = False) -> "datetime | None":
    number = as_number(value)
    if number is None or number <= 0:
        return None
    if milliseconds:
        number /= 1000.0
    try:
        return datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
