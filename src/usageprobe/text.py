import enum
import re

# CSI sequences, OSC strings (BEL or ST terminated) and two-byte escapes
_ANSI_PATTERN = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)
# leftover C0 controls (keeps \n and \t) and stray ESC bytes
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

_PERCENT_PATTERN = re.compile(
    r"([0-9]{1,3}(?:\.[0-9]+)?)\s*%\s*(left|remaining|used)?",
    re.IGNORECASE,
)
_RESET_PATTERN = re.compile(r"\bresets?\b[^\n]*", re.IGNORECASE)
_CREDITS_PATTERN = re.compile(r"Credits:\s*([0-9][0-9.,]*)", re.IGNORECASE)
# "5h" but not "15h" or "2.5h"
_FIVE_HOUR_TERMS = re.compile(r"(?<![0-9.])(?:5\s?h\b|5-hour|5 hour)")
_WEEKLY_TERMS = re.compile(r"weekly|7-day|7 day|\b7d\b")


class LineKind(enum.Enum):
    FIVE_HOUR = "five_hour"
    WEEKLY = "weekly"
    SECONDARY = "secondary"


def strip_ansi(text: "str") -> "str":
    """
    removes terminal escape and control sequences and folds carriage
    returns into newlines. Applying it twice gives the same result as
    applying it once.
    """
    text = _ANSI_PATTERN.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_PATTERN.sub("", text)


def normalized_lines(text: "str") -> "list[str]":
    """
    returns the trimmed, non-empty lines of the stripped text.
    """
    lines = (line.strip() for line in strip_ansi(text).split("\n"))
    return [line for line in lines if line]


def compact(text: "str") -> "str":
    """
    lowercases and removes all whitespace, used to match phrases
    that a terminal may have wrapped or padded.
    """
    return "".join(text.lower().split())


def is_secondary_line(line: "str", keyword: "str" = "spark") -> "bool":
    lower = line.lower()
    if keyword not in lower:
        return False
    return any(term in lower for term in ("limit", "quota", "remaining", "left", "%"))


def is_five_hour_line(line: "str", keyword: "str" = "spark") -> "bool":
    if is_secondary_line(line, keyword):
        return False
    return _FIVE_HOUR_TERMS.search(line.lower()) is not None


def is_weekly_line(line: "str", keyword: "str" = "spark") -> "bool":
    if is_secondary_line(line, keyword):
        return False
    return _WEEKLY_TERMS.search(line.lower()) is not None


def line_matches(line: "str", kind: "LineKind", secondary_keyword: "str" = "spark") -> "bool":
    """
    tests one line against one window category. Five-hour and weekly
    are judged independently, so a weekly line that resets "in 2d 5h"
    is still weekly. Only the secondary keyword excludes a line from
    the other two.
    """
    if kind is LineKind.SECONDARY:
        return is_secondary_line(line, secondary_keyword)
    if kind is LineKind.FIVE_HOUR:
        return is_five_hour_line(line, secondary_keyword)
    return is_weekly_line(line, secondary_keyword)


def classify_line(line: "str", secondary_keyword: "str" = "spark") -> "LineKind | None":
    """
    picks the single category a line is labelled with. When a line
    carries both five-hour and weekly terms, the one written first
    (the label, not the reset text) wins.
    """
    if is_secondary_line(line, secondary_keyword):
        return LineKind.SECONDARY
    lower = line.lower()
    five = _FIVE_HOUR_TERMS.search(lower)
    week = _WEEKLY_TERMS.search(lower)
    if five and week:
        return LineKind.FIVE_HOUR if five.start() < week.start() else LineKind.WEEKLY
    if five:
        return LineKind.FIVE_HOUR
    if week:
        return LineKind.WEEKLY
    return None


def first_line_of_kind(
    lines: "list[str]",
    kind: "LineKind",
    secondary_keyword: "str" = "spark",
) -> "str | None":
    for line in lines:
        if line_matches(line, kind, secondary_keyword):
            return line
    return None


def percent_left(line: "str") -> "float | None":
    """
    extracts the percent remaining from a line. "42% left" and
    "42% remaining" give 42, "58% used" gives 42 too. A bare
    percentage is read as remaining.
    """
    match = _PERCENT_PATTERN.search(line)
    if match is None:
        return None
    value = float(match.group(1))
    qualifier = (match.group(2) or "").lower()
    if qualifier == "used":
        value = 100.0 - value
    return max(0.0, min(100.0, value))


def reset_description(line: "str") -> "str | None":
    """
    extracts the human reset phrase, e.g. "resets in 3h 10m".
    """
    match = _RESET_PATTERN.search(line)
    if match is None:
        return None
    phrase = match.group(0).strip().rstrip(")").strip()
    return phrase or None


def credits_figure(text: "str") -> "float | None":
    match = _CREDITS_PATTERN.search(text)
    if match is None:
        return None
    raw = match.group(1).replace(",", "").rstrip(".")
    try:
        return float(raw)
    except ValueError:
        return None


def contains_any(text: "str", phrases: "tuple[str, ...]") -> "bool":
    lower = text.lower()
    return any(phrase.lower() in lower for phrase in phrases)
