import json
import re
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from usageprobe.binaries import locate_binary
from usageprobe.context import ProbeContext
from usageprobe.errors import (
    AuthenticationError,
    DataNotReadyError,
    FetchTimeoutError,
    ParseError,
    ToolMissingError,
    UsageError,
)
from usageprobe.models import RateWindow, TerminalGeometry, UsageSnapshot
from usageprobe.provider.claude_usage import FIVE_HOUR_MINUTES, WEEK_MINUTES
from usageprobe.terminal.retry import capture_with_retry
from usageprobe.terminal.runner import TerminalScript, build_env
from usageprobe.terminal.session import PersistentTerminalSession
from usageprobe.terminal.state import TerminalError, TerminalLaunchError
from usageprobe.text import normalized_lines, strip_ansi

logger = structlog.get_logger()

CLAUDE_BINARY = "claude"
CLAUDE_PATH_ENV = "CLAUDE_CLI_PATH"
CLAUDE_ARGS = ("--allowed-tools", "")
CLAUDE_GEOMETRY = TerminalGeometry(rows=60, cols=200, timeout=10.0)
STATUS_TIMEOUT_SECONDS = 8.0
# variables that would make the CLI bill an API key instead of the plan
SCRUBBED_ENV_PREFIXES = ("ANTHROPIC_",)

PROMPT_REPLIES: "tuple[tuple[str, str], ...]" = (
    ("Do you trust the files in this folder?", "y\r"),
    ("Quick safety check:", "\r"),
    ("Yes, I trust this folder", "\r"),
    ("Ready to code here?", "\r"),
    ("Press Enter to continue", "\r"),
)

USAGE_SCRIPT = TerminalScript(
    command="/usage",
    stop_markers=("Current week (all models)",),
    prompt_replies=PROMPT_REPLIES + (("Show plan usage limits", "\r"),),
    settle_seconds=2.0,
)
STATUS_SCRIPT = TerminalScript(
    command="/status",
    stop_markers=("Account:", "Login method:"),
    prompt_replies=PROMPT_REPLIES + (("Show Claude Code status", "\r"),),
    settle_seconds=1.0,
)

SESSION_LABEL = "Current session"
WEEKLY_LABEL = "Current week (all models)"
MODEL_WEEK_LABELS = ("Current week (Sonnet only)", "Current week (Sonnet)", "Current week (Opus)")
# lines after a label that may still belong to it
LABEL_LOOKAHEAD = 3

_PERCENT = re.compile(r"([0-9]{1,3})%\s*(used|left)", re.IGNORECASE)
_RESETS = re.compile(r"Resets[^\n]*", re.IGNORECASE)
_EMAIL = re.compile(r"Account:\s+([^\s@]+@[^\s@]+)", re.IGNORECASE)
_ORG = re.compile(r"Org(?:anization)?:\s*(.+)", re.IGNORECASE)
_LOGIN_METHOD = re.compile(r"Login method:\s*(.+)", re.IGNORECASE)
_RESET_TZ = re.compile(r"\(([^)]+)\)\s*$")
_RESET_FORMATS = ("%I%p", "%I:%M%p", "%b %d at %I%p", "%b %d at %I:%M%p")


@dataclass(frozen=True, slots=True)
class ClaudeCLIStatus:
    """
    ClaudeCLIStatus is what the /usage screen says, before it is
    mapped to a snapshot. Percentages are "left".
    """

    session_percent_left: "float"
    weekly_percent_left: "float"
    model_percent_left: "float | None" = None
    session_reset: "str | None" = None
    weekly_reset: "str | None" = None
    model_reset: "str | None" = None
    account_email: "str | None" = None
    account_organization: "str | None" = None
    login_method: "str | None" = None


def _percent_left(line: "str") -> "float | None":
    match = _PERCENT.search(line)
    if match is None:
        return None
    value = float(match.group(1))
    if match.group(2).lower() == "used":
        value = 100.0 - value
    return max(0.0, min(100.0, value))


def _section(lines: "list[str]", label: "str") -> "list[str] | None":
    lowered = label.lower()
    for index, line in enumerate(lines):
        if lowered in line.lower():
            return lines[index : index + 1 + LABEL_LOOKAHEAD]
    return None


def _section_percent(section: "list[str] | None") -> "float | None":
    for line in section or ():
        value = _percent_left(line)
        if value is not None:
            return value
    return None


def _section_reset(section: "list[str] | None") -> "str | None":
    for line in section or ():
        match = _RESETS.search(line)
        if match:
            phrase = match.group(0).strip().rstrip(")").strip()
            # keep a trailing "(Zone/Name)" intact
            if "(" in phrase and not phrase.endswith(")"):
                phrase += ")"
            return phrase
    return None


def usage_error_hint(text: "str") -> "UsageError | None":
    """
    recognises the CLI's own error screens.
    """
    lower = text.lower()
    if "token_expired" in lower or "token has expired" in lower:
        return AuthenticationError("Claude CLI token expired. Run `claude login` to refresh.")
    if "authentication_error" in lower:
        return AuthenticationError("Claude CLI authentication failed. Run `claude login`.")
    if "failed to load usage data" in lower:
        message = "Claude CLI could not load usage data."
        index = lower.index("failed to load usage data")
        brace = text.find("{", index)
        if brace != -1:
            try:
                detail, _ = json.JSONDecoder().raw_decode(text[brace:])
            except ValueError:
                detail = None
            if isinstance(detail, dict):
                error = detail.get("error") if isinstance(detail.get("error"), dict) else {}
                details = error.get("details") if isinstance(error.get("details"), dict) else {}
                parts = [
                    str(part)
                    for part in (error.get("message"), details.get("error_code"))
                    if part
                ]
                if parts:
                    message = f"{message} ({', '.join(parts)})"
        return DataNotReadyError(message)
    return None


def parse_identity(text: "str") -> "tuple[str | None, str | None, str | None]":
    """
    returns (email, organization, login method). An organization that
    merely repeats the email is dropped.
    """
    clean = strip_ansi(text)
    email_match = _EMAIL.search(clean)
    email = email_match.group(1).strip() if email_match else None
    org_match = _ORG.search(clean)
    org = org_match.group(1).strip() if org_match else None
    if org and email and org.lower().startswith(email.lower()):
        org = None
    method_match = _LOGIN_METHOD.search(clean)
    login_method = method_match.group(1).strip() if method_match else None
    return email, org or None, login_method or None


def parse_claude_usage(text: "str") -> "ClaudeCLIStatus":
    """
    parses the /usage screen. Labelled sections are read first; when a
    label is missing, percentages are taken in on-screen order.
    """
    clean = strip_ansi(text)
    if not clean.strip():
        raise FetchTimeoutError("Claude CLI produced no output.")
    hint = usage_error_hint(clean)
    if hint is not None:
        raise hint

    lines = normalized_lines(clean)
    session = _section(lines, SESSION_LABEL)
    weekly = _section(lines, WEEKLY_LABEL)
    model = None
    for label in MODEL_WEEK_LABELS:
        model = _section(lines, label)
        if model is not None:
            break

    session_left = _section_percent(session)
    weekly_left = _section_percent(weekly)
    model_left = _section_percent(model)

    if session_left is None or weekly_left is None:
        ordered = [value for value in map(_percent_left, lines) if value is not None]
        if session_left is None and len(ordered) > 0:
            session_left = ordered[0]
        if weekly_left is None and len(ordered) > 1:
            weekly_left = ordered[1]
        if model_left is None and len(ordered) > 2:
            model_left = ordered[2]

    if session_left is None or weekly_left is None:
        raise ParseError("Could not read session and weekly usage from Claude CLI /usage.")

    email, org, login_method = parse_identity(clean)
    return ClaudeCLIStatus(
        session_percent_left=session_left,
        weekly_percent_left=weekly_left,
        model_percent_left=model_left,
        session_reset=_section_reset(session),
        weekly_reset=_section_reset(weekly),
        model_reset=_section_reset(model),
        account_email=email,
        account_organization=org,
        login_method=login_method,
    )


def _zone(name: "str | None") -> "tzinfo":
    if name:
        try:
            return ZoneInfo(name.strip())
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("claude_reset_zone_unknown", zone=name)
    local = datetime.now().astimezone().tzinfo
    return local or timezone.utc


def _next_dated(text: "str", fmt: "str", now: "datetime", zone: "tzinfo") -> "datetime | None":
    # parse with an explicit year so "Feb 29" is checked against a real calendar
    for year in (now.year, now.year + 1):
        try:
            parsed = datetime.strptime(f"{year} {text}", f"%Y {fmt}")
        except ValueError:
            continue
        candidate = parsed.replace(tzinfo=zone)
        if candidate >= now - timedelta(days=1):
            return candidate
    return None


def parse_reset_phrase(phrase: "str | None", now: "datetime | None" = None) -> "datetime | None":
    """
    turns "Resets 3pm (Europe/Paris)" or "Resets Dec 25 at 3:30pm"
    into the next matching absolute time (UTC).
    """
    if not phrase:
        return None
    text = re.sub(r"^resets\s*", "", phrase.strip(), flags=re.IGNORECASE)
    zone_match = _RESET_TZ.search(text)
    zone = _zone(zone_match.group(1) if zone_match else None)
    if zone_match:
        text = text[: zone_match.start()]
    text = " ".join(text.replace(",", " ").split())

    now = (now or datetime.now(timezone.utc)).astimezone(zone)
    for fmt in _RESET_FORMATS:
        if "%b" in fmt:
            candidate = _next_dated(text, fmt, now, zone)
            if candidate is None:
                continue
            return candidate.astimezone(timezone.utc)
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        candidate = now.replace(hour=parsed.hour, minute=parsed.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate.astimezone(timezone.utc)
    return None


def to_usage_snapshot(status: "ClaudeCLIStatus", now: "datetime | None" = None) -> "UsageSnapshot":
    def window(left: "float | None", minutes: "int", reset: "str | None") -> "RateWindow | None":
        if left is None:
            return None
        return RateWindow(
            used_percent=100.0 - left,
            window_minutes=minutes,
            resets_at=parse_reset_phrase(reset, now),
            reset_description=reset,
        )

    return UsageSnapshot(
        provider="claude",
        source="cli",
        primary=window(status.session_percent_left, FIVE_HOUR_MINUTES, status.session_reset),
        secondary=window(status.weekly_percent_left, WEEK_MINUTES, status.weekly_reset),
        tertiary=window(status.model_percent_left, WEEK_MINUTES, status.model_reset),
        account_email=status.account_email,
        account_organization=status.account_organization,
        login_method=status.login_method,
    )


def translate_terminal_error(error: "TerminalError", tool: "str") -> "UsageError":
    if isinstance(error, TerminalLaunchError):
        return ToolMissingError(f"{tool} could not be started: {error}")
    return FetchTimeoutError(f"{tool} did not finish rendering: {error}")


class ClaudeCLIFetcher:
    """
    ClaudeCLIFetcher drives `claude` in a pseudo-terminal, types
    /usage and parses the rendered screen.
    """

    def __init__(
        self,
        context: "ProbeContext",
        geometry: "TerminalGeometry" = CLAUDE_GEOMETRY,
        workdir: "Path | None" = None,
    ) -> "None":
        self._context = context
        self._geometry = geometry
        self._workdir = workdir or Path(tempfile.gettempdir()) / "usageprobe-claude"

    async def _binary(self) -> "str":
        binary = locate_binary(
            CLAUDE_BINARY,
            CLAUDE_PATH_ENV,
            env=self._context.env,
            login_path=await self._context.login_path(),
        )
        if binary is None:
            raise ToolMissingError(
                "Claude CLI missing. Install it with `npm i -g @anthropic-ai/claude-code`."
            )
        return binary

    async def _env(self) -> "Mapping[str, str]":
        return build_env(
            self._context.env,
            scrub_prefixes=SCRUBBED_ENV_PREFIXES,
            extra_path=await self._context.login_path() or (),
        )

    async def _capture(
        self,
        binary: "str",
        script: "TerminalScript",
        geometry: "TerminalGeometry",
        keep_alive: "bool",
    ) -> "str":
        env = await self._env()
        self._workdir.mkdir(parents=True, exist_ok=True)
        # the persistent process keeps its launch size, a widened retry runs one-shot
        persistent = keep_alive and (geometry.rows, geometry.cols) == (
            self._geometry.rows,
            self._geometry.cols,
        )
        try:
            if persistent:
                session = await self._context.session(
                    "claude",
                    binary,
                    lambda: PersistentTerminalSession(
                        binary, CLAUDE_ARGS, geometry, env=env, cwd=str(self._workdir)
                    ),
                )
                result = await session.capture(script, geometry.timeout)
            else:
                result = await self._context.runner.run(
                    binary, CLAUDE_ARGS, script, geometry, env=env, cwd=str(self._workdir)
                )
        except TerminalError as e:
            raise translate_terminal_error(e, "Claude CLI") from e
        return result.text

    async def fetch(self, keep_alive: "bool" = False) -> "UsageSnapshot":
        binary = await self._binary()

        async def attempt(geometry: "TerminalGeometry") -> "ClaudeCLIStatus":
            text = await self._capture(binary, USAGE_SCRIPT, geometry, keep_alive)
            return parse_claude_usage(text)

        status = await capture_with_retry(
            attempt,
            self._geometry,
            provider="claude",
            on_retry=lambda: self._context.record_retry("claude"),
        )

        if status.account_email is None:
            status = await self._with_status_identity(binary, status, keep_alive)
        return to_usage_snapshot(status)

    async def _with_status_identity(
        self,
        binary: "str",
        status: "ClaudeCLIStatus",
        keep_alive: "bool",
    ) -> "ClaudeCLIStatus":
        # identity is optional, a failed /status keeps the usage result
        geometry = TerminalGeometry(
            self._geometry.rows, self._geometry.cols, STATUS_TIMEOUT_SECONDS
        )
        try:
            text = await self._capture(binary, STATUS_SCRIPT, geometry, keep_alive)
        except UsageError as e:
            logger.debug("claude_status_identity_unavailable", error=str(e))
            return status
        email, org, login_method = parse_identity(text)
        return replace(
            status,
            account_email=email,
            account_organization=status.account_organization or org,
            login_method=status.login_method or login_method,
        )
