import tempfile
from dataclasses import dataclass
from pathlib import Path

import structlog

from usageprobe.binaries import locate_binary
from usageprobe.context import ProbeContext
from usageprobe.errors import (
    DataNotReadyError,
    FetchTimeoutError,
    ParseError,
    ToolMissingError,
    UpdateRequiredError,
)
from usageprobe.models import RateWindow, TerminalGeometry, UsageSnapshot
from usageprobe.provider.claude_cli import translate_terminal_error
from usageprobe.terminal.retry import capture_with_retry
from usageprobe.terminal.runner import TerminalScript, build_env
from usageprobe.terminal.session import PersistentTerminalSession
from usageprobe.terminal.state import TerminalError
from usageprobe.text import (
    LineKind,
    contains_any,
    credits_figure,
    first_line_of_kind,
    normalized_lines,
    percent_left,
    reset_description,
    strip_ansi,
)

logger = structlog.get_logger()

CODEX_BINARY = "codex"
CODEX_PATH_ENV = "CODEX_CLI_PATH"
CODEX_ARGS = ("-s", "read-only", "-a", "untrusted")
CODEX_GEOMETRY = TerminalGeometry(rows=60, cols=200, timeout=18.0)
CODEX_MISSING = (
    "Codex CLI missing. Install via `npm i -g @openai/codex` (or bun install) and restart."
)
UPDATE_HINT = "Run `bun install -g @openai/codex` to continue (update prompt blocking /status)."

STATUS_SCRIPT = TerminalScript(
    command="/status",
    stop_markers=("Credits:", "5h limit", "5-hour limit", "Weekly limit", "update available"),
    prompt_replies=(("Press Enter to continue", "\r"),),
    settle_seconds=0.5,
)

FIVE_HOUR_MINUTES = 300
WEEK_MINUTES = 10080


@dataclass(frozen=True, slots=True)
class CodexCLIStatus:
    credits: "float | None"
    five_hour_percent_left: "float | None"
    weekly_percent_left: "float | None"
    spark_percent_left: "float | None"
    five_hour_reset: "str | None" = None
    weekly_reset: "str | None" = None
    spark_reset: "str | None" = None


def parse_codex_status(text: "str") -> "CodexCLIStatus":
    """
    parses the Codex /status screen. Spark lines count only toward
    the spark window; the 5h and weekly lines are found independently.
    """
    clean = strip_ansi(text)
    if not clean.strip():
        raise FetchTimeoutError("Codex status probe timed out.")
    if contains_any(clean, ("data not available yet",)):
        raise DataNotReadyError("Codex usage data is not available yet; will retry shortly.")
    lower = clean.lower()
    if "update available" in lower and "codex" in lower:
        raise UpdateRequiredError(f"Codex CLI update needed: {UPDATE_HINT}")

    lines = normalized_lines(clean)
    five_line = first_line_of_kind(lines, LineKind.FIVE_HOUR)
    week_line = first_line_of_kind(lines, LineKind.WEEKLY)
    spark_line = first_line_of_kind(lines, LineKind.SECONDARY)

    status = CodexCLIStatus(
        credits=credits_figure(clean),
        five_hour_percent_left=percent_left(five_line) if five_line else None,
        weekly_percent_left=percent_left(week_line) if week_line else None,
        spark_percent_left=percent_left(spark_line) if spark_line else None,
        five_hour_reset=reset_description(five_line) if five_line else None,
        weekly_reset=reset_description(week_line) if week_line else None,
        spark_reset=reset_description(spark_line) if spark_line else None,
    )
    if (
        status.credits is None
        and status.five_hour_percent_left is None
        and status.weekly_percent_left is None
        and status.spark_percent_left is None
    ):
        raise ParseError("Could not parse Codex status; will retry shortly.")
    return status


def to_usage_snapshot(status: "CodexCLIStatus") -> "UsageSnapshot":
    def window(left: "float | None", minutes: "int", reset: "str | None") -> "RateWindow | None":
        if left is None:
            return None
        return RateWindow(
            used_percent=100.0 - left,
            window_minutes=minutes,
            reset_description=reset,
        )

    return UsageSnapshot(
        provider="codex",
        source="cli",
        primary=window(status.five_hour_percent_left, FIVE_HOUR_MINUTES, status.five_hour_reset),
        secondary=window(status.weekly_percent_left, WEEK_MINUTES, status.weekly_reset),
        tertiary=window(status.spark_percent_left, WEEK_MINUTES, status.spark_reset),
        credits_remaining=status.credits,
    )


class CodexCLIFetcher:
    """
    CodexCLIFetcher runs `codex` read-only in a pseudo-terminal, sends
    /status and parses limits and credits from the screen.
    """

    def __init__(
        self,
        context: "ProbeContext",
        geometry: "TerminalGeometry" = CODEX_GEOMETRY,
        workdir: "Path | None" = None,
    ) -> "None":
        self._context = context
        self._geometry = geometry
        self._workdir = workdir or Path(tempfile.gettempdir()) / "usageprobe-codex"

    async def _binary(self) -> "str":
        binary = locate_binary(
            CODEX_BINARY,
            CODEX_PATH_ENV,
            env=self._context.env,
            login_path=await self._context.login_path(),
        )
        if binary is None:
            raise ToolMissingError(CODEX_MISSING)
        return binary

    async def _capture(
        self,
        binary: "str",
        geometry: "TerminalGeometry",
        keep_alive: "bool",
    ) -> "str":
        env = build_env(self._context.env, extra_path=await self._context.login_path() or ())
        self._workdir.mkdir(parents=True, exist_ok=True)
        # the persistent process keeps its launch size, a widened retry runs one-shot
        persistent = keep_alive and (geometry.rows, geometry.cols) == (
            self._geometry.rows,
            self._geometry.cols,
        )
        try:
            if persistent:
                session = await self._context.session(
                    "codex",
                    binary,
                    lambda: PersistentTerminalSession(
                        binary, CODEX_ARGS, geometry, env=env, cwd=str(self._workdir)
                    ),
                )
                result = await session.capture(STATUS_SCRIPT, geometry.timeout)
            else:
                result = await self._context.runner.run(
                    binary, CODEX_ARGS, STATUS_SCRIPT, geometry, env=env, cwd=str(self._workdir)
                )
        except TerminalError as e:
            raise translate_terminal_error(e, "Codex CLI") from e
        return result.text

    async def fetch(self, keep_alive: "bool" = False) -> "UsageSnapshot":
        binary = await self._binary()

        async def attempt(geometry: "TerminalGeometry") -> "CodexCLIStatus":
            return parse_codex_status(await self._capture(binary, geometry, keep_alive))

        status = await capture_with_retry(
            attempt,
            self._geometry,
            provider="codex",
            on_retry=lambda: self._context.record_retry("codex"),
        )
        logger.debug(
            "codex_cli_status",
            has_credits=status.credits is not None,
            has_spark=status.spark_percent_left is not None,
        )
        return to_usage_snapshot(status)
