import asyncio
import os
import signal
import time
from dataclasses import dataclass
from typing import Mapping, Sequence

import pexpect
import structlog

from usageprobe.models import TerminalCaptureResult, TerminalGeometry
from usageprobe.terminal.state import (
    TerminalError,
    TerminalLaunchError,
    TerminalProcessExitedError,
    TerminalState,
    TerminalStateMachine,
    TerminalTimeoutError,
)
from usageprobe.text import compact, strip_ansi

logger = structlog.get_logger()

# device status report; TUIs block until the terminal answers it
CURSOR_QUERY = "\x1b[6n"
CURSOR_REPLY = "\x1b[1;1R"

READ_CHUNK = 8192
# quiet period after launch output that counts as "ready for input"
READY_IDLE_SECONDS = 0.5


@dataclass(frozen=True, slots=True)
class TerminalScript:
    """
    TerminalScript is the scripted interaction with a CLI: the command
    line to type, the phrases that mean the report is complete, and the
    canned answers to first-run prompts (each sent at most once).
    """

    command: "str"
    stop_markers: "tuple[str, ...]" = ()
    prompt_replies: "tuple[tuple[str, str], ...]" = ()
    # keep reading this long after a stop marker shows up
    settle_seconds: "float" = 0.25
    # output that stays quiet this long after the command is complete
    idle_seconds: "float" = 3.0
    # upper bound on waiting for the CLI to get ready before typing
    startup_seconds: "float" = 2.0


def build_env(
    base: "Mapping[str, str] | None" = None,
    scrub_prefixes: "Sequence[str]" = (),
    extra_path: "Sequence[str]" = (),
) -> "dict[str, str]":
    """
    copies the environment for a child CLI, dropping variables with
    the given prefixes and appending extra PATH entries.
    """
    env = dict(os.environ if base is None else base)
    for key in list(env):
        if any(key.startswith(prefix) for prefix in scrub_prefixes):
            del env[key]
    env["TERM"] = "xterm-256color"
    if extra_path:
        parts = [part for part in env.get("PATH", "").split(os.pathsep) if part]
        parts.extend(entry for entry in extra_path if entry not in parts)
        env["PATH"] = os.pathsep.join(parts)
    return env


def spawn_child(
    binary: "str",
    args: "Sequence[str]",
    geometry: "TerminalGeometry",
    env: "Mapping[str, str] | None" = None,
    cwd: "str | None" = None,
) -> "pexpect.spawn":
    return pexpect.spawn(
        binary,
        list(args),
        env=dict(env) if env is not None else None,
        cwd=cwd,
        dimensions=(geometry.rows, geometry.cols),
        encoding="utf-8",
        codec_errors="replace",
        echo=False,
    )


def teardown(child: "pexpect.spawn", exit_command: "str | None" = None) -> "None":
    """
    asks the CLI to exit, then terminates its whole process group.
    Blocking; run it off the event loop.
    """
    if child.isalive():
        if exit_command:
            try:
                child.send(exit_command + "\r")
            except OSError as e:
                logger.debug("terminal_exit_send_failed", error=str(e))
        try:
            os.killpg(child.pid, signal.SIGTERM)
        except OSError as e:
            logger.debug("terminal_killpg_failed", pid=child.pid, error=str(e))
        if not child.terminate(force=False):
            child.terminate(force=True)
    child.close(force=True)


async def interact(
    child: "pexpect.spawn",
    script: "TerminalScript",
    timeout: "float",
    ready_since: "float",
    poll_interval: "float" = 0.05,
) -> "tuple[str, bool]":
    """
    types the script's command once the CLI looks ready and reads
    until a stop marker settles, output goes idle, or timeout expires.
    Returns the raw text read after the command and whether a stop
    marker ended the capture.
    """
    deadline = time.monotonic() + timeout
    stop_markers = [compact(marker) for marker in script.stop_markers]
    replies = [(compact(needle), needle, reply) for needle, reply in script.prompt_replies]
    sent_replies: "set[str]" = set()

    chunks: "list[str]" = []
    command_offset: "int | None" = None
    last_output = time.monotonic()
    got_output = False
    stop_seen_at: "float | None" = None

    while True:
        now = time.monotonic()
        try:
            chunk = child.read_nonblocking(READ_CHUNK, timeout=0)
        except pexpect.TIMEOUT:
            chunk = ""
        except pexpect.EOF:
            transcript = "".join(chunks)
            raise TerminalProcessExitedError(
                "CLI exited before producing a complete report",
                transcript[command_offset or 0 :],
            ) from None

        if chunk:
            if CURSOR_QUERY in chunk:
                child.send(CURSOR_REPLY)
            chunks.append(chunk)
            last_output = now
            got_output = True
            screen = compact(strip_ansi("".join(chunks)))
            for needle, label, reply in replies:
                if needle not in sent_replies and needle in screen:
                    logger.debug("terminal_prompt_answered", prompt=label)
                    child.send(reply)
                    sent_replies.add(needle)

        if command_offset is None:
            ready = got_output and now - last_output >= READY_IDLE_SECONDS
            if ready or now - ready_since >= script.startup_seconds:
                command_offset = len("".join(chunks))
                child.send(script.command + "\r")
                last_output = now
        else:
            after = "".join(chunks)[command_offset:]
            if stop_seen_at is None and stop_markers:
                screen = compact(strip_ansi(after))
                if any(marker in screen for marker in stop_markers):
                    stop_seen_at = now
            if stop_seen_at is not None and now - stop_seen_at >= script.settle_seconds:
                return after, True
            if (
                stop_seen_at is None
                and strip_ansi(after).strip()
                and now - last_output >= script.idle_seconds
            ):
                return after, False

        if now >= deadline:
            transcript = "".join(chunks)
            raise TerminalTimeoutError(
                f"no complete output within {timeout:g}s",
                transcript[command_offset or 0 :],
            )
        await asyncio.sleep(poll_interval)


class TerminalRunner:
    """
    TerminalRunner does one-shot captures: spawn the CLI in a
    pseudo-terminal, run the script, capture, tear down.
    """

    def __init__(self, poll_interval: "float" = 0.05) -> "None":
        self._poll_interval = poll_interval

    async def run(
        self,
        binary: "str",
        args: "Sequence[str]",
        script: "TerminalScript",
        geometry: "TerminalGeometry",
        env: "Mapping[str, str] | None" = None,
        cwd: "str | None" = None,
        exit_command: "str | None" = "/exit",
    ) -> "TerminalCaptureResult":
        fsm = TerminalStateMachine()
        fsm.advance(TerminalState.LAUNCHING)
        try:
            child = spawn_child(binary, args, geometry, env, cwd)
        except (pexpect.ExceptionPexpect, OSError) as e:
            fsm.advance(TerminalState.LAUNCH_FAILED)
            raise TerminalLaunchError(f"cannot launch {binary}: {e}") from e

        fsm.advance(TerminalState.AWAITING_OUTPUT)
        logger.debug(
            "terminal_capture_start",
            binary=binary,
            rows=geometry.rows,
            cols=geometry.cols,
            timeout=geometry.timeout,
        )
        try:
            text, stopped_early = await interact(
                child,
                script,
                geometry.timeout,
                ready_since=time.monotonic(),
                poll_interval=self._poll_interval,
            )
        except TerminalError as e:
            fsm.advance(e.state)
            logger.debug("terminal_capture_failed", binary=binary, state=e.state.value)
            raise
        finally:
            await asyncio.to_thread(teardown, child, exit_command)

        fsm.advance(TerminalState.CAPTURED)
        return TerminalCaptureResult(
            text=text,
            geometry=geometry,
            final_state=fsm.state.value,
            stopped_early=stopped_early,
        )
