import asyncio
import time
from dataclasses import dataclass
from typing import Mapping, Sequence

import pexpect
import structlog

from usageprobe.models import TerminalCaptureResult, TerminalGeometry
from usageprobe.terminal.runner import (
    READ_CHUNK,
    TerminalScript,
    interact,
    spawn_child,
    teardown,
)
from usageprobe.terminal.state import (
    TerminalError,
    TerminalLaunchError,
    TerminalState,
    TerminalStateMachine,
)

logger = structlog.get_logger()

DISMISS_SETTLE_SECONDS = 0.2


@dataclass
class _Request:
    script: "TerminalScript"
    timeout: "float"
    future: "asyncio.Future[TerminalCaptureResult]"


class PersistentTerminalSession:
    """
    PersistentTerminalSession keeps one CLI process alive across
    captures. A single owning task talks to the process; callers hand
    it requests through a one-slot queue and wait on a future, so a
    second caller queues instead of interleaving input.

    After a failure the process is torn down and the next request
    relaunches it.
    """

    def __init__(
        self,
        binary: "str",
        args: "Sequence[str]",
        geometry: "TerminalGeometry",
        env: "Mapping[str, str] | None" = None,
        cwd: "str | None" = None,
        exit_command: "str | None" = "/exit",
        poll_interval: "float" = 0.05,
        dismiss_key: "str | None" = "\x1b",
    ) -> "None":
        self.binary = binary
        self._dismiss_key = dismiss_key
        self._args = list(args)
        self._geometry = geometry
        self._env = env
        self._cwd = cwd
        self._exit_command = exit_command
        self._poll_interval = poll_interval

        self.fsm = TerminalStateMachine()
        self._child: "pexpect.spawn | None" = None
        self._launched_at: "float" = 0.0
        self._queue: "asyncio.Queue[_Request | None]" = asyncio.Queue(maxsize=1)
        self._owner: "asyncio.Task[None] | None" = None
        self._closed = False

    @property
    def alive(self) -> "bool":
        return self._child is not None and self._child.isalive()

    @property
    def closed(self) -> "bool":
        return self._closed

    async def capture(
        self, script: "TerminalScript", timeout: "float"
    ) -> "TerminalCaptureResult":
        if self._closed:
            raise RuntimeError("terminal session is closed")
        if self._owner is None:
            self._owner = asyncio.create_task(self._serve_forever())
        future: "asyncio.Future[TerminalCaptureResult]" = (
            asyncio.get_running_loop().create_future()
        )
        await self._queue.put(_Request(script, timeout, future))
        return await future

    async def close(self) -> "None":
        """
        stops the owning task and tears the process down.
        """
        if self._closed:
            return
        self._closed = True
        if self._owner is not None:
            await self._queue.put(None)
            await self._owner
            self._owner = None
        await self._discard_child()

    async def _serve_forever(self) -> "None":
        while True:
            request = await self._queue.get()
            if request is None:
                return
            try:
                result = await self._serve(request)
            except Exception as e:
                if not request.future.done():
                    request.future.set_exception(e)
            else:
                if not request.future.done():
                    request.future.set_result(result)

    async def _serve(self, request: "_Request") -> "TerminalCaptureResult":
        reused = self.alive
        if reused:
            self.fsm.advance(TerminalState.AWAITING_OUTPUT)
        else:
            if self.fsm.state is TerminalState.CAPTURED:
                logger.debug("terminal_session_exited", binary=self.binary)
                self.fsm.advance(TerminalState.PROCESS_EXITED)
                await self._discard_child()
            self._launch()

        assert self._child is not None
        try:
            if reused:
                self._drain()
                if self._dismiss_key:
                    # close whatever dialog the previous command left open
                    self._child.send(self._dismiss_key)
                    await asyncio.sleep(DISMISS_SETTLE_SECONDS)
                    self._drain()
            text, stopped_early = await interact(
                self._child,
                request.script,
                request.timeout,
                ready_since=self._launched_at,
                poll_interval=self._poll_interval,
            )
        except TerminalError as e:
            self.fsm.advance(e.state)
            logger.debug(
                "terminal_session_capture_failed",
                binary=self.binary,
                state=e.state.value,
            )
            await self._discard_child()
            raise
        except Exception:
            # the pty is in an unknown state, so the next request starts fresh
            logger.exception("terminal_session_broken", binary=self.binary)
            self.fsm.advance(TerminalState.PROCESS_EXITED)
            await self._discard_child()
            raise

        self.fsm.advance(TerminalState.CAPTURED)
        return TerminalCaptureResult(
            text=text,
            geometry=TerminalGeometry(
                self._geometry.rows, self._geometry.cols, request.timeout
            ),
            final_state=self.fsm.state.value,
            stopped_early=stopped_early,
        )

    def _launch(self) -> "None":
        self.fsm.advance(TerminalState.LAUNCHING)
        try:
            self._child = spawn_child(
                self.binary, self._args, self._geometry, self._env, self._cwd
            )
        except (pexpect.ExceptionPexpect, OSError) as e:
            self.fsm.advance(TerminalState.LAUNCH_FAILED)
            raise TerminalLaunchError(f"cannot launch {self.binary}: {e}") from e
        self._launched_at = time.monotonic()
        self.fsm.advance(TerminalState.AWAITING_OUTPUT)
        logger.debug("terminal_session_launched", binary=self.binary, pid=self._child.pid)

    def _drain(self) -> "None":
        # drop output left over from the previous capture
        assert self._child is not None
        while True:
            try:
                self._child.read_nonblocking(READ_CHUNK, timeout=0)
            except (pexpect.TIMEOUT, pexpect.EOF):
                return

    async def _discard_child(self) -> "None":
        child, self._child = self._child, None
        if child is not None:
            await asyncio.to_thread(teardown, child, self._exit_command)
