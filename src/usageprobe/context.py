import asyncio
import os
from pathlib import Path
from typing import Callable, Mapping

import structlog

from usageprobe.binaries import read_login_shell_path
from usageprobe.metrics import FetchMetrics
from usageprobe.terminal.runner import TerminalRunner
from usageprobe.terminal.session import PersistentTerminalSession

logger = structlog.get_logger()


class ProbeContext:
    """
    ProbeContext owns the state that outlives a single fetch: the
    login-shell PATH cache, the persistent CLI sessions and the
    metrics sink. Create it once, hand it to the providers and close
    it when done.
    """

    def __init__(
        self,
        env: "Mapping[str, str] | None" = None,
        home: "Path | None" = None,
        metrics: "FetchMetrics | None" = None,
        runner: "TerminalRunner | None" = None,
    ) -> "None":
        self.env: "Mapping[str, str]" = dict(os.environ if env is None else env)
        self.home: "Path" = home or Path.home()
        self.metrics = metrics
        self.runner = runner or TerminalRunner()
        self._login_path: "list[str] | None" = None
        self._login_path_loaded = False
        self._login_path_lock = asyncio.Lock()
        self._sessions: "dict[str, PersistentTerminalSession]" = {}

    async def login_path(self) -> "list[str] | None":
        """
        returns the login-shell PATH, asking the shell only once.
        """
        async with self._login_path_lock:
            if not self._login_path_loaded:
                self._login_path = await read_login_shell_path(self.env.get("SHELL"))
                self._login_path_loaded = True
                logger.debug("login_path_cached", entries=len(self._login_path or []))
        return self._login_path

    async def session(
        self,
        key: "str",
        binary: "str",
        factory: "Callable[[], PersistentTerminalSession]",
    ) -> "PersistentTerminalSession":
        """
        returns the persistent session for key, replacing it when it
        was closed or the resolved binary changed.
        """
        current = self._sessions.get(key)
        if current is not None and (current.closed or current.binary != binary):
            logger.debug("terminal_session_replaced", key=key, binary=binary)
            del self._sessions[key]
            await current.close()
            current = None
        if current is None:
            current = factory()
            self._sessions[key] = current
        return current

    def record_retry(self, provider: "str") -> "None":
        if self.metrics is not None:
            self.metrics.inc_terminal_retry(provider)

    async def close(self) -> "None":
        sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            await session.close()
