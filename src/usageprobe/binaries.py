import asyncio
import os
import shutil
from pathlib import Path
from typing import Mapping, Sequence

import structlog

logger = structlog.get_logger()

FALLBACK_DIRS = (
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "~/.local/bin",
    "~/bin",
    "~/.bun/bin",
    "~/.npm-global/bin",
)

LOGIN_SHELL_TIMEOUT_SECONDS = 2.0


def _is_executable(path: "Path") -> "bool":
    return path.is_file() and os.access(path, os.X_OK)


def locate_binary(
    name: "str",
    override_env_key: "str | None" = None,
    env: "Mapping[str, str] | None" = None,
    login_path: "Sequence[str] | None" = None,
    fallback_dirs: "Sequence[str]" = FALLBACK_DIRS,
) -> "str | None":
    """
    finds a CLI binary. Order: explicit path from override_env_key,
    the process PATH, the login-shell PATH, then common install dirs.
    """
    env = os.environ if env is None else env
    if override_env_key:
        override = env.get(override_env_key, "").strip()
        if override:
            path = Path(override).expanduser()
            if _is_executable(path):
                return str(path)
            logger.warning("binary_override_not_executable", key=override_env_key, path=override)

    found = shutil.which(name, path=env.get("PATH"))
    if found:
        return found

    if login_path:
        found = shutil.which(name, path=os.pathsep.join(login_path))
        if found:
            return found

    for directory in fallback_dirs:
        candidate = Path(directory).expanduser() / name
        if _is_executable(candidate):
            return str(candidate)
    return None


async def read_login_shell_path(
    shell: "str | None" = None,
    timeout: "float" = LOGIN_SHELL_TIMEOUT_SECONDS,
) -> "list[str] | None":
    """
    asks the user's login shell for its PATH, which often has entries
    (nvm, bun, homebrew) a GUI or cron-launched process lacks.
    """
    shell = shell or os.environ.get("SHELL") or "/bin/sh"
    try:
        proc = await asyncio.create_subprocess_exec(
            shell,
            "-l",
            "-c",
            'printf "%s" "$PATH"',
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("login_shell_path_failed", shell=shell, error=str(e))
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.debug("login_shell_path_timeout", shell=shell)
        return None

    if proc.returncode != 0:
        return None
    text = stdout.decode(errors="replace").strip()
    entries = [entry for entry in text.split(os.pathsep) if entry]
    return entries or None
