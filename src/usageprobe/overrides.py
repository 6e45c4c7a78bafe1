"""
environment and config-file overrides for provider endpoints and
tokens. An environment variable always beats a file value.
"""

import os
from pathlib import Path
from typing import Mapping

import structlog

logger = structlog.get_logger()


def _unquote(value: "str") -> "str":
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value.strip()


def _strip_comment(line: "str") -> "str":
    # a "#" only starts a comment at line start or after whitespace,
    # URLs with fragments keep working
    if line.lstrip().startswith("#"):
        return ""
    for marker in (" #", "\t#"):
        index = line.find(marker)
        if index != -1:
            line = line[:index]
    return line


def parse_config_value(text: "str", key: "str") -> "str | None":
    """
    reads `key = value` from a simple line-oriented config file.
    Lines starting with "#" and trailing " # ..." comments are
    ignored and surrounding quotes are stripped. The first
    occurrence wins.
    """
    for raw_line in text.splitlines():
        line = _strip_comment(raw_line).strip()
        if not line or "=" not in line:
            continue
        name, _, value = line.partition("=")
        if name.strip() != key:
            continue
        value = _unquote(value)
        if value:
            return value
    return None


def parse_profile_export(text: "str", key: "str") -> "str | None":
    """
    reads `KEY=value` or `export KEY=value` lines from a shell
    profile. The last assignment wins, as it would when sourced.
    """
    found: "str | None" = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        name, sep, value = line.partition("=")
        if not sep or name.strip() != key:
            continue
        value = _unquote(_strip_comment(value))
        if value:
            found = value
    return found


def _read_text(path: "Path") -> "str | None":
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("override_file_unreadable", path=str(path), error=str(e))
        return None


def resolve_setting(
    env_key: "str",
    config_path: "Path | None" = None,
    config_key: "str | None" = None,
    env: "Mapping[str, str] | None" = None,
) -> "str | None":
    """
    returns the environment value for env_key when set, otherwise
    the config file value for config_key, otherwise None.
    """
    env = os.environ if env is None else env
    value = _unquote(env.get(env_key, ""))
    if value:
        return value
    if config_path is None or config_key is None:
        return None
    text = _read_text(config_path)
    if text is None:
        return None
    return parse_config_value(text, config_key)


def resolve_token(
    env_key: "str",
    profile_paths: "list[Path] | None" = None,
    env: "Mapping[str, str] | None" = None,
) -> "str | None":
    """
    returns an API token from the environment, falling back to
    `KEY=value` lines in the given shell profiles.
    """
    env = os.environ if env is None else env
    value = _unquote(env.get(env_key, ""))
    if value:
        return value
    if profile_paths is None:
        profile_paths = [Path.home() / ".profile"]
    for path in profile_paths:
        text = _read_text(path)
        if text is None:
            continue
        value = parse_profile_export(text, env_key)
        if value:
            logger.debug("token_from_profile", key=env_key, path=str(path))
            return value
    return None


def with_scheme(value: "str") -> "str":
    """
    adds https:// to a bare host, keeps explicit schemes.
    """
    value = value.strip()
    if "://" in value:
        return value
    return f"https://{value}"
