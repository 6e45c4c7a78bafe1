"""
token scraping from Chromium local storage. The leveldb segment
files are scanned as raw bytes for a marker key; nothing is decoded
as leveldb.
"""

import re
from pathlib import Path

import structlog

from usageprobe.cookies.chromium import ChromiumProfile
from usageprobe.models import LocalStorageToken

logger = structlog.get_logger()

SEGMENT_SUFFIXES = (".ldb", ".log")
# bounded gap between the key and its value
_MAX_GAP = 64


def token_pattern(marker: "str") -> "re.Pattern[str]":
    return re.compile(
        re.escape(marker) + r"[^A-Za-z0-9_-]{0,%d}([A-Za-z0-9_-]{20,})" % _MAX_GAP
    )


def _decode(data: "bytes") -> "str":
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def last_token_match(contents: "str", marker: "str") -> "str | None":
    """
    returns the last token written after marker. Segments are
    append-only, so the last write is the current value.
    """
    if marker not in contents:
        return None
    matches = token_pattern(marker).findall(contents)
    return matches[-1] if matches else None


def _mtime(path: "Path") -> "float":
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def segment_files(leveldb_dir: "Path") -> "list[Path]":
    """
    lists .ldb and .log segments, most recently modified first.
    """
    try:
        files = [
            entry
            for entry in leveldb_dir.iterdir()
            if entry.is_file() and entry.suffix.lower() in SEGMENT_SUFFIXES
        ]
    except OSError:
        return []
    return sorted(files, key=_mtime, reverse=True)


def scan_leveldb_dir(
    leveldb_dir: "Path", marker: "str"
) -> "tuple[str, Path] | None":
    for segment in segment_files(leveldb_dir):
        try:
            contents = _decode(segment.read_bytes())
        except OSError as e:
            logger.debug("local_storage_segment_unreadable", path=str(segment), error=str(e))
            continue
        token = last_token_match(contents, marker)
        if token is not None:
            return token, segment
    return None


def find_local_storage_tokens(
    profiles: "list[ChromiumProfile]",
    marker: "str",
) -> "list[LocalStorageToken]":
    """
    scans each profile's local storage for marker and returns one
    token per profile that has it, in profile order.
    """
    tokens: "list[LocalStorageToken]" = []
    for profile in profiles:
        leveldb_dir = profile.local_storage_dir
        if not leveldb_dir.is_dir():
            continue
        found = scan_leveldb_dir(leveldb_dir, marker)
        if found is None:
            continue
        token, segment = found
        logger.debug("local_storage_token_found", source=profile.label, marker=marker)
        tokens.append(
            LocalStorageToken(token=token, source_label=profile.label, path=str(segment))
        )
    return tokens
