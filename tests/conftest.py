import struct
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry

MAGIC = b"cook"
PAGE_HEADER = b"\x00\x00\x01\x00"
# size, flags, string offsets, then expiry and creation since 2001-01-01
RECORD_HEADER = struct.Struct("<IIIIIIII8xdd")


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


def _record(domain: "str", name: "str", path: "str", value: "str") -> "bytes":
    strings = b""
    offsets = []
    for text in (domain, name, path, value):
        offsets.append(RECORD_HEADER.size + len(strings))
        strings += text.encode() + b"\x00"
    size = RECORD_HEADER.size + len(strings)
    header = RECORD_HEADER.pack(size, 0, 0x1, 0, *offsets, 900000000.0, 600000000.0)
    return header + strings


def build_binary_cookies(cookies: "list[tuple[str, str, str]]") -> "bytes":
    """
    builds a one-page binarycookies blob from (domain, name, value)
    triples.
    """
    records = [_record(domain, name, "/", value) for domain, name, value in cookies]
    table_size = 8 + 4 * len(records) + 4
    offsets = []
    cursor = table_size
    for record in records:
        offsets.append(cursor)
        cursor += len(record)
    page = (
        PAGE_HEADER
        + struct.pack("<I", len(records))
        + struct.pack(f"<{len(records)}I", *offsets)
        + b"\x00\x00\x00\x00"
        + b"".join(records)
    )
    return MAGIC + struct.pack(">I", 1) + struct.pack(">I", len(page)) + page


@pytest.fixture()
def binary_cookies() -> "Callable[[list[tuple[str, str, str]]], bytes]":
    return build_binary_cookies
