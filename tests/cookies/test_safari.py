from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable

import pytest

from usageprobe.cookies.base import (
    CookieStoreAccessDeniedError,
    CookieStoreLoadError,
    CookieStoreNotFoundError,
    domain_matches,
)
from usageprobe.cookies.safari import SafariCookieSource

BuildCookies = Callable[[list], bytes]


class FailingLoader:
    def __init__(self, error: "Exception") -> "None":
        self._error = error
        self.paths: "list[str]" = []

    def __call__(self, cookie_file: "str", domain: "str") -> "Iterable[Any]":
        self.paths.append(cookie_file)
        raise self._error


class TestSafariCookieSource:
    def test_loads_matching_domains(
        self, tmp_path: "Path", binary_cookies: "BuildCookies"
    ) -> "None":
        path = tmp_path / "Cookies.binarycookies"
        path.write_bytes(
            binary_cookies(
                [
                    (".claude.ai", "sessionKey", "sk-ant-1"),
                    ("api.claude.ai", "cf", "x"),
                    ("notclaude.ai", "sessionKey", "sk-ant-evil"),
                ]
            )
        )
        records = SafariCookieSource(paths=[path]).load(["claude.ai"])
        assert sorted((r.domain, r.name, r.value) for r in records) == [
            ("api.claude.ai", "cf", "x"),
            ("claude.ai", "sessionKey", "sk-ant-1"),
        ]
        assert all(r.source_label == "Safari" for r in records)

    def test_missing_store(self, tmp_path: "Path") -> "None":
        with pytest.raises(CookieStoreNotFoundError):
            SafariCookieSource(home=tmp_path).load(["claude.ai"])

    def test_corrupt_store(self, tmp_path: "Path") -> "None":
        path = tmp_path / "Cookies.binarycookies"
        path.write_bytes(b"garbage")
        with pytest.raises(CookieStoreLoadError):
            SafariCookieSource(paths=[path]).load(["claude.ai"])

    def test_unexpected_loader_error_is_wrapped(self, tmp_path: "Path") -> "None":
        path = tmp_path / "Cookies.binarycookies"
        path.write_bytes(b"cook")
        loader = FailingLoader(UnicodeDecodeError("utf-8", b"\xff", 0, 1, "bad byte"))
        with pytest.raises(CookieStoreLoadError) as excinfo:
            SafariCookieSource(paths=[path], loader=loader).load(["claude.ai"])
        assert excinfo.value.source_label == "Safari"

    def test_denied_store(self, tmp_path: "Path") -> "None":
        path = tmp_path / "Cookies.binarycookies"
        path.write_bytes(b"cook")
        loader = FailingLoader(PermissionError("Operation not permitted"))
        with pytest.raises(CookieStoreAccessDeniedError) as excinfo:
            SafariCookieSource(paths=[path], loader=loader).load(["claude.ai"])
        assert "Full Disk Access" in str(excinfo.value)

    def test_falls_through_to_container_store(self, tmp_path: "Path") -> "None":
        legacy = tmp_path / "legacy.binarycookies"
        container = tmp_path / "container.binarycookies"
        legacy.write_bytes(b"cook")
        container.write_bytes(b"cook")

        def loader(cookie_file: "str", domain: "str") -> "Iterable[Any]":
            if cookie_file == str(legacy):
                return []
            return [SimpleNamespace(domain=".claude.ai", name="sessionKey", value="sk-ant-2")]

        records = SafariCookieSource(paths=[legacy, container], loader=loader).load(
            ["claude.ai"]
        )
        assert [(r.domain, r.value) for r in records] == [("claude.ai", "sk-ant-2")]


class TestDomainMatches:
    def test_exact_and_subdomain(self) -> "None":
        assert domain_matches(".claude.ai", ["claude.ai"])
        assert domain_matches("www.Claude.ai", ["claude.ai"])

    def test_suffix_lookalike(self) -> "None":
        assert not domain_matches("evilclaude.ai", ["claude.ai"])
