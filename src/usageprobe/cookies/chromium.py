import re
import sqlite3
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import browser_cookie3
import structlog

from usageprobe.cookies.base import (
    CookieStoreAccessDeniedError,
    CookieStoreLoadError,
    CookieStoreNotFoundError,
    domain_matches,
)
from usageprobe.models import CookieRecord

logger = structlog.get_logger()

_PROFILE_NUMBER = re.compile(r"^Profile (\d+)$")


@dataclass(frozen=True, slots=True)
class ChromiumBrowser:
    """
    ChromiumBrowser describes one Chromium-family browser: the label
    used in messages, the browser_cookie3 loader that knows its
    decryption key, and its user-data roots relative to $HOME.
    """

    name: "str"
    loader: "str"
    mac_root: "str"
    linux_root: "str | None" = None

    def root(self, home: "Path") -> "Path | None":
        if sys.platform == "darwin":
            return home / "Library" / "Application Support" / self.mac_root
        if self.linux_root is None:
            return None
        return home / self.linux_root


CHROMIUM_BROWSERS: "tuple[ChromiumBrowser, ...]" = (
    ChromiumBrowser("Chrome", "chrome", "Google/Chrome", ".config/google-chrome"),
    ChromiumBrowser(
        "Chrome Beta", "chrome", "Google/Chrome Beta", ".config/google-chrome-beta"
    ),
    ChromiumBrowser(
        "Chrome Canary",
        "chrome",
        "Google/Chrome Canary",
        ".config/google-chrome-unstable",
    ),
    ChromiumBrowser("Arc", "arc", "Arc/User Data"),
    ChromiumBrowser("Arc Beta", "arc", "Arc Beta/User Data"),
    ChromiumBrowser("Arc Canary", "arc", "Arc Canary/User Data"),
    ChromiumBrowser("Chromium", "chromium", "Chromium", ".config/chromium"),
    ChromiumBrowser(
        "Brave",
        "brave",
        "BraveSoftware/Brave-Browser",
        ".config/BraveSoftware/Brave-Browser",
    ),
    ChromiumBrowser("Edge", "edge", "Microsoft Edge", ".config/microsoft-edge"),
)


@dataclass(frozen=True, slots=True)
class ChromiumProfile:
    browser: "ChromiumBrowser"
    path: "Path"

    @property
    def label(self) -> "str":
        return f"{self.browser.name} {self.path.name}"

    @property
    def cookie_db(self) -> "Path | None":
        for candidate in (self.path / "Network" / "Cookies", self.path / "Cookies"):
            if candidate.is_file():
                return candidate
        return None

    @property
    def local_storage_dir(self) -> "Path":
        return self.path / "Local Storage" / "leveldb"


def _profile_sort_key(path: "Path") -> "tuple[int, int, str]":
    if path.name == "Default":
        return (0, 0, path.name)
    match = _PROFILE_NUMBER.match(path.name)
    if match:
        return (1, int(match.group(1)), path.name)
    return (2, 0, path.name)


def discover_profiles(
    home: "Path | None" = None,
    browsers: "Sequence[ChromiumBrowser]" = CHROMIUM_BROWSERS,
) -> "list[ChromiumProfile]":
    """
    enumerates the "Default" and "Profile N" directories of every
    installed Chromium-family browser, in browser order.
    """
    home = home or Path.home()
    profiles: "list[ChromiumProfile]" = []
    for browser in browsers:
        root = browser.root(home)
        if root is None or not root.is_dir():
            continue
        try:
            entries = [
                entry
                for entry in root.iterdir()
                if entry.is_dir()
                and (entry.name == "Default" or entry.name.startswith("Profile "))
            ]
        except OSError as e:
            logger.debug("chromium_root_unreadable", root=str(root), error=str(e))
            continue
        for entry in sorted(entries, key=_profile_sort_key):
            profiles.append(ChromiumProfile(browser=browser, path=entry))
    return profiles


# (loader name, cookie db path, domain) -> cookies with name/value/domain
CookieLoader = Callable[[str, str, str], Iterable[Any]]


def browser_cookie3_loader(loader: "str", cookie_file: "str", domain: "str") -> "Iterable[Any]":
    """
    reads and decrypts one profile's cookie database. browser_cookie3
    fetches the browser's safe-storage key from the OS key store,
    which may prompt the user.
    """
    load = getattr(browser_cookie3, loader)
    return load(cookie_file=cookie_file, domain_name=domain)


class ChromiumCookieSource:
    """
    ChromiumCookieSource reads a single Chromium profile's cookies.
    """

    def __init__(
        self,
        profile: "ChromiumProfile",
        loader: "CookieLoader" = browser_cookie3_loader,
    ) -> "None":
        self._profile = profile
        self._loader = loader

    @property
    def label(self) -> "str":
        return self._profile.label

    def load(self, domains: "Sequence[str]") -> "list[CookieRecord]":
        cookie_db = self._profile.cookie_db
        if cookie_db is None:
            raise CookieStoreNotFoundError(self.label, "no Cookies database")

        records: "list[CookieRecord]" = []
        seen: "set[tuple[str, str]]" = set()
        for domain in domains:
            try:
                cookies = list(self._loader(self._profile.browser.loader, str(cookie_db), domain))
            except PermissionError as e:
                raise CookieStoreAccessDeniedError(self.label, str(e)) from e
            except (browser_cookie3.BrowserCookieError, sqlite3.Error, OSError) as e:
                raise CookieStoreLoadError(self.label, str(e)) from e
            except Exception as e:
                # keyring, DBus and bad-decrypt failures surface as arbitrary types
                logger.warning(
                    "chromium_cookie_load_failed",
                    profile=self.label,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise CookieStoreLoadError(self.label, f"{type(e).__name__}: {e}") from e

            for cookie in cookies:
                cookie_domain = getattr(cookie, "domain", "") or ""
                if not domain_matches(cookie_domain, domains):
                    continue
                key = (cookie_domain, cookie.name)
                if key in seen:
                    continue
                seen.add(key)
                records.append(
                    CookieRecord(
                        name=cookie.name,
                        value=cookie.value or "",
                        domain=cookie_domain.lstrip("."),
                        source_label=self.label,
                    )
                )
        return records


def chromium_cookie_sources(
    home: "Path | None" = None,
    loader: "CookieLoader" = browser_cookie3_loader,
) -> "list[ChromiumCookieSource]":
    return [ChromiumCookieSource(profile, loader) for profile in discover_profiles(home)]
