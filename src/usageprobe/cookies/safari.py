from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import browser_cookie3
import structlog

from usageprobe.cookies.base import (
    CookieStoreAccessDeniedError,
    CookieStoreLoadError,
    CookieStoreNotFoundError,
    domain_matches,
    normalize_domain,
)
from usageprobe.models import CookieRecord

logger = structlog.get_logger()

SAFARI_COOKIE_PATHS = (
    Path("Library/Cookies/Cookies.binarycookies"),
    Path("Library/Containers/com.apple.Safari/Data/Library/Cookies/Cookies.binarycookies"),
)

# (binarycookies path, domain) -> cookies with name/value/domain
SafariLoader = Callable[[str, str], Iterable[Any]]


def browser_cookie3_safari(cookie_file: "str", domain: "str") -> "Iterable[Any]":
    return browser_cookie3.safari(cookie_file=cookie_file, domain_name=domain)


class SafariCookieSource:
    """
    SafariCookieSource reads Safari's on-disk binarycookies store. It
    never needs an OS secret-store prompt, so it is tried before
    Chromium.
    """

    def __init__(
        self,
        paths: "Sequence[Path] | None" = None,
        home: "Path | None" = None,
        loader: "SafariLoader" = browser_cookie3_safari,
    ) -> "None":
        if paths is None:
            home = home or Path.home()
            paths = [home / relative for relative in SAFARI_COOKIE_PATHS]
        self._paths = list(paths)
        self._loader = loader

    @property
    def label(self) -> "str":
        return "Safari"

    def _read(self, path: "Path", domains: "Sequence[str]") -> "list[CookieRecord]":
        records: "list[CookieRecord]" = []
        seen: "set[tuple[str, str]]" = set()
        for domain in domains:
            for cookie in self._loader(str(path), domain):
                cookie_domain = normalize_domain(getattr(cookie, "domain", "") or "")
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
                        domain=cookie_domain,
                        source_label=self.label,
                    )
                )
        return records

    def load(self, domains: "Sequence[str]") -> "list[CookieRecord]":
        existing = [path for path in self._paths if path.exists()]
        if not existing:
            raise CookieStoreNotFoundError(self.label, "no binarycookies file found")

        denied: "Path | None" = None
        for path in existing:
            try:
                records = self._read(path, domains)
            except PermissionError:
                logger.debug("safari_cookie_file_denied", path=str(path))
                denied = path
                continue
            except Exception as e:
                logger.warning("safari_cookie_file_unreadable", path=str(path), error=str(e))
                raise CookieStoreLoadError(self.label, f"{path}: {e}") from e
            if records:
                return records

        if denied is not None:
            raise CookieStoreAccessDeniedError(
                self.label,
                f"cannot read {denied} (grant Full Disk Access)",
            )
        return []
