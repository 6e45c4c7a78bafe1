from typing import Protocol, Sequence

from usageprobe.models import CookieRecord


class CookieImportError(Exception):
    """
    CookieImportError is a recoverable failure of one browser cookie
    store. Callers treat it as "try the next browser".
    """

    def __init__(self, source_label: "str", message: "str") -> "None":
        super().__init__(f"{source_label}: {message}")
        self.source_label = source_label


class CookieStoreNotFoundError(CookieImportError):
    pass


class CookieStoreAccessDeniedError(CookieImportError):
    pass


class CookieStoreLoadError(CookieImportError):
    pass


class CookieSource(Protocol):
    """
    CookieSource stands for one readable cookie store, a whole browser
    (Safari) or a single browser profile (Chromium family).
    """

    @property
    def label(self) -> "str": ...

    def load(self, domains: "Sequence[str]") -> "list[CookieRecord]": ...


def normalize_domain(domain: "str") -> "str":
    return domain.strip().lstrip(".").lower()


def domain_matches(cookie_domain: "str", targets: "Sequence[str]") -> "bool":
    """
    true when the cookie's domain is one of the targets or a
    subdomain of one.
    """
    host = normalize_domain(cookie_domain)
    for target in targets:
        target = normalize_domain(target)
        if host == target or host.endswith(f".{target}"):
            return True
    return False

