from dataclasses import dataclass
from typing import Protocol, Sequence

from usageprobe.config import Settings
from usageprobe.models import UsageSnapshot


@dataclass(frozen=True, slots=True)
class SettingDescriptor:
    """
    SettingDescriptor describes one user-facing setting a provider
    contributes, for whatever settings surface sits on top.
    """

    key: "str"
    title: "str"
    # "choice", "toggle" or "secret"
    kind: "str"
    default: "str | bool | None"
    choices: "tuple[str, ...]" = ()
    # only shown in debug mode
    advanced: "bool" = False


class UsageProvider(Protocol):
    """
    UsageProvider stands as the common capability interface of every
    provider variant: fetch a canonical snapshot, describe its
    settings, and name the source it would use.
    """

    @property
    def name(self) -> "str": ...

    def source_label(self, settings: "Settings") -> "str": ...

    def settings_contributions(self) -> "Sequence[SettingDescriptor]": ...

    async def fetch(self, settings: "Settings") -> "UsageSnapshot": ...

    async def close(self) -> "None": ...
