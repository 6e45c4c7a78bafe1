import enum

from usageprobe.config import Config
from usageprobe.context import ProbeContext
from usageprobe.provider.base import SettingDescriptor, UsageProvider
from usageprobe.provider.claude import ClaudeProvider
from usageprobe.provider.codex import CodexProvider
from usageprobe.provider.copilot import CopilotProvider
from usageprobe.provider.minimax import MiniMaxProvider
from usageprobe.provider.warp import WarpProvider
from usageprobe.provider.zai import ZaiProvider


class ProviderID(enum.Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    ZAI = "zai"
    COPILOT = "copilot"
    MINIMAX = "minimax"
    WARP = "warp"


PROVIDER_NAMES = tuple(provider.value for provider in ProviderID)


def build_provider(
    provider_id: "ProviderID",
    context: "ProbeContext",
    config: "Config",
) -> "UsageProvider":
    if provider_id is ProviderID.CLAUDE:
        return ClaudeProvider(context, claude_home=config.claude_home)
    if provider_id is ProviderID.CODEX:
        return CodexProvider(context, home=config.codex_home)
    if provider_id is ProviderID.ZAI:
        return ZaiProvider(context)
    if provider_id is ProviderID.COPILOT:
        return CopilotProvider(context)
    if provider_id is ProviderID.MINIMAX:
        return MiniMaxProvider(context)
    if provider_id is ProviderID.WARP:
        return WarpProvider(context)
    raise ValueError(f"unknown provider: {provider_id}")


def build_registry(
    context: "ProbeContext",
    config: "Config",
    names: "list[str] | None" = None,
) -> "dict[str, UsageProvider]":
    """
    builds the providers named in config (or names), in the order
    given. Unknown names raise ValueError.
    """
    registry: "dict[str, UsageProvider]" = {}
    for name in names if names is not None else config.providers:
        provider_id = ProviderID(name)
        registry[provider_id.value] = build_provider(provider_id, context, config)
    return registry


def settings_catalog(
    registry: "dict[str, UsageProvider]",
) -> "dict[str, tuple[SettingDescriptor, ...]]":
    return {
        name: tuple(provider.settings_contributions())
        for name, provider in registry.items()
    }
