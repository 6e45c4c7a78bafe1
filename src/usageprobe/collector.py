import asyncio
import time
from dataclasses import dataclass

import structlog

from usageprobe.config import Settings
from usageprobe.errors import UnexpectedError, UsageError
from usageprobe.metrics import FetchMetrics
from usageprobe.models import UsageSnapshot
from usageprobe.provider.base import UsageProvider

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    provider: "str"
    source_label: "str"
    snapshot: "UsageSnapshot | None" = None
    error: "UsageError | None" = None

    @property
    def ok(self) -> "bool":
        return self.snapshot is not None


class Collector:
    """
    Collector runs one fetch per provider on demand, records the
    outcome in the metrics store and logs it. Scheduling is up to the
    caller: every call is a single pass.
    """

    def __init__(
        self,
        providers: "dict[str, UsageProvider]",
        metrics: "FetchMetrics | None" = None,
    ) -> "None":
        self._providers = providers
        self._metrics = metrics

    @property
    def provider_names(self) -> "list[str]":
        return list(self._providers)

    async def close(self) -> "None":
        """
        closes all provider sessions.
        """
        for p in self._providers.values():
            await p.close()

    async def fetch(self, name: "str", settings: "Settings") -> "UsageSnapshot":
        """
        fetches one provider's snapshot. Failures are counted and
        re-raised as a UsageError; anything else the provider raises is
        wrapped in UnexpectedError.
        """
        provider = self._providers[name]
        start = time.monotonic()
        try:
            snapshot = await provider.fetch(settings)
        except UsageError as e:
            logger.warning("usage_fetch_failed", provider=name, kind=e.kind, error=str(e))
            if self._metrics is not None:
                self._metrics.inc_fetch_error(name, e.kind)
            raise
        except Exception as e:
            logger.exception("usage_fetch_error", provider=name)
            if self._metrics is not None:
                self._metrics.inc_fetch_error(name, UnexpectedError.kind)
            raise UnexpectedError(f"{name} failed unexpectedly: {type(e).__name__}: {e}") from e

        duration = time.monotonic() - start
        logger.info(
            "usage_fetched",
            provider=name,
            source=snapshot.source,
            duration_seconds=round(duration, 3),
            windows=sorted(snapshot.windows()),
        )
        if self._metrics is not None:
            self._metrics.observe_fetch_duration(name, snapshot.source, duration)
            self._metrics.update_snapshot(snapshot)
        return snapshot

    async def fetch_all(self, settings: "Settings") -> "list[FetchOutcome]":
        """
        fetches every provider concurrently. One provider failing does
        not affect the others; outcomes keep the registry order.
        """
        tasks = [self._outcome(name, settings) for name in self._providers]
        return list(await asyncio.gather(*tasks))

    async def _outcome(self, name: "str", settings: "Settings") -> "FetchOutcome":
        label = self._providers[name].source_label(settings)
        try:
            snapshot = await self.fetch(name, settings)
        except UsageError as e:
            return FetchOutcome(provider=name, source_label=label, error=e)
        return FetchOutcome(provider=name, source_label=label, snapshot=snapshot)
