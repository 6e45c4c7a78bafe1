import pytest
from prometheus_client import CollectorRegistry

from usageprobe.collector import Collector
from usageprobe.config import Settings
from usageprobe.errors import AuthenticationError, UnexpectedError, UsageError
from usageprobe.metrics import FetchMetrics
from usageprobe.models import RateWindow, UsageSnapshot


class MockProvider:
    """
    A mock provider that returns a pre-configured snapshot.
    """

    def __init__(self, snapshot: "UsageSnapshot") -> "None":
        self._snapshot = snapshot
        self.closed = False

    @property
    def name(self) -> "str":
        return self._snapshot.provider

    def source_label(self, settings: "Settings") -> "str":
        return "Mock"

    def settings_contributions(self) -> "list":
        return []

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        return self._snapshot

    async def close(self) -> "None":
        self.closed = True


class FailingProvider:
    """
    A mock provider that always raises on fetch.
    """

    @property
    def name(self) -> "str":
        return "failing"

    def source_label(self, settings: "Settings") -> "str":
        return "Failing"

    def settings_contributions(self) -> "list":
        return []

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        raise AuthenticationError("token expired")

    async def close(self) -> "None":
        pass


class CrashingProvider(FailingProvider):
    """
    A mock provider whose fetch fails outside the UsageError hierarchy.
    """

    @property
    def name(self) -> "str":
        return "crashing"

    async def fetch(self, settings: "Settings") -> "UsageSnapshot":
        raise PermissionError("/home/user/.cache/usageprobe: Permission denied")


def _snapshot(provider: "str" = "mock") -> "UsageSnapshot":
    return UsageSnapshot(
        provider=provider,
        source="api",
        primary=RateWindow(used_percent=25.0, window_minutes=300),
    )


class TestCollector:
    @pytest.mark.asyncio
    async def test_fetch_records_metrics(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        metrics = FetchMetrics(registry=registry)
        collector = Collector({"mock": MockProvider(_snapshot())}, metrics)

        snapshot = await collector.fetch("mock", Settings())

        assert snapshot.primary.used_percent == 25.0
        assert registry.get_sample_value(
            "usageprobe_window_used_percent",
            {"provider": "mock", "slot": "primary"},
        ) == 25.0
        assert registry.get_sample_value(
            "usageprobe_fetch_duration_seconds_count",
            {"provider": "mock", "source": "api"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_fetch_reraises_and_counts_errors(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        metrics = FetchMetrics(registry=registry)
        collector = Collector({"failing": FailingProvider()}, metrics)

        with pytest.raises(AuthenticationError):
            await collector.fetch("failing", Settings())

        assert registry.get_sample_value(
            "usageprobe_fetch_errors_total",
            {"provider": "failing", "kind": "auth"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_fetch_all_isolates_failures(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        collector = Collector(
            {"mock": MockProvider(_snapshot()), "failing": FailingProvider()},
            FetchMetrics(registry=registry),
        )

        outcomes = await collector.fetch_all(Settings())

        assert [o.provider for o in outcomes] == ["mock", "failing"]
        assert outcomes[0].ok
        assert outcomes[0].source_label == "Mock"
        assert not outcomes[1].ok
        assert isinstance(outcomes[1].error, UsageError)
        assert str(outcomes[1].error) == "token expired"

    @pytest.mark.asyncio
    async def test_fetch_all_survives_unexpected_exception(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        collector = Collector(
            {"crashing": CrashingProvider(), "mock": MockProvider(_snapshot())},
            FetchMetrics(registry=registry),
        )

        outcomes = await collector.fetch_all(Settings())

        assert [o.provider for o in outcomes] == ["crashing", "mock"]
        assert outcomes[1].ok
        error = outcomes[0].error
        assert isinstance(error, UnexpectedError)
        assert error.kind == "unknown"
        assert "PermissionError" in str(error)
        assert isinstance(error.__cause__, PermissionError)
        assert registry.get_sample_value(
            "usageprobe_fetch_errors_total",
            {"provider": "crashing", "kind": "unknown"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_works_without_metrics(self) -> "None":
        collector = Collector({"mock": MockProvider(_snapshot())})
        outcomes = await collector.fetch_all(Settings())
        assert outcomes[0].snapshot.provider == "mock"

    @pytest.mark.asyncio
    async def test_close_closes_providers(self) -> "None":
        provider = MockProvider(_snapshot())
        collector = Collector({"mock": provider})
        await collector.close()
        assert provider.closed
