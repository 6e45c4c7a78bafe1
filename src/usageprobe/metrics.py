from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from usageprobe.models import UsageSnapshot


class FetchMetrics:
    """
    records fetch outcomes and the latest window percentages in
    Prometheus metric families. Exposition is left to the caller.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._fetch_duration: "Histogram" = Histogram(
            "usageprobe_fetch_duration_seconds",
            "Duration of provider usage fetches",
            ["provider", "source"],
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "usageprobe_fetch_errors_total",
            "Total number of failed fetches by provider and error kind",
            ["provider", "kind"],
            registry=registry,
        )
        self._terminal_retries: "Counter" = Counter(
            "usageprobe_terminal_retries_total",
            "Total number of widened-geometry terminal capture retries",
            ["provider"],
            registry=registry,
        )
        self._window_used: "Gauge" = Gauge(
            "usageprobe_window_used_percent",
            "Used percent of the latest rate window per slot",
            ["provider", "slot"],
            registry=registry,
        )
        self._last_success: "Gauge" = Gauge(
            "usageprobe_last_fetch_success_timestamp_seconds",
            "Unix timestamp of last successful fetch per provider",
            ["provider"],
            registry=registry,
        )

    def observe_fetch_duration(
        self, provider: "str", source: "str", duration_seconds: "float"
    ) -> "None":
        self._fetch_duration.labels(provider=provider, source=source).observe(
            duration_seconds
        )

    def inc_fetch_error(self, provider: "str", kind: "str") -> "None":
        self._fetch_errors.labels(provider=provider, kind=kind).inc()

    def inc_terminal_retry(self, provider: "str") -> "None":
        self._terminal_retries.labels(provider=provider).inc()

    def update_snapshot(self, snapshot: "UsageSnapshot") -> "None":
        """
        sets the window gauges from a snapshot and marks the fetch as
        successful at the snapshot's update time.
        """
        for slot, window in snapshot.windows().items():
            self._window_used.labels(provider=snapshot.provider, slot=slot).set(
                window.used_percent
            )
        self._last_success.labels(provider=snapshot.provider).set(
            snapshot.updated_at.timestamp()
        )
