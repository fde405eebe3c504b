from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    write_to_textfile,
)

from codexbar.models import ProviderResult

# ProviderResult attributes exported as the `window` label
_WINDOWS: "tuple[str, ...]" = ("primary", "secondary", "tertiary")


class MetricsUpdater:
    """
    records how each resolution went and the usage it produced
    as Prometheus metrics.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._strategy_attempts: "Counter" = Counter(
            "codexbar_strategy_attempts_total",
            "Total number of strategy attempts by provider and strategy",
            ["provider", "strategy"],
            registry=registry,
        )
        self._strategy_errors: "Counter" = Counter(
            "codexbar_strategy_errors_total",
            "Total number of strategy failures by provider and strategy",
            ["provider", "strategy"],
            registry=registry,
        )
        self._resolve_duration: "Histogram" = Histogram(
            "codexbar_resolve_duration_seconds",
            "Duration of provider usage resolution",
            ["provider"],
            registry=registry,
        )
        self._last_resolve_success: "Gauge" = Gauge(
            "codexbar_last_resolve_success_timestamp_seconds",
            "Unix timestamp of last successful resolution per provider",
            ["provider"],
            registry=registry,
        )
        self._used_percent: "Gauge" = Gauge(
            "codexbar_usage_used_percent",
            "Last resolved used percentage per provider and rate-limit window",
            ["provider", "window"],
            registry=registry,
        )
        self._credits_remaining: "Gauge" = Gauge(
            "codexbar_credits_remaining",
            "Last resolved remaining credits per provider",
            ["provider"],
            registry=registry,
        )

    def inc_strategy_attempt(self, provider: "str", strategy: "str") -> "None":
        self._strategy_attempts.labels(provider=provider, strategy=strategy).inc()

    def inc_strategy_error(self, provider: "str", strategy: "str") -> "None":
        self._strategy_errors.labels(provider=provider, strategy=strategy).inc()

    def observe_resolve_duration(
        self, provider: "str", duration_seconds: "float"
    ) -> "None":
        self._resolve_duration.labels(provider=provider).observe(duration_seconds)

    def set_last_resolve_success(self, provider: "str", timestamp: "float") -> "None":
        self._last_resolve_success.labels(provider=provider).set(timestamp)

    def update_usage(self, result: "ProviderResult") -> "None":
        """
        sets the usage gauges from a resolved result. Unknown values
        are left untouched rather than reported as zero.
        """
        for window_name in _WINDOWS:
            window = getattr(result, window_name)
            if window is None or window.used_percent is None:
                continue
            self._used_percent.labels(
                provider=result.provider, window=window_name
            ).set(window.used_percent)

        if result.credits_remaining is not None:
            self._credits_remaining.labels(provider=result.provider).set(
                result.credits_remaining
            )

    def write_textfile(self, path: "str") -> "None":
        """
        dumps the registry for the node_exporter textfile collector.
        """
        write_to_textfile(path, self._registry)
