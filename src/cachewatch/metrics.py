from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class MonitorMetrics:
    """
    exposes the monitor's own activity as Prometheus metrics.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._samples: "Counter" = Counter(
            "cachewatch_samples_total",
            "Samples recorded into group statistics",
            ["cli_key"],
            registry=registry,
        )
        self._dropped: "Counter" = Counter(
            "cachewatch_samples_dropped_total",
            "Completion events dropped before becoming a sample",
            ["reason"],
            registry=registry,
        )
        self._alerts: "Counter" = Counter(
            "cachewatch_alerts_total",
            "Cache anomaly alerts emitted",
            ["reason"],
            registry=registry,
        )
        self._alerts_suppressed: "Counter" = Counter(
            "cachewatch_alerts_suppressed_total",
            "Cache anomaly alerts suppressed by per-group dedup",
            registry=registry,
        )
        self._self_check_failures: "Counter" = Counter(
            "cachewatch_self_check_failures_total",
            "Ring buffer self-check mismatches",
            registry=registry,
        )
        self._notice_failures: "Counter" = Counter(
            "cachewatch_notice_failures_total",
            "Notices that could not be delivered",
            ["level"],
            registry=registry,
        )
        self._ingest_errors: "Counter" = Counter(
            "cachewatch_ingest_errors_total",
            "Unexpected errors while ingesting gateway events",
            ["stage"],
            registry=registry,
        )
        self._tracked_groups: "Gauge" = Gauge(
            "cachewatch_tracked_groups",
            "Number of (cli, provider, model) groups currently tracked",
            registry=registry,
        )
        self._enabled: "Gauge" = Gauge(
            "cachewatch_enabled",
            "1 when the cache anomaly monitor is enabled",
            registry=registry,
        )
        self._evaluation_duration: "Histogram" = Histogram(
            "cachewatch_evaluation_duration_seconds",
            "Duration of evaluation cycles",
            registry=registry,
        )

    def inc_sample(self, cli_key: "str") -> "None":
        self._samples.labels(cli_key=cli_key).inc()

    def inc_dropped(self, reason: "str") -> "None":
        self._dropped.labels(reason=reason).inc()

    def inc_alert(self, reason: "str") -> "None":
        self._alerts.labels(reason=reason).inc()

    def inc_alert_suppressed(self) -> "None":
        self._alerts_suppressed.inc()

    def inc_self_check_failure(self) -> "None":
        self._self_check_failures.inc()

    def inc_notice_failure(self, level: "str") -> "None":
        self._notice_failures.labels(level=level).inc()

    def inc_ingest_error(self, stage: "str") -> "None":
        self._ingest_errors.labels(stage=stage).inc()

    def set_tracked_groups(self, count: "int") -> "None":
        self._tracked_groups.set(count)

    def set_enabled(self, enabled: "bool") -> "None":
        self._enabled.set(1 if enabled else 0)

    def observe_evaluation_duration(self, duration_seconds: "float") -> "None":
        self._evaluation_duration.observe(duration_seconds)
