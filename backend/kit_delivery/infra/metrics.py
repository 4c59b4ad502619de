import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.http_requests = None
            self.http_5xx = None
            self.http_latency = None
            self.rate_limit_blocks = None
            self.auth_failures = None
            self.cep_zone_resolutions = None
            self.cep_zone_writes = None
            return

        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, route and status.",
            ["method", "path", "status"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP 5xx responses by method and route.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency by method, route and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.rate_limit_blocks = Counter(
            "rate_limit_blocks_total",
            "Requests rejected by the rate limiter.",
            ["bucket"],
            registry=self.registry,
        )
        self.auth_failures = Counter(
            "auth_failures_total",
            "Authentication failures by source and reason.",
            ["source", "reason"],
            registry=self.registry,
        )
        self.cep_zone_resolutions = Counter(
            "cep_zone_resolutions_total",
            "CEP zone resolution outcomes.",
            ["outcome"],
            registry=self.registry,
        )
        self.cep_zone_writes = Counter(
            "cep_zone_writes_total",
            "Admin CEP zone write outcomes by operation.",
            ["operation", "outcome"],
            registry=self.registry,
        )

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        self.http_requests.labels(method=method, path=path, status=str(status_code)).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_rate_limit_block(self, bucket: str) -> None:
        if not self.enabled or self.rate_limit_blocks is None:
            return
        self.rate_limit_blocks.labels(bucket=bucket or "unknown").inc()

    def record_auth_failure(self, source: str, reason: str) -> None:
        if not self.enabled or self.auth_failures is None:
            return
        self.auth_failures.labels(source=source, reason=reason or "unknown").inc()

    def record_cep_zone_resolution(self, outcome: str) -> None:
        if not self.enabled or self.cep_zone_resolutions is None:
            return
        self.cep_zone_resolutions.labels(outcome=outcome or "unknown").inc()

    def record_cep_zone_write(self, operation: str, outcome: str) -> None:
        if not self.enabled or self.cep_zone_writes is None:
            return
        self.cep_zone_writes.labels(operation=operation, outcome=outcome or "unknown").inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
