# doh_proxy/metrics.py
# Version: 1.0.0
# Metrics collection for DoH proxy monitoring

"""
DoH Proxy Metrics Collection Module

Provides Prometheus-compatible metrics for request volume, upstream
latency and failover behaviour.
"""

import logging
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info

logger = logging.getLogger(__name__)

METRIC_NAMESPACE = "doh_proxy"
LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """Centralized metrics collection for the DoH proxy"""

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        self.enabled = enabled
        self.registry = registry if registry is not None else REGISTRY

        if not self.enabled:
            logger.debug("Metrics collection disabled")
            return

        self._init_request_metrics()
        self._init_upstream_metrics()
        self.info = Info(
            f"{METRIC_NAMESPACE}_build", "DoH proxy version information", registry=self.registry
        )

        logger.info("Metrics collector initialized")

    def _init_request_metrics(self):
        self.requests_total = Counter(
            f"{METRIC_NAMESPACE}_requests_total",
            "Client DoH requests by method and response status",
            ["method", "status"],
            registry=self.registry,
        )

        self.failovers_total = Counter(
            f"{METRIC_NAMESPACE}_failovers_total",
            "Requests whose primary provider failed at transport level",
            registry=self.registry,
        )

        self.exhausted_total = Counter(
            f"{METRIC_NAMESPACE}_all_providers_failed_total",
            "Requests answered with 503 after every provider failed",
            registry=self.registry,
        )

    def _init_upstream_metrics(self):
        self.upstream_attempts = Counter(
            f"{METRIC_NAMESPACE}_upstream_attempts_total",
            "Upstream attempts by provider and outcome",
            ["provider", "outcome"],
            registry=self.registry,
        )

        self.upstream_latency = Histogram(
            f"{METRIC_NAMESPACE}_upstream_latency_seconds",
            "Upstream attempt latency",
            ["provider"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )

    def record_request(self, method: str, status: int):
        if self.enabled:
            self.requests_total.labels(method=method, status=str(status)).inc()

    def record_attempt(self, provider: str, outcome: str, latency: float):
        if not self.enabled:
            return
        self.upstream_attempts.labels(provider=provider, outcome=outcome).inc()
        self.upstream_latency.labels(provider=provider).observe(latency)

    def record_failover(self):
        if self.enabled:
            self.failovers_total.inc()

    def record_exhausted(self):
        if self.enabled:
            self.exhausted_total.inc()

    def set_info(self, version: str, provider_count: int):
        if self.enabled:
            self.info.info({"version": version, "providers": str(provider_count)})


def metrics_resource(collector: MetricsCollector):
    """twisted.web resource exposing the collector's registry"""
    from prometheus_client.twisted import MetricsResource

    return MetricsResource(registry=collector.registry)
