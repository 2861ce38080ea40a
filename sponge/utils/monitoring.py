"""
Monitoring and metrics collection for the crawler.
"""

import time
import logging
from collections import defaultdict
from typing import Any, Dict, Optional

try:
    from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False


class MetricsCollector:
    """Collects crawl counters in memory and mirrors them to Prometheus."""

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.counters: Dict[str, float] = defaultdict(float)
        self.enable_prometheus = enable_prometheus and PROMETHEUS_AVAILABLE
        self.prometheus_port = prometheus_port

        # Prometheus metrics
        self.prometheus_registry = None
        self.prometheus_metrics = {}

        if enable_prometheus and not PROMETHEUS_AVAILABLE:
            self.logger.warning("Prometheus client not available, disabling Prometheus metrics")

        if self.enable_prometheus:
            self._setup_prometheus()

    def _setup_prometheus(self):
        """Setup Prometheus metrics."""
        self.prometheus_registry = CollectorRegistry()

        self.prometheus_metrics = {
            'uris_admitted_total': Counter(
                'sponge_uris_admitted_total',
                'Total number of URIs admitted for processing',
                registry=self.prometheus_registry
            ),
            'uris_classified_total': Counter(
                'sponge_uris_classified_total',
                'Total number of URIs classified, by outcome',
                ['outcome'],
                registry=self.prometheus_registry
            ),
            'downloads_total': Counter(
                'sponge_downloads_total',
                'Total number of completed downloads',
                registry=self.prometheus_registry
            ),
            'download_bytes_total': Counter(
                'sponge_download_bytes_total',
                'Total bytes written to disk',
                registry=self.prometheus_registry
            ),
            'errors_total': Counter(
                'sponge_errors_total',
                'Total number of crawl errors',
                ['error_type'],
                registry=self.prometheus_registry
            ),
            'fetches_total': Counter(
                'sponge_fetches_total',
                'Total number of classification fetches',
                registry=self.prometheus_registry
            ),
            'fetch_seconds': Histogram(
                'sponge_fetch_seconds',
                'Latency of classification fetches',
                registry=self.prometheus_registry
            ),
            'download_seconds': Histogram(
                'sponge_download_seconds',
                'Wall-clock duration of file transfers',
                registry=self.prometheus_registry
            )
        }

        self.logger.info("Prometheus metrics initialized")

    def start_prometheus_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        start_http_server(self.prometheus_port, registry=self.prometheus_registry)
        self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")

    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None):
        """Increment a counter metric."""
        key = name
        if labels:
            key += '{' + ','.join(f"{k}={v}" for k, v in sorted(labels.items())) + '}'
        self.counters[key] += value

        if self.enable_prometheus and name in self.prometheus_metrics:
            metric = self.prometheus_metrics[name]
            (metric.labels(**labels) if labels else metric).inc(value)

    def observe(self, name: str, value: float):
        """Record a histogram observation."""
        self.counters[f"{name}_count"] += 1
        self.counters[f"{name}_sum"] += value

        if self.enable_prometheus and name in self.prometheus_metrics:
            self.prometheus_metrics[name].observe(value)

    def get_current_values(self) -> Dict[str, float]:
        return dict(self.counters)


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector or MetricsCollector()
        self.start_time = time.monotonic()

    def record_admitted(self):
        self.metrics.increment('uris_admitted_total')

    def record_outcome(self, outcome: str):
        self.metrics.increment('uris_classified_total', labels={'outcome': outcome})

    def record_fetch(self, latency: float):
        self.metrics.increment('fetches_total')
        self.metrics.observe('fetch_seconds', latency)

    def record_download(self, size: int, elapsed: float):
        self.metrics.increment('downloads_total')
        self.metrics.increment('download_bytes_total', size)
        self.metrics.observe('download_seconds', elapsed)

    def record_error(self, error_type: str):
        self.metrics.increment('errors_total', labels={'error_type': error_type})

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.monotonic() - self.start_time
        downloaded = current_values.get('download_bytes_total', 0)

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'bytes_per_second': downloaded / runtime if runtime > 0 else 0,
            }
        }
