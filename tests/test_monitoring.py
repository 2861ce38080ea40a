"""Tests for sponge.utils.monitoring and sponge.utils.logger."""

from __future__ import annotations

import json
import logging

from sponge.utils.config import LoggingConfig
from sponge.utils.logger import JSONFormatter, setup_logging
from sponge.utils.monitoring import CrawlerMonitor, MetricsCollector


class TestCrawlerMonitor:
    def test_counters(self):
        monitor = CrawlerMonitor()
        monitor.record_admitted()
        monitor.record_admitted()
        monitor.record_outcome("expand")
        monitor.record_error("classification")
        monitor.record_download(100, 0.5)
        monitor.record_fetch(0.25)

        values = monitor.metrics.get_current_values()

        assert values["uris_admitted_total"] == 2
        assert values["uris_classified_total{outcome=expand}"] == 1
        assert values["errors_total{error_type=classification}"] == 1
        assert values["download_seconds_count"] == 1
        assert values["download_seconds_sum"] == 0.5
        assert values["fetches_total"] == 1
        assert values["fetch_seconds_sum"] == 0.25

    def test_summary(self):
        monitor = CrawlerMonitor()
        monitor.record_download(1000, 1.0)

        summary = monitor.get_summary()

        assert summary["metrics"]["download_bytes_total"] == 1000
        assert summary["runtime_seconds"] >= 0

    def test_prometheus_metrics_mirror_counters(self):
        collector = MetricsCollector(enable_prometheus=True)
        collector.increment("uris_classified_total", labels={"outcome": "download"})

        value = collector.prometheus_registry.get_sample_value(
            "sponge_uris_classified_total", {"outcome": "download"}
        )
        assert value == 1


class TestLogging:
    def test_json_formatter(self):
        record = logging.LogRecord("sponge", logging.INFO, __file__, 10, "hello %s", ("world",), None)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "sponge"

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "sponge.log"
        root = setup_logging(LoggingConfig(level="WARNING", file=str(log_file)))
        try:
            assert root.level == logging.WARNING
            assert log_file.parent.is_dir()
            assert len(root.handlers) == 2
        finally:
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)

    def test_verbose_forces_debug(self):
        root = setup_logging(LoggingConfig(), verbose=True)
        try:
            assert root.level == logging.DEBUG
        finally:
            root.handlers.clear()
            root.setLevel(logging.WARNING)
