"""
Tests for logging configuration and metric helpers.
"""

import json
import logging

import pytest
import structlog

from storyfetch.config import MonitoringConfig
from storyfetch.observability import METRICS, configure_logging, gauge, increment, start_metrics_server
from tests.helpers import metric_delta


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.unit
class TestLogging:
    def test_file_logging_renders_json(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "storyfetch.log"
        configure_logging(MonitoringConfig(log_level="info", log_file=str(log_file)))

        structlog.get_logger("storyfetch.test").info("Queue created", ceiling=50)
        for handler in logging.getLogger().handlers:
            handler.flush()

        record = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert record["event"] == "Queue created"
        assert record["ceiling"] == 50
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_is_applied(self, restore_logging):
        configure_logging(MonitoringConfig(log_level="WARNING"))
        assert logging.getLogger().level == logging.WARNING


@pytest.mark.unit
class TestMetrics:
    def test_helpers_update_collectors(self):
        with metric_delta(METRICS["relations_resolved_total"], 3, labels={"kind": "relation"}):
            increment("relations_resolved_total", 3, labels={"kind": "relation"})

        gauge("throttle_pending", 4, labels={"ceiling": "15"})
        assert METRICS["throttle_pending"].labels(ceiling="15")._value.get() == 4

    def test_unknown_metric_is_ignored(self):
        increment("not_a_metric")

    def test_metrics_server_disabled_without_port(self):
        assert start_metrics_server(None) is False
