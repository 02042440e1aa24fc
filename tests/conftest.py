"""Shared pytest fixtures for the exporter test suite."""

import threading

import pytest
from prometheus_client import CollectorRegistry

from nginx_log_exporter.config import AppConfig
from nginx_log_exporter.metrics import AppMetrics, ExporterCollector
from nginx_log_exporter.monitor import build_monitors

SIMPLE_FORMAT = '"$request" $status $body_bytes_sent'


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def shutdown_event():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_monitors(tmp_path, registry, shutdown_event):
    """Build checked FileMonitors for an application whose log files live in tmp_path."""
    collector = ExporterCollector()
    registry.register(collector)

    def _make(fmt=SIMPLE_FORMAT, name="web", files=("access.log",), **app_kwargs):
        log_files = []
        for filename in files:
            path = tmp_path / filename
            path.touch()
            log_files.append(str(path))
        app = AppConfig(name=name, format=fmt, log_files=tuple(log_files), **app_kwargs).compile()
        metrics = AppMetrics(name, app.label_names, app.histogram_buckets)
        collector.add(metrics)
        return build_monitors(app, metrics, shutdown_event)

    return _make


@pytest.fixture
def sample(registry):
    """Read a histogram sample value, e.g. sample("body_bytes_sent_count", method="GET")."""

    def _sample(metric, application="web", **labels):
        return registry.get_sample_value(
            f"nginx_http_{metric}", {"application": application, **labels},
        )

    return _sample
