"""Per-application histograms and the collector that exports them.

Each application gets its own set of unregistered ``prometheus_client``
histograms because applications may carry different extra labels. A single
``ExporterCollector`` is registered instead and merges every application's
samples into one family per metric name at scrape time.
"""

import threading

from prometheus_client import Histogram
from prometheus_client.metrics_core import Metric

NAMESPACE = "nginx"
STATIC_LABELS = ("method", "path", "status")
APPLICATION_LABEL = "application"

_HISTOGRAMS = (
    ("body_bytes", "http_body_bytes_sent",
     "Number of body bytes sent to the client"),
    ("request_seconds", "http_request_time_seconds",
     "Time spent on processing HTTP requests"),
    ("upstream_seconds", "http_upstream_response_time_seconds",
     "Time spent on receiving a response from upstream servers"),
    ("upstream_header_seconds", "http_upstream_header_time_seconds",
     "Time to receiving the first byte of the response header from upstream servers"),
)


def label_names_for(extra_label_names) -> tuple[str, ...]:
    """Label order used by every observation: method, path, status, extras."""
    return STATIC_LABELS + tuple(extra_label_names)


class AppMetrics:
    """The four request histograms of one application.

    ``label_values`` passed to the ``observe_*`` methods must be aligned with
    ``label_names``. Observations are thread-safe.
    """

    def __init__(self, application: str, label_names, buckets=None):
        self.application = application
        self.label_names = tuple(label_names)
        kwargs = {"buckets": tuple(buckets)} if buckets else {}
        labelnames = (APPLICATION_LABEL,) + self.label_names
        for attr, name, documentation in _HISTOGRAMS:
            hist = Histogram(
                name,
                documentation,
                labelnames=labelnames,
                namespace=NAMESPACE,
                registry=None,
                **kwargs,
            )
            setattr(self, attr, hist)

    def histograms(self) -> list[Histogram]:
        return [getattr(self, attr) for attr, _, _ in _HISTOGRAMS]

    def _observe(self, hist: Histogram, label_values, value: float):
        hist.labels(self.application, *label_values).observe(value)

    def observe_body_bytes(self, label_values, value: float):
        self._observe(self.body_bytes, label_values, value)

    def observe_request_time(self, label_values, value: float):
        self._observe(self.request_seconds, label_values, value)

    def observe_upstream_response_time(self, label_values, value: float):
        self._observe(self.upstream_seconds, label_values, value)

    def observe_upstream_header_time(self, label_values, value: float):
        self._observe(self.upstream_header_seconds, label_values, value)


class ExporterCollector:
    """Custom collector merging all applications into shared metric families."""

    def __init__(self):
        self._lock = threading.Lock()
        self._apps: dict[str, AppMetrics] = {}

    def add(self, metrics: AppMetrics):
        with self._lock:
            if metrics.application in self._apps:
                raise ValueError(f"application '{metrics.application}' already registered")
            self._apps[metrics.application] = metrics

    def describe(self):
        # Families are only known once applications are added.
        return []

    def collect(self):
        with self._lock:
            apps = [self._apps[name] for name in sorted(self._apps)]

        families: dict[str, Metric] = {}
        for app in apps:
            for hist in app.histograms():
                for family in hist.collect():
                    merged = families.get(family.name)
                    if merged is None:
                        merged = Metric(family.name, family.documentation, family.type)
                        families[family.name] = merged
                    merged.samples.extend(family.samples)
        return list(families.values())
