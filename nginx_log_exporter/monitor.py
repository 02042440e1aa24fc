"""Per-file monitoring: tail a log file and turn each line into histogram observations."""

import logging
import os
import stat
import threading

from nginx_log_exporter.config import Application
from nginx_log_exporter.errors import LineParseError, LogFileError, RequestParseError
from nginx_log_exporter.metrics import AppMetrics
from nginx_log_exporter.request import parse_request, parse_upstream_time
from nginx_log_exporter.rules import Outcome
from nginx_log_exporter.tailer import FileTailer

logger = logging.getLogger(__name__)


class FileMonitor:
    """Collects metrics for a single log file of one application.

    Lines are handled strictly in arrival order by ``process_line``. Every
    per-line failure is logged and contained to that line (or field).
    """

    def __init__(
        self,
        path: str,
        app: Application,
        metrics: AppMetrics,
        shutdown_event: threading.Event,
        log: logging.Logger = logger,
        poll_interval: float = 0.25,
    ):
        self.path = path
        self.app = app
        self.metrics = metrics
        self._log = log
        self.tailer = FileTailer(
            path,
            shutdown_event,
            callback=self.process_line,
            from_beginning=app.from_beginning,
            poll_interval=poll_interval,
        )
        self._thread: threading.Thread | None = None

    def check(self):
        """Fail fast if the log file cannot be opened or is not a regular file."""
        try:
            if not stat.S_ISREG(os.stat(self.path).st_mode):
                self._log.error("(%s): not a regular file", self.path)
                raise LogFileError(f"{self.path}: not a regular file")
            with open(self.path, "rb"):
                pass
        except OSError as e:
            self._log.error("(%s): %s", self.path, e)
            raise LogFileError(f"{self.path}: {e.strerror or e}") from e

    def start(self):
        self._log.info("(%s): starting log file monitoring", self.path)
        self._thread = threading.Thread(
            target=self.tailer.run, name=f"monitor-{self.path}", daemon=True,
        )
        self._thread.start()

    def join(self, timeout: float | None = None):
        if self._thread:
            self._thread.join(timeout=timeout)

    def label_values(self, method: str = "", path: str = "", status: str = "") -> list[str]:
        return [method, path, status, *self.app.extra_label_values]

    def process_line(self, line: str):
        file = self.path
        log = self._log
        log.debug("(%s): parsing line: '%s'", file, line)
        try:
            entry = self.app.grammar.parse(line)
        except LineParseError as e:
            log.warning("(%s): failed to parse line: %s", file, e)
            return

        labels = self.label_values()

        request = entry.field("request")
        if request is not None:
            try:
                method, path = parse_request(request)
            except RequestParseError as e:
                log.warning("(%s): failed to parse request field: %s", file, e)
                return
            log.debug("(%s): method and path are: %s and %s", file, method, path)

            result = self.app.classifier.classify(method, path, log=log)
            if result.outcome is Outcome.DROP:
                return
            if result.outcome is Outcome.KEEP_ERROR:
                log.warning("(%s): %s", file, result.reason)
                return

            labels[0] = method
            labels[1] = result.path
            log.debug("(%s): matched path to %s", file, result.path)

        status = entry.field("status")
        if status is not None:
            log.debug("(%s): matched status to %s", file, status)
            labels[2] = status

        body_bytes = entry.float_field("body_bytes_sent")
        if body_bytes is not None:
            log.debug("(%s): matched body_bytes_sent to %.f", file, body_bytes)
            self.metrics.observe_body_bytes(labels, body_bytes)

        upstream_time = entry.field("upstream_response_time")
        if upstream_time is not None:
            try:
                total = parse_upstream_time(upstream_time)
            except ValueError as e:
                log.warning("(%s): failed to parse upstream_response_time field: %s", file, e)
            else:
                log.debug("(%s): matched upstream_response_time to %.3f", file, total)
                self.metrics.observe_upstream_response_time(labels, total)

        header_time = entry.field("upstream_header_time")
        if header_time is not None:
            try:
                total = parse_upstream_time(header_time)
            except ValueError as e:
                log.warning("(%s): failed to parse upstream_header_time field: %s", file, e)
            else:
                log.debug("(%s): matched upstream_header_time to %.3f", file, total)
                self.metrics.observe_upstream_header_time(labels, total)

        request_time = entry.float_field("request_time")
        if request_time is not None:
            log.debug("(%s): matched request_time to %.3f", file, request_time)
            self.metrics.observe_request_time(labels, request_time)


def build_monitors(
    app: Application,
    metrics: AppMetrics,
    shutdown_event: threading.Event,
    log: logging.Logger = logger,
) -> list[FileMonitor]:
    """Create and check one monitor per log file of an application.

    Raises LogFileError on the first unusable file so startup is all-or-nothing.
    """
    if metrics.label_names != app.label_names:
        raise ValueError(
            f"metrics labels {metrics.label_names} do not match application labels {app.label_names}"
        )
    monitors = []
    for path in app.log_files:
        monitor = FileMonitor(path, app, metrics, shutdown_event, log=log)
        monitor.check()
        monitors.append(monitor)
    return monitors
