"""nginx-log-exporter: tail nginx access logs and serve request histograms for Prometheus."""

import logging
import signal
import sys
import threading
from argparse import ArgumentParser

from prometheus_client import CollectorRegistry
from watchdog.observers import Observer

from nginx_log_exporter import __version__
from nginx_log_exporter.config import DEFAULT_CONFIG_FILE, GlobalConfig, load_config
from nginx_log_exporter.errors import ConfigError, ExporterError, InvalidLogLevelError
from nginx_log_exporter.metrics import AppMetrics, ExporterCollector
from nginx_log_exporter.monitor import FileMonitor, build_monitors
from nginx_log_exporter.server import create_app, make_http_server
from nginx_log_exporter.tailer import TailEventHandler

LOG_FORMAT = "%(asctime)s [EXPORTER] %(levelname)s %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

logger = logging.getLogger(__name__)


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="nginx-log-exporter",
        description="Export nginx access log metrics for Prometheus.",
    )
    parser.add_argument(
        "--config-file",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to a YAML file to read configuration from (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Prints the version and exits",
    )
    return parser


def setup_logging(level: str):
    """Configure the root logger. Raises InvalidLogLevelError for unknown levels."""
    normalized = level.strip().upper()
    if normalized not in LOG_LEVELS:
        raise InvalidLogLevelError(level)
    logging.basicConfig(
        level=getattr(logging, normalized),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def start_monitors(
    config: GlobalConfig,
    registry: CollectorRegistry,
    shutdown_event: threading.Event,
) -> list[FileMonitor]:
    """Set up metrics and monitors for every application, then start them.

    Every log file is checked before any monitor starts.
    """
    collector = ExporterCollector()
    monitors = []
    for name in sorted(config.applications):
        app = config.applications[name]
        metrics = AppMetrics(name, app.label_names, app.histogram_buckets)
        collector.add(metrics)
        monitors.extend(build_monitors(app, metrics, shutdown_event))
    registry.register(collector)

    for monitor in monitors:
        monitor.start()
    return monitors


def run(config: GlobalConfig, shutdown_event: threading.Event | None = None):
    shutdown_event = shutdown_event or threading.Event()
    registry = CollectorRegistry()
    monitors = start_monitors(config, registry, shutdown_event)

    handler = TailEventHandler([m.tailer for m in monitors])
    observer = Observer()
    for dir_path in sorted(handler.get_watched_dirs()):
        observer.schedule(handler, dir_path, recursive=False)
        logger.debug("Watching directory: %s", dir_path)
    observer.start()

    address, port = config.listen.address, config.listen.port
    server = make_http_server(create_app(registry), address, port)

    def _signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()
        # shutdown() blocks until serve_forever returns, so it runs off the main thread
        threading.Thread(target=server.shutdown, daemon=True).start()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    print(f"running HTTP server on {address}:{port}", flush=True)
    try:
        server.serve_forever()
    finally:
        shutdown_event.set()
        observer.stop()
        observer.join(timeout=5)
        for monitor in monitors:
            monitor.join(timeout=5)
        server.server_close()
        logger.info("nginx-log-exporter stopped.")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    try:
        if not args.config_file:
            raise ConfigError("Must specify config using --config-file")
        config = load_config(args.config_file)
        setup_logging(config.log_level)
        run(config)
    except (ExporterError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
