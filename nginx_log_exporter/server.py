"""Flask app exposing the Prometheus scrape endpoint."""

import logging

from flask import Flask, Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from werkzeug.serving import make_server

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"


def create_app(registry: CollectorRegistry) -> Flask:
    app = Flask(__name__)

    @app.route(METRICS_PATH)
    def metrics():
        return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)

    @app.route("/health")
    def health():
        return jsonify(status="ok")

    return app


def make_http_server(app: Flask, address: str, port: int):
    """Bind the scrape listener. Raises OSError (or exits) if the address is unavailable."""
    server = make_server(address, port, app, threaded=True)
    logger.info("Scrape endpoint bound to http://%s:%d%s", address, server.server_port, METRICS_PATH)
    return server
