"""Flask middleware: no-cache headers and JSON error handlers."""

from flask import Flask, jsonify, request

from fpl_live.data.fpl_api import UpstreamNotFound, UpstreamUnavailable
from fpl_live.logging_config import get_logger

log = get_logger(__name__)


def register_middleware(app: Flask) -> None:
    """Register middleware on the Flask app."""

    @app.after_request
    def add_no_cache_headers(response):
        if request.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.errorhandler(404)
    def not_found(_):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(UpstreamNotFound)
    def upstream_not_found(exc):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(UpstreamUnavailable)
    def upstream_unavailable(exc):
        log.warning("Request failed, upstream unavailable: %s", exc)
        return jsonify({"error": "Upstream unavailable", "detail": str(exc)}), 503

    @app.errorhandler(500)
    def internal_error(_):
        return jsonify({"error": "Internal server error"}), 500
