"""Flask application factory."""

from flask import Flask


def create_app(services) -> Flask:
    """Create the Flask app serving *services* (a ``LiveServices``)."""
    app = Flask(__name__)
    app.extensions["fpl_live"] = services

    from fpl_live.api.middleware import register_middleware
    register_middleware(app)

    from fpl_live.api.live_bp import live_bp
    app.register_blueprint(live_bp, url_prefix="/api/live")

    from fpl_live.api.league_bp import league_bp
    app.register_blueprint(league_bp, url_prefix="/api/league")

    return app
