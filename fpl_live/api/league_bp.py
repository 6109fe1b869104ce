"""League blueprint: weekly losers and chip usage across the mini-league."""

from flask import Blueprint, jsonify

from fpl_live.api.live_bp import _services

league_bp = Blueprint("league", __name__)


def _insights():
    return _services().insights


@league_bp.route("/losers")
def api_losers():
    insights = _insights()
    if insights is None:
        return jsonify({"error": "League summaries are not enabled"}), 404
    return jsonify(insights.weekly_losers())


@league_bp.route("/chips")
def api_chips():
    insights = _insights()
    if insights is None:
        return jsonify({"error": "League summaries are not enabled"}), 404
    return jsonify(insights.chip_usage())
