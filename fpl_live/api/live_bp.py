"""Live blueprint: read-only JSON over the tracker, scheduler and event log.

Handlers only read cached/derived state; nothing here waits on a poll.
"""

from dataclasses import dataclass

from flask import Blueprint, Response, current_app, jsonify, request

from fpl_live.api.sse import client_count, create_sse_stream
from fpl_live.logging_config import get_logger

log = get_logger(__name__)

live_bp = Blueprint("live", __name__)

MAX_EVENT_LIMIT = 500


@dataclass
class LiveServices:
    """Everything the blueprint reads from, attached to ``app.extensions``."""

    state: object
    detector: object
    score_repo: object
    upstream_status: object
    scheduler: object | None = None
    insights: object | None = None


def _services() -> LiveServices:
    return current_app.extensions["fpl_live"]


def _schedule_state() -> dict:
    scheduler = _services().scheduler
    if scheduler is None:
        return {"mode": "idle", "gameweek": None, "active_window": None, "next_transition_at": None}
    return scheduler.get_schedule_state()


@live_bp.route("/schedule")
def api_schedule():
    return jsonify(_schedule_state())


@live_bp.route("/events")
def api_events():
    """Chronological events, newest first."""
    raw = request.args.get("limit", "50")
    try:
        limit = int(raw)
    except ValueError:
        return jsonify({"error": f"Invalid limit: {raw!r}"}), 400
    if not 1 <= limit <= MAX_EVENT_LIMIT:
        return jsonify({"error": f"limit must be between 1 and {MAX_EVENT_LIMIT}"}), 400

    svc = _services()
    events = svc.detector.events(limit)
    return jsonify({
        "gameweek": svc.detector.gameweek,
        "events": [e.to_dict() for e in reversed(events)],
    })


@live_bp.route("/scores")
def api_scores():
    svc = _services()
    gameweek = svc.state.gameweek
    scores = svc.state.scores()
    if not scores and gameweek is not None:
        scores = svc.score_repo.get_scores(gameweek)
    return jsonify({"gameweek": gameweek, "scores": scores})


@live_bp.route("/manager/<int:entry_id>")
def api_manager(entry_id: int):
    svc = _services()
    gameweek = svc.state.gameweek
    if gameweek is None:
        return jsonify({"error": "No live gameweek yet"}), 404
    row = svc.state.score_for(gameweek, entry_id) or svc.score_repo.get_score(gameweek, entry_id)
    if row is None:
        return jsonify({"error": f"No score for entry {entry_id} in GW{gameweek}"}), 404
    return jsonify({"gameweek": gameweek, **row})


@live_bp.route("/status")
def api_status():
    svc = _services()
    return jsonify({
        "upstream": svc.upstream_status.to_dict(),
        "tracker": svc.state.status(),
        "schedule_mode": _schedule_state()["mode"],
        "sse_clients": client_count(),
    })


@live_bp.route("/stream")
def api_stream():
    """SSE stream of newly appended events."""
    status = {"schedule": _schedule_state(), "tracker": _services().state.status()}
    return Response(create_sse_stream(status), content_type="text/event-stream")
