"""SSE broadcasting of newly appended chronological events."""

import json
import queue
import threading

from fpl_live.events.types import ChronoEvent
from fpl_live.logging_config import get_logger

log = get_logger(__name__)

_sse_queues: list[queue.Queue] = []
_sse_queues_lock = threading.Lock()

_KEEPALIVE_SECONDS = 30


def broadcast(payload: dict, event: str = "message") -> int:
    """Send *payload* to every connected client; returns how many got it.

    Clients whose queue is full are dropped rather than blocking the poll.
    """
    data = json.dumps({"event": event, **payload})
    delivered = 0
    with _sse_queues_lock:
        dead = []
        for q in _sse_queues:
            try:
                q.put_nowait(data)
                delivered += 1
            except queue.Full:
                dead.append(q)
        for q in dead:
            _sse_queues.remove(q)
    if dead:
        log.info("Dropped %d slow SSE client(s)", len(dead))
    return delivered


def broadcast_events(events: list[ChronoEvent]) -> None:
    """Listener for :class:`~fpl_live.live.tracker.LiveTracker` polls."""
    for e in events:
        broadcast(e.to_dict(), event="chrono_event")


def client_count() -> int:
    with _sse_queues_lock:
        return len(_sse_queues)


def create_sse_stream(status: dict | None = None):
    """Create an SSE event stream generator.

    The first frame is *status* (schedule/tracker summary) so a client that
    connects mid-gameweek knows where things stand.
    """
    q: queue.Queue = queue.Queue(maxsize=200)
    with _sse_queues_lock:
        _sse_queues.append(q)

    def stream():
        try:
            payload = json.dumps({"event": "status", **(status or {})})
            yield f"data: {payload}\n\n"
            while True:
                try:
                    data = q.get(timeout=_KEEPALIVE_SECONDS)
                    yield f"data: {data}\n\n"
                except queue.Empty:
                    yield ": keepalive\n\n"
        finally:
            with _sse_queues_lock:
                if q in _sse_queues:
                    _sse_queues.remove(q)

    return stream()
