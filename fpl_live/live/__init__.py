"""Live polling pipeline: shared state holder and the poll cycle."""

from fpl_live.live.state import LiveState
from fpl_live.live.tracker import LiveTracker

__all__ = ["LiveState", "LiveTracker"]
