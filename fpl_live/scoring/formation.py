"""Formation validation helpers for auto-substitution."""

from __future__ import annotations

from collections.abc import Iterable

from fpl_live.schemas.fpl_rules import FORMATION_MINIMUMS, Position

POS_ORDER = {"GKP": 0, "DEF": 1, "MID": 2, "FWD": 3}


def empty_counts() -> dict[str, int]:
    return {pos: 0 for pos in POS_ORDER}


def formation_counts(positions: Iterable[Position]) -> dict[str, int]:
    """Count a lineup's players per position (``{"GKP": 1, "DEF": 4, ...}``)."""
    counts = empty_counts()
    for pos in positions:
        counts[Position(pos).short] += 1
    return counts


def is_valid_formation(counts: dict[str, int]) -> bool:
    """Return True if *counts* meets the minimum shape (1 GKP, 3 DEF, 2 MID, 1 FWD)."""
    return all(counts.get(pos, 0) >= need for pos, need in FORMATION_MINIMUMS.items())


def simulate_substitution(
    counts: dict[str, int],
    player_out: Position,
    player_in: Position,
) -> dict[str, int] | None:
    """Return the counts after swapping *player_out* for *player_in*.

    Goalkeepers can only be replaced by goalkeepers; returns ``None`` for a
    swap that crosses that line.
    """
    if (player_out == Position.GKP) != (player_in == Position.GKP):
        return None
    trial = dict(counts)
    trial[Position(player_out).short] -= 1
    trial[Position(player_in).short] += 1
    return trial


def get_formation_string(counts: dict[str, int]) -> str:
    """Return formation string like '3-4-3'.

    Only counts outfield positions (DEF-MID-FWD).
    """
    return f"{counts.get('DEF', 0)}-{counts.get('MID', 0)}-{counts.get('FWD', 0)}"
