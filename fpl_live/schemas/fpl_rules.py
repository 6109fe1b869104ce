"""FPL rule constants and closed enums.

Encodes the official FPL squad rules used by the auto-substitution engine,
the scoring aggregator and the event feed.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from fpl_live.config import scoring_cfg


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Squad composition
STARTING_XI = 11

# Minimum outfield shape of a legal starting XI
FORMATION_MINIMUMS: dict[str, int] = dict(scoring_cfg.formation_minimums)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

class Position(IntEnum):
    """Upstream ``element_type`` ids."""

    GKP = 1
    DEF = 2
    MID = 3
    FWD = 4

    @property
    def short(self) -> str:
        return self.name


# ---------------------------------------------------------------------------
# Chip definitions
# ---------------------------------------------------------------------------

class ChipType(str, Enum):
    WILDCARD = "wildcard"
    FREE_HIT = "freehit"
    BENCH_BOOST = "bboost"
    TRIPLE_CAPTAIN = "3xc"

    @classmethod
    def parse(cls, raw: str | None) -> "ChipType | None":
        """Map an upstream ``active_chip`` string to a chip, ``None`` if unknown."""
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


# Chips that change how the XI is scored this gameweek
CAPTAIN_BOOST_CHIPS = {ChipType.TRIPLE_CAPTAIN}


def captain_multiplier(chip: ChipType | None) -> int:
    """Multiplier carried by the (effective) captain under *chip*."""
    if chip in CAPTAIN_BOOST_CHIPS:
        return scoring_cfg.triple_captain_multiplier
    return scoring_cfg.captain_multiplier
