"""Centralized path resolution for cache files and the state database."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

CACHE_DIR = Path(os.environ.get("FPL_LIVE_CACHE_DIR", BASE_DIR / "cache"))
OUTPUT_DIR = Path(os.environ.get("FPL_LIVE_OUTPUT_DIR", BASE_DIR / "output"))
DB_PATH = OUTPUT_DIR / "live.db"
