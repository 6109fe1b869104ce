"""Database schema: all CREATE TABLE statements.

Everything the live pipeline derives is keyed by gameweek so a gameweek
transition can clear it in one statement.
"""

from __future__ import annotations

import sqlite3

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS live_state (
    gameweek INTEGER NOT NULL,
    key TEXT NOT NULL,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (gameweek, key)
);

CREATE TABLE IF NOT EXISTS chrono_event (
    gameweek INTEGER NOT NULL,
    seq INTEGER NOT NULL,
    signature TEXT NOT NULL,
    event_type TEXT NOT NULL,
    fixture_id INTEGER,
    payload_json TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (gameweek, seq)
);

CREATE INDEX IF NOT EXISTS idx_chrono_event_signature
    ON chrono_event (gameweek, signature);

CREATE TABLE IF NOT EXISTS manager_score (
    gameweek INTEGER NOT NULL,
    entry_id INTEGER NOT NULL,
    player_name TEXT,
    entry_name TEXT,
    total INTEGER NOT NULL DEFAULT 0,
    net INTEGER NOT NULL DEFAULT 0,
    bench_points INTEGER NOT NULL DEFAULT 0,
    stale INTEGER NOT NULL DEFAULT 0,
    official_points INTEGER,
    score_json TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (gameweek, entry_id)
);

CREATE TABLE IF NOT EXISTS gameweek_result (
    gameweek INTEGER PRIMARY KEY,
    status TEXT NOT NULL,
    details_json TEXT,
    computed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def init_schema(conn: sqlite3.Connection) -> None:
    """Execute the full schema DDL on *conn*."""
    conn.executescript(SCHEMA_SQL)
