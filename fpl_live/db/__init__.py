"""Database layer: connection, schema, migrations, and repositories."""

from fpl_live.db.connection import connect, get_connection
from fpl_live.db.migrations import apply_migrations, get_schema_version
from fpl_live.db.repositories import (
    EventLogRepository,
    GameweekResultRepository,
    LiveStateRepository,
    ScoreRepository,
)
from fpl_live.db.schema import SCHEMA_SQL, init_schema

__all__ = [
    "connect",
    "get_connection",
    "apply_migrations",
    "get_schema_version",
    "init_schema",
    "SCHEMA_SQL",
    "LiveStateRepository",
    "EventLogRepository",
    "ScoreRepository",
    "GameweekResultRepository",
]
