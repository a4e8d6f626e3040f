"""
Storage Layer - state snapshots.

Public API:
    StateSnapshot: Matches and open positions as one document
    MatchRecord, PositionRecord: Persisted forms of Match and Position
    JsonFileSnapshotStore: Snapshot file with atomic replace
    PostgresSnapshotStore: Snapshot as a single jsonb row
    StatePersister: Version-based dirty tracking, one write in flight
    Database, DatabaseConfig: asyncpg pool with reconnection
    SnapshotStoreError: Raised by stores on write/read failure
"""
from .database import Database, DatabaseConfig
from .snapshot import (
    JsonFileSnapshotStore,
    MatchRecord,
    PositionRecord,
    PostgresSnapshotStore,
    SnapshotStore,
    SnapshotStoreError,
    StatePersister,
    StateSnapshot,
)

__all__ = [
    "Database",
    "DatabaseConfig",
    "JsonFileSnapshotStore",
    "MatchRecord",
    "PositionRecord",
    "PostgresSnapshotStore",
    "SnapshotStore",
    "SnapshotStoreError",
    "StatePersister",
    "StateSnapshot",
]
