"""
State snapshots.

The whole in-memory state (tracked matches and open positions) is written as
one pydantic document. Stores only need save/load; the persister decides when
to write by watching the registry and ledger version counters.

IMPORTANT: Monetary fields stay Decimal end to end (serialized as strings).
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from goal_trader.execution.position_ledger import Position, PositionStatus
from goal_trader.models import Match, MatchStatus, PositionKind, Score

from .database import Database

if TYPE_CHECKING:
    from goal_trader.core.registry import MatchRegistry
    from goal_trader.execution.position_ledger import PositionLedger

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = 1


class SnapshotStoreError(Exception):
    """Raised when a snapshot cannot be written or read back."""


# =============================================================================
# Records
# =============================================================================


class MatchRecord(BaseModel):
    """Persisted form of a tracked match."""

    model_config = ConfigDict(frozen=True)

    match_id: str
    home_team: str
    away_team: str
    kickoff: datetime
    slug: Optional[str] = None
    league: Optional[str] = None
    external_id: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    elapsed_minute: Optional[int] = None
    status: MatchStatus = MatchStatus.UPCOMING
    status_tag: Optional[str] = None
    instruments: Dict[str, str] = Field(default_factory=dict)
    live_baseline_taken: bool = False
    finished_at: Optional[datetime] = None
    minute_updated_at: Optional[datetime] = None

    @classmethod
    def from_match(cls, match: Match) -> "MatchRecord":
        return cls(
            match_id=match.match_id,
            home_team=match.home_team,
            away_team=match.away_team,
            kickoff=match.kickoff,
            slug=match.slug,
            league=match.league,
            external_id=match.external_id,
            home_score=match.score.home,
            away_score=match.score.away,
            elapsed_minute=match.elapsed_minute,
            status=match.status,
            status_tag=match.status_tag,
            instruments=dict(match.instruments),
            live_baseline_taken=match.live_baseline_taken,
            finished_at=match.finished_at,
            minute_updated_at=match.minute_updated_at,
        )

    def to_match(self) -> Match:
        return Match(
            match_id=self.match_id,
            home_team=self.home_team,
            away_team=self.away_team,
            kickoff=self.kickoff,
            slug=self.slug,
            league=self.league,
            external_id=self.external_id,
            score=Score(self.home_score, self.away_score),
            elapsed_minute=self.elapsed_minute,
            status=self.status,
            status_tag=self.status_tag,
            instruments=dict(self.instruments),
            live_baseline_taken=self.live_baseline_taken,
            finished_at=self.finished_at,
            minute_updated_at=self.minute_updated_at,
        )


class PositionRecord(BaseModel):
    """Persisted form of an open position."""

    model_config = ConfigDict(frozen=True)

    position_id: str
    match_id: str
    kind: str  # PositionKind.key, e.g. "home_yes"
    instrument_id: str
    shares: Decimal
    entry_price: Decimal
    amount_committed: Decimal
    opened_at: datetime
    current_price: Optional[Decimal] = None
    realized_pnl: Decimal = Decimal("0")
    shares_acquired: Decimal = Decimal("0")
    shares_sold: Decimal = Decimal("0")
    exit_markers: List[str] = Field(default_factory=list)

    @classmethod
    def from_position(cls, position: Position) -> "PositionRecord":
        return cls(
            position_id=position.position_id,
            match_id=position.match_id,
            kind=position.kind.key,
            instrument_id=position.instrument_id,
            shares=position.shares,
            entry_price=position.entry_price,
            amount_committed=position.amount_committed,
            opened_at=position.opened_at,
            current_price=position.current_price,
            realized_pnl=position.realized_pnl,
            shares_acquired=position.shares_acquired,
            shares_sold=position.shares_sold,
            exit_markers=list(position.exit_markers),
        )

    def to_position(self) -> Position:
        return Position(
            position_id=self.position_id,
            match_id=self.match_id,
            kind=PositionKind.from_key(self.kind),
            instrument_id=self.instrument_id,
            shares=self.shares,
            entry_price=self.entry_price,
            amount_committed=self.amount_committed,
            opened_at=self.opened_at,
            current_price=self.current_price,
            status=PositionStatus.OPEN,
            realized_pnl=self.realized_pnl,
            shares_acquired=self.shares_acquired,
            shares_sold=self.shares_sold,
            exit_markers=list(self.exit_markers),
        )


class StateSnapshot(BaseModel):
    """Everything needed to resume tracking after a restart."""

    format: int = SNAPSHOT_FORMAT
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    matches: List[MatchRecord] = Field(default_factory=list)
    positions: List[PositionRecord] = Field(default_factory=list)

    @classmethod
    def capture(
        cls,
        registry: "MatchRegistry",
        ledger: "PositionLedger",
        now: Optional[datetime] = None,
    ) -> "StateSnapshot":
        return cls(
            saved_at=now or datetime.now(timezone.utc),
            matches=[MatchRecord.from_match(m) for m in registry.all()],
            positions=[PositionRecord.from_position(p) for p in ledger.open_positions()],
        )

    def to_matches(self) -> List[Match]:
        return [record.to_match() for record in self.matches]

    def to_positions(self) -> List[Position]:
        return [record.to_position() for record in self.positions]


# =============================================================================
# Stores
# =============================================================================


class SnapshotStore(Protocol):
    async def save(self, snapshot: StateSnapshot) -> None:
        ...

    async def load(self) -> Optional[StateSnapshot]:
        ...


def _parse_snapshot(text: str, source: str) -> StateSnapshot:
    try:
        return StateSnapshot.model_validate_json(text)
    except ValidationError as e:
        raise SnapshotStoreError(f"Corrupt snapshot in {source}: {e}") from e


class JsonFileSnapshotStore:
    """
    Snapshot as a JSON file, replaced atomically on every save.

    Usage:
        store = JsonFileSnapshotStore("data/state.json")
        await store.save(snapshot)
        snapshot = await store.load()  # None if never saved
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    async def save(self, snapshot: StateSnapshot) -> None:
        text = snapshot.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write, text)
        except OSError as e:
            raise SnapshotStoreError(f"Cannot write {self.path}: {e}") from e

    async def load(self) -> Optional[StateSnapshot]:
        try:
            text = await asyncio.to_thread(self._read)
        except OSError as e:
            raise SnapshotStoreError(f"Cannot read {self.path}: {e}") from e
        if text is None:
            return None
        return _parse_snapshot(text, str(self.path))

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")


class PostgresSnapshotStore:
    """
    Snapshot as a single jsonb row, upserted on every save.

    Usage:
        db = Database(DatabaseConfig())
        await db.initialize()
        store = PostgresSnapshotStore(db)
        await store.ensure_schema()
    """

    table_name = "goal_trader_state"

    def __init__(self, db: Database, key: str = "default") -> None:
        self.db = db
        self.key = key

    async def ensure_schema(self) -> None:
        await self.db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                key TEXT PRIMARY KEY,
                payload JSONB NOT NULL,
                saved_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    async def save(self, snapshot: StateSnapshot) -> None:
        query = f"""
            INSERT INTO {self.table_name} (key, payload, saved_at)
            VALUES ($1, $2::jsonb, $3)
            ON CONFLICT (key) DO UPDATE
            SET payload = EXCLUDED.payload, saved_at = EXCLUDED.saved_at
        """
        try:
            await self.db.execute(query, self.key, snapshot.model_dump_json(), snapshot.saved_at)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SnapshotStoreError(f"Cannot save snapshot '{self.key}': {e}") from e

    async def load(self) -> Optional[StateSnapshot]:
        query = f"SELECT payload::text FROM {self.table_name} WHERE key = $1"
        try:
            text = await self.db.fetchval(query, self.key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SnapshotStoreError(f"Cannot load snapshot '{self.key}': {e}") from e
        if text is None:
            return None
        return _parse_snapshot(text, f"{self.table_name}[{self.key}]")


# =============================================================================
# Persister
# =============================================================================


class StatePersister:
    """
    Writes a snapshot whenever the registry or ledger changed.

    Dirty tracking compares version counters, so call sites never mark
    anything dirty themselves. At most one write is in flight; a failed
    write leaves the state dirty so the next cycle retries it.

    Usage:
        persister = StatePersister(registry, ledger, JsonFileSnapshotStore(path))
        snapshot = await persister.load()
        ...
        await persister.save_if_dirty()   # every few seconds
        await persister.flush()           # on shutdown
    """

    def __init__(
        self,
        registry: "MatchRegistry",
        ledger: "PositionLedger",
        store: SnapshotStore,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._store = store
        self._saved_versions: Optional[Tuple[int, int]] = None
        self._write_lock = asyncio.Lock()
        self.saves = 0
        self.failures = 0

    def _versions(self) -> Tuple[int, int]:
        return (self._registry.version, self._ledger.version)

    @property
    def is_dirty(self) -> bool:
        return self._versions() != self._saved_versions

    async def load(self) -> Optional[StateSnapshot]:
        """Read the last snapshot. A missing snapshot is not an error."""
        snapshot = await self._store.load()
        if snapshot is not None:
            logger.info(
                f"Loaded snapshot from {snapshot.saved_at.isoformat()}: "
                f"{len(snapshot.matches)} matches, {len(snapshot.positions)} positions"
            )
        return snapshot

    async def save_if_dirty(self) -> bool:
        """
        Write a snapshot if state moved since the last successful write.

        Returns:
            True if a snapshot was written
        """
        if self._write_lock.locked() or not self.is_dirty:
            return False
        return await self._save()

    async def flush(self) -> bool:
        """Wait for any write in flight, then write if still dirty."""
        async with self._write_lock:
            pass
        if not self.is_dirty:
            return False
        return await self._save()

    async def _save(self) -> bool:
        async with self._write_lock:
            versions = self._versions()
            snapshot = StateSnapshot.capture(self._registry, self._ledger)
            try:
                await self._store.save(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                logger.error(f"State snapshot failed ({self.failures} failures): {e}")
                return False
            self._saved_versions = versions
            self.saves += 1
            logger.debug(
                f"State snapshot saved: {len(snapshot.matches)} matches, "
                f"{len(snapshot.positions)} open positions"
            )
            return True
