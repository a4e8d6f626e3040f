"""
Adaptive Poller - one batched live-score fetch per tick, at phase cadence.

Each live match has a next-due time derived from its phase interval. A tick
with nothing due makes no external call. When anything is due, a single
fetch covers every live match, records are resolved to tracked matches, run
through the change detector, and written back to the registry.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from goal_trader.ingestion.matching import MatchResolver, NullResolver
from goal_trader.ingestion.models import LiveSnapshot
from goal_trader.models import (
    CancellationEvent,
    DetectionResult,
    GoalEvent,
    Match,
    MatchStatus,
)

from .change_detector import ChangeDetector
from .phase import PhaseConfig, classify
from .registry import MatchRegistry

logger = logging.getLogger(__name__)

SnapshotFetcher = Callable[[], Awaitable[List[LiveSnapshot]]]


@dataclass
class PollerConfig:
    fetch_timeout_seconds: float = 10.0


@dataclass
class PollResult:
    """What one tick observed."""

    fetched: bool = False
    records: int = 0
    matched: int = 0
    unmatched_records: int = 0
    detections: List[Tuple[str, DetectionResult]] = field(default_factory=list)
    finished: List[str] = field(default_factory=list)  # finished per feed status
    error: Optional[str] = None

    @property
    def goals(self) -> List[GoalEvent]:
        return [d for _, d in self.detections if isinstance(d, GoalEvent)]

    @property
    def cancellations(self) -> List[CancellationEvent]:
        return [d for _, d in self.detections if isinstance(d, CancellationEvent)]


class AdaptivePoller:
    """
    Polls the live feed for tracked live matches.

    Usage:
        poller = AdaptivePoller(registry, feed.fetch_live_snapshots,
                                resolver=TeamNameResolver())
        result = await poller.tick(now)
        for goal in result.goals:
            ...
    """

    def __init__(
        self,
        registry: MatchRegistry,
        fetch_live_snapshots: SnapshotFetcher,
        resolver: Optional[MatchResolver] = None,
        detector: Optional[ChangeDetector] = None,
        phase_config: Optional[PhaseConfig] = None,
        config: Optional[PollerConfig] = None,
    ) -> None:
        self._registry = registry
        self._fetch = fetch_live_snapshots
        self._resolver = resolver or NullResolver()
        self._detector = detector or ChangeDetector()
        self._phase_config = phase_config or PhaseConfig()
        self._config = config or PollerConfig()
        self._next_due: Dict[str, datetime] = {}
        self.calls = 0
        self.failures = 0

    def next_due(self, match_id: str) -> Optional[datetime]:
        return self._next_due.get(match_id)

    def forget(self, match_id: str) -> None:
        """Drop a match's schedule. Other matches are unaffected."""
        self._next_due.pop(match_id, None)

    def due_matches(self, now: datetime) -> List[Match]:
        """Live matches due for an observation, highest priority first."""
        due = []
        for match in self._registry.list_by_status(MatchStatus.LIVE):
            when = self._next_due.get(match.match_id)
            if when is None or when <= now:
                due.append(match)
        due.sort(key=lambda m: classify(m, now, self._phase_config).priority, reverse=True)
        return due

    async def tick(self, now: datetime) -> PollResult:
        """
        Run one polling pass.

        Returns:
            PollResult; `fetched` is False when nothing was due or the fetch failed
        """
        result = PollResult()
        due = self.due_matches(now)
        if not due:
            return result

        self.calls += 1
        try:
            snapshots = await asyncio.wait_for(
                self._fetch(), timeout=self._config.fetch_timeout_seconds
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            result.error = f"{type(e).__name__}: {e}"
            logger.warning(f"Live snapshot fetch failed: {result.error}")
            return result

        result.fetched = True
        result.records = len(snapshots)

        # Every live match is a candidate, due or not; the data is already here
        candidates = self._registry.list_by_status(MatchStatus.LIVE)
        by_external = {m.external_id: m for m in candidates if m.external_id}
        unresolved = [m for m in candidates if not m.external_id]
        by_id = {m.match_id: m for m in candidates}
        seen: Dict[str, LiveSnapshot] = {}

        for snapshot in snapshots:
            match = by_external.get(snapshot.external_id)
            if match is None and unresolved:
                match_id = self._resolver.resolve(snapshot, unresolved)
                match = by_id.get(match_id) if match_id else None
                if match is not None:
                    logger.info(
                        f"Resolved feed id {snapshot.external_id} to {match.label} by name"
                    )
                    self._registry.register(_with_external_id(match, snapshot.external_id))
                    unresolved = [m for m in unresolved if m.match_id != match.match_id]
            if match is None:
                result.unmatched_records += 1
                continue
            if match.match_id in seen:
                logger.debug(f"Duplicate feed record for {match.label}, keeping first")
                continue
            seen[match.match_id] = snapshot

        for match_id, snapshot in seen.items():
            match = by_id[match_id]
            detection = self._detector.detect(match, snapshot, now)
            updated = self._registry.apply_score_update(
                match_id,
                snapshot.score,
                snapshot.elapsed_minute,
                snapshot.status_tag,
                now,
            )
            result.matched += 1
            result.detections.append((match_id, detection))

            if updated is None:
                continue
            if updated.status == MatchStatus.FINISHED:
                result.finished.append(match_id)
                self.forget(match_id)
                continue
            self._reschedule(updated, now)

        # Due matches the feed did not mention wait a full interval too
        for match in due:
            if match.match_id not in seen:
                self._reschedule(match, now)
        return result

    def _reschedule(self, match: Match, now: datetime) -> None:
        interval = classify(match, now, self._phase_config).interval_seconds
        self._next_due[match.match_id] = now + timedelta(seconds=max(interval, 0.0))


def _with_external_id(match: Match, external_id: str) -> Match:
    clone = match.copy()
    clone.external_id = external_id
    return clone
