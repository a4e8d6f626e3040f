"""
Match Tracker - main orchestrator.

One tick:
1. Advance match statuses from the clock
2. Poll live scores (adaptive, batched)
3. For each goal: cooldown check, decision, risk filter, execution
4. Liquidate matches that finished
5. Evaluate exit targets on open positions (on its own cadence)
6. Stop tracking finished matches once their cooldown has passed

Registry and ledger are only mutated from inside a tick or discovery pass,
and the tracker runs one pass at a time.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Set

from goal_trader.execution.actions import PositionAction
from goal_trader.execution.coordinator import BatchResult, ExecutionCoordinator
from goal_trader.execution.position_ledger import Position, PositionLedger
from goal_trader.execution.risk import RiskManager
from goal_trader.ingestion.prices import PriceCache
from goal_trader.models import (
    CancellationEvent,
    GoalEvent,
    Match,
    MatchMetadata,
    MatchStatus,
)

from .decision_engine import DecisionEngine, GoalCooldown
from .notifications import Notification, NotificationOutbox, NotificationType
from .poller import AdaptivePoller, PollResult
from .registry import MatchRegistry

logger = logging.getLogger(__name__)

MatchDiscoverer = Callable[[], Awaitable[List[MatchMetadata]]]


@dataclass
class TrackerConfig:
    """Configuration for the match tracker."""

    # Keep finished matches around this long before removing them
    finished_cooldown_seconds: float = 300

    # Exit target evaluation cadence
    exit_eval_interval_seconds: float = 5

    # Alert when discovery has failed (or found nothing) for this long
    discovery_outage_seconds: float = 1800
    discovery_timeout_seconds: float = 30


@dataclass
class TrackerStats:
    """Runtime statistics for the tracker."""

    ticks: int = 0
    polls: int = 0
    poll_failures: int = 0
    goals_detected: int = 0
    goals_in_cooldown: int = 0
    cancellations: int = 0
    decisions: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    risk_rejections: int = 0
    matches_finished: int = 0
    matches_removed: int = 0
    discovery_runs: int = 0
    discovery_failures: int = 0
    errors: int = 0


@dataclass
class TickResult:
    poll: PollResult
    batches: List[BatchResult]
    finished: List[str]
    removed: List[str]


class MatchTracker:
    """
    Orchestrates discovery, polling, decisions and execution.

    Usage:
        tracker = MatchTracker(
            registry=registry,
            poller=poller,
            decision_engine=DecisionEngine(),
            ledger=ledger,
            coordinator=coordinator,
            outbox=outbox,
            discover=feed.discover_matches,
            prices=price_cache,
        )

        await tracker.discover()
        while running:
            await tracker.tick()
    """

    def __init__(
        self,
        registry: MatchRegistry,
        poller: AdaptivePoller,
        decision_engine: DecisionEngine,
        ledger: PositionLedger,
        coordinator: ExecutionCoordinator,
        outbox: NotificationOutbox,
        discover: Optional[MatchDiscoverer] = None,
        prices: Optional[PriceCache] = None,
        risk: Optional[RiskManager] = None,
        cooldown: Optional[GoalCooldown] = None,
        config: Optional[TrackerConfig] = None,
    ) -> None:
        self._registry = registry
        self._poller = poller
        self._engine = decision_engine
        self._ledger = ledger
        self._coordinator = coordinator
        self._outbox = outbox
        self._discover = discover
        self._prices = prices
        self._risk = risk
        self._cooldown = cooldown or GoalCooldown(decision_engine.config.goal_cooldown_seconds)
        self._config = config or TrackerConfig()

        self._lock = asyncio.Lock()
        self._pending_liquidation: Set[str] = set()
        self._last_exit_eval: Optional[datetime] = None
        self._discovery_failing_since: Optional[datetime] = None
        self._outage_alerted = False

        self.stats = TrackerStats()

    @property
    def registry(self) -> MatchRegistry:
        return self._registry

    @property
    def ledger(self) -> PositionLedger:
        return self._ledger

    @property
    def pending_liquidations(self) -> List[str]:
        return sorted(self._pending_liquidation)

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover(self, now: Optional[datetime] = None) -> int:
        """
        Register matches returned by discovery.

        Returns:
            Number of newly tracked matches
        """
        if self._discover is None:
            return 0
        now = now or datetime.now(timezone.utc)
        self.stats.discovery_runs += 1

        try:
            found = await asyncio.wait_for(
                self._discover(), timeout=self._config.discovery_timeout_seconds
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.discovery_failures += 1
            logger.warning(f"Discovery failed: {type(e).__name__}: {e}")
            self._note_discovery_gap(now, f"{type(e).__name__}: {e}")
            return 0

        if not found:
            self._note_discovery_gap(now, "no matches returned")
            return 0

        self._discovery_failing_since = None
        self._outage_alerted = False

        added = 0
        async with self._lock:
            for metadata in found:
                is_new = metadata.match_id not in self._registry
                self._registry.register(metadata.to_match())
                added += int(is_new)

        if added:
            logger.info(f"Discovery: {added} new matches ({len(self._registry)} tracked)")
        return added

    def _note_discovery_gap(self, now: datetime, reason: str) -> None:
        if self._discovery_failing_since is None:
            self._discovery_failing_since = now
        gap = (now - self._discovery_failing_since).total_seconds()
        if gap >= self._config.discovery_outage_seconds and not self._outage_alerted:
            self._outage_alerted = True
            logger.error(f"Discovery outage for {gap / 60:.0f} minutes: {reason}")
            self._outbox.publish(Notification(
                NotificationType.DISCOVERY_OUTAGE,
                data={"minutes": round(gap / 60), "reason": reason},
                created_at=now,
            ))

    # =========================================================================
    # Tick
    # =========================================================================

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """Run one full tracking pass."""
        async with self._lock:
            now = now or datetime.now(timezone.utc)
            self.stats.ticks += 1
            batches: List[BatchResult] = []

            finished = [
                t.match_id
                for t in self._registry.recompute_statuses(now)
                if t.new_status == MatchStatus.FINISHED
            ]

            poll = await self._poller.tick(now)
            if poll.fetched:
                self.stats.polls += 1
            elif poll.error:
                self.stats.poll_failures += 1

            for match_id, detection in poll.detections:
                if isinstance(detection, GoalEvent):
                    batch = await self._handle_goal(detection, now)
                    if batch is not None:
                        batches.append(batch)
                elif isinstance(detection, CancellationEvent):
                    self._handle_cancellation(detection)

            finished.extend(m for m in poll.finished if m not in finished)
            for match_id in finished:
                self._on_finished(match_id, now)

            batches.extend(await self._liquidate_pending(now))

            if self._exit_eval_due(now):
                batch = await self._evaluate_exits(now)
                if batch.results:
                    batches.append(batch)

            removed = self._purge_finished(now)
            return TickResult(poll=poll, batches=batches, finished=finished, removed=removed)

    async def _handle_goal(self, event: GoalEvent, now: datetime) -> Optional[BatchResult]:
        self.stats.goals_detected += 1
        match = self._registry.get(event.match_id)
        self._outbox.publish(Notification(
            NotificationType.GOAL,
            match_id=event.match_id,
            data={
                "label": match.label if match else event.match_id,
                "previous_score": str(event.previous_score),
                "score": str(event.new_score),
                "side": event.side.value,
                "minute": event.minute,
            },
            created_at=now,
        ))

        if match is None or match.status != MatchStatus.LIVE:
            logger.info(f"Goal on {event.match_id} not traded: match no longer live")
            return None

        if self._cooldown.is_cooling(event.match_id, now):
            self.stats.goals_in_cooldown += 1
            logger.info(f"{match.label}: goal {event.new_score} inside cooldown, score stored only")
            return None
        self._cooldown.start(event.match_id, now)

        await self._refresh_prices(p.instrument_id for p in self._ledger.open_positions(event.match_id))
        decision = self._engine.decide(event, self._ledger.open_positions(event.match_id), match)
        self.stats.decisions += 1

        actions = decision.actions
        if self._risk is not None:
            actions, rejected = self._risk.filter(actions, event.minute, now)
            self.stats.risk_rejections += len(rejected)

        return await self._execute(actions, now, match)

    def _handle_cancellation(self, event: CancellationEvent) -> None:
        self.stats.cancellations += 1
        self._outbox.publish(Notification(
            NotificationType.CANCELLATION,
            match_id=event.match_id,
            data={
                "previous_score": str(event.previous_score),
                "score": str(event.new_score),
                "minute": event.minute,
            },
            created_at=event.detected_at,
        ))

    def _on_finished(self, match_id: str, now: datetime) -> None:
        match = self._registry.get(match_id)
        self.stats.matches_finished += 1
        self._poller.forget(match_id)
        if self._ledger.has_open_positions(match_id):
            self._pending_liquidation.add(match_id)
        self._outbox.publish(Notification(
            NotificationType.MATCH_FINISHED,
            match_id=match_id,
            data={
                "label": match.label if match else match_id,
                "score": str(match.score) if match else None,
                "open_positions": len(self._ledger.open_positions(match_id)),
            },
            created_at=now,
        ))

    async def _liquidate_pending(self, now: datetime) -> List[BatchResult]:
        batches: List[BatchResult] = []
        for match_id in sorted(self._pending_liquidation):
            actions = self._ledger.liquidate_match(match_id)
            if not actions:
                self._pending_liquidation.discard(match_id)
                continue
            await self._refresh_prices(a.instrument_id for a in actions)
            batch = await self._execute(actions, now, self._registry.get(match_id))
            batches.append(batch)
            if not self._ledger.has_open_positions(match_id):
                self._pending_liquidation.discard(match_id)
                logger.info(f"Liquidated {match_id}")
            else:
                logger.warning(f"Liquidation of {match_id} incomplete, retrying next tick")
        return batches

    def _exit_eval_due(self, now: datetime) -> bool:
        if self._last_exit_eval is None:
            return True
        elapsed = (now - self._last_exit_eval).total_seconds()
        return elapsed >= self._config.exit_eval_interval_seconds

    async def evaluate_exits(self, now: Optional[datetime] = None) -> BatchResult:
        """Refresh prices and act on exit targets outside the tick cadence."""
        async with self._lock:
            return await self._evaluate_exits(now or datetime.now(timezone.utc))

    async def _evaluate_exits(self, now: datetime) -> BatchResult:
        self._last_exit_eval = now
        await self._refresh_prices(self._ledger.open_instruments())
        actions = [
            a for a in self._ledger.check_exit_targets()
            if a.match_id not in self._pending_liquidation
        ]
        if not actions:
            return BatchResult()
        logger.info(f"Exit targets hit: {', '.join(a.describe() for a in actions)}")
        return await self._execute(actions, now)

    def _purge_finished(self, now: datetime) -> List[str]:
        cutoff = now - timedelta(seconds=self._config.finished_cooldown_seconds)
        removed: List[str] = []
        for match in self._registry.finished_before(cutoff):
            if self._ledger.has_open_positions(match.match_id):
                self._pending_liquidation.add(match.match_id)
                continue
            self._registry.remove(match.match_id)
            self._poller.forget(match.match_id)
            self._cooldown.forget(match.match_id)
            if self._prices is not None:
                self._prices.forget(match.instruments.values())
            self._ledger.purge_closed(match.match_id)
            self._pending_liquidation.discard(match.match_id)
            self.stats.matches_removed += 1
            removed.append(match.match_id)
        return removed

    # =========================================================================
    # Execution helpers
    # =========================================================================

    async def _refresh_prices(self, instrument_ids: Iterable[str]) -> None:
        if self._prices is None:
            return
        prices = await self._prices.refresh(instrument_ids)
        for instrument_id, price in prices.items():
            self._ledger.update_instrument_price(instrument_id, price)

    async def _execute(
        self,
        actions: Sequence[PositionAction],
        now: datetime,
        match: Optional[Match] = None,
    ) -> BatchResult:
        batch = await self._coordinator.execute(actions, now=now)

        for result in batch.succeeded:
            self.stats.actions_succeeded += 1
            action = result.action
            if self._risk is not None:
                self._risk.record_fill(action, now)
            label = match.label if match else action.match_id
            if action.is_open:
                notification_type = NotificationType.POSITION_OPENED
            else:
                notification_type = NotificationType.POSITION_CLOSED
            self._outbox.publish(Notification(
                notification_type,
                match_id=action.match_id,
                data={
                    "label": label,
                    "kind": action.kind.key,
                    "position_id": result.position_id,
                    "shares": str(result.shares),
                    "price": str(result.price),
                    "amount": str(action.amount_usd),
                    "fraction": str(action.fraction),
                    "reason": action.reason,
                },
                created_at=now,
            ))

        if batch.failed:
            self.stats.actions_failed += len(batch.failed)
            self._outbox.publish(Notification(
                NotificationType.ACTION_FAILURES,
                match_id=match.match_id if match else None,
                data={
                    "count": len(batch.failed),
                    "errors": [f"{r.action.describe()}: {r.error}" for r in batch.failed],
                },
                created_at=now,
            ))
        return batch

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore(self, matches: Sequence[Match], positions: Sequence[Position]) -> None:
        """Load state from a snapshot. Finished matches with exposure are queued for liquidation."""
        async with self._lock:
            self._registry.restore(matches)
            self._ledger.restore(positions)
            for match in matches:
                if match.status == MatchStatus.FINISHED and self._ledger.has_open_positions(match.match_id):
                    self._pending_liquidation.add(match.match_id)
            logger.info(
                f"Restored {len(matches)} matches and "
                f"{len(self._ledger.open_positions())} open positions"
            )
