"""
Decision Engine - turns a goal event into an ordered list of position actions.

Scenarios (strict score increases only):
    FIRST_GOAL      a new leader emerges (from a tie, or the lead flipped
                    between two observations)
    EQUALIZER       the new score is tied
    LEAD_EXTENSION  the same side leads before and after

FIRST_GOAL:      close positions contradicting the new leader, then open
                 leader-wins YES, other-wins NO, draw NO
EQUALIZER:       close every open position, then open home NO, away NO,
                 draw YES
LEAD_EXTENSION:  take a partial profit on positions above the threshold,
                 then add to leader-wins YES and draw NO at a reduced size

The engine is deterministic: the same event and positions always give the
same actions in the same order (closes first, then opens).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence

from goal_trader.execution.actions import PositionAction
from goal_trader.execution.position_ledger import Position

from goal_trader.models import GoalEvent, Match, Outcome, PositionKind, Score, Side, Stance

logger = logging.getLogger(__name__)


class Scenario(str, Enum):
    FIRST_GOAL = "first_goal"
    EQUALIZER = "equalizer"
    LEAD_EXTENSION = "lead_extension"


@dataclass
class DecisionConfig:
    """Sizing and thresholds for goal decisions."""

    position_size: Decimal = Decimal("3")  # USD per fresh position
    add_size_ratio: Decimal = Decimal("0.5")  # lead extension add, relative to position_size
    partial_profit_threshold: Decimal = Decimal("0.20")  # unrealized profit fraction
    partial_sell_fraction: Decimal = Decimal("0.30")
    goal_cooldown_seconds: float = 5.0

    @property
    def add_size(self) -> Decimal:
        return self.position_size * self.add_size_ratio


@dataclass(frozen=True)
class Decision:
    """Actions produced for one goal event."""

    match_id: str
    scenario: Scenario
    actions: List[PositionAction] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # kinds with no instrument


def classify_transition(prev: Score, new: Score) -> Scenario:
    """
    Classify a strict score increase.

    Raises:
        ValueError: If the transition is not a strict increase
    """
    if new.home < prev.home or new.away < prev.away or new == prev:
        raise ValueError(f"Not a strict increase: {prev} -> {new}")

    if new.is_tied:
        return Scenario.EQUALIZER
    if not prev.is_tied and prev.leader == new.leader:
        return Scenario.LEAD_EXTENSION
    return Scenario.FIRST_GOAL


def _kind(outcome: Outcome, stance: Stance) -> PositionKind:
    return PositionKind(outcome, stance)


def first_goal_targets(leader: Side) -> List[PositionKind]:
    return [
        _kind(Outcome.for_side(leader), Stance.YES),
        _kind(Outcome.for_side(leader.other), Stance.NO),
        _kind(Outcome.DRAW, Stance.NO),
    ]


def equalizer_targets() -> List[PositionKind]:
    return [
        _kind(Outcome.HOME, Stance.NO),
        _kind(Outcome.AWAY, Stance.NO),
        _kind(Outcome.DRAW, Stance.YES),
    ]


def lead_extension_targets(leader: Side) -> List[PositionKind]:
    return [
        _kind(Outcome.for_side(leader), Stance.YES),
        _kind(Outcome.DRAW, Stance.NO),
    ]


def contradicts_leader(kind: PositionKind, leader: Side) -> bool:
    """Whether a position loses if `leader` goes on to win."""
    leader_outcome = Outcome.for_side(leader)
    if kind.outcome == leader_outcome:
        return kind.stance == Stance.NO
    return kind.stance == Stance.YES


class DecisionEngine:
    """
    Maps goal events to position actions.

    Usage:
        engine = DecisionEngine(DecisionConfig())
        decision = engine.decide(goal_event, ledger.open_positions(match_id), match)
        results = await coordinator.execute(decision.actions)
    """

    def __init__(self, config: Optional[DecisionConfig] = None) -> None:
        self._config = config or DecisionConfig()

    @property
    def config(self) -> DecisionConfig:
        return self._config

    def decide(
        self,
        event: GoalEvent,
        open_positions: Sequence[Position],
        match: Match,
    ) -> Decision:
        """
        Produce actions for a goal.

        Args:
            event: Goal that was detected
            open_positions: Open positions of this match
            match: The match (for instrument lookup)

        Returns:
            Decision with ordered actions
        """
        scenario = classify_transition(event.previous_score, event.new_score)
        positions = sorted(
            (p for p in open_positions if p.is_open and p.match_id == event.match_id),
            key=lambda p: p.kind.sort_index,
        )
        size = self._config.position_size
        closes: List[PositionAction] = []
        opens: List[PositionKind] = []
        reason = f"{scenario.value} {event.previous_score}->{event.new_score}"

        if scenario == Scenario.FIRST_GOAL:
            leader = event.new_score.leader
            closes = [
                self._full_close(p, f"reversed by {reason}")
                for p in positions
                if contradicts_leader(p.kind, leader)
            ]
            opens = first_goal_targets(leader)

        elif scenario == Scenario.EQUALIZER:
            closes = [self._full_close(p, reason) for p in positions]
            opens = equalizer_targets()

        else:
            leader = event.new_score.leader
            threshold = self._config.partial_profit_threshold
            for p in positions:
                profit = p.profit_pct
                if profit is not None and profit > threshold:
                    closes.append(PositionAction.close(
                        match_id=p.match_id,
                        kind=p.kind,
                        instrument_id=p.instrument_id,
                        position_id=p.position_id,
                        fraction=self._config.partial_sell_fraction,
                        reason=f"partial profit {profit:.1%} on {reason}",
                    ))
            opens = lead_extension_targets(leader)
            size = self._config.add_size

        actions = list(closes)
        skipped: List[str] = []
        for kind in opens:
            instrument_id = match.instrument_for(kind)
            if not instrument_id:
                skipped.append(kind.key)
                logger.warning(f"{match.label}: no instrument for {kind}, skipping open")
                continue
            actions.append(PositionAction.open(
                match_id=event.match_id,
                kind=kind,
                instrument_id=instrument_id,
                amount_usd=size,
                reason=reason,
            ))

        logger.info(
            f"{match.label}: {scenario.value} -> "
            f"{', '.join(a.describe() for a in actions) or 'no actions'}"
        )
        return Decision(
            match_id=event.match_id,
            scenario=scenario,
            actions=actions,
            skipped=skipped,
        )

    @staticmethod
    def _full_close(position: Position, reason: str) -> PositionAction:
        return PositionAction.close(
            match_id=position.match_id,
            kind=position.kind,
            instrument_id=position.instrument_id,
            position_id=position.position_id,
            fraction=Decimal("1"),
            reason=reason,
        )


class GoalCooldown:
    """
    Per-match cooldown after a traded goal.

    A goal inside the window still updates the stored score; it just does
    not reach the decision engine. Other matches are unaffected.
    """

    def __init__(self, seconds: float = 5.0) -> None:
        self._window = timedelta(seconds=seconds)
        self._last_goal: Dict[str, datetime] = {}

    def is_cooling(self, match_id: str, now: datetime) -> bool:
        last = self._last_goal.get(match_id)
        return last is not None and now - last < self._window

    def start(self, match_id: str, now: datetime) -> None:
        self._last_goal[match_id] = now

    def forget(self, match_id: str) -> None:
        self._last_goal.pop(match_id, None)
