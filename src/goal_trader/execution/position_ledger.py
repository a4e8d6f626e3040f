"""
Position Ledger - owned collection of positions and their exits.

Positions are keyed by position_id and indexed by (match_id, kind) so that a
second buy of the same kind on the same match adds to the open position
rather than creating a sibling. Sales never exceed remaining shares.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from goal_trader.models import PositionKind

from .actions import PositionAction
from .exit_rules import ExitConfig, evaluate_exit

logger = logging.getLogger(__name__)


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Position:
    """
    A position on one instrument of one match.

    amount_committed is the cost basis of the shares still held, so
    amount_committed == shares * entry_price at all times.
    """

    position_id: str
    match_id: str
    kind: PositionKind
    instrument_id: str
    shares: Decimal
    entry_price: Decimal
    amount_committed: Decimal
    opened_at: datetime
    current_price: Optional[Decimal] = None
    status: PositionStatus = PositionStatus.OPEN
    realized_pnl: Decimal = Decimal("0")
    shares_acquired: Decimal = Decimal("0")  # opened + adds
    shares_sold: Decimal = Decimal("0")
    exit_markers: List[str] = field(default_factory=list)
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def unrealized_pnl(self) -> Decimal:
        if self.current_price is None:
            return Decimal("0")
        return self.shares * (self.current_price - self.entry_price)

    @property
    def profit_pct(self) -> Optional[Decimal]:
        """Profit as a fraction of entry price (0.5 == +50%)."""
        if self.current_price is None or self.entry_price <= 0:
            return None
        return (self.current_price - self.entry_price) / self.entry_price

    def copy(self) -> "Position":
        return replace(self, exit_markers=list(self.exit_markers))


@dataclass(frozen=True)
class ExitEvent:
    """Records a (partial) sale of a position."""

    position_id: str
    match_id: str
    kind: PositionKind
    shares: Decimal
    entry_price: Decimal
    exit_price: Decimal
    pnl: Decimal
    reason: str
    full_close: bool
    created_at: datetime


class PositionLedger:
    """
    Tracks positions, applies buys and sells, and evaluates exit targets.

    Handles:
    - Opening positions (or adding to an open one of the same kind)
    - Partial and full closes with realized P&L
    - Graduated exits and stop loss on current prices
    - Liquidating everything on a finished match

    Usage:
        ledger = PositionLedger(ExitConfig())

        position = ledger.open(match_id, kind, instrument_id,
                               shares=Decimal("10"), price=Decimal("0.30"))
        ledger.update_instrument_price(instrument_id, Decimal("0.45"))

        for action in ledger.check_exit_targets():
            ...  # hand to the execution coordinator

        ledger.close(position.position_id, Decimal("0.25"),
                     price=Decimal("0.45"), reason="manual")
    """

    def __init__(self, exit_config: Optional[ExitConfig] = None) -> None:
        self._exit_config = exit_config or ExitConfig()
        self._positions: Dict[str, Position] = {}
        self._open_index: Dict[Tuple[str, str], str] = {}  # (match_id, kind) -> position_id
        self._exit_events: List[ExitEvent] = []
        self._version = 0

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    @property
    def exit_config(self) -> ExitConfig:
        return self._exit_config

    # =========================================================================
    # Queries (copies only)
    # =========================================================================

    def get(self, position_id: str) -> Optional[Position]:
        position = self._positions.get(position_id)
        return position.copy() if position else None

    def open_positions(self, match_id: Optional[str] = None) -> List[Position]:
        return [
            p.copy()
            for p in self._positions.values()
            if p.is_open and (match_id is None or p.match_id == match_id)
        ]

    def find_open(self, match_id: str, kind: PositionKind) -> Optional[Position]:
        position_id = self._open_index.get((match_id, kind.key))
        return self.get(position_id) if position_id else None

    def has_open_positions(self, match_id: str) -> bool:
        return any(p.is_open and p.match_id == match_id for p in self._positions.values())

    def matches_with_exposure(self) -> List[str]:
        return sorted({p.match_id for p in self._positions.values() if p.is_open})

    def committed_for_match(self, match_id: str) -> Decimal:
        return sum(
            (p.amount_committed for p in self._positions.values()
             if p.is_open and p.match_id == match_id),
            Decimal("0"),
        )

    def open_instruments(self) -> List[str]:
        return sorted({p.instrument_id for p in self._positions.values() if p.is_open})

    def exit_events(self, position_id: Optional[str] = None) -> List[ExitEvent]:
        if position_id is None:
            return list(self._exit_events)
        return [e for e in self._exit_events if e.position_id == position_id]

    def realized_pnl_since(self, since: datetime) -> Decimal:
        """Realized P&L from exits at or after `since`. Only the current UTC day is kept."""
        return sum(
            (e.pnl for e in self._exit_events if e.created_at >= since),
            Decimal("0"),
        )

    def total_unrealized_pnl(self) -> Decimal:
        return sum((p.unrealized_pnl for p in self._positions.values() if p.is_open), Decimal("0"))

    # =========================================================================
    # Mutation
    # =========================================================================

    def open(
        self,
        match_id: str,
        kind: PositionKind,
        instrument_id: str,
        shares: Decimal,
        price: Decimal,
        now: Optional[datetime] = None,
    ) -> Position:
        """
        Open a position, or add to the open one of the same kind.

        Adds use a weighted-average entry price.

        Raises:
            ValueError: If shares or price are not positive
        """
        if shares <= 0 or price <= 0:
            raise ValueError(f"Cannot open {kind} with shares={shares} price={price}")
        now = now or datetime.now(timezone.utc)

        existing_id = self._open_index.get((match_id, kind.key))
        if existing_id:
            position = self._positions[existing_id]
            total_shares = position.shares + shares
            total_cost = position.amount_committed + shares * price
            position.shares = total_shares
            position.amount_committed = total_cost
            position.entry_price = total_cost / total_shares
            position.shares_acquired += shares
            if position.current_price is None:
                position.current_price = price
            self._touch()
            logger.info(
                f"Added to position {position.position_id} ({kind}): +{shares} @ {price}, "
                f"size={position.shares}, avg entry={position.entry_price:.4f}"
            )
            return position.copy()

        position_id = f"pos_{uuid.uuid4().hex[:12]}"
        position = Position(
            position_id=position_id,
            match_id=match_id,
            kind=kind,
            instrument_id=instrument_id,
            shares=shares,
            entry_price=price,
            amount_committed=shares * price,
            opened_at=now,
            current_price=price,
            shares_acquired=shares,
        )
        self._positions[position_id] = position
        self._open_index[(match_id, kind.key)] = position_id
        self._touch()
        logger.info(f"Created position {position_id} ({match_id} {kind}): {shares} @ {price}")
        return position.copy()

    def apply_sell(
        self,
        position_id: str,
        shares: Decimal,
        price: Decimal,
        reason: str,
        exit_markers: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> Optional[ExitEvent]:
        """
        Apply a completed sale of `shares` at `price`.

        Sales are capped at remaining shares. Selling the rest closes the
        position. Exit markers are recorded on the position.

        Returns:
            ExitEvent, or None if the position is unknown or already closed
        """
        position = self._positions.get(position_id)
        if position is None or not position.is_open:
            logger.warning(f"Sell on unknown or closed position {position_id} ignored")
            return None

        now = now or datetime.now(timezone.utc)
        sold = min(shares, position.shares)
        if sold <= 0:
            return None

        pnl = sold * (price - position.entry_price)
        position.shares -= sold
        position.amount_committed = position.shares * position.entry_price
        position.shares_sold += sold
        position.realized_pnl += pnl
        position.current_price = price
        for marker in exit_markers:
            if marker not in position.exit_markers:
                position.exit_markers.append(marker)

        full_close = position.shares <= 0
        if full_close:
            position.shares = Decimal("0")
            position.amount_committed = Decimal("0")
            position.status = PositionStatus.CLOSED
            position.closed_at = now
            self._open_index.pop((position.match_id, position.kind.key), None)

        event = ExitEvent(
            position_id=position_id,
            match_id=position.match_id,
            kind=position.kind,
            shares=sold,
            entry_price=position.entry_price,
            exit_price=price,
            pnl=pnl,
            reason=reason,
            full_close=full_close,
            created_at=now,
        )
        self._record_exit(event)
        self._touch()

        logger.info(
            f"{'Closed' if full_close else 'Reduced'} position {position_id} ({position.kind}): "
            f"sold {sold} @ {price}, pnl={pnl:.4f}, remaining={position.shares}, reason={reason}"
        )
        return event

    def close(
        self,
        position_id: str,
        fraction: Decimal,
        price: Decimal,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Optional[ExitEvent]:
        """
        Sell a fraction of remaining shares. fraction >= 1 closes fully.

        Raises:
            ValueError: If fraction is not positive
        """
        if fraction <= 0:
            raise ValueError(f"fraction must be positive, got {fraction}")
        position = self._positions.get(position_id)
        if position is None or not position.is_open:
            return None
        shares = position.shares if fraction >= 1 else position.shares * fraction
        return self.apply_sell(position_id, shares, price, reason, now=now)

    def update_price(self, position_id: str, price: Decimal) -> None:
        position = self._positions.get(position_id)
        if position and position.is_open and position.current_price != price:
            position.current_price = price
            self._touch()

    def update_instrument_price(self, instrument_id: str, price: Decimal) -> int:
        """Set the current price on every open position of an instrument."""
        updated = 0
        for position in self._positions.values():
            if position.is_open and position.instrument_id == instrument_id:
                if position.current_price != price:
                    position.current_price = price
                    updated += 1
        if updated:
            self._touch()
        return updated

    def check_exit_targets(self) -> List[PositionAction]:
        """
        Evaluate exit rules on every open position.

        Markers are not recorded here; they are recorded when the sale is
        applied, so a failed sale is evaluated again next time.
        """
        actions: List[PositionAction] = []
        for position in sorted(self._positions.values(), key=lambda p: p.opened_at):
            if not position.is_open:
                continue
            decision = evaluate_exit(position.profit_pct, position.exit_markers, self._exit_config)
            if decision is None:
                continue
            actions.append(PositionAction.close(
                match_id=position.match_id,
                kind=position.kind,
                instrument_id=position.instrument_id,
                position_id=position.position_id,
                fraction=decision.fraction,
                reason=decision.reason,
                exit_markers=decision.markers,
            ))
        return actions

    def liquidate_match(self, match_id: str, reason: str = "match_finished") -> List[PositionAction]:
        """Full-close actions for every open position of a match."""
        return [
            PositionAction.close(
                match_id=p.match_id,
                kind=p.kind,
                instrument_id=p.instrument_id,
                position_id=p.position_id,
                fraction=Decimal("1"),
                reason=reason,
            )
            for p in sorted(self._positions.values(), key=lambda p: p.kind.sort_index)
            if p.is_open and p.match_id == match_id
        ]

    def purge_closed(self, match_id: str) -> int:
        """Drop closed positions of a match that is no longer tracked."""
        doomed = [
            pid for pid, p in self._positions.items()
            if p.match_id == match_id and not p.is_open
        ]
        for pid in doomed:
            del self._positions[pid]
        if doomed:
            self._touch()
        return len(doomed)

    def restore(self, positions: Iterable[Position]) -> int:
        """Replace contents with positions loaded from a snapshot."""
        self._positions.clear()
        self._open_index.clear()
        for position in positions:
            stored = position.copy()
            self._positions[stored.position_id] = stored
            if stored.is_open:
                self._open_index[(stored.match_id, stored.kind.key)] = stored.position_id
        self._touch()
        return len(self._positions)

    def _record_exit(self, event: ExitEvent) -> None:
        """Append an exit, dropping events from before its UTC day."""
        day_start = event.created_at.astimezone(timezone.utc).replace(
            hour=0, minute=0, second=0, microsecond=0,
        )
        self._exit_events = [e for e in self._exit_events if e.created_at >= day_start]
        self._exit_events.append(event)

    def _touch(self) -> None:
        self._version += 1
