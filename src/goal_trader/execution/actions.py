"""
Position actions - the unit of work handed to the execution coordinator.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from goal_trader.models import PositionKind


class ActionType(str, Enum):
    """What to do with a position."""

    OPEN = "open"                    # buy by USD amount (adds to an open position of the same kind)
    PARTIAL_CLOSE = "partial_close"  # sell a fraction of remaining shares
    CLOSE = "close"                  # sell everything


@dataclass(frozen=True)
class PositionAction:
    """
    A single trading action.

    Attributes:
        action_type: OPEN, PARTIAL_CLOSE or CLOSE
        match_id: Match the action belongs to
        kind: Position kind (outcome + stance)
        instrument_id: Tradeable instrument for the kind
        amount_usd: USD to spend (OPEN only)
        fraction: Fraction of remaining shares to sell (closes only)
        position_id: Target position (closes only)
        reason: Why the action was produced
        exit_markers: Exit targets consumed if the sale succeeds
    """

    action_type: ActionType
    match_id: str
    kind: PositionKind
    instrument_id: str
    amount_usd: Decimal = Decimal("0")
    fraction: Decimal = Decimal("0")
    position_id: Optional[str] = None
    reason: str = ""
    exit_markers: Tuple[str, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.action_type == ActionType.OPEN

    @property
    def is_close(self) -> bool:
        return self.action_type in (ActionType.PARTIAL_CLOSE, ActionType.CLOSE)

    def describe(self) -> str:
        if self.is_open:
            return f"OPEN {self.kind} ${self.amount_usd} [{self.reason}]"
        return f"{self.action_type.value.upper()} {self.kind} {self.fraction:.0%} [{self.reason}]"

    @classmethod
    def open(
        cls,
        match_id: str,
        kind: PositionKind,
        instrument_id: str,
        amount_usd: Decimal,
        reason: str,
    ) -> "PositionAction":
        return cls(
            action_type=ActionType.OPEN,
            match_id=match_id,
            kind=kind,
            instrument_id=instrument_id,
            amount_usd=amount_usd,
            reason=reason,
        )

    @classmethod
    def close(
        cls,
        match_id: str,
        kind: PositionKind,
        instrument_id: str,
        position_id: str,
        fraction: Decimal,
        reason: str,
        exit_markers: Tuple[str, ...] = (),
    ) -> "PositionAction":
        full = fraction >= Decimal("1")
        return cls(
            action_type=ActionType.CLOSE if full else ActionType.PARTIAL_CLOSE,
            match_id=match_id,
            kind=kind,
            instrument_id=instrument_id,
            position_id=position_id,
            fraction=Decimal("1") if full else fraction,
            reason=reason,
            exit_markers=exit_markers,
        )
