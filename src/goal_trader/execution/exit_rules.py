"""
Exit rules for open positions.

Graduated profit taking:
    +50%  -> sell 25% of remaining shares
    +100% -> sell 35% of remaining shares
    +200% -> sell 40% of remaining shares

Each threshold fires at most once per position, lowest first. A stop loss
(-20% by default) closes the whole position and is checked before any
profit threshold.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ExitTarget:
    """Sell `sell_fraction` of remaining shares once profit reaches `profit_pct`."""

    profit_pct: Decimal
    sell_fraction: Decimal

    def __post_init__(self):
        if not (Decimal("0") < self.sell_fraction <= Decimal("1")):
            raise ValueError(f"sell_fraction must be in (0, 1], got {self.sell_fraction}")

    @property
    def marker(self) -> str:
        """Key recorded on a position once this target has fired."""
        return f"tp_{self.profit_pct}"


def _default_targets() -> List[ExitTarget]:
    return [
        ExitTarget(Decimal("0.50"), Decimal("0.25")),
        ExitTarget(Decimal("1.00"), Decimal("0.35")),
        ExitTarget(Decimal("2.00"), Decimal("0.40")),
    ]


@dataclass
class ExitConfig:
    """Configuration for graduated exits."""

    targets: List[ExitTarget] = field(default_factory=_default_targets)
    stop_loss_pct: Optional[Decimal] = Decimal("-0.20")  # None disables

    def sorted_targets(self) -> List[ExitTarget]:
        return sorted(self.targets, key=lambda t: t.profit_pct)


@dataclass(frozen=True)
class ExitDecision:
    """
    Exit to take on one position.

    fraction is relative to the remaining shares at evaluation time.
    markers lists the targets that this exit consumes.
    """

    fraction: Decimal
    reason: str
    markers: Tuple[str, ...] = ()
    is_stop_loss: bool = False


def evaluate_exit(
    profit_pct: Optional[Decimal],
    fired_markers: Sequence[str],
    config: ExitConfig,
) -> Optional[ExitDecision]:
    """
    Decide whether a position should be (partly) sold.

    Several thresholds crossed in one check fold into one decision whose
    fraction equals selling each target in turn from what remains:
    25% then 35% of the rest is 1 - 0.75 * 0.65 = 51.25%.

    Args:
        profit_pct: Current profit as a fraction of entry (0.5 == +50%)
        fired_markers: Targets already taken on this position
        config: Exit configuration

    Returns:
        ExitDecision, or None if nothing applies
    """
    if profit_pct is None:
        return None

    if config.stop_loss_pct is not None and profit_pct <= config.stop_loss_pct:
        return ExitDecision(
            fraction=Decimal("1"),
            reason=f"stop_loss ({profit_pct:.1%})",
            is_stop_loss=True,
        )

    keep = Decimal("1")
    markers: List[str] = []
    for target in config.sorted_targets():
        if target.marker in fired_markers:
            continue
        if profit_pct < target.profit_pct:
            break
        keep *= Decimal("1") - target.sell_fraction
        markers.append(target.marker)

    if not markers:
        return None

    return ExitDecision(
        fraction=Decimal("1") - keep,
        reason=f"take_profit {'+'.join(markers)} ({profit_pct:.1%})",
        markers=tuple(markers),
    )
