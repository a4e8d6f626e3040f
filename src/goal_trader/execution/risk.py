"""
Risk limits applied to opening actions.

Closing actions always pass; reducing exposure is never blocked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Set, Tuple

from .actions import PositionAction
from .position_ledger import PositionLedger

logger = logging.getLogger(__name__)


@dataclass
class RiskConfig:
    """Daily and per-match limits. None disables a limit."""

    max_trades_per_day: Optional[int] = 20
    max_volume_per_day: Optional[Decimal] = Decimal("1000")
    max_loss_per_day: Optional[Decimal] = Decimal("100")
    max_per_match: Optional[Decimal] = Decimal("200")
    max_concurrent_matches: Optional[int] = 8
    no_entry_after_minute: Optional[int] = 80


@dataclass
class DailyUsage:
    day: str
    trades: int = 0
    volume: Decimal = Decimal("0")


@dataclass(frozen=True)
class RiskRejection:
    action: PositionAction
    reason: str


class RiskManager:
    """
    Filters opening actions against configured limits.

    Usage:
        risk = RiskManager(ledger, RiskConfig())
        allowed, rejected = risk.filter(decision.actions, minute=event.minute, now=now)
        batch = await coordinator.execute(allowed)
        for result in batch.succeeded:
            risk.record_fill(result.action, now)
    """

    def __init__(self, ledger: PositionLedger, config: Optional[RiskConfig] = None) -> None:
        self._ledger = ledger
        self._config = config or RiskConfig()
        self._usage = DailyUsage(day="")
        self.rejections = 0

    @property
    def config(self) -> RiskConfig:
        return self._config

    def usage(self, now: datetime) -> DailyUsage:
        day = now.astimezone(timezone.utc).strftime("%Y-%m-%d")
        if self._usage.day != day:
            self._usage = DailyUsage(day=day)
        return self._usage

    def filter(
        self,
        actions: Sequence[PositionAction],
        minute: Optional[int],
        now: datetime,
    ) -> Tuple[List[PositionAction], List[RiskRejection]]:
        """
        Split actions into allowed and rejected.

        Limits are checked cumulatively across the batch, so three opens that
        together exceed the per-match cap are partly rejected.
        """
        cfg = self._config
        usage = self.usage(now)
        day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        daily_loss = -self._ledger.realized_pnl_since(day_start)

        allowed: List[PositionAction] = []
        rejected: List[RiskRejection] = []
        exposed: Set[str] = set(self._ledger.matches_with_exposure())
        trades = usage.trades
        volume = usage.volume
        per_match = {}

        for action in actions:
            if not action.is_open:
                allowed.append(action)
                continue

            committed = per_match.get(action.match_id)
            if committed is None:
                committed = self._ledger.committed_for_match(action.match_id)

            reason = None
            if cfg.no_entry_after_minute is not None and minute is not None and minute >= cfg.no_entry_after_minute:
                reason = f"no new entries from minute {cfg.no_entry_after_minute} (at {minute})"
            elif cfg.max_loss_per_day is not None and daily_loss >= cfg.max_loss_per_day:
                reason = f"daily loss limit reached ({daily_loss:.2f})"
            elif cfg.max_trades_per_day is not None and trades >= cfg.max_trades_per_day:
                reason = f"daily trade limit reached ({trades})"
            elif cfg.max_volume_per_day is not None and volume + action.amount_usd > cfg.max_volume_per_day:
                reason = f"daily volume limit ({volume + action.amount_usd} > {cfg.max_volume_per_day})"
            elif cfg.max_per_match is not None and committed + action.amount_usd > cfg.max_per_match:
                reason = f"per-match limit ({committed + action.amount_usd} > {cfg.max_per_match})"
            elif (
                cfg.max_concurrent_matches is not None
                and action.match_id not in exposed
                and len(exposed) >= cfg.max_concurrent_matches
            ):
                reason = f"concurrent match limit ({len(exposed)})"

            if reason:
                rejected.append(RiskRejection(action, reason))
                self.rejections += 1
                logger.warning(f"Risk rejected {action.describe()} on {action.match_id}: {reason}")
                continue

            allowed.append(action)
            trades += 1
            volume += action.amount_usd
            per_match[action.match_id] = committed + action.amount_usd
            exposed.add(action.match_id)

        return allowed, rejected

    def record_fill(self, action: PositionAction, now: datetime) -> None:
        """Count a successful opening action against today's usage."""
        if not action.is_open:
            return
        usage = self.usage(now)
        usage.trades += 1
        usage.volume += action.amount_usd
