"""
Execution Coordinator - runs a batch of position actions.

A batch is resolved into trade requests, dispatched concurrently, and then
applied to the ledger one result at a time in action order. Only successful
submissions touch the ledger. A failed action never blocks its siblings and
is not retried within the batch.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import List, Optional, Sequence, Union

from goal_trader.ingestion.prices import PriceCache

from .actions import ActionType, PositionAction
from .executors import SHARE_QUANTUM, TradeExecutor, TradeResult, TradeSide
from .position_ledger import PositionLedger

logger = logging.getLogger(__name__)


@dataclass
class ExecutionConfig:
    """Configuration for batch execution."""

    call_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ActionResult:
    """Result of one action in a batch."""

    action: PositionAction
    success: bool
    position_id: Optional[str] = None
    shares: Optional[Decimal] = None
    price: Optional[Decimal] = None
    error: Optional[str] = None
    error_type: Optional[str] = None  # timeout, rejected, exception, invalid


@dataclass
class BatchResult:
    results: List[ActionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[ActionResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[ActionResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)


@dataclass(frozen=True)
class _Request:
    action: PositionAction
    side: TradeSide
    amount: Optional[Decimal] = None
    shares: Optional[Decimal] = None


class ExecutionCoordinator:
    """
    Dispatches position actions and applies fills to the ledger.

    Usage:
        coordinator = ExecutionCoordinator(ledger, executor, price_cache)
        batch = await coordinator.execute(decision.actions)
        for failure in batch.failed:
            logger.warning(failure.error)
    """

    def __init__(
        self,
        ledger: PositionLedger,
        executor: TradeExecutor,
        prices: PriceCache,
        config: Optional[ExecutionConfig] = None,
    ) -> None:
        self._ledger = ledger
        self._executor = executor
        self._prices = prices
        self._config = config or ExecutionConfig()

    async def execute(
        self,
        actions: Sequence[PositionAction],
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """
        Execute a batch of actions.

        Args:
            actions: Ordered actions
            now: Timestamp for ledger records

        Returns:
            BatchResult with one ActionResult per action, in order
        """
        if not actions:
            return BatchResult()
        now = now or datetime.now(timezone.utc)

        planned = [self._plan(a) for a in actions]
        requests = [p for p in planned if isinstance(p, _Request)]

        outcomes = iter(await asyncio.gather(*(self._dispatch(r) for r in requests)))

        batch = BatchResult()
        for item in planned:
            if isinstance(item, ActionResult):
                batch.results.append(item)
                continue
            batch.results.append(self._apply(item, next(outcomes), now))

        if batch.failed:
            logger.warning(
                f"Batch: {len(batch.succeeded)}/{len(batch.results)} actions succeeded; "
                + "; ".join(f"{r.action.describe()}: {r.error}" for r in batch.failed)
            )
        return batch

    def _plan(self, action: PositionAction) -> Union[_Request, ActionResult]:
        if action.action_type == ActionType.OPEN:
            if action.amount_usd <= 0:
                return ActionResult(action, False, error="non-positive amount", error_type="invalid")
            return _Request(action, TradeSide.BUY, amount=action.amount_usd)

        position = self._ledger.get(action.position_id) if action.position_id else None
        if position is None or not position.is_open:
            return ActionResult(
                action, False, position_id=action.position_id,
                error="position not open", error_type="invalid",
            )

        if action.action_type == ActionType.CLOSE:
            shares = position.shares
        else:
            shares = (position.shares * action.fraction).quantize(SHARE_QUANTUM, rounding=ROUND_DOWN)
        if shares <= 0:
            return ActionResult(
                action, False, position_id=position.position_id,
                error="nothing to sell", error_type="invalid",
            )
        return _Request(action, TradeSide.SELL, shares=shares)

    async def _dispatch(self, request: _Request) -> TradeResult:
        try:
            return await asyncio.wait_for(
                self._executor.submit(
                    request.action.instrument_id,
                    request.side,
                    amount=request.amount,
                    shares=request.shares,
                ),
                timeout=self._config.call_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return TradeResult(
                success=False,
                error=f"timeout after {self._config.call_timeout_seconds}s",
            )
        except Exception as e:
            return TradeResult(success=False, error=f"{type(e).__name__}: {e}")

    def _apply(self, request: _Request, result: TradeResult, now: datetime) -> ActionResult:
        action = request.action
        if not result.success:
            error_type = "timeout" if (result.error or "").startswith("timeout") else "rejected"
            return ActionResult(
                action, False, position_id=action.position_id,
                error=result.error or "unknown", error_type=error_type,
            )

        market_price = self._prices.last_price(action.instrument_id)

        if request.side == TradeSide.BUY:
            filled = result.filled_shares
            if (filled is None or filled <= 0) and market_price:
                filled = (request.amount / market_price).quantize(SHARE_QUANTUM, rounding=ROUND_DOWN)
            if filled is None or filled <= 0:
                return ActionResult(
                    action, False, error="filled but share count unknown", error_type="exception",
                )
            entry_price = request.amount / filled
            position = self._ledger.open(
                action.match_id, action.kind, action.instrument_id,
                shares=filled, price=entry_price, now=now,
            )
            return ActionResult(
                action, True, position_id=position.position_id,
                shares=filled, price=entry_price,
            )

        sold = result.filled_shares if result.filled_shares else request.shares
        position = self._ledger.get(action.position_id)
        exit_price = market_price
        if exit_price is None and position is not None:
            exit_price = position.current_price or position.entry_price
        event = self._ledger.apply_sell(
            action.position_id,
            sold,
            exit_price,
            reason=action.reason,
            exit_markers=action.exit_markers,
            now=now,
        )
        if event is None:
            return ActionResult(
                action, False, position_id=action.position_id,
                error="position closed before sale was applied", error_type="invalid",
            )
        return ActionResult(
            action, True, position_id=action.position_id,
            shares=event.shares, price=exit_price,
        )
