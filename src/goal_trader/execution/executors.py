"""
Trade executors - the boundary to the exchange.

Two modes only:
    BUY  by USD amount  (market order)
    SELL by share count (market order)

PaperTradeExecutor fills at the cached price and is used in dry run.
ClobTradeExecutor submits fill-or-kill market orders through py-clob-client.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

if TYPE_CHECKING:
    from goal_trader.ingestion.prices import PriceCache

logger = logging.getLogger(__name__)

SHARE_QUANTUM = Decimal("0.01")


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one submission."""

    success: bool
    filled_shares: Optional[Decimal] = None
    order_id: Optional[str] = None
    error: Optional[str] = None


class TradeExecutor(Protocol):
    async def submit(
        self,
        instrument_id: str,
        side: TradeSide,
        amount: Optional[Decimal] = None,
        shares: Optional[Decimal] = None,
    ) -> TradeResult:
        """BUY with amount (USD) or SELL with shares."""
        ...


def _check_args(side: TradeSide, amount: Optional[Decimal], shares: Optional[Decimal]) -> None:
    if side == TradeSide.BUY and (amount is None or amount <= 0):
        raise ValueError(f"BUY requires a positive amount, got {amount}")
    if side == TradeSide.SELL and (shares is None or shares <= 0):
        raise ValueError(f"SELL requires positive shares, got {shares}")


class PaperTradeExecutor:
    """
    Simulated fills at the last known price.

    Usage:
        executor = PaperTradeExecutor(price_cache)
        result = await executor.submit(token_id, TradeSide.BUY, amount=Decimal("3"))
    """

    def __init__(self, prices: "PriceCache") -> None:
        self._prices = prices
        self._counter = 0

    async def submit(
        self,
        instrument_id: str,
        side: TradeSide,
        amount: Optional[Decimal] = None,
        shares: Optional[Decimal] = None,
    ) -> TradeResult:
        _check_args(side, amount, shares)
        price = await self._prices.get_price(instrument_id)
        if price is None or price <= 0:
            return TradeResult(success=False, error=f"no price for {instrument_id}")

        self._counter += 1
        order_id = f"paper_{self._counter}"
        if side == TradeSide.BUY:
            filled = (amount / price).quantize(SHARE_QUANTUM, rounding=ROUND_DOWN)
            if filled <= 0:
                return TradeResult(success=False, error="amount too small for one lot")
        else:
            filled = shares

        logger.info(f"[DRY RUN] {side.value} {filled} of {instrument_id[:20]} @ {price}")
        return TradeResult(success=True, filled_shares=filled, order_id=order_id)


class ClobTradeExecutor:
    """
    Market orders on the Polymarket CLOB via py-clob-client.

    The client is synchronous, so calls run in a worker thread.

    Usage:
        executor = ClobTradeExecutor(create_clob_client(credentials))
    """

    def __init__(self, clob_client: Any) -> None:
        self._client = clob_client

    async def submit(
        self,
        instrument_id: str,
        side: TradeSide,
        amount: Optional[Decimal] = None,
        shares: Optional[Decimal] = None,
    ) -> TradeResult:
        _check_args(side, amount, shares)
        try:
            response = await asyncio.to_thread(
                self._post_market_order, instrument_id, side, amount, shares
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"CLOB {side.value} failed for {instrument_id[:20]}: {e}")
            return TradeResult(success=False, error=str(e))

        if not isinstance(response, dict) or not response.get("success", False):
            error = response.get("errorMsg") if isinstance(response, dict) else str(response)
            return TradeResult(success=False, error=error or "order not filled")

        filled = _filled_shares(response, side, shares)
        return TradeResult(
            success=True,
            filled_shares=filled,
            order_id=response.get("orderID") or response.get("order_id"),
        )

    def _post_market_order(
        self,
        instrument_id: str,
        side: TradeSide,
        amount: Optional[Decimal],
        shares: Optional[Decimal],
    ) -> Any:
        from py_clob_client.clob_types import MarketOrderArgs, OrderType

        # BUY amounts are USD, SELL amounts are shares
        size = amount if side == TradeSide.BUY else shares
        order_args = MarketOrderArgs(
            token_id=instrument_id,
            amount=float(size),
            side=side.value,
        )
        signed = self._client.create_market_order(order_args)
        return self._client.post_order(signed, OrderType.FOK)


def _filled_shares(response: dict, side: TradeSide, requested: Optional[Decimal]) -> Optional[Decimal]:
    # Buys receive shares (takingAmount); sells give shares (makingAmount)
    key = "takingAmount" if side == TradeSide.BUY else "makingAmount"
    raw = response.get(key)
    if raw in (None, ""):
        return requested if side == TradeSide.SELL else None
    try:
        return Decimal(str(raw))
    except ArithmeticError:
        return requested if side == TradeSide.SELL else None


def create_clob_client(creds: dict) -> Any:
    """
    Build a py-clob-client ClobClient from a credentials dict.

    Raises:
        RuntimeError: If py-clob-client is not installed or init fails
    """
    try:
        from py_clob_client.client import ClobClient
        from py_clob_client.clob_types import ApiCreds
    except ImportError as e:
        raise RuntimeError(
            "py-clob-client is required for live trading. "
            "Install with: pip install 'goal-trader[live]'"
        ) from e

    try:
        api_creds = ApiCreds(
            api_key=creds["api_key"],
            api_secret=creds["api_secret"],
            api_passphrase=creds["api_passphrase"],
        )
        client = ClobClient(
            host=creds.get("host", "https://clob.polymarket.com"),
            chain_id=creds.get("chain_id", 137),
            key=creds.get("private_key"),
            creds=api_creds,
            signature_type=creds.get("signature_type", 2),
            funder=creds.get("funder"),
        )
    except Exception as e:
        raise RuntimeError(f"Failed to create CLOB client for live trading: {e}") from e

    logger.info("CLOB Client: Connected")
    return client
