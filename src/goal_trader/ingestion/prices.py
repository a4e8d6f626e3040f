"""
Price cache that fails closed to the last known price.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

PriceFetcher = Callable[[str], Awaitable[Decimal]]


class PriceCache:
    """
    Wraps a price fetcher and remembers the last good price per instrument.

    A failed or timed-out fetch returns the previous price instead of raising,
    so a flaky price source never zeroes out a position's valuation.

    Usage:
        cache = PriceCache(price_client.fetch_price)
        prices = await cache.refresh(ledger.open_instruments())
        last = cache.last_price(instrument_id)
    """

    def __init__(
        self,
        fetch_price: Optional[PriceFetcher] = None,
        timeout: float = 5.0,
    ) -> None:
        self._fetch_price = fetch_price
        self._timeout = timeout
        self._prices: Dict[str, Tuple[Decimal, datetime]] = {}
        self.failures = 0

    def last_price(self, instrument_id: str) -> Optional[Decimal]:
        entry = self._prices.get(instrument_id)
        return entry[0] if entry else None

    def last_updated(self, instrument_id: str) -> Optional[datetime]:
        entry = self._prices.get(instrument_id)
        return entry[1] if entry else None

    def set_price(self, instrument_id: str, price: Decimal) -> None:
        """Record a price observed elsewhere (e.g. a fill)."""
        self._prices[instrument_id] = (price, datetime.now(timezone.utc))

    def forget(self, instrument_ids: Iterable[str]) -> None:
        """Drop remembered prices, e.g. once a match is no longer tracked."""
        for instrument_id in instrument_ids:
            self._prices.pop(instrument_id, None)

    async def get_price(self, instrument_id: str) -> Optional[Decimal]:
        """
        Fetch a fresh price, falling back to the last known one.

        Returns:
            Price, or None if never seen and the fetch failed
        """
        if self._fetch_price is None:
            return self.last_price(instrument_id)

        try:
            price = await asyncio.wait_for(self._fetch_price(instrument_id), timeout=self._timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            fallback = self.last_price(instrument_id)
            logger.warning(
                f"Price fetch failed for {instrument_id[:20]}: {e}; "
                f"using last known {fallback}"
            )
            return fallback

        self.set_price(instrument_id, price)
        return price

    async def refresh(self, instrument_ids: Iterable[str]) -> Dict[str, Decimal]:
        """Fetch prices for many instruments concurrently."""
        ids = list(dict.fromkeys(instrument_ids))
        if not ids:
            return {}
        results = await asyncio.gather(*(self.get_price(i) for i in ids))
        return {i: p for i, p in zip(ids, results) if p is not None}
