"""
Async HTTP clients for the live score feed and instrument prices.

FeedClient talks to a JSON gateway that has already normalized provider data
into the canonical record shapes (see models.LiveSnapshot and
models.parse_match_metadata). ClobPriceClient reads midpoints from the
Polymarket CLOB.

Requests are made once per call. A failed call raises FeedError and the
caller's next scheduled tick is the retry; nothing here sleeps and loops.
"""
from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from goal_trader.models import MatchMetadata

from .models import LiveSnapshot, SnapshotParseError, parse_match_metadata

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Error talking to an upstream HTTP API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class RateLimitError(FeedError):
    """Rate limit exceeded."""
    pass


class _JsonHttpClient:
    """
    Shared session handling, rate limiting and error mapping.

    Usage:
        async with FeedClient(base_url) as client:
            snapshots = await client.fetch_live_snapshots()
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 10.0,  # requests per second
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        daily_request_cap: Optional[int] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, without trailing slash
            session: Optional aiohttp session (created if not provided)
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
            headers: Extra headers sent with every request
            daily_request_cap: Refuse requests beyond this many per UTC day
        """
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = headers or {}
        self._daily_cap = daily_request_cap

        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()
        self._day: Optional[int] = None
        self._requests_today = 0

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    @property
    def requests_today(self) -> int:
        return self._requests_today

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()

            day = int(now // 86400)
            if day != self._day:
                self._day = day
                self._requests_today = 0
            if self._daily_cap is not None and self._requests_today >= self._daily_cap:
                raise RateLimitError(
                    f"Daily request cap reached ({self._daily_cap})",
                    status_code=429,
                )

            self._request_times = [t for t in self._request_times if now - t < 1.0]
            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())
            self._requests_today += 1

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Make one HTTP request and return parsed JSON.

        Raises:
            FeedError: On HTTP or transport errors (transient unless 4xx)
            RateLimitError: When rate limited
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._base_url}{path}"
        await self._rate_limit_wait()

        try:
            async with self._session.request(
                method, url, headers=self._headers, **kwargs
            ) as response:
                if response.status == 429:
                    raise RateLimitError("Rate limit exceeded", status_code=429)

                if 400 <= response.status < 500:
                    text = await response.text()
                    raise FeedError(
                        f"API error: {response.status} - {text[:200]}",
                        status_code=response.status,
                        transient=False,
                    )

                if response.status >= 500:
                    text = await response.text()
                    raise FeedError(
                        f"Server error: {response.status} - {text[:200]}",
                        status_code=response.status,
                    )

                return await response.json(content_type=None)

        except FeedError:
            raise

        except asyncio.CancelledError:
            logger.debug("Request cancelled")
            raise

        except asyncio.TimeoutError as e:
            raise FeedError(f"Request timed out: {url}") from e

        except aiohttp.ClientError as e:
            raise FeedError(f"Request failed: {e}") from e

        except ValueError as e:
            # Body was not JSON
            raise FeedError(f"Invalid JSON from {url}: {e}", transient=False) from e


class FeedClient(_JsonHttpClient):
    """
    Client for the normalized live score gateway.

    Endpoints:
        GET /live      -> [LiveSnapshot record, ...]
        GET /matches   -> [discovery record, ...]
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
        daily_request_cap: Optional[int] = 75_000,
    ):
        headers = {"x-api-key": api_key} if api_key else None
        super().__init__(
            base_url,
            session=session,
            rate_limit=5.0,
            timeout=timeout,
            headers=headers,
            daily_request_cap=daily_request_cap,
        )
        self.invalid_records = 0

    async def fetch_live_snapshots(self) -> List[LiveSnapshot]:
        """
        Fetch every live match in one call.

        Malformed records are logged and dropped; the rest are returned.
        """
        data = await self._request("GET", "/live")
        records = _unwrap_list(data)

        snapshots: List[LiveSnapshot] = []
        for record in records:
            try:
                snapshots.append(LiveSnapshot.from_payload(record))
            except SnapshotParseError as e:
                self.invalid_records += 1
                logger.warning(f"Skipping malformed live record: {e}")
        return snapshots

    async def discover_matches(self) -> List[MatchMetadata]:
        """Fetch upcoming and live matches with their instruments."""
        data = await self._request("GET", "/matches")
        records = _unwrap_list(data)

        matches: List[MatchMetadata] = []
        for record in records:
            try:
                matches.append(parse_match_metadata(record))
            except SnapshotParseError as e:
                logger.warning(f"Skipping malformed discovery record: {e}")
        return matches


class ClobPriceClient(_JsonHttpClient):
    """Reads instrument midpoints from the Polymarket CLOB."""

    CLOB_API = "https://clob.polymarket.com"

    def __init__(
        self,
        base_url: str = CLOB_API,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 5.0,
    ):
        super().__init__(base_url, session=session, rate_limit=10.0, timeout=timeout)

    async def fetch_price(self, instrument_id: str) -> Decimal:
        """
        Midpoint price for an instrument, in [0, 1].

        Raises:
            FeedError: On request failure or an out-of-range/missing price
        """
        data = await self._request("GET", "/midpoint", params={"token_id": instrument_id})
        raw = data.get("mid") if isinstance(data, dict) else None
        try:
            price = Decimal(str(raw))
        except (InvalidOperation, ValueError) as e:
            raise FeedError(f"No midpoint for {instrument_id}: {data!r}", transient=False) from e
        if not (Decimal("0") <= price <= Decimal("1")):
            raise FeedError(f"Midpoint out of range for {instrument_id}: {price}", transient=False)
        return price


def _unwrap_list(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("data", "results", "response", "matches"):
            value = data.get(key)
            if isinstance(value, list):
                return value
    raise FeedError(f"Unexpected payload shape: {type(data).__name__}", transient=False)
