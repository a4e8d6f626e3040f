"""
Core layer test fixtures.

Everything here is in-memory: the live feed, prices and the exchange are
replaced with fakes. Never hit real APIs.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from goal_trader.core.registry import MatchRegistry
from goal_trader.execution.coordinator import ExecutionCoordinator
from goal_trader.execution.executors import PaperTradeExecutor
from goal_trader.execution.position_ledger import PositionLedger
from goal_trader.ingestion.models import LiveSnapshot
from goal_trader.ingestion.prices import PriceCache
from goal_trader.models import Match, MatchStatus, Score


KICKOFF = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)

INSTRUMENTS = {
    "home_yes": "tok_home_yes",
    "home_no": "tok_home_no",
    "away_yes": "tok_away_yes",
    "away_no": "tok_away_no",
    "draw_yes": "tok_draw_yes",
    "draw_no": "tok_draw_no",
}


# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def kickoff():
    return KICKOFF


@pytest.fixture
def at_minute():
    """Wall-clock time N minutes after kickoff."""
    def _at(minutes: float) -> datetime:
        return KICKOFF + timedelta(minutes=minutes)
    return _at


# =============================================================================
# Match Fixtures
# =============================================================================


@pytest.fixture
def make_match():
    """Factory for matches; defaults to an upcoming Arsenal vs Chelsea."""
    def _make(
        match_id: str = "m1",
        status: MatchStatus = MatchStatus.UPCOMING,
        score: Score = Score(0, 0),
        minute=None,
        external_id="ext_1",
        baseline: bool = False,
        **kwargs,
    ) -> Match:
        return Match(
            match_id=match_id,
            home_team=kwargs.pop("home_team", "Arsenal"),
            away_team=kwargs.pop("away_team", "Chelsea"),
            kickoff=kwargs.pop("kickoff", KICKOFF),
            external_id=external_id,
            score=score,
            elapsed_minute=minute,
            status=status,
            instruments=kwargs.pop("instruments", dict(INSTRUMENTS)),
            live_baseline_taken=baseline,
            **kwargs,
        )
    return _make


@pytest.fixture
def live_match(make_match):
    """Live match at 0-0 with the baseline already taken."""
    return make_match(status=MatchStatus.LIVE, minute=10, baseline=True)


@pytest.fixture
def registry():
    return MatchRegistry()


@pytest.fixture
def snapshot():
    """Factory for live snapshots of ext_1."""
    def _snap(home: int, away: int, minute=None, tag="1H", external_id="ext_1", **kwargs):
        return LiveSnapshot(
            external_id=external_id,
            home_score=home,
            away_score=away,
            elapsed_minute=minute,
            status_tag=tag,
            **kwargs,
        )
    return _snap


# =============================================================================
# Execution Fixtures
# =============================================================================


@pytest.fixture
def prices():
    """Price cache with every instrument at 0.50 and no live fetcher."""
    cache = PriceCache()
    for instrument_id in INSTRUMENTS.values():
        cache.set_price(instrument_id, Decimal("0.50"))
    return cache


@pytest.fixture
def ledger():
    return PositionLedger()


@pytest.fixture
def coordinator(ledger, prices):
    return ExecutionCoordinator(ledger, PaperTradeExecutor(prices), prices)


@pytest.fixture
def live_fetcher():
    """Async fetcher whose return value tests set per call."""
    return AsyncMock(return_value=[])
