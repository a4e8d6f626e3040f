"""
Storage test fixtures.

Snapshot stores are exercised against tmp_path files and a mocked Database;
no PostgreSQL instance is needed.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from goal_trader.core.registry import MatchRegistry
from goal_trader.execution.position_ledger import PositionLedger
from goal_trader.models import Match, MatchStatus, PositionKind, Score


KICKOFF = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db():
    """Mock Database for unit tests."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def registry():
    """Registry with one live match at 1-0."""
    registry = MatchRegistry()
    registry.register(Match(
        match_id="m1",
        home_team="Arsenal",
        away_team="Chelsea",
        kickoff=KICKOFF,
        external_id="ext_1",
        score=Score(1, 0),
        elapsed_minute=34,
        status=MatchStatus.LIVE,
        status_tag="1H",
        instruments={"home_yes": "tok_home_yes", "draw_no": "tok_draw_no"},
        live_baseline_taken=True,
    ))
    return registry


@pytest.fixture
def ledger():
    """Ledger with one open and one closed position on m1."""
    ledger = PositionLedger()
    opened = ledger.open(
        "m1", PositionKind.from_key("home_yes"), "tok_home_yes",
        shares=Decimal("6"), price=Decimal("0.45"), now=KICKOFF,
    )
    ledger.apply_sell(opened.position_id, Decimal("1.5"), Decimal("0.70"), "tp",
                      exit_markers=["tp_0.50"], now=KICKOFF)
    closed = ledger.open(
        "m1", PositionKind.from_key("draw_no"), "tok_draw_no",
        shares=Decimal("4"), price=Decimal("0.75"), now=KICKOFF,
    )
    ledger.close(closed.position_id, Decimal("1"), Decimal("0.80"), "equalizer")
    return ledger
