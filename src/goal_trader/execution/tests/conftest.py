"""
Execution layer test fixtures.

The execution layer talks to the Polymarket CLOB through py-clob-client.
All API calls MUST be mocked in tests - never hit real APIs.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from goal_trader.execution import (
    ExecutionCoordinator,
    PaperTradeExecutor,
    PositionAction,
    PositionLedger,
)
from goal_trader.ingestion.prices import PriceCache
from goal_trader.models import PositionKind


NOW = datetime(2026, 3, 14, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def later():
    """Timestamp N seconds after NOW."""
    def _later(seconds: float) -> datetime:
        return NOW + timedelta(seconds=seconds)
    return _later


@pytest.fixture
def kind():
    """PositionKind from its key, e.g. kind("home_yes")."""
    return PositionKind.from_key


# =============================================================================
# Ledger and Price Fixtures
# =============================================================================


@pytest.fixture
def ledger():
    return PositionLedger()


@pytest.fixture
def prices():
    """Price cache seeded at 0.50 for the usual test instruments."""
    cache = PriceCache()
    for key in ("home_yes", "home_no", "away_yes", "away_no", "draw_yes", "draw_no"):
        cache.set_price(f"tok_{key}", Decimal("0.50"))
    return cache


@pytest.fixture
def open_position(ledger, kind, now):
    """Open a position directly on the ledger."""
    def _open(key="home_yes", shares="10", price="0.50", match_id="m1", at=None):
        return ledger.open(
            match_id, kind(key), f"tok_{key}",
            shares=Decimal(shares), price=Decimal(price), now=at or now,
        )
    return _open


# =============================================================================
# Action Fixtures
# =============================================================================


@pytest.fixture
def open_action(kind):
    def _action(key="home_yes", amount="3", match_id="m1"):
        return PositionAction.open(
            match_id=match_id,
            kind=kind(key),
            instrument_id=f"tok_{key}",
            amount_usd=Decimal(amount),
            reason="test",
        )
    return _action


@pytest.fixture
def close_action():
    def _action(position, fraction="1", markers=()):
        return PositionAction.close(
            match_id=position.match_id,
            kind=position.kind,
            instrument_id=position.instrument_id,
            position_id=position.position_id,
            fraction=Decimal(fraction),
            reason="test",
            exit_markers=tuple(markers),
        )
    return _action


@pytest.fixture
def coordinator(ledger, prices):
    return ExecutionCoordinator(ledger, PaperTradeExecutor(prices), prices)


# =============================================================================
# Mock CLOB Client Fixtures
# =============================================================================


@pytest.fixture
def mock_clob_client():
    """Mock py-clob-client for market order submission."""
    # Use spec to limit attributes to the methods we actually use
    class CLOBClientSpec:
        def create_market_order(self, order_args):
            pass

        def post_order(self, order, order_type):
            pass

    client = MagicMock(spec=CLOBClientSpec)
    client.create_market_order.return_value = {"signed": True}
    client.post_order.return_value = {
        "success": True,
        "orderID": "order_123",
        "takingAmount": "6",
        "makingAmount": "3",
    }
    return client
