"""
Integration test fixtures.

Wires the real components together the way the bot does, with only the
live feed, discovery, prices and Telegram replaced by in-process fakes.
State goes to a JSON snapshot under tmp_path.
"""
import pytest
from dataclasses import dataclass
from decimal import Decimal
from unittest.mock import AsyncMock

from goal_trader.core.decision_engine import DecisionEngine
from goal_trader.core.notifications import NotificationOutbox
from goal_trader.core.poller import AdaptivePoller
from goal_trader.core.registry import MatchRegistry
from goal_trader.core.tracker import MatchTracker
from goal_trader.execution.coordinator import ExecutionCoordinator
from goal_trader.execution.executors import PaperTradeExecutor
from goal_trader.execution.position_ledger import PositionLedger
from goal_trader.execution.risk import RiskManager
from goal_trader.ingestion.matching import TeamNameResolver
from goal_trader.ingestion.prices import PriceCache
from goal_trader.monitoring.alerting import AlertManager
from goal_trader.storage.snapshot import JsonFileSnapshotStore, StatePersister


@dataclass
class Harness:
    tracker: MatchTracker
    registry: MatchRegistry
    ledger: PositionLedger
    prices: PriceCache
    outbox: NotificationOutbox
    alerts: AlertManager
    persister: StatePersister

    async def settle(self) -> None:
        """Deliver notifications and write the snapshot, as the background loops would."""
        await self.outbox.drain()
        await self.persister.save_if_dirty()


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state" / "goal_trader_state.json"


@pytest.fixture
def build_harness(feed, discovered, mock_telegram_api, state_path):
    """Factory for a fully wired tracker; call it again to simulate a restart."""
    def _build() -> Harness:
        prices = PriceCache()
        for instrument_id in discovered[0].instruments.values():
            prices.set_price(instrument_id, Decimal("0.50"))

        registry = MatchRegistry()
        ledger = PositionLedger()
        outbox = NotificationOutbox()
        alerts = AlertManager(telegram_chat_id="test_chat", _telegram_api=mock_telegram_api)
        outbox.subscribe(alerts.handle_notification)

        tracker = MatchTracker(
            registry=registry,
            poller=AdaptivePoller(registry, feed.fetch_live_snapshots, resolver=TeamNameResolver()),
            decision_engine=DecisionEngine(),
            ledger=ledger,
            coordinator=ExecutionCoordinator(ledger, PaperTradeExecutor(prices), prices),
            outbox=outbox,
            discover=AsyncMock(return_value=discovered),
            prices=prices,
            risk=RiskManager(ledger),
        )
        persister = StatePersister(registry, ledger, JsonFileSnapshotStore(state_path))
        return Harness(tracker, registry, ledger, prices, outbox, alerts, persister)
    return _build


@pytest.fixture
def harness(build_harness):
    return build_harness()
