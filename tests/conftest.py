"""
Shared test fixtures for integration tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/goal_trader/{component}/tests/conftest.py
"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import List
from unittest.mock import MagicMock

from goal_trader.ingestion.models import LiveSnapshot
from goal_trader.models import MatchMetadata


KICKOFF = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)

INSTRUMENTS = {
    "home_yes": "tok_home_yes",
    "home_no": "tok_home_no",
    "away_yes": "tok_away_yes",
    "away_no": "tok_away_no",
    "draw_yes": "tok_draw_yes",
    "draw_no": "tok_draw_no",
}


class ScriptedFeed:
    """
    Stand-in for the live feed gateway.

    Tests set the current record with `report()`; every fetch returns it
    until the next report. `fail()` makes the next fetch raise.
    """

    def __init__(self) -> None:
        self.records: List[LiveSnapshot] = []
        self.calls = 0
        self._error = None

    def report(self, home: int, away: int, minute=None, tag="1H", external_id="ext_ars_che") -> None:
        self.records = [LiveSnapshot(
            external_id=external_id,
            home_score=home,
            away_score=away,
            elapsed_minute=minute,
            status_tag=tag,
        )]

    def fail(self, error: Exception) -> None:
        self._error = error

    async def fetch_live_snapshots(self) -> List[LiveSnapshot]:
        self.calls += 1
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        return list(self.records)


# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def at_minute():
    """Wall-clock time N minutes after kickoff."""
    def _at(minutes: float) -> datetime:
        return KICKOFF + timedelta(minutes=minutes)
    return _at


# =============================================================================
# Mock External Service Fixtures
# =============================================================================


@pytest.fixture
def feed():
    return ScriptedFeed()


@pytest.fixture
def discovered():
    """Discovery result: one Premier League match with a full instrument set."""
    return [MatchMetadata(
        match_id="epl-ars-che-2026-03-14",
        home_team="Arsenal",
        away_team="Chelsea",
        kickoff=KICKOFF,
        slug="epl-ars-che-2026-03-14",
        league="epl",
        external_id="ext_ars_che",
        instruments=dict(INSTRUMENTS),
    )]


@pytest.fixture
def mock_telegram_api():
    """Mock Telegram API so alerts never leave the process."""
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api
