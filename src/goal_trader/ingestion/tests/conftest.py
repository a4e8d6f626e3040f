"""
Ingestion layer test fixtures.

HTTP is never real: clients get a mocked aiohttp session whose responses
are set per test.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock


@pytest.fixture
def fake_session():
    """
    Factory for a mocked aiohttp.ClientSession.

    Usage:
        session = fake_session(payload=[...])              # 200 with JSON
        session = fake_session(status=503, text="down")     # server error
        session = fake_session(exc=aiohttp.ClientError())   # transport error
    """
    def _make(status=200, payload=None, text="", exc=None):
        response = MagicMock()
        response.status = status
        response.json = AsyncMock(return_value=payload)
        response.text = AsyncMock(return_value=text)

        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)

        session = MagicMock()
        if exc is not None:
            session.request = MagicMock(side_effect=exc)
        else:
            session.request = MagicMock(return_value=context)
        session.close = AsyncMock()
        return session
    return _make


@pytest.fixture
def live_record():
    """A well-formed live record in the gateway's camelCase shape."""
    return {
        "externalId": "1035037",
        "homeScore": 1,
        "awayScore": 0,
        "elapsedMinute": 23,
        "statusTag": "1H",
        "homeTeam": "Arsenal",
        "awayTeam": "Chelsea",
    }


@pytest.fixture
def discovery_record():
    return {
        "id": "epl-ars-che-2026-03-14",
        "homeTeam": "Arsenal",
        "awayTeam": "Chelsea",
        "kickoff": "2026-03-14T15:00:00Z",
        "slug": "epl-ars-che-2026-03-14",
        "league": "EPL",
        "externalId": 1035037,
        "instruments": {
            "HOME_YES": "tok_home_yes",
            "home_no": "tok_home_no",
            "draw_yes": "",
        },
    }
