"""
Monitoring layer test fixtures.

Telegram is never contacted: the API client is injected as a mock.
"""
import pytest
from unittest.mock import MagicMock

from goal_trader.monitoring.alerting import AlertManager


@pytest.fixture
def mock_telegram_api():
    """Mock Telegram API client."""
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api


@pytest.fixture
def alert_manager(mock_telegram_api):
    """AlertManager wired to the mock Telegram API."""
    return AlertManager(
        telegram_bot_token="test_token",
        telegram_chat_id="test_chat_id",
        _telegram_api=mock_telegram_api,
    )
