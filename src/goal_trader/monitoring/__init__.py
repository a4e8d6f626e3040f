"""
Monitoring Layer - operator alerts.

Public API:
    AlertManager: Telegram alerts with deduplication; subscribes to the
        notification outbox through handle_notification
"""
from .alerting import AlertManager, AlertRecord

__all__ = [
    "AlertManager",
    "AlertRecord",
]
