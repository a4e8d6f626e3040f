"""
Notification outbox.

Core components publish notifications here instead of calling listeners
directly. A separate delivery loop drains the outbox, so a slow or failing
listener never holds up a polling tick.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    GOAL = "goal"
    CANCELLATION = "cancellation"
    POSITION_OPENED = "position_opened"
    POSITION_CLOSED = "position_closed"
    MATCH_FINISHED = "match_finished"
    ACTION_FAILURES = "action_failures"
    DISCOVERY_OUTAGE = "discovery_outage"


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    match_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[Notification], Union[None, Awaitable[None]]]


class NotificationOutbox:
    """
    Bounded queue of notifications with best-effort delivery.

    When full, the oldest notification is dropped.

    Usage:
        outbox = NotificationOutbox()
        outbox.subscribe(alert_manager.handle_notification)

        outbox.publish(Notification(NotificationType.GOAL, match_id, {...}))
        delivered = await outbox.drain()
    """

    def __init__(self, max_size: int = 1000, listener_timeout: float = 15.0) -> None:
        self._queue: Deque[Notification] = deque(maxlen=max_size)
        self._listeners: List[Listener] = []
        self._listener_timeout = listener_timeout
        self.dropped = 0
        self.delivery_failures = 0

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, notification: Notification) -> None:
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
            logger.warning(f"Outbox full, dropping oldest notification ({self.dropped} dropped)")
        self._queue.append(notification)

    def pending(self) -> int:
        return len(self._queue)

    async def drain(self) -> int:
        """
        Deliver everything queued so far to every listener.

        Listener errors and timeouts are logged and counted, never raised.

        Returns:
            Number of notifications taken off the queue
        """
        delivered = 0
        while self._queue:
            notification = self._queue.popleft()
            delivered += 1
            for listener in list(self._listeners):
                await self._deliver(listener, notification)
        return delivered

    async def _deliver(self, listener: Listener, notification: Notification) -> None:
        try:
            result = listener(notification)
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=self._listener_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.delivery_failures += 1
            logger.error(f"Notification listener failed on {notification.type.value}: {e}")
