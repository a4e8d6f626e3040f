"""
BackgroundTasksManager - Manages async background tasks.

Handles periodic tasks like:
- Tracker ticks (live polling and trading)
- Match discovery
- Notification delivery
- State snapshots
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

if TYPE_CHECKING:
    from goal_trader.core.notifications import NotificationOutbox
    from goal_trader.core.tracker import MatchTracker
    from goal_trader.storage.snapshot import StatePersister

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTaskConfig:
    """Configuration for background tasks."""

    # Tracker tick; per-match cadence is decided by the poller
    tick_interval_seconds: float = 1.0
    tick_enabled: bool = True

    # Discovery of upcoming matches
    discovery_interval_seconds: float = 300
    discovery_enabled: bool = True

    # Notification delivery
    notification_interval_seconds: float = 0.5
    notification_enabled: bool = True

    # State snapshots (written only when something changed)
    persist_interval_seconds: float = 2.0
    persist_enabled: bool = True


class BackgroundTasksManager:
    """
    Manages background async tasks for the goal trader.

    Each task survives errors in its own body; the manager handles
    graceful shutdown.

    Usage:
        manager = BackgroundTasksManager(
            tracker=tracker,
            outbox=outbox,
            persister=persister,
            config=BackgroundTaskConfig(),
        )
        await manager.start()
        # ... bot runs ...
        await manager.stop()
    """

    def __init__(
        self,
        tracker: Optional["MatchTracker"] = None,
        outbox: Optional["NotificationOutbox"] = None,
        persister: Optional["StatePersister"] = None,
        config: Optional[BackgroundTaskConfig] = None,
    ) -> None:
        self._tracker = tracker
        self._outbox = outbox
        self._persister = persister
        self._config = config or BackgroundTaskConfig()

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self.errors = 0

    @property
    def is_running(self) -> bool:
        """Whether the manager is running."""
        return self._running

    @property
    def task_names(self) -> List[str]:
        return [t.get_name() for t in self._tasks]

    async def start(self) -> None:
        """Start all background tasks."""
        if self._running:
            logger.warning("BackgroundTasksManager already running")
            return

        logger.info("Starting background tasks...")
        self._running = True
        self._stop_event.clear()
        cfg = self._config

        if cfg.tick_enabled and self._tracker:
            self._spawn("tracker_tick", cfg.tick_interval_seconds, self._tracker.tick)

        if cfg.discovery_enabled and self._tracker:
            self._spawn("discovery", cfg.discovery_interval_seconds, self._tracker.discover)

        if cfg.notification_enabled and self._outbox:
            self._spawn("notifications", cfg.notification_interval_seconds, self._outbox.drain)

        if cfg.persist_enabled and self._persister:
            self._spawn("state_persist", cfg.persist_interval_seconds, self._persister.save_if_dirty)

        logger.info(f"Background tasks started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Stop all background tasks gracefully."""
        if not self._running:
            return

        logger.info("Stopping background tasks...")
        self._running = False
        self._stop_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        logger.info("Background tasks stopped")

    def _spawn(self, name: str, interval: float, job: Callable[[], Awaitable[object]]) -> None:
        task = asyncio.create_task(self._periodic_loop(name, interval, job), name=name)
        self._tasks.append(task)
        logger.info(f"Started {name} task (interval={interval}s)")

    async def _periodic_loop(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[object]],
    ) -> None:
        """Run `job` every `interval` seconds until stopped."""
        while self._running:
            try:
                # Wait for interval or stop
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=interval,
                    )
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                if not self._running:
                    break

                await job()

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.errors += 1
                logger.error(f"Error in {name}: {type(e).__name__}: {e}")
                await asyncio.sleep(min(5.0, max(interval, 0.1)))
