"""
Goal Trader - Main Entry Point

Tracks live football matches, detects goals as soon as the live feed reports
them, and trades the match-outcome instruments with graduated exits.

Usage:
    python -m goal_trader.main [--dry-run] [--log-level DEBUG]
    goal-trader --state-path data/state.json

Configuration:
    The bot reads configuration from:
    1. Environment variables (a .env file is loaded if present)
    2. polymarket_api_creds.json for CLOB API credentials (live mode)
    3. Command line arguments

Environment Variables:
    FEED_BASE_URL             Live score / discovery gateway (required)
    FEED_API_KEY              API key for the gateway
    FEED_DAILY_REQUEST_CAP    Daily request cap for the gateway (default: 75000)
    CLOB_API_URL              CLOB host for midpoint prices
    DRY_RUN                   "true" for paper trading (default: true)
    POLYMARKET_CREDS_PATH     Path to polymarket_api_creds.json
    POSITION_SIZE             USD per fresh position (default: 3)
    ADD_SIZE_RATIO            Lead extension add, relative to size (default: 0.5)
    GOAL_COOLDOWN_SECONDS     No trades on a match this long after a goal (default: 5)
    STOP_LOSS_PCT             Stop loss as a fraction, e.g. -0.20 (default: -0.20)
    MAX_TRADES_PER_DAY        Risk limit on opening trades (default: 20)
    MAX_DAILY_VOLUME          Risk limit on USD opened per day (default: 1000)
    MAX_DAILY_LOSS            Stop opening after this realized loss (default: 100)
    MAX_PER_MATCH             Max USD committed per match (default: 200)
    MAX_CONCURRENT_MATCHES    Max matches with exposure (default: 8)
    NO_ENTRY_AFTER_MINUTE     No new entries from this minute (default: 80)
    TEAM_MATCH_THRESHOLD      Team-name similarity for feed matching (default: 0.8)
    STATE_BACKEND             "file" or "postgres" (default: file)
    STATE_PATH                Snapshot file for the file backend
    DATABASE_URL              PostgreSQL connection string (postgres backend)
    TELEGRAM_BOT_TOKEN        Telegram bot token for alerts
    TELEGRAM_CHAT_ID          Telegram chat ID for alerts
    LOG_LEVEL                 Logging level (DEBUG/INFO/WARNING/ERROR)

Live Mode Requirements:
    When DRY_RUN=false the bot requires valid CLOB credentials and the
    py-clob-client package (pip install 'goal-trader[live]'). It fails fast
    if either is missing.
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import json
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

DEFAULT_PID_FILE = "/tmp/goal-trader.pid"


class SingletonBotError(Exception):
    """Raised when another bot instance is already running."""


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Ensure only one bot instance runs at a time.

    Holds an exclusive non-blocking flock on the PID file for the duration.

    Raises:
        SingletonBotError: If another instance holds the lock
    """
    pid_path = Path(pid_file)

    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    # "a+" so the file is not truncated before the lock is ours
    fp = open(pid_path, "a+")
    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        detail = f" (PID: {existing_pid})" if existing_pid else ""
        raise SingletonBotError(f"Another goal trader instance is already running{detail}")

    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup() -> None:
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)
    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.environ.get(name, default))


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Feeds
    feed_base_url: str = ""
    feed_api_key: Optional[str] = None
    feed_daily_request_cap: int = 75_000
    clob_api_url: str = "https://clob.polymarket.com"

    # Trading parameters
    dry_run: bool = True
    position_size: Decimal = Decimal("3")
    add_size_ratio: Decimal = Decimal("0.5")
    goal_cooldown_seconds: float = 5.0
    stop_loss_pct: Decimal = Decimal("-0.20")

    # Risk limits
    max_trades_per_day: int = 20
    max_daily_volume: Decimal = Decimal("1000")
    max_daily_loss: Decimal = Decimal("100")
    max_per_match: Decimal = Decimal("200")
    max_concurrent_matches: int = 8
    no_entry_after_minute: int = 80

    # Matching
    team_match_threshold: float = 0.8

    # Background tasks
    tick_interval_seconds: float = 1.0
    discovery_interval_seconds: float = 300

    # State
    state_backend: str = "file"
    state_path: str = "data/goal_trader_state.json"
    database_url: str = ""

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # Polymarket credentials
    clob_credentials: dict = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        config = cls(
            feed_base_url=os.environ.get("FEED_BASE_URL", ""),
            feed_api_key=os.environ.get("FEED_API_KEY"),
            feed_daily_request_cap=int(os.environ.get("FEED_DAILY_REQUEST_CAP", "75000")),
            clob_api_url=os.environ.get("CLOB_API_URL", "https://clob.polymarket.com"),
            dry_run=os.environ.get("DRY_RUN", "true").lower() == "true",
            position_size=_env_decimal("POSITION_SIZE", "3"),
            add_size_ratio=_env_decimal("ADD_SIZE_RATIO", "0.5"),
            goal_cooldown_seconds=float(os.environ.get("GOAL_COOLDOWN_SECONDS", "5")),
            stop_loss_pct=_env_decimal("STOP_LOSS_PCT", "-0.20"),
            max_trades_per_day=int(os.environ.get("MAX_TRADES_PER_DAY", "20")),
            max_daily_volume=_env_decimal("MAX_DAILY_VOLUME", "1000"),
            max_daily_loss=_env_decimal("MAX_DAILY_LOSS", "100"),
            max_per_match=_env_decimal("MAX_PER_MATCH", "200"),
            max_concurrent_matches=int(os.environ.get("MAX_CONCURRENT_MATCHES", "8")),
            no_entry_after_minute=int(os.environ.get("NO_ENTRY_AFTER_MINUTE", "80")),
            team_match_threshold=float(os.environ.get("TEAM_MATCH_THRESHOLD", "0.8")),
            tick_interval_seconds=float(os.environ.get("TICK_INTERVAL_SECONDS", "1")),
            discovery_interval_seconds=float(os.environ.get("DISCOVERY_INTERVAL_SECONDS", "300")),
            state_backend=os.environ.get("STATE_BACKEND", "file").lower(),
            state_path=os.environ.get("STATE_PATH", "data/goal_trader_state.json"),
            database_url=os.environ.get("DATABASE_URL", ""),
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
        )

        creds_path = Path(os.environ.get("POLYMARKET_CREDS_PATH", "polymarket_api_creds.json"))
        if creds_path.exists():
            try:
                with open(creds_path) as f:
                    config.clob_credentials = json.load(f)
                logger.info(f"Loaded Polymarket credentials from {creds_path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load credentials: {e}")

        return config

    def validate(self) -> list:
        """Return a list of configuration problems (empty if valid)."""
        problems = []
        if not self.feed_base_url:
            problems.append("FEED_BASE_URL environment variable is required")
        if self.state_backend not in ("file", "postgres"):
            problems.append(f"Unknown STATE_BACKEND: {self.state_backend}")
        if self.state_backend == "postgres" and not self.database_url:
            problems.append("DATABASE_URL is required for the postgres state backend")
        if not self.dry_run:
            required_fields = ["api_key", "api_secret", "api_passphrase", "private_key"]
            missing = [f for f in required_fields if f not in self.clob_credentials]
            if missing:
                problems.append(f"Live trading requires CLOB credentials; missing {missing}")
        return problems


class GoalTraderBot:
    """
    Main bot orchestrator.

    Manages the lifecycle of all components:
    - Feed and price clients
    - Match tracker (registry, poller, decisions, execution)
    - State persistence
    - Alerts
    """

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Components (initialized on start)
        self._db = None
        self._feed = None
        self._price_client = None
        self._tracker = None
        self._outbox = None
        self._persister = None
        self._background_tasks = None
        self._alert_manager = None
        self._task_config = None

    @property
    def tracker(self):
        return self._tracker

    async def start(self) -> None:
        """Start the bot and run until a shutdown is requested."""
        logger.info("=" * 60)
        logger.info("GOAL TRADER")
        logger.info("=" * 60)
        logger.info(f"Trading: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"State: {self.config.state_backend}")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        self._setup_signal_handlers()

        try:
            await self._init_components()
            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            await self._restore_state()
            await self._tracker.discover()

            await self._init_background_tasks()

            logger.info("=" * 60)
            logger.info("Bot started successfully")
            logger.info("Press Ctrl+C to stop")
            logger.info("=" * 60)

            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        if self._tracker is None and self._feed is None and self._db is None:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._background_tasks:
            try:
                await self._background_tasks.stop()
            except Exception as e:
                logger.warning(f"Error stopping background tasks: {e}")

        if self._persister:
            try:
                await self._persister.flush()
            except Exception as e:
                logger.warning(f"Error writing final snapshot: {e}")

        if self._outbox:
            try:
                await self._outbox.drain()
            except Exception as e:
                logger.warning(f"Error delivering final notifications: {e}")

        for client in (self._feed, self._price_client):
            if client:
                try:
                    await client.close()
                except Exception as e:
                    logger.warning(f"Error closing client: {e}")

        if self._db:
            try:
                await self._db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")

        self._tracker = None
        self._feed = None
        self._price_client = None
        self._db = None
        logger.info("Shutdown complete")

    async def request_shutdown(self, reason: str = "manual") -> None:
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._running = False
        self._shutdown_event.set()

    async def _init_components(self) -> None:
        from goal_trader.core.background_tasks import BackgroundTaskConfig
        from goal_trader.core.decision_engine import DecisionConfig, DecisionEngine
        from goal_trader.core.notifications import NotificationOutbox
        from goal_trader.core.poller import AdaptivePoller
        from goal_trader.core.registry import MatchRegistry
        from goal_trader.core.tracker import MatchTracker
        from goal_trader.execution.coordinator import ExecutionCoordinator
        from goal_trader.execution.executors import (
            ClobTradeExecutor,
            PaperTradeExecutor,
            create_clob_client,
        )
        from goal_trader.execution.exit_rules import ExitConfig
        from goal_trader.execution.position_ledger import PositionLedger
        from goal_trader.execution.risk import RiskConfig, RiskManager
        from goal_trader.ingestion.client import ClobPriceClient, FeedClient
        from goal_trader.ingestion.matching import TeamNameResolver
        from goal_trader.ingestion.prices import PriceCache
        from goal_trader.monitoring.alerting import AlertManager

        cfg = self.config

        # Ingestion
        self._feed = FeedClient(
            cfg.feed_base_url,
            api_key=cfg.feed_api_key,
            daily_request_cap=cfg.feed_daily_request_cap,
        )
        self._price_client = ClobPriceClient(cfg.clob_api_url)
        prices = PriceCache(self._price_client.fetch_price)
        logger.info(f"Feed: {cfg.feed_base_url}")

        # Execution
        ledger = PositionLedger(ExitConfig(stop_loss_pct=cfg.stop_loss_pct))
        if cfg.dry_run:
            executor = PaperTradeExecutor(prices)
            logger.info("Executor: paper (dry run)")
        else:
            executor = ClobTradeExecutor(create_clob_client(cfg.clob_credentials))
            logger.info("Executor: CLOB (LIVE)")
        coordinator = ExecutionCoordinator(ledger, executor, prices)
        risk = RiskManager(ledger, RiskConfig(
            max_trades_per_day=cfg.max_trades_per_day,
            max_volume_per_day=cfg.max_daily_volume,
            max_loss_per_day=cfg.max_daily_loss,
            max_per_match=cfg.max_per_match,
            max_concurrent_matches=cfg.max_concurrent_matches,
            no_entry_after_minute=cfg.no_entry_after_minute,
        ))

        # Core
        registry = MatchRegistry()
        poller = AdaptivePoller(
            registry,
            self._feed.fetch_live_snapshots,
            resolver=TeamNameResolver(threshold=cfg.team_match_threshold),
        )
        engine = DecisionEngine(DecisionConfig(
            position_size=cfg.position_size,
            add_size_ratio=cfg.add_size_ratio,
            goal_cooldown_seconds=cfg.goal_cooldown_seconds,
        ))
        self._outbox = NotificationOutbox()
        self._tracker = MatchTracker(
            registry=registry,
            poller=poller,
            decision_engine=engine,
            ledger=ledger,
            coordinator=coordinator,
            outbox=self._outbox,
            discover=self._feed.discover_matches,
            prices=prices,
            risk=risk,
        )

        # Monitoring
        self._alert_manager = AlertManager(
            telegram_bot_token=cfg.telegram_bot_token,
            telegram_chat_id=cfg.telegram_chat_id,
        )
        if self._alert_manager.is_configured:
            self._outbox.subscribe(self._alert_manager.handle_notification)
            logger.info("Alerts: Telegram")
        else:
            logger.info("Alerts: disabled (no Telegram credentials)")

        # State
        self._persister = await self._create_persister(registry, ledger)
        self._task_config = BackgroundTaskConfig(
            tick_interval_seconds=cfg.tick_interval_seconds,
            discovery_interval_seconds=cfg.discovery_interval_seconds,
        )

    async def _create_persister(self, registry, ledger):
        from goal_trader.storage.database import Database, DatabaseConfig
        from goal_trader.storage.snapshot import (
            JsonFileSnapshotStore,
            PostgresSnapshotStore,
            StatePersister,
        )

        if self.config.state_backend == "postgres":
            self._db = Database(DatabaseConfig(url=self.config.database_url))
            await self._db.initialize()
            store = PostgresSnapshotStore(self._db)
            await store.ensure_schema()
            logger.info("State store: PostgreSQL")
        else:
            store = JsonFileSnapshotStore(self.config.state_path)
            logger.info(f"State store: {self.config.state_path}")
        return StatePersister(registry, ledger, store)

    async def _restore_state(self) -> None:
        from goal_trader.storage.snapshot import SnapshotStoreError

        try:
            snapshot = await self._persister.load()
        except SnapshotStoreError as e:
            logger.error(f"Ignoring unreadable snapshot, starting empty: {e}")
            return
        if snapshot is not None:
            await self._tracker.restore(snapshot.to_matches(), snapshot.to_positions())

    async def _init_background_tasks(self) -> None:
        from goal_trader.core.background_tasks import BackgroundTasksManager

        self._background_tasks = BackgroundTasksManager(
            tracker=self._tracker,
            outbox=self._outbox,
            persister=self._persister,
            config=self._task_config,
        )
        await self._background_tasks.start()

    async def _run_loop(self) -> None:
        """Wait for shutdown, logging stats periodically."""
        stats_interval = 60

        while self._running:
            try:
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=stats_interval,
                    )
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                stats = self._tracker.stats
                ledger = self._tracker.ledger
                logger.info(
                    f"Stats: matches={len(self._tracker.registry)}, "
                    f"goals={stats.goals_detected}, "
                    f"actions={stats.actions_succeeded}/{stats.actions_succeeded + stats.actions_failed}, "
                    f"open_positions={len(ledger.open_positions())}, "
                    f"unrealized=${ledger.total_unrealized_pnl():.2f}"
                )

            except Exception as e:
                logger.error(f"Error in main loop: {e}")
                await asyncio.sleep(5)

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._running = False
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if not env_path.exists():
        return
    logger.info(f"Loading environment from {env_path}")
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Goal Trader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in paper trading mode (no real orders)",
    )
    parser.add_argument(
        "--state-path",
        type=str,
        help="Override the snapshot file path",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    parser.add_argument(
        "--pid-file",
        default=DEFAULT_PID_FILE,
        help=f"Singleton lock file (default: {DEFAULT_PID_FILE})",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    config = BotConfig.from_env()
    if args.dry_run:
        config.dry_run = True
    if args.state_path:
        config.state_path = args.state_path

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    bot = GoalTraderBot(config)
    try:
        await bot.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    load_env_file()
    args = parse_args(argv)

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        with singleton_lock(args.pid_file):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonBotError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
