"""
PumpWatch - Main Entry Point

Streams token launches and trades from the feed, stores them in SQLite,
and keeps a watch-set driven by user trigger groups.

Usage:
    python -m pumpwatch.main [--db PATH] [--url URL] [--log-level LEVEL]
                             [--auto-resubscribe]

Configuration:
    The app reads configuration from:
    1. Environment variables (optionally from a .env file)
    2. Command line arguments
    3. The settings row in the database (user toggles)

Environment Variables:
    PUMPWATCH_DB_PATH                 SQLite database file (default: pumpwatch.sqlite3)
    PUMPWATCH_WS_URL                  Feed WebSocket URL
    PUMPWATCH_TRIGGERS_PATH           Trigger group JSON file (default: triggers.json)
    PUMPWATCH_DRAIN_INTERVAL          Subscription drain interval seconds (default: 2)
    PUMPWATCH_TRIGGER_INTERVAL        Trigger drain interval seconds (default: 0.1)
    PUMPWATCH_PRUNE_INTERVAL          Stale-token prune interval seconds (default: 60)
    PUMPWATCH_RECONNECT_BASE_DELAY    Backoff base seconds (default: 1)
    PUMPWATCH_MAX_RECONNECT_ATTEMPTS  Reconnects before giving up (default: 5)
    PUMPWATCH_PRICE_COOLDOWN          SOL/USD refresh cooldown seconds (default: 30)
    LOG_LEVEL                         Logging level (DEBUG/INFO/WARNING/ERROR)

Services:
    - ingestion: feed connection, event persistence, subscription batching
    - core: trigger evaluation, watch-set, stale-token pruning
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from pumpwatch.core import (  # noqa: E402
    AutoWatchManager,
    Decision,
    MetricsCalculator,
    StaleTokenPruner,
    TriggerEvaluator,
    TriggerGroupStore,
    WatchlistService,
)
from pumpwatch.ingestion import (  # noqa: E402
    DomainEvent,
    FeedConnection,
    FeedProcessor,
    PriceOracleError,
    SolPriceOracle,
    SubscriptionManager,
)
from pumpwatch.storage import (  # noqa: E402
    AppSettings,
    Database,
    DatabaseConfig,
    DatabaseError,
    SettingsRepository,
)


@dataclass
class AppConfig:
    """Complete application configuration."""

    # Storage
    db_path: str = "pumpwatch.sqlite3"
    triggers_path: str = "triggers.json"

    # Feed
    ws_url: str = FeedConnection.WS_URL
    reconnect_base_delay: float = 1.0
    max_reconnect_attempts: int = 5

    # Periodic tasks
    drain_interval: float = 2.0
    trigger_interval: float = 0.1
    prune_interval: float = 60.0

    # Price oracle
    price_cooldown_seconds: float = 30.0

    # CLI override for the persisted auto-resubscribe setting
    auto_resubscribe: Optional[bool] = None

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables."""
        return cls(
            db_path=os.environ.get("PUMPWATCH_DB_PATH", "pumpwatch.sqlite3"),
            triggers_path=os.environ.get("PUMPWATCH_TRIGGERS_PATH", "triggers.json"),
            ws_url=os.environ.get("PUMPWATCH_WS_URL", FeedConnection.WS_URL),
            reconnect_base_delay=float(os.environ.get("PUMPWATCH_RECONNECT_BASE_DELAY", "1.0")),
            max_reconnect_attempts=int(os.environ.get("PUMPWATCH_MAX_RECONNECT_ATTEMPTS", "5")),
            drain_interval=float(os.environ.get("PUMPWATCH_DRAIN_INTERVAL", "2.0")),
            trigger_interval=float(os.environ.get("PUMPWATCH_TRIGGER_INTERVAL", "0.1")),
            prune_interval=float(os.environ.get("PUMPWATCH_PRUNE_INTERVAL", "60")),
            price_cooldown_seconds=float(os.environ.get("PUMPWATCH_PRICE_COOLDOWN", "30")),
        )


def apply_detailed_logging(enabled: bool) -> None:
    """Switch the package logger between DEBUG and INFO."""
    logging.getLogger("pumpwatch").setLevel(logging.DEBUG if enabled else logging.INFO)


class PumpWatchApp:
    """
    Main application orchestrator.

    Manages the lifecycle of all components:
    - Database connection and user settings
    - Feed connection, event processor, subscription manager
    - Trigger evaluator, watch-set, stale-token pruner
    - SOL/USD price oracle
    """

    def __init__(self, config: AppConfig, connector: Any = None):
        self.config = config
        self._connector = connector
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (built by setup())
        self.db: Optional[Database] = None
        self.settings = AppSettings()
        self.connection: Optional[FeedConnection] = None
        self.processor: Optional[FeedProcessor] = None
        self.subscriptions: Optional[SubscriptionManager] = None
        self.watchlist: Optional[WatchlistService] = None
        self.evaluator: Optional[TriggerEvaluator] = None
        self.pruner: Optional[StaleTokenPruner] = None
        self.auto_watch: Optional[AutoWatchManager] = None
        self.metrics: Optional[MetricsCalculator] = None
        self.triggers = TriggerGroupStore(config.triggers_path)
        self.price_oracle = SolPriceOracle(cooldown_seconds=config.price_cooldown_seconds)
        self._unsubscribe_events = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def setup(self) -> None:
        """
        Open the database and build every component without connecting.

        Raises:
            DatabaseError: If the database cannot be opened
        """
        self._running = True
        await self._init_database()

        settings_repo = SettingsRepository(self.db)
        self.settings = await settings_repo.load()
        if self.config.auto_resubscribe is not None:
            self.settings.auto_resubscribe = self.config.auto_resubscribe
            await settings_repo.save(self.settings)
        apply_detailed_logging(self.settings.detailed_logging)

        self.connection = FeedConnection(
            settings=self.settings,
            url=self.config.ws_url,
            reconnect_base_delay=self.config.reconnect_base_delay,
            max_reconnect_attempts=self.config.max_reconnect_attempts,
            connector=self._connector,
        )
        self.subscriptions = SubscriptionManager(
            self.db,
            self.connection,
            self.settings,
            drain_interval=self.config.drain_interval,
        )
        self.processor = FeedProcessor(self.db, subscriptions=self.subscriptions)
        self.connection.set_handler(self.processor.process)

        self.watchlist = WatchlistService(self.db, self.settings)
        await self.watchlist.load()

        self.evaluator = TriggerEvaluator(
            self.db,
            self.watchlist,
            tick_interval=self.config.trigger_interval,
        )
        self._unsubscribe_events = self.connection.subscribe(self._on_event)

        self.auto_watch = AutoWatchManager(self.db)
        self.metrics = MetricsCalculator(self.db)
        self.pruner = StaleTokenPruner(
            self.db,
            self.subscriptions,
            self.watchlist,
            self.settings,
            interval=self.config.prune_interval,
            evaluator=self.evaluator,
            auto_watch=self.auto_watch,
        )

        self.triggers.load()
        logger.info(
            f"Loaded {len(self.triggers.groups)} trigger groups, "
            f"{len(self.watchlist)} watched tokens"
        )

    async def start(self) -> None:
        """Start the app and run until shutdown is requested."""
        logger.info("=" * 60)
        logger.info("PUMPWATCH")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            await self.setup()
            await self.connection.connect()
            await self.subscriptions.start()
            await self.evaluator.start()
            await self.pruner.start()

            logger.info("Started. Press Ctrl+C to stop")
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop tasks, disconnect and close the database."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        for name, component in (
            ("pruner", self.pruner),
            ("trigger evaluator", self.evaluator),
            ("subscription manager", self.subscriptions),
        ):
            if component is not None:
                try:
                    await component.stop()
                except Exception as e:
                    logger.warning(f"Error stopping {name}: {e}")

        if self._unsubscribe_events is not None:
            self._unsubscribe_events()
            self._unsubscribe_events = None

        if self.connection is not None:
            try:
                await self.connection.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting feed: {e}")

        try:
            await self.price_oracle.close()
        except Exception as e:
            logger.warning(f"Error closing price oracle: {e}")

        if self.db is not None:
            try:
                await self.db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")

        logger.info("Shutdown complete")

    def request_shutdown(self, reason: str = "manual") -> None:
        logger.info(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    async def _init_database(self) -> None:
        """Initialize database connection."""
        self.db = Database(DatabaseConfig(path=self.config.db_path))
        await self.db.initialize()

        if not await self.db.health_check():
            raise DatabaseError("Database health check failed")

        logger.info(f"Database: {self.config.db_path}")

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    # -------------------------------------------------------------------------
    # Event flow
    # -------------------------------------------------------------------------

    def _on_event(self, event: DomainEvent) -> None:
        """Accepted feed event: queue it against every enabled trigger group."""
        self.evaluator.submit(event, self.triggers.enabled_groups())

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    async def wipe_database(self) -> None:
        """
        Delete all tokens, trades, subscriptions and auto-watch state.

        Trigger groups live in their own file and are kept. The current
        user settings are written back after the wipe.
        """
        await self.db.clear_all()
        await SettingsRepository(self.db).save(self.settings)

        self.subscriptions.clear_queue()
        self.connection.clear_active()
        self.evaluator.clear_queue()
        self.evaluator.clear_trades()
        self.auto_watch.clear()
        await self.watchlist.load()
        logger.warning("Database wiped")

    async def update_settings(self, **changes: Any) -> AppSettings:
        """
        Change user settings and persist them.

        Turning auto-resubscribe off clears the active subscription set;
        turning it on restores subscriptions from the database.
        """
        auto_resubscribe = changes.pop("auto_resubscribe", None)

        for name, value in changes.items():
            if name == "id" or name not in AppSettings.model_fields:
                raise ValueError(f"Unknown setting: {name}")
            setattr(self.settings, name, value)

        await SettingsRepository(self.db).save(self.settings)

        if auto_resubscribe is not None:
            await self.subscriptions.set_auto_resubscribe(auto_resubscribe)
        if "detailed_logging" in changes:
            apply_detailed_logging(self.settings.detailed_logging)

        return self.settings

    async def auto_watch_decision(self, mint: str) -> Decision:
        """
        Auto-watch advice for a token.

        Watched tokens are checked against the unwatch heuristics, all
        others against the watch heuristics. Nothing is changed.
        """
        if self.watchlist.is_watched(mint):
            return await self.auto_watch.evaluate_unwatch(mint)
        return await self.auto_watch.evaluate_token(mint)

    async def token_metrics(self, mint: str, window_ms: int = 60_000) -> dict[str, float]:
        """Rolling-window figures for a token, from stored trades (cached 1 s)."""
        return {
            "volume_rate": await self.metrics.volume_rate(mint, window_ms),
            "trade_frequency": await self.metrics.trade_frequency(mint, window_ms),
            "price_change": await self.metrics.price_change(mint, window_ms),
            "buy_count": await self.metrics.buy_count(mint, window_ms),
        }

    async def sol_price(self) -> Optional[float]:
        """Cached SOL/USD price, or None if it could not be fetched."""
        try:
            return await self.price_oracle.get_price()
        except PriceOracleError as e:
            logger.warning(f"SOL price unavailable: {e}")
            return None

    def diagnostics(self) -> dict[str, Any]:
        """Snapshot of connection, queue and evaluator state."""
        stats = self.processor.stats
        return {
            "connection": {
                "state": self.connection.state.value,
                "url": self.connection.url,
                "reconnect_attempts": self.connection.reconnect_attempts,
                "active_subscriptions": len(self.connection.active_subscriptions),
                "last_message_at": self.connection.last_message_at,
            },
            "subscriptions": {
                "queue_length": self.subscriptions.queue_length,
                "draining": self.subscriptions.is_draining,
            },
            "triggers": {
                "groups": len(self.triggers.groups),
                "enabled": len(self.triggers.enabled_groups()),
                **self.evaluator.diagnostics(),
            },
            "processor": {
                "tokens_created": stats.tokens_created,
                "trades_stored": stats.trades_stored,
                "trades_dropped": stats.trades_dropped,
                "stale_updates_skipped": stats.stale_updates_skipped,
            },
            "watched": len(self.watchlist),
            "pruned_tokens": self.pruner.stats.tokens,
            "cached_metrics": len(self.metrics.cache),
            "sol_price": self.price_oracle.price,
        }


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="PumpWatch token launch feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db",
        type=str,
        help="Path to the SQLite database file",
    )
    parser.add_argument(
        "--url",
        type=str,
        help="Feed WebSocket URL",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    parser.add_argument(
        "--auto-resubscribe",
        action="store_true",
        default=None,
        help="Restore trade subscriptions on every (re)connect",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = AppConfig.from_env()

    # Override with command line args
    if args.db:
        config.db_path = args.db
    if args.url:
        config.ws_url = args.url
    if args.auto_resubscribe:
        config.auto_resubscribe = True

    app = PumpWatchApp(config)

    try:
        await app.start()
        return 0
    except DatabaseError as e:
        logger.error(f"Cannot open database: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
