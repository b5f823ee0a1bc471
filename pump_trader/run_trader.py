"""
Pump Trader Runner
Main entry point: wires config, clients, monitor and Telegram UI
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from .ai_analysis import AIAnalyzer
from .config import ConfigError, TraderConfig, load_config
from .logging_utils import DEFAULT_FORMAT, configure_component_logger
from .position_monitor import PositionMonitor
from .prices import PriceFeed
from .pump_portal import PumpPortalClient
from .risk_limits import TradeLimits
from .rpc import SolanaRpcClient
from .telegram_ui import TraderUI
from .token_validator import TokenValidator

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=DEFAULT_FORMAT,
    )
    configure_component_logger("pump_trader", "pump_trader")


class TraderBot:
    """
    Main orchestrator.

    Owns every HTTP client so they can be closed together on shutdown.
    """

    def __init__(self, config: Optional[TraderConfig] = None):
        self.config = config
        self.rpc: Optional[SolanaRpcClient] = None
        self.price_feed: Optional[PriceFeed] = None
        self.executor: Optional[PumpPortalClient] = None
        self.validator: Optional[TokenValidator] = None
        self.analyzer: Optional[AIAnalyzer] = None
        self.trade_limits: Optional[TradeLimits] = None
        self.monitor: Optional[PositionMonitor] = None
        self.ui: Optional[TraderUI] = None
        self._running = False
        self._stopped = False

    async def initialize(self):
        """Build all components. Raises ConfigError on bad configuration."""
        if self.config is None:
            self.config = load_config()
        self.config.validate()

        self.rpc = SolanaRpcClient(self.config.rpc_url, timeout=self.config.request_timeout)
        self.price_feed = PriceFeed.from_config(self.config)
        self.executor = PumpPortalClient(self.config, self.rpc)
        self.validator = TokenValidator(self.config, self.rpc, self.price_feed)
        self.analyzer = AIAnalyzer(self.config)
        self.trade_limits = TradeLimits.from_config(self.config)
        self.monitor = PositionMonitor(
            self.config,
            executor=self.executor,
            price_feed=self.price_feed,
            trade_limits=self.trade_limits,
        )
        self.ui = TraderUI(
            self.config,
            executor=self.executor,
            validator=self.validator,
            analyzer=self.analyzer,
            monitor=self.monitor,
            price_feed=self.price_feed,
            trade_limits=self.trade_limits,
        )

        users = ", ".join(self.config.authorized_users) or "ALL"
        logger.info(f"Trading wallet: {self.executor.wallet_address}")
        logger.info(f"Authorized users: {users}")
        logger.info(
            f"Exit rules: TP {self.config.take_profit_percent:g}% | "
            f"SL {self.config.stop_loss_percent:g}% | "
            f"max hold {self.config.max_hold_minutes:g}min"
        )

    async def start(self):
        """Start the bot and block until stop() is called."""
        if self._running:
            return

        self._running = True

        try:
            await self.ui.start()

            try:
                balance = await self.executor.get_sol_balance()
                logger.info(f"Wallet balance: {balance:.4f} SOL")
            except Exception as e:
                logger.warning(f"Could not read wallet balance: {e}")

            logger.info("Pump Trader running...")

            while self._running:
                await asyncio.sleep(1)

        except asyncio.CancelledError:
            logger.info("Pump Trader cancelled")
        finally:
            await self.shutdown()

    def stop(self):
        self._running = False

    async def shutdown(self):
        """Stop monitoring, stop Telegram and close HTTP sessions. Idempotent."""
        self._running = False
        if self._stopped:
            return
        self._stopped = True

        logger.info("Shutting down Pump Trader...")

        if self.monitor:
            self.monitor.stop_all()
            active = self.monitor.get_active_positions()
            if active:
                symbols = ", ".join(p.token_symbol for p in active)
                logger.warning(f"{len(active)} position(s) left open and unmonitored: {symbols}")

        if self.ui:
            try:
                await self.ui.stop()
            except Exception as e:
                logger.error(f"Error stopping Telegram UI: {e}")

        for client in (self.analyzer, self.executor, self.price_feed, self.rpc):
            if client:
                await client.close()

        logger.info("Pump Trader stopped")


async def main(config: Optional[TraderConfig] = None) -> int:
    """Run the bot until SIGINT/SIGTERM. Returns a process exit code."""
    bot = TraderBot(config)

    try:
        await bot.initialize()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        await bot.shutdown()
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.stop)
        except NotImplementedError:
            logger.debug(f"Signal handlers unsupported for {sig.name}")

    try:
        await bot.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        await bot.shutdown()
    return 0


def cli():
    config = None
    try:
        config = load_config()
        setup_logging(config.log_level)
    except ConfigError as e:
        setup_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(main(config)))
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")


if __name__ == "__main__":
    cli()
