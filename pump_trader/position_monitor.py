"""
Position Monitor

Polls every open position and sells it automatically when one of the exit
rules fires:
- Take profit: profit >= TAKE_PROFIT_PERCENT
- Stop loss: profit <= STOP_LOSS_PERCENT
- Max hold time: held >= MAX_HOLD_TIME

Each position has its own sequential polling task, so checks for one mint
never overlap. Exits for a mint are serialized by a per-mint lock, so a
manual and an automatic exit can never both sell.

A position is only marked inactive once its sell is confirmed. A failed
automatic sell is retried on the next cycle, up to MAX_EXIT_ATTEMPTS, after
which the position is parked as EXIT_FAILED and exit handlers are told. A
parked position can still be sold through manual_exit.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class PositionStatus(Enum):
    OPEN = "open"
    MONITORING = "monitoring"
    EXIT_REQUESTED = "exit_requested"
    CLOSED = "closed"
    EXIT_FAILED = "exit_failed"


class ExitReason(Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MAX_HOLD_TIME = "max_hold_time"
    MANUAL = "manual"


MANUAL_EXIT_MESSAGE = "👤 Manual exit"


class PositionNotFoundError(Exception):
    """Raised when a manual exit targets a mint with no active position."""
    pass


@dataclass
class Position:
    """An open (or formerly open) holding of a token."""
    token_mint: str
    token_symbol: str
    entry_price: float       # USD
    entry_time: float        # epoch seconds
    amount_sol: float
    active: bool = True
    status: PositionStatus = PositionStatus.OPEN
    exit_attempts: int = 0
    last_price: float = 0.0

    def profit_percent(self, current_price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return ((current_price - self.entry_price) / self.entry_price) * 100

    def held_seconds(self, now: float) -> float:
        return max(0.0, now - self.entry_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'token_mint': self.token_mint,
            'token_symbol': self.token_symbol,
            'entry_price': self.entry_price,
            'entry_time': self.entry_time,
            'amount_sol': self.amount_sol,
            'active': self.active,
            'status': self.status.value,
            'exit_attempts': self.exit_attempts,
            'last_price': self.last_price,
        }


@dataclass
class ExitResult:
    """Outcome of an exit, delivered to exit handlers."""
    reason: ExitReason
    message: str
    token_mint: str
    token_symbol: str
    signature: str = ""
    final_price: float = 0.0
    success: bool = True
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reason': self.reason.value,
            'message': self.message,
            'token_mint': self.token_mint,
            'token_symbol': self.token_symbol,
            'signature': self.signature,
            'final_price': self.final_price,
            'success': self.success,
            'error': self.error,
        }


def evaluate_exit(
    position: Position,
    current_price: float,
    now: float,
    take_profit_percent: float,
    stop_loss_percent: float,
    max_hold_time_ms: float,
) -> Optional[Tuple[ExitReason, str]]:
    """
    Decide whether a position should exit at `current_price`.

    Reason priority is take profit, then stop loss, then max hold time.
    A non-positive price means no data and never triggers an exit. Without a
    usable entry price only the max hold rule can fire.

    Returns:
        (reason, message) or None to keep holding
    """
    if not current_price or current_price <= 0:
        return None

    held_ms = position.held_seconds(now) * 1000

    if position.entry_price > 0:
        profit = position.profit_percent(current_price)
        if profit >= take_profit_percent:
            return ExitReason.TAKE_PROFIT, f"🎯 Take profit hit: +{profit:.2f}%"
        if profit <= stop_loss_percent:
            return ExitReason.STOP_LOSS, f"🛑 Stop loss hit: {profit:.2f}%"

    if held_ms >= max_hold_time_ms:
        return ExitReason.MAX_HOLD_TIME, f"⏰ Max hold time reached: {int(held_ms // 60000)}min"

    return None


class PositionMonitor:
    """
    Owns the in-memory position index and one polling task per active position.

    Args:
        config: TraderConfig (exit thresholds, interval, retry budget)
        executor: object with async sell_token(mint, percentage)
        price_feed: object with async get_price(mint) -> float (0 = unknown)
        trade_limits: optional TradeLimits that records realized P&L
        clock: epoch-seconds time source
    """

    def __init__(
        self,
        config,
        executor,
        price_feed,
        trade_limits=None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.executor = executor
        self.price_feed = price_feed
        self.trade_limits = trade_limits
        self._clock = clock

        self.positions: Dict[str, Position] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._exit_locks: Dict[str, asyncio.Lock] = {}
        self.exit_handlers: List[Callable] = []

    def register_exit_handler(self, handler: Callable):
        """
        Register a callback for exit delivery.

        Args:
            handler: Async function(result: ExitResult) -> None
        """
        self.exit_handlers.append(handler)
        logger.info(f"Registered exit handler: {getattr(handler, '__name__', handler)}")

    async def _notify(self, result: ExitResult):
        for handler in self.exit_handlers:
            try:
                await handler(result)
            except Exception as e:
                logger.error(f"Exit handler {getattr(handler, '__name__', handler)} failed: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def add_position(
        self,
        token_mint: str,
        token_symbol: str,
        entry_price: float,
        amount_sol: float,
    ) -> None:
        """Register a position and start monitoring it (replaces any record for the mint)."""
        self._stop_monitoring(token_mint)

        position = Position(
            token_mint=token_mint,
            token_symbol=token_symbol,
            entry_price=entry_price,
            entry_time=self._clock(),
            amount_sol=amount_sol,
        )
        self.positions[token_mint] = position
        logger.info(f"Monitoring position: {token_symbol} (Entry: ${entry_price})")

        self._tasks[token_mint] = asyncio.create_task(
            self._monitor_loop(token_mint),
            name=f"position-monitor-{token_mint[:8]}",
        )
        position.status = PositionStatus.MONITORING

    def _stop_monitoring(self, token_mint: str):
        """Cancel the polling task for a mint. The calling task is left to finish on its own."""
        task = self._tasks.pop(token_mint, None)
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _monitor_loop(self, token_mint: str):
        me = asyncio.current_task()
        try:
            while True:
                await asyncio.sleep(self.config.position_check_interval)

                position = self.positions.get(token_mint)
                if not position or not position.active:
                    break

                try:
                    await self.check_position(token_mint)
                except Exception as e:
                    logger.error(f"Error monitoring {position.token_symbol}: {e}")

                if not position.active:
                    break
        finally:
            if self._tasks.get(token_mint) is me:
                del self._tasks[token_mint]

    def stop_all(self):
        """Cancel every polling task. Positions stay active."""
        logger.info("Stopping all position monitors...")
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Checks and exits
    # ------------------------------------------------------------------

    async def check_position(self, token_mint: str) -> Optional[ExitResult]:
        """
        Run one polling cycle for a position.

        Sell failures are logged and counted against the retry budget, not raised.
        """
        position = self.positions.get(token_mint)
        if not position or not position.active:
            return None

        current_price = await self.price_feed.get_price(token_mint)
        if not current_price or current_price <= 0:
            return None

        position.last_price = current_price
        now = self._clock()

        profit = position.profit_percent(current_price)
        logger.debug(
            f"{position.token_symbol}: ${current_price:.8f} "
            f"({'+' if profit >= 0 else ''}{profit:.2f}%) | "
            f"Held: {int(position.held_seconds(now))}s"
        )

        decision = evaluate_exit(
            position,
            current_price,
            now,
            self.config.take_profit_percent,
            self.config.stop_loss_percent,
            self.config.max_hold_time_ms,
        )
        if decision is None:
            return None

        reason, message = decision
        logger.info(f"{position.token_symbol}: {message}")

        try:
            return await self._exit_position(token_mint, reason, message)
        except Exception as e:
            logger.error(f"Failed to exit position {position.token_symbol}: {e}")
            await self._record_failed_exit(position, reason, message, e)
            return None

    async def _exit_position(
        self,
        token_mint: str,
        reason: ExitReason,
        message: str,
        include_failed: bool = False,
    ) -> Optional[ExitResult]:
        """
        Sell 100% of a position.

        Returns None if the position is missing or already inactive (unless
        `include_failed` and it is parked as EXIT_FAILED). A failed sell
        restores the previous status and re-raises, including when the
        calling task is cancelled mid-sell.
        """
        lock = self._exit_locks.setdefault(token_mint, asyncio.Lock())
        async with lock:
            position = self.positions.get(token_mint)
            if not position or not self._can_exit(position, include_failed):
                return None

            logger.info(f"Exiting position: {position.token_symbol} - {message}")
            previous_status = position.status
            position.status = PositionStatus.EXIT_REQUESTED

            try:
                signature = await self.executor.sell_token(token_mint, 100)
            except (Exception, asyncio.CancelledError):
                if previous_status == PositionStatus.EXIT_FAILED:
                    position.status = PositionStatus.EXIT_FAILED
                else:
                    position.status = PositionStatus.MONITORING
                raise

            position.active = False
            position.status = PositionStatus.CLOSED
            self._stop_monitoring(token_mint)

        logger.info(f"Position closed: https://solscan.io/tx/{signature}")

        final_price = await self.price_feed.get_price(token_mint) or position.last_price
        self._record_pnl(position, final_price)

        result = ExitResult(
            reason=reason,
            message=message,
            token_mint=token_mint,
            token_symbol=position.token_symbol,
            signature=signature,
            final_price=final_price,
        )
        await self._notify(result)
        return result

    @staticmethod
    def _can_exit(position: Position, include_failed: bool = False) -> bool:
        if position.active:
            return True
        return include_failed and position.status == PositionStatus.EXIT_FAILED

    def _record_pnl(self, position: Position, final_price: float):
        if self.trade_limits is None or position.entry_price <= 0 or final_price <= 0:
            return
        pnl_sol = position.amount_sol * position.profit_percent(final_price) / 100
        self.trade_limits.record_exit(pnl_sol)

    async def _record_failed_exit(
        self,
        position: Position,
        reason: ExitReason,
        message: str,
        error: Exception,
    ):
        if not position.active:
            return

        position.exit_attempts += 1
        if position.exit_attempts < self.config.max_exit_attempts:
            logger.warning(
                f"Exit attempt {position.exit_attempts}/{self.config.max_exit_attempts} "
                f"failed for {position.token_symbol}, retrying next cycle"
            )
            return

        logger.error(
            f"Giving up on automatic exit for {position.token_symbol} after "
            f"{position.exit_attempts} attempts; manual action required"
        )
        position.active = False
        position.status = PositionStatus.EXIT_FAILED
        self._stop_monitoring(position.token_mint)

        await self._notify(ExitResult(
            reason=reason,
            message=message,
            token_mint=position.token_mint,
            token_symbol=position.token_symbol,
            final_price=position.last_price,
            success=False,
            error=str(error),
        ))

    async def manual_exit(self, token_mint: str) -> str:
        """
        Sell a position on user request.

        Returns:
            Sell transaction signature

        Raises:
            PositionNotFoundError: no active or EXIT_FAILED position for the mint
            TradeExecutionError: the sell failed (position keeps its state)
        """
        position = self.positions.get(token_mint)
        if not position or not self._can_exit(position, include_failed=True):
            raise PositionNotFoundError("No active position for this token")

        result = await self._exit_position(
            token_mint, ExitReason.MANUAL, MANUAL_EXIT_MESSAGE, include_failed=True
        )
        if result is None:
            raise PositionNotFoundError("No active position for this token")
        return result.signature

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_positions(self) -> List[Position]:
        return [p for p in self.positions.values() if p.active]

    def has_active_position(self, token_mint: str) -> bool:
        position = self.positions.get(token_mint)
        return bool(position and position.active)

    def get_failed_exits(self) -> List[Position]:
        """Positions whose automatic exit gave up and still hold tokens."""
        return [p for p in self.positions.values() if p.status == PositionStatus.EXIT_FAILED]

    def is_monitoring(self, token_mint: str) -> bool:
        task = self._tasks.get(token_mint)
        return bool(task and not task.done())
