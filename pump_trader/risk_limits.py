"""
Position size and daily loss limits for manual buys.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RiskLimitError(Exception):
    """Raised when a buy would breach a configured risk limit."""
    pass


class TradeLimits:
    """
    Track realized losses for the current UTC day and gate new buys.

    Losses are stored as a positive number of SOL.
    """

    def __init__(
        self,
        max_position_size: float,
        max_daily_loss: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_position_size = max_position_size
        self.max_daily_loss = max_daily_loss
        self._clock = clock
        self.daily_loss: float = 0.0
        self.daily_trades: int = 0
        self._current_day: dt.date = self._today()

    @classmethod
    def from_config(cls, config) -> 'TradeLimits':
        return cls(
            max_position_size=config.max_position_size,
            max_daily_loss=config.max_daily_loss,
        )

    def _today(self) -> dt.date:
        return dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc).date()

    def reset_if_needed(self) -> None:
        day = self._today()
        if day != self._current_day:
            self.daily_loss = 0.0
            self.daily_trades = 0
            self._current_day = day

    def record_exit(self, pnl_sol: float) -> None:
        """Record the realized P&L of a closed position."""
        self.reset_if_needed()
        self.daily_trades += 1
        if pnl_sol < 0:
            self.daily_loss += -pnl_sol
            logger.info(
                f"Realized loss {pnl_sol:.4f} SOL, daily loss now "
                f"{self.daily_loss:.4f}/{self.max_daily_loss:.4f} SOL"
            )

    def daily_loss_reached(self) -> bool:
        self.reset_if_needed()
        return self.daily_loss >= self.max_daily_loss

    def check_buy(self, amount_sol: float) -> None:
        """
        Raise RiskLimitError if a buy of `amount_sol` is not allowed right now.
        """
        if amount_sol <= 0:
            raise RiskLimitError("Buy amount must be positive")
        if amount_sol > self.max_position_size:
            raise RiskLimitError(
                f"Amount {amount_sol} SOL exceeds max position size of {self.max_position_size} SOL"
            )
        if self.daily_loss_reached():
            raise RiskLimitError(
                f"Daily loss limit reached ({self.daily_loss:.2f}/{self.max_daily_loss:.2f} SOL). "
                "Trading paused until 00:00 UTC"
            )
