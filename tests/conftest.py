"""
Pump Trader Test Configuration

Shared fixtures: an isolated TraderConfig and mocked external collaborators.
"""

import os
import sys

# Add project root to path FIRST
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from unittest.mock import AsyncMock, MagicMock

from pump_trader.config import TraderConfig
from pump_trader.prices import MarketData

CONFIG_ENV_VARS = [
    "HELIUS_RPC_URL", "ALCHEMY_RPC_URL", "WALLET_PRIVATE_KEY", "TELEGRAM_BOT_TOKEN",
    "AUTHORIZED_USERS", "OPENROUTER_API_KEY", "OPENAI_API_KEY", "AI_MODEL",
    "DEFAULT_BUY_AMOUNT_1", "DEFAULT_BUY_AMOUNT_2", "DEFAULT_BUY_AMOUNT_3",
    "BUY_SLIPPAGE", "SELL_SLIPPAGE", "PRIORITY_FEE",
    "TAKE_PROFIT_PERCENT", "STOP_LOSS_PERCENT", "MAX_HOLD_TIME",
    "MAX_POSITION_SIZE", "MAX_DAILY_LOSS",
    "MIN_LIQUIDITY", "MIN_MARKET_CAP", "MAX_RISK_SCORE",
    "POSITION_CHECK_INTERVAL", "MAX_EXIT_ATTEMPTS",
    "REQUEST_TIMEOUT", "TX_CONFIRM_TIMEOUT",
    "JUPITER_PRICE_URL", "DEXSCREENER_API_URL", "PUMPPORTAL_API_URL", "LOG_LEVEL",
]

# A syntactically valid mint address
TEST_MINT = "3WPtHU8HPDrYcrKiiq2n9XQrK9q9TW3aVteSfes8pump"
OTHER_MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every trader setting from the environment (restored after the test)."""
    for name in CONFIG_ENV_VARS:
        # setenv first so values loaded by load_dotenv are also undone
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


@pytest.fixture
def make_config(clean_env):
    """Factory for a TraderConfig built from a clean environment."""
    def _make(**overrides) -> TraderConfig:
        defaults = dict(
            wallet_private_key="test-key",
            telegram_bot_token="123:abc",
            openrouter_api_key="or-key",
        )
        defaults.update(overrides)
        return TraderConfig(**defaults)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def mock_executor():
    executor = MagicMock()
    executor.wallet_address = "TraderWa11et1111111111111111111111111111111"
    executor.buy_token = AsyncMock(return_value="buy-sig")
    executor.sell_token = AsyncMock(return_value="sell-sig")
    executor.get_sol_balance = AsyncMock(return_value=1.5)
    return executor


@pytest.fixture
def mock_price_feed():
    feed = MagicMock()
    feed.get_price = AsyncMock(return_value=1.0)
    feed.get_market_data = AsyncMock(
        return_value=MarketData(liquidity=10_000, market_cap=50_000, price=1.0)
    )
    return feed


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
