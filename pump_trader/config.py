"""
Configuration for the Pump Trader bot.

All settings come from the environment (optionally a .env file). Secrets such
as the wallet key and bot token are never logged.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""
    pass


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _get_rpc_url() -> str:
    """Resolve RPC URL: Helius first, then Alchemy, then public mainnet."""
    return (
        os.getenv("HELIUS_RPC_URL", "").strip()
        or os.getenv("ALCHEMY_RPC_URL", "").strip()
        or DEFAULT_RPC_URL
    )


def _parse_authorized_users() -> List[str]:
    """Parse AUTHORIZED_USERS="123456789,987654321" into a list of id strings."""
    users_str = os.getenv("AUTHORIZED_USERS", "")
    return [u.strip() for u in users_str.split(",") if u.strip()]


def _parse_buy_amounts() -> List[float]:
    return [
        _env_float("DEFAULT_BUY_AMOUNT_1", "0.1"),
        _env_float("DEFAULT_BUY_AMOUNT_2", "0.5"),
        _env_float("DEFAULT_BUY_AMOUNT_3", "1.0"),
    ]


@dataclass
class TraderConfig:
    """Runtime configuration for the trader."""

    # === SOLANA ===
    rpc_url: str = field(default_factory=_get_rpc_url)

    # === WALLET ===
    # Base58 encoded secret key
    wallet_private_key: str = field(default_factory=lambda: os.getenv("WALLET_PRIVATE_KEY", ""))

    # === TELEGRAM ===
    telegram_bot_token: str = field(default_factory=lambda: os.getenv("TELEGRAM_BOT_TOKEN", ""))
    authorized_users: List[str] = field(default_factory=_parse_authorized_users)

    # === AI ===
    openrouter_api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    ai_model: str = field(default_factory=lambda: os.getenv("AI_MODEL", ""))

    # === TRADING DEFAULTS ===
    default_buy_amounts: List[float] = field(default_factory=_parse_buy_amounts)
    buy_slippage: float = field(default_factory=lambda: _env_float("BUY_SLIPPAGE", "10"))
    sell_slippage: float = field(default_factory=lambda: _env_float("SELL_SLIPPAGE", "15"))
    priority_fee: float = field(default_factory=lambda: _env_float("PRIORITY_FEE", "0.0001"))  # SOL

    # === RISK MANAGEMENT ===
    take_profit_percent: float = field(default_factory=lambda: _env_float("TAKE_PROFIT_PERCENT", "20"))
    stop_loss_percent: float = field(default_factory=lambda: _env_float("STOP_LOSS_PERCENT", "-10"))
    max_hold_time_ms: int = field(default_factory=lambda: _env_int("MAX_HOLD_TIME", "300000"))
    max_position_size: float = field(default_factory=lambda: _env_float("MAX_POSITION_SIZE", "2.0"))
    max_daily_loss: float = field(default_factory=lambda: _env_float("MAX_DAILY_LOSS", "5.0"))

    # === TOKEN VALIDATION ===
    min_liquidity: float = field(default_factory=lambda: _env_float("MIN_LIQUIDITY", "1000"))
    min_market_cap: float = field(default_factory=lambda: _env_float("MIN_MARKET_CAP", "5000"))
    max_risk_score: int = field(default_factory=lambda: _env_int("MAX_RISK_SCORE", "7"))

    # === MONITORING ===
    position_check_interval: float = field(
        default_factory=lambda: _env_float("POSITION_CHECK_INTERVAL", "5")
    )
    max_exit_attempts: int = field(default_factory=lambda: _env_int("MAX_EXIT_ATTEMPTS", "3"))

    # === NETWORK ===
    request_timeout: float = field(default_factory=lambda: _env_float("REQUEST_TIMEOUT", "30"))
    tx_confirm_timeout: float = field(default_factory=lambda: _env_float("TX_CONFIRM_TIMEOUT", "60"))
    jupiter_price_url: str = field(
        default_factory=lambda: os.getenv("JUPITER_PRICE_URL", "https://lite-api.jup.ag/price/v3")
    )
    dexscreener_api_url: str = field(
        default_factory=lambda: os.getenv("DEXSCREENER_API_URL", "https://api.dexscreener.com")
    )
    pumpportal_api_url: str = field(
        default_factory=lambda: os.getenv("PUMPPORTAL_API_URL", "https://pumpportal.fun/api/trade-local")
    )

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def get_missing(self) -> List[str]:
        """Get list of missing required config."""
        missing = []
        if not self.rpc_url:
            missing.append("HELIUS_RPC_URL or ALCHEMY_RPC_URL")
        if not self.wallet_private_key:
            missing.append("WALLET_PRIVATE_KEY")
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        return missing

    def validate(self) -> None:
        """Raise ConfigError if required settings are missing or inconsistent."""
        missing = self.get_missing()
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        if self.stop_loss_percent >= 0:
            raise ConfigError("STOP_LOSS_PERCENT must be negative")
        if self.take_profit_percent <= 0:
            raise ConfigError("TAKE_PROFIT_PERCENT must be positive")
        if self.position_check_interval <= 0:
            raise ConfigError("POSITION_CHECK_INTERVAL must be positive")

        if not self.authorized_users:
            logger.warning("No AUTHORIZED_USERS set - bot will accept commands from anyone!")

    def is_authorized(self, user_id: Union[int, str]) -> bool:
        """Empty allow-list means no restriction."""
        if not self.authorized_users:
            return True
        return str(user_id) in self.authorized_users

    @property
    def max_hold_minutes(self) -> float:
        return self.max_hold_time_ms / 60000


def load_config(env_file: Optional[Union[str, Path]] = None) -> TraderConfig:
    """Load .env (if present) and build a TraderConfig from the environment."""
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    return TraderConfig()
