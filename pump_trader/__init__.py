"""Pump Trader: Telegram-driven Pump.fun trading assistant.

Keep this package `__init__` lightweight.

Trading modules pull in Solana and Telegram libraries. Importing them at
package import time makes tests that only touch config or scoring slower
and more fragile, so exports are resolved lazily.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

# Public re-exports (resolved lazily via __getattr__).
__all__ = [
    # Config
    "TraderConfig",
    "ConfigError",
    "load_config",
    # Clients
    "SolanaRpcClient",
    "PriceFeed",
    "PumpPortalClient",
    "TradeExecutionError",
    # Analysis
    "TokenValidator",
    "TokenValidation",
    "AIAnalyzer",
    "TokenAnalysis",
    # Positions
    "PositionMonitor",
    "Position",
    "ExitResult",
    "TradeLimits",
    # UI / runner
    "TraderUI",
    "TraderBot",
]

_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    # Config
    "TraderConfig": (".config", "TraderConfig"),
    "ConfigError": (".config", "ConfigError"),
    "load_config": (".config", "load_config"),
    # Clients
    "SolanaRpcClient": (".rpc", "SolanaRpcClient"),
    "PriceFeed": (".prices", "PriceFeed"),
    "PumpPortalClient": (".pump_portal", "PumpPortalClient"),
    "TradeExecutionError": (".pump_portal", "TradeExecutionError"),
    # Analysis
    "TokenValidator": (".token_validator", "TokenValidator"),
    "TokenValidation": (".token_validator", "TokenValidation"),
    "AIAnalyzer": (".ai_analysis", "AIAnalyzer"),
    "TokenAnalysis": (".ai_analysis", "TokenAnalysis"),
    # Positions
    "PositionMonitor": (".position_monitor", "PositionMonitor"),
    "Position": (".position_monitor", "Position"),
    "ExitResult": (".position_monitor", "ExitResult"),
    "TradeLimits": (".risk_limits", "TradeLimits"),
    # UI / runner
    "TraderUI": (".telegram_ui", "TraderUI"),
    "TraderBot": (".run_trader", "TraderBot"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_EXPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attr_name = target
    module = import_module(module_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value  # cache for next access
    return value
