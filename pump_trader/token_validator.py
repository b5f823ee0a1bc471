"""
Token risk validation.

Scores a mint on authority flags, market depth and holder concentration.
Upstream failures never raise: they produce a fail-closed, degraded result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from .prices import MarketData, PriceFeed
from .rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

# Additive risk penalties (max total 11, reported score is capped at 10)
PENALTY_MINT_AUTHORITY = 3
PENALTY_FREEZE_AUTHORITY = 2
PENALTY_LOW_LIQUIDITY = 2
PENALTY_LOW_MARKET_CAP = 1
PENALTY_CONCENTRATED = 2
PENALTY_FEW_HOLDERS = 1

MAX_RISK_SCORE = 10
TOP_HOLDER_LIMIT_PCT = 50.0
MIN_HOLDERS = 10


@dataclass
class TokenMetadata:
    """Token name/symbol from DAS metadata."""
    name: str = "Unknown"
    symbol: str = "UNKNOWN"
    decimals: int = 9
    supply: float = 0.0


@dataclass
class TokenValidation:
    """Risk assessment for a token."""
    is_valid: bool
    risk_score: int                 # 0-10, higher = riskier
    liquidity: float = 0.0
    market_cap: float = 0.0
    holder_count: int = 0
    top_holder_percent: float = 0.0
    can_mint: bool = False
    can_freeze: bool = False
    reasons: List[str] = field(default_factory=list)
    degraded: bool = False          # True when upstream data was unavailable
    error: str = ""

    @classmethod
    def failed(cls, error: str) -> 'TokenValidation':
        """Maximally pessimistic result used when validation could not run."""
        return cls(
            is_valid=False,
            risk_score=MAX_RISK_SCORE,
            can_mint=True,
            can_freeze=True,
            reasons=['❌ Failed to validate token'],
            degraded=True,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_valid': self.is_valid,
            'risk_score': self.risk_score,
            'liquidity': self.liquidity,
            'market_cap': self.market_cap,
            'holder_count': self.holder_count,
            'top_holder_percent': self.top_holder_percent,
            'can_mint': self.can_mint,
            'can_freeze': self.can_freeze,
            'reasons': list(self.reasons),
            'degraded': self.degraded,
            'error': self.error,
        }


class TokenValidator:
    """Validates tokens against on-chain and market risk signals."""

    def __init__(self, config, rpc: SolanaRpcClient, price_feed: PriceFeed):
        self.config = config
        self.rpc = rpc
        self.price_feed = price_feed

    async def validate_token(self, token_mint: str) -> TokenValidation:
        """Validate a token; fail closed on any upstream error."""
        logger.info(f"Validating token: {token_mint}")

        try:
            market = await self.get_market_data(token_mint)
            can_mint, can_freeze = await self.rpc.get_mint_authorities(token_mint)
            holder_count, top_holder_percent = await self.get_holder_distribution(token_mint)
        except Exception as e:
            logger.error(f"Validation error for {token_mint[:8]}...: {e}")
            return TokenValidation.failed(str(e))

        validation = self.score_token(
            market=market,
            can_mint=can_mint,
            can_freeze=can_freeze,
            holder_count=holder_count,
            top_holder_percent=top_holder_percent,
        )
        logger.info(
            f"Validated {token_mint[:8]}...: risk={validation.risk_score}/10 "
            f"valid={validation.is_valid}"
        )
        return validation

    def score_token(
        self,
        market: MarketData,
        can_mint: bool,
        can_freeze: bool,
        holder_count: int,
        top_holder_percent: float,
    ) -> TokenValidation:
        """Apply the additive penalty model to already-fetched signals."""
        min_liquidity = self.config.min_liquidity
        min_market_cap = self.config.min_market_cap
        reasons: List[str] = []
        risk_score = 0

        if can_mint:
            risk_score += PENALTY_MINT_AUTHORITY
            reasons.append('⚠️ Mint authority still enabled')

        if can_freeze:
            risk_score += PENALTY_FREEZE_AUTHORITY
            reasons.append('⚠️ Freeze authority still enabled')

        if market.liquidity < min_liquidity:
            risk_score += PENALTY_LOW_LIQUIDITY
            reasons.append(f'⚠️ Low liquidity: ${market.liquidity:,.0f}')

        if market.market_cap < min_market_cap:
            risk_score += PENALTY_LOW_MARKET_CAP
            reasons.append(f'⚠️ Low market cap: ${market.market_cap:,.0f}')

        if top_holder_percent > TOP_HOLDER_LIMIT_PCT:
            risk_score += PENALTY_CONCENTRATED
            reasons.append(f'⚠️ Concentrated ownership: {top_holder_percent:.1f}% in top holder')

        if holder_count < MIN_HOLDERS:
            risk_score += PENALTY_FEW_HOLDERS
            reasons.append(f'⚠️ Few holders: {holder_count}')

        # Positive signals
        if not can_mint and not can_freeze:
            reasons.append('✅ Mint and freeze authority revoked')

        if market.liquidity >= min_liquidity * 2:
            reasons.append(f'✅ Strong liquidity: ${market.liquidity:,.0f}')

        risk_score = min(risk_score, MAX_RISK_SCORE)
        is_valid = (
            risk_score <= self.config.max_risk_score
            and market.liquidity >= min_liquidity
            and market.market_cap >= min_market_cap
        )

        return TokenValidation(
            is_valid=is_valid,
            risk_score=risk_score,
            liquidity=market.liquidity,
            market_cap=market.market_cap,
            holder_count=holder_count,
            top_holder_percent=top_holder_percent,
            can_mint=can_mint,
            can_freeze=can_freeze,
            reasons=reasons,
        )

    async def get_token_metadata(self, token_mint: str) -> TokenMetadata:
        """Name/symbol/decimals from DAS getAsset; defaults on any failure."""
        try:
            asset = await self.rpc.get_asset(token_mint)
        except Exception as e:
            logger.warning(f"Metadata lookup failed for {token_mint[:8]}...: {e}")
            return TokenMetadata()

        metadata = (asset.get('content') or {}).get('metadata') or {}
        token_info = asset.get('token_info') or {}
        return TokenMetadata(
            name=metadata.get('name') or 'Unknown',
            symbol=metadata.get('symbol') or 'UNKNOWN',
            decimals=token_info.get('decimals') or 9,
            supply=token_info.get('supply') or 0,
        )

    async def get_market_data(self, token_mint: str) -> MarketData:
        return await self.price_feed.get_market_data(token_mint)

    async def get_holder_distribution(self, token_mint: str) -> Tuple[int, float]:
        """
        Holder count and top holder share among the largest accounts.

        Only the largest accounts are returned by the RPC (20 at most), so the
        count saturates there and the share is relative to those accounts.
        """
        accounts = await self.rpc.get_token_largest_accounts(token_mint)
        if not accounts:
            return 0, 0.0

        amounts = []
        for account in accounts:
            try:
                amounts.append(int(account.get('amount') or 0))
            except (TypeError, ValueError):
                amounts.append(0)

        total = sum(amounts)
        top_holder_percent = (amounts[0] / total) * 100 if total > 0 else 0.0
        return len(accounts), top_holder_percent
