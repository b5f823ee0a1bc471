"""
Price discovery for Pump.fun tokens.

Jupiter price API is the primary source, DexScreener the fallback. DexScreener
also supplies liquidity and market cap for token validation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class PriceFeedError(Exception):
    """Raised when a price/market data endpoint cannot be reached."""
    pass


@dataclass
class MarketData:
    """Market snapshot from the most liquid pair."""
    liquidity: float = 0.0     # USD
    market_cap: float = 0.0    # USD
    price: float = 0.0         # USD

    def to_dict(self) -> Dict[str, Any]:
        return {
            'liquidity': self.liquidity,
            'market_cap': self.market_cap,
            'price': self.price,
        }


class PriceFeed:
    """USD price lookups with a primary and a fallback source."""

    JUPITER_PRICE_API = "https://lite-api.jup.ag/price/v3"
    DEXSCREENER_API = "https://api.dexscreener.com"

    def __init__(
        self,
        jupiter_price_url: str = None,
        dexscreener_api_url: str = None,
        timeout: float = 30.0,
    ):
        self.jupiter_price_url = (jupiter_price_url or self.JUPITER_PRICE_API).rstrip("/")
        self.dexscreener_api_url = (dexscreener_api_url or self.DEXSCREENER_API).rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config) -> 'PriceFeed':
        return cls(
            jupiter_price_url=config.jupiter_price_url,
            dexscreener_api_url=config.dexscreener_api_url,
            timeout=config.request_timeout,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    raise PriceFeedError(f"GET {url} failed: HTTP {resp.status}")
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise PriceFeedError(f"GET {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise PriceFeedError(f"GET {url} timed out") from e

    async def fetch_pairs(self, mint: str) -> List[Dict]:
        """Fetch DexScreener pairs for a Solana mint."""
        data = await self._get_json(f"{self.dexscreener_api_url}/tokens/v1/solana/{mint}")
        if isinstance(data, dict):
            data = data.get("pairs") or []
        return [p for p in data or [] if isinstance(p, dict)]

    @staticmethod
    def _pick_best_pair(pairs: List[Dict]) -> Optional[Dict]:
        """Pick the most liquid pair from DexScreener data."""
        if not pairs:
            return None

        def liquidity(pair: Dict) -> float:
            try:
                return float((pair.get("liquidity") or {}).get("usd", 0) or 0)
            except (TypeError, ValueError):
                return 0.0

        return max(pairs, key=liquidity)

    @staticmethod
    def _to_float(raw: Any) -> float:
        try:
            return float(raw or 0)
        except (TypeError, ValueError):
            return 0.0

    async def get_jupiter_price(self, mint: str) -> float:
        """
        Price from the Jupiter price API.

        Handles both the v3 shape ({mint: {usdPrice}}) and the older
        {data: {mint: {price}}} shape.
        """
        data = await self._get_json(self.jupiter_price_url, params={'ids': mint})
        if not isinstance(data, dict):
            return 0.0

        entries = data.get('data') if isinstance(data.get('data'), dict) else data
        entry = entries.get(mint) or {}
        return self._to_float(entry.get('usdPrice', entry.get('price')))

    async def get_dexscreener_price(self, mint: str) -> float:
        best = self._pick_best_pair(await self.fetch_pairs(mint))
        if not best:
            return 0.0
        return self._to_float(best.get("priceUsd") or best.get("price"))

    async def get_price(self, mint: str) -> float:
        """
        Current USD price for a token.

        Returns 0.0 when neither source has a price; never raises.
        """
        try:
            price = await self.get_jupiter_price(mint)
            if price > 0:
                return price
            logger.debug(f"Jupiter has no price for {mint[:8]}..., trying DexScreener")
        except Exception as e:
            logger.debug(f"Jupiter price failed for {mint[:8]}...: {e}")

        try:
            price = await self.get_dexscreener_price(mint)
            if price > 0:
                return price
        except Exception as e:
            logger.warning(f"Failed to get price from both Jupiter and DexScreener for {mint[:8]}...: {e}")

        return 0.0

    async def get_market_data(self, mint: str) -> MarketData:
        """
        Liquidity, market cap and price from the most liquid DexScreener pair.

        Raises:
            PriceFeedError: DexScreener unreachable (an unknown token is not an
                error and returns zeros)
        """
        best = self._pick_best_pair(await self.fetch_pairs(mint))
        if not best:
            return MarketData()

        return MarketData(
            liquidity=self._to_float((best.get("liquidity") or {}).get("usd")),
            market_cap=self._to_float(best.get("marketCap")),
            price=self._to_float(best.get("priceUsd")),
        )
