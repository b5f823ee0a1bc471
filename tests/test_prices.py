"""
Price Feed Tests

Primary/fallback price selection and DexScreener market data parsing.
"""

import pytest
from unittest.mock import AsyncMock

from pump_trader.prices import MarketData, PriceFeed, PriceFeedError

MINT = "3WPtHU8HPDrYcrKiiq2n9XQrK9q9TW3aVteSfes8pump"

PAIRS = [
    {"priceUsd": "0.0001", "liquidity": {"usd": 500}, "marketCap": 9000},
    {"priceUsd": "0.0002", "liquidity": {"usd": 25000}, "marketCap": 120000},
]


def _feed(jupiter=None, dexscreener=None) -> PriceFeed:
    """PriceFeed whose HTTP layer answers from the given payloads (or exceptions)."""
    feed = PriceFeed()

    async def fake_get_json(url, params=None):
        source = jupiter if url.startswith(feed.jupiter_price_url) else dexscreener
        if isinstance(source, Exception):
            raise source
        return source

    feed._get_json = AsyncMock(side_effect=fake_get_json)
    return feed


class TestGetPrice:

    @pytest.mark.asyncio
    async def test_jupiter_v3_shape(self):
        feed = _feed(jupiter={MINT: {"usdPrice": 0.00042}}, dexscreener=PAIRS)

        assert await feed.get_price(MINT) == 0.00042
        assert feed._get_json.await_count == 1

    @pytest.mark.asyncio
    async def test_jupiter_data_shape(self):
        feed = _feed(jupiter={"data": {MINT: {"price": "0.5"}}})

        assert await feed.get_price(MINT) == 0.5

    @pytest.mark.asyncio
    async def test_falls_back_when_jupiter_errors(self):
        feed = _feed(jupiter=PriceFeedError("HTTP 500"), dexscreener=PAIRS)

        # most liquid pair wins
        assert await feed.get_price(MINT) == 0.0002

    @pytest.mark.asyncio
    async def test_falls_back_when_jupiter_has_no_price(self):
        feed = _feed(jupiter={}, dexscreener=PAIRS)

        assert await feed.get_price(MINT) == 0.0002

    @pytest.mark.asyncio
    async def test_both_failing_returns_zero(self):
        feed = _feed(jupiter=PriceFeedError("down"), dexscreener=PriceFeedError("down"))

        assert await feed.get_price(MINT) == 0.0

    @pytest.mark.asyncio
    async def test_both_empty_returns_zero(self):
        feed = _feed(jupiter={}, dexscreener=[])

        assert await feed.get_price(MINT) == 0.0


class TestMarketData:

    @pytest.mark.asyncio
    async def test_uses_most_liquid_pair(self):
        feed = _feed(dexscreener=PAIRS)

        market = await feed.get_market_data(MINT)

        assert market == MarketData(liquidity=25000, market_cap=120000, price=0.0002)

    @pytest.mark.asyncio
    async def test_pairs_wrapped_in_dict(self):
        feed = _feed(dexscreener={"pairs": PAIRS[:1]})

        market = await feed.get_market_data(MINT)

        assert market.liquidity == 500
        assert market.market_cap == 9000

    @pytest.mark.asyncio
    async def test_unknown_token_is_zeros(self):
        feed = _feed(dexscreener=[])

        assert await feed.get_market_data(MINT) == MarketData()

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self):
        feed = _feed(dexscreener=PriceFeedError("timed out"))

        with pytest.raises(PriceFeedError):
            await feed.get_market_data(MINT)

    @pytest.mark.asyncio
    async def test_malformed_numbers_become_zero(self):
        feed = _feed(dexscreener=[{"priceUsd": "n/a", "liquidity": None, "marketCap": None}])

        assert await feed.get_market_data(MINT) == MarketData()


class TestFromConfig:

    def test_endpoints_from_config(self, make_config):
        config = make_config(
            jupiter_price_url="https://jup.example/price/",
            dexscreener_api_url="https://dex.example",
        )

        feed = PriceFeed.from_config(config)

        assert feed.jupiter_price_url == "https://jup.example/price"
        assert feed.dexscreener_api_url == "https://dex.example"
