"""
Risk Limit Tests

Position size cap, daily loss accumulation and UTC day reset.
"""

import datetime as dt

import pytest

from pump_trader.risk_limits import RiskLimitError, TradeLimits


def _epoch(year, month, day, hour=12):
    return dt.datetime(year, month, day, hour, tzinfo=dt.timezone.utc).timestamp()


@pytest.fixture
def limits(clock):
    clock.now = _epoch(2024, 3, 1)
    return TradeLimits(max_position_size=2.0, max_daily_loss=1.0, clock=clock)


class TestCheckBuy:

    def test_allows_normal_buy(self, limits):
        limits.check_buy(0.5)

    def test_rejects_oversized_buy(self, limits):
        with pytest.raises(RiskLimitError, match="max position size"):
            limits.check_buy(2.5)

    def test_rejects_non_positive(self, limits):
        with pytest.raises(RiskLimitError):
            limits.check_buy(0)

    def test_blocks_after_daily_loss(self, limits):
        limits.record_exit(-0.6)
        limits.check_buy(0.1)

        limits.record_exit(-0.4)

        with pytest.raises(RiskLimitError, match="Daily loss limit"):
            limits.check_buy(0.1)

    def test_profits_do_not_offset_losses(self, limits):
        limits.record_exit(-1.0)
        limits.record_exit(+5.0)

        assert limits.daily_loss == 1.0
        assert limits.daily_loss_reached()


class TestDayReset:

    def test_resets_at_utc_midnight(self, limits, clock):
        limits.record_exit(-2.0)
        assert limits.daily_loss_reached()

        clock.now = _epoch(2024, 3, 2, hour=0)

        assert not limits.daily_loss_reached()
        assert limits.daily_loss == 0.0
        limits.check_buy(0.5)

    def test_same_day_keeps_counter(self, limits, clock):
        limits.record_exit(-0.3)
        clock.now = _epoch(2024, 3, 1, hour=23)

        limits.record_exit(-0.3)

        assert limits.daily_loss == pytest.approx(0.6)
        assert limits.daily_trades == 2


class TestFromConfig:

    def test_reads_limits(self, make_config):
        limits = TradeLimits.from_config(make_config(max_position_size=3.0, max_daily_loss=7.5))

        assert limits.max_position_size == 3.0
        assert limits.max_daily_loss == 7.5
