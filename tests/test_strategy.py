"""Tests for galetrade.strategy — indicators, the decision table, rate limiting."""

from datetime import datetime, timedelta, timezone

import pytest

from galetrade.strategy.indicators import (
    calculate_moving_averages,
    calculate_price_change,
    calculate_rsi,
    calculate_volatility,
)
from galetrade.strategy.models import STRONG_SIGNAL_THRESHOLD, Direction, Indicators, Signal
from galetrade.strategy.signals import SignalGenerator, classify, compute_indicators

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _falling(n: int = 15, start: float = 100.0) -> list[float]:
    return [start - i for i in range(n)]


def _indicators(**overrides) -> Indicators:
    defaults = dict(rsi=50.0, ma_short=1.0, ma_long=1.0, volatility=2.0, price_change=0.0)
    defaults.update(overrides)
    return Indicators(**defaults)


# ── Indicators ───────────────────────────────────────────────────────────


class TestRSI:
    def test_neutral_when_history_too_short(self):
        assert calculate_rsi([1.0] * 14) == 50.0
        assert calculate_rsi([]) == 50.0

    def test_flat_window_is_neutral(self):
        assert calculate_rsi([10.0] * 15) == 50.0

    def test_only_gains_is_100(self):
        assert calculate_rsi([float(i) for i in range(1, 16)]) == 100.0

    def test_only_losses_is_0(self):
        assert calculate_rsi(_falling()) == pytest.approx(0.0)

    def test_balanced_moves(self):
        prices = [10.0, 11.0] * 8  # 7 gains and 7 losses in the last 14 deltas
        assert calculate_rsi(prices) == pytest.approx(50.0)

    def test_always_within_bounds(self):
        prices = [1.0, 1.3, 0.9, 1.7, 1.1, 0.6, 1.9, 2.4, 1.2, 0.8,
                  1.5, 1.6, 0.7, 2.2, 1.0, 1.8, 0.5, 2.0]
        for end in range(15, len(prices) + 1):
            assert 0.0 <= calculate_rsi(prices[:end]) <= 100.0

    def test_uses_only_latest_window(self):
        # Old crash followed by 14 straight gains
        prices = [100.0, 1.0] + [1.0 + i for i in range(1, 15)]
        assert calculate_rsi(prices) == 100.0


class TestMovingAverages:
    def test_zero_until_long_period(self):
        assert calculate_moving_averages([1.0] * 9) == (0.0, 0.0)

    def test_values(self):
        prices = [float(i) for i in range(1, 11)]
        ma_short, ma_long = calculate_moving_averages(prices)
        assert ma_short == pytest.approx(8.0)
        assert ma_long == pytest.approx(5.5)


class TestVolatilityAndChange:
    def test_volatility_percentage_range(self):
        prices = [100.0] * 9 + [110.0]
        assert calculate_volatility(prices) == pytest.approx(10.0)

    def test_volatility_short_history(self):
        assert calculate_volatility([1.0, 2.0]) == 0.0

    def test_price_change(self):
        prices = [100.0, 1.0, 1.0, 1.0, 1.0, 102.0]
        assert calculate_price_change(prices) == pytest.approx(2.0)

    def test_price_change_short_history(self):
        assert calculate_price_change([1.0] * 5) == 0.0


# ── Decision table ───────────────────────────────────────────────────────


class TestClassify:
    def test_oversold_is_long_85(self):
        assert classify(_indicators(rsi=25.0)) == (Direction.LONG, 85.0)

    def test_overbought_is_short_85(self):
        assert classify(_indicators(rsi=75.0)) == (Direction.SHORT, 85.0)

    def test_bullish_crossover(self):
        ind = _indicators(rsi=55.0, ma_short=1.01, ma_long=1.0, price_change=0.5, volatility=2.0)
        assert classify(ind) == (Direction.LONG, pytest.approx(79.0))

    def test_bearish_crossover(self):
        ind = _indicators(rsi=45.0, ma_short=0.99, ma_long=1.0, price_change=-0.5, volatility=1.0)
        assert classify(ind) == (Direction.SHORT, pytest.approx(77.0))

    def test_crossover_bonus_capped_at_10(self):
        ind = _indicators(rsi=55.0, ma_short=1.01, ma_long=1.0, price_change=0.5, volatility=8.0)
        assert classify(ind)[1] == pytest.approx(85.0)

    def test_default_is_long_50(self):
        assert classify(_indicators()) == (Direction.LONG, 50.0)

    def test_low_volatility_penalty(self):
        assert classify(_indicators(rsi=20.0, volatility=0.2)) == (Direction.LONG, 65.0)

    def test_penalty_never_below_30(self):
        assert classify(_indicators(volatility=0.1)) == (Direction.LONG, 30.0)

    def test_flat_history_gives_suppressed_default(self):
        ind = compute_indicators([10.0] * 15)
        assert ind.rsi == 50.0
        assert ind.volatility == 0.0
        assert classify(ind) == (Direction.LONG, 30.0)


# ── Generator ────────────────────────────────────────────────────────────


class TestSignalGenerator:
    def test_falling_prices_give_strong_long(self):
        signal = SignalGenerator().generate(_falling(), now=T0)
        assert signal.direction is Direction.LONG
        assert signal.strength == 85.0
        assert signal.is_strong
        assert signal.indicators.rsi < 30

    def test_repeat_strong_signal_is_suppressed(self):
        gen = SignalGenerator(rate_limit_seconds=10.0)
        gen.generate(_falling(), now=T0)
        second = gen.generate(_falling(), now=T0 + timedelta(seconds=5))
        assert second.direction is Direction.LONG
        assert second.strength == 30.0
        # Indicators are still computed while suppressed
        assert second.indicators.rsi < 30

    def test_rate_limit_expires(self):
        gen = SignalGenerator(rate_limit_seconds=10.0)
        gen.generate(_falling(), now=T0)
        later = gen.generate(_falling(), now=T0 + timedelta(seconds=10))
        assert later.strength == 85.0
        assert gen.last_strong_at == T0 + timedelta(seconds=10)

    def test_weak_signal_does_not_start_window(self):
        gen = SignalGenerator()
        gen.generate([10.0] * 15, now=T0)
        assert gen.last_strong_at is None
        assert gen.generate(_falling(), now=T0 + timedelta(seconds=1)).strength == 85.0

    def test_to_dict(self):
        signal = SignalGenerator().generate(_falling(), now=T0)
        data = signal.to_dict()
        assert data["direction"] == "long"
        assert data["timestamp"] == T0.isoformat()
        assert set(data["indicators"]) == {"rsi", "ma_short", "ma_long", "volatility", "price_change"}


class TestSignalModel:
    def test_strong_threshold_is_inclusive(self):
        ind = _indicators()
        at = Signal(Direction.LONG, STRONG_SIGNAL_THRESHOLD, T0, ind)
        below = Signal(Direction.LONG, STRONG_SIGNAL_THRESHOLD - 0.1, T0, ind)
        assert STRONG_SIGNAL_THRESHOLD == 75.0
        assert at.is_strong
        assert not below.is_strong
