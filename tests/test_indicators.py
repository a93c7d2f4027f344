"""Tests for signalforge.strategy.indicators — EMA, RSI, swings, Fibonacci."""

import pytest

from signalforge.market.models import CandleData
from signalforge.strategy.indicators import (
    RSI_NEUTRAL,
    calculate_ema,
    calculate_rsi,
    fibonacci_levels,
    find_recent_swing,
    generate_synthetic_ohlc,
    infer_start_price,
    is_near,
)


class TestEma:
    def test_same_length_seeded_with_first(self):
        ema = calculate_ema([1.0, 2.0, 3.0], 3)
        assert len(ema) == 3
        assert ema[0] == 1.0
        # k = 0.5
        assert ema[1] == pytest.approx(1.5)
        assert ema[2] == pytest.approx(2.25)

    def test_empty(self):
        assert calculate_ema([], 9) == []

    def test_period_one_is_identity(self):
        assert calculate_ema([1.0, 5.0], 1) == [1.0, 5.0]

    def test_fast_above_slow_in_uptrend(self):
        values = [1.0 + i * 0.001 for i in range(60)]
        assert calculate_ema(values, 9)[-1] > calculate_ema(values, 21)[-1]


class TestRsi:
    def test_short_series_is_neutral(self):
        assert calculate_rsi([1.0, 2.0, 3.0], 14) == [RSI_NEUTRAL] * 3

    def test_all_gains_is_100(self):
        values = [float(i) for i in range(30)]
        assert calculate_rsi(values, 14)[-1] == 100.0

    def test_all_losses_is_0(self):
        values = [float(30 - i) for i in range(30)]
        assert calculate_rsi(values, 14)[-1] == pytest.approx(0.0)

    def test_bounded(self):
        values = [1.0, 1.2, 0.9, 1.4, 1.1, 1.3, 0.8, 1.5, 1.0, 1.2, 1.1, 0.9, 1.3, 1.0, 1.2, 1.4]
        for value in calculate_rsi(values, 5):
            assert 0.0 <= value <= 100.0

    def test_leading_entries_neutral(self):
        rsi = calculate_rsi([float(i) for i in range(20)], 14)
        assert rsi[:14] == [RSI_NEUTRAL] * 14


class TestSwingAndFib:
    def test_swing_over_window(self):
        candles = [CandleData(i, 1.0, 1.0 + i * 0.01, 1.0 - i * 0.01, 1.0) for i in range(10)]
        swing = find_recent_swing(candles, 3)
        assert swing.high == pytest.approx(1.09)
        assert swing.low == pytest.approx(0.91)

    def test_swing_requires_candles(self):
        with pytest.raises(ValueError):
            find_recent_swing([], 10)

    def test_fib_levels(self):
        fib = fibonacci_levels(2.0, 1.0)
        assert fib.level_50_0 == pytest.approx(1.5)
        assert fib.level_61_8 == pytest.approx(1.382)
        assert fib.key_levels() == (fib.level_61_8, fib.level_50_0, fib.level_38_2)

    def test_is_near_relative(self):
        assert is_near(1.1001, 1.1000, 0.0015)
        assert not is_near(1.12, 1.10, 0.0015)


class TestSynthetic:
    def test_deterministic_per_key(self):
        a = generate_synthetic_ohlc("EUR/USD", 50, now=1_000_000)
        b = generate_synthetic_ohlc("EUR/USD", 50, now=1_000_000)
        c = generate_synthetic_ohlc("GBP/USD", 50, now=1_000_000)
        assert a == b
        assert a != c

    def test_shape(self):
        candles = generate_synthetic_ohlc("EUR/USD", 30, now=1_800_000)
        assert len(candles) == 30
        assert candles[-1].time == 1_800_000
        for c in candles:
            assert c.low <= min(c.open, c.close)
            assert c.high >= max(c.open, c.close)

    def test_start_price_inference(self):
        assert infer_start_price("USD/JPY") == 150.0
        assert infer_start_price("BTC/USD") == 45000.0
        assert infer_start_price("EUR/USD") == 1.1
