"""Tests for folio/indicators.py"""

import numpy as np
import pytest

from folio.indicators import IndicatorCalculator, format_for_prompt
from tests.conftest import make_history


class TestShortSeries:

    def test_fewer_than_five_points_is_null_vector(self):
        calc = IndicatorCalculator()
        ti = calc.compute([101.0, 100.5, 100.0, 99.0], current_price=101.0,
                          high_52w=120.0, low_52w=80.0)

        assert ti.data_points == 4
        assert ti.sma5 is None
        assert ti.rsi14 is None
        assert ti.macd_line is None
        assert ti.bollinger_position is None
        assert ti.atr14 is None
        assert ti.roc5 is None
        assert ti.consecutive_up == 0
        assert ti.technical_score == 0
        assert ti.technical_signal == "neutral"
        # 52-week distances only need the live price
        assert ti.distance_from_52w_high == pytest.approx((101 - 120) / 120 * 100)
        assert ti.distance_from_52w_low == pytest.approx((101 - 80) / 80 * 100)

    def test_empty_series(self):
        ti = IndicatorCalculator().compute([])
        assert ti.data_points == 0
        assert ti.technical_score == 0

    def test_non_positive_prices_are_dropped(self):
        ti = IndicatorCalculator().compute([100.0, 0.0, -3.0, 99.0, 98.0, 97.0])
        assert ti.data_points == 4
        assert ti.sma5 is None


class TestRSI:

    def test_rsi_is_100_when_no_losses(self):
        prices = [float(130 - i) for i in range(30)]  # rising over time
        ti = IndicatorCalculator().compute(prices)

        assert ti.rsi14 == 100.0
        assert ti.rsi_signal == "overbought"
        assert ti.consecutive_up == 29
        assert ti.consecutive_down == 0

    def test_rsi_bounded_on_noisy_series(self):
        np.random.seed(7)
        prices = list(100 + np.cumsum(np.random.randn(80)))
        ti = IndicatorCalculator().compute(prices)

        assert ti.rsi14 is not None
        assert 0 <= ti.rsi14 <= 100

    def test_rsi_needs_fifteen_points(self):
        ti = IndicatorCalculator().compute([float(100 + i) for i in range(10)])
        assert ti.rsi14 is None
        assert ti.sma5 is not None


class TestDecliningSeries:
    """Thirty strictly decreasing snapshots."""

    def _vector(self):
        prices = [float(71 + i) for i in range(30)]  # newest = 71, oldest = 100
        return IndicatorCalculator().compute(prices)

    def test_trend_indicators_are_bearish(self):
        ti = self._vector()

        assert ti.consecutive_down == 29
        assert ti.consecutive_up == 0
        assert ti.rsi14 == pytest.approx(0.0)
        assert ti.ma_short_above_long is False
        assert ti.price_above_sma20 is False
        assert ti.roc5 < -5

    def test_oversold_factors_offset_the_trend(self):
        # Oversold RSI, lower band and the long down-run all score bullish
        ti = self._vector()

        assert ti.bollinger_position < 0.1
        assert ti.technical_score < 15
        assert ti.technical_signal in ("neutral", "sell", "strong_sell")

    def test_no_sma60_with_thirty_points(self):
        ti = self._vector()
        assert ti.sma60 is None
        assert ti.ma_golden_cross is None


class TestBollinger:

    def test_position_is_not_clamped_above_upper_band(self):
        prices = [100.0 if i % 2 == 0 else 101.0 for i in range(25)]
        ti = IndicatorCalculator().compute(prices, current_price=120.0)

        assert ti.bollinger_upper is not None
        assert ti.bollinger_position > 1.0

    def test_flat_series_has_no_position(self):
        ti = IndicatorCalculator().compute([100.0] * 25)

        assert ti.bollinger_upper == ti.bollinger_lower == 100.0
        assert ti.bollinger_position is None


class TestLivePrice:

    def test_small_move_is_not_prepended(self):
        ti = IndicatorCalculator().compute([100.0] * 10, current_price=100.05)
        assert ti.sma5 == pytest.approx(100.0)

    def test_large_move_is_prepended(self):
        ti = IndicatorCalculator().compute([100.0] * 10, current_price=110.0)
        assert ti.sma5 == pytest.approx((110.0 + 400.0) / 5)
        assert ti.data_points == 10


class TestFullVector:

    def test_sixty_points_fill_every_field(self):
        np.random.seed(3)
        prices = list(200 + np.cumsum(np.random.randn(70)))
        history = make_history(prices, average_volume=1_000_000)
        ti = IndicatorCalculator().compute_for_history(history, current_price=prices[0],
                                                       high_52w=260.0, low_52w=150.0)

        assert ti.data_points == 70
        assert ti.sma60 is not None
        assert ti.ma_golden_cross is not None
        assert ti.macd_signal is not None
        assert ti.macd_bullish is not None
        assert ti.atr14 is not None and ti.atr14 >= 0
        assert ti.volatility_pct is not None
        assert ti.daily_return_std is not None
        assert ti.volume_ratio == pytest.approx(1.0)
        assert ti.volume_trend == "stable"
        assert -100 <= ti.technical_score <= 100

    def test_signal_thresholds(self):
        assert IndicatorCalculator.signal_for_score(41) == "strong_buy"
        assert IndicatorCalculator.signal_for_score(16) == "buy"
        assert IndicatorCalculator.signal_for_score(15) == "neutral"
        assert IndicatorCalculator.signal_for_score(-16) == "sell"
        assert IndicatorCalculator.signal_for_score(-41) == "strong_sell"


class TestFormatForPrompt:

    def test_summary_mentions_score_and_rsi(self):
        prices = [float(130 - i) for i in range(30)]
        text = format_for_prompt(IndicatorCalculator().compute(prices))

        assert "RSI(14): 100.0" in text
        assert "Technical Score:" in text
        assert "29 consecutive up" in text

    def test_empty_vector_still_renders(self):
        text = format_for_prompt(IndicatorCalculator().compute([]))
        assert "0 data points" in text
