#!/usr/bin/env python3
"""
TECHNICAL INDICATORS - Snapshot-based indicator vector and composite score

Computes the indicator vector from periodic price snapshots (not tick data,
not OHLC bars), so everything here is an approximation of the textbook
definitions:

1. SMA 5/20/60 and EMA 12/26 - Trend direction
2. RSI(14) - Wilder-smoothed momentum, overbought/oversold
3. MACD(12,26,9) - Signal line rebuilt from trailing-window MACD values
4. Bollinger Bands(20,2) - Volatility & mean reversion
5. ATR(14) - Close-to-close true range (no intrabar high/low available)
6. Volume ratio, ROC 5/20, consecutive up/down runs, 52-week distance

Scoring: -100 (max bearish) to +100 (max bullish)
Signals: > 40 strong_buy, > 15 buy, < -15 sell, < -40 strong_sell

All series are most-recent-first: prices[0] is the newest point.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .models import PricePoint


@dataclass(frozen=True)
class IndicatorVector:
    """All computed technical indicators for one price snapshot"""
    # Moving Averages
    sma5: Optional[float] = None
    sma20: Optional[float] = None
    sma60: Optional[float] = None
    ema12: Optional[float] = None
    ema26: Optional[float] = None
    # Trend signals
    ma_short_above_long: Optional[bool] = None   # SMA5 > SMA20
    ma_golden_cross: Optional[bool] = None       # SMA20 > SMA60
    price_above_sma20: Optional[bool] = None
    price_above_sma60: Optional[bool] = None
    # RSI
    rsi14: Optional[float] = None
    rsi_signal: Optional[str] = None  # "oversold", "overbought", "neutral"
    # MACD
    macd_line: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    macd_bullish: Optional[bool] = None
    # Bollinger Bands
    bollinger_upper: Optional[float] = None
    bollinger_middle: Optional[float] = None
    bollinger_lower: Optional[float] = None
    bollinger_position: Optional[float] = None  # 0=at lower, 1=at upper, unclamped
    # Volatility
    atr14: Optional[float] = None
    volatility_pct: Optional[float] = None
    daily_return_std: Optional[float] = None
    # Volume
    volume_ratio: Optional[float] = None
    volume_trend: Optional[str] = None  # "increasing", "decreasing", "stable"
    # Momentum
    roc5: Optional[float] = None
    roc20: Optional[float] = None
    # Price patterns
    consecutive_up: int = 0
    consecutive_down: int = 0
    distance_from_52w_high: Optional[float] = None
    distance_from_52w_low: Optional[float] = None
    # Composite
    technical_score: int = 0  # -100 to +100
    technical_signal: str = "neutral"
    data_points: int = 0


class IndicatorCalculator:
    """
    Pure indicator engine. No I/O.

    Needs at least 5 usable points to compute anything, and 60 for the
    full vector (SMA60 / golden cross).
    """

    MIN_POINTS = 5
    FULL_POINTS = 60
    # Prepend the live price only if it moved more than this vs. the last snapshot
    PREPEND_THRESHOLD = 0.001

    RSI_PERIOD = 14
    ATR_PERIOD = 14
    BB_PERIOD = 20
    BB_STD = 2.0
    MACD_FAST = 12
    MACD_SLOW = 26
    MACD_SIGNAL = 9
    MACD_HISTORY = 30

    def compute_for_history(self, history: Sequence[PricePoint],
                            current_price: Optional[float] = None,
                            high_52w: Optional[float] = None,
                            low_52w: Optional[float] = None) -> IndicatorVector:
        """Compute from stored price points (most-recent-first)."""
        prices = [p.price for p in history]
        volumes = [p.average_volume for p in history]
        return self.compute(prices, volumes, current_price, high_52w, low_52w)

    def compute(self, prices: Sequence[float],
                volumes: Optional[Sequence[Optional[float]]] = None,
                current_price: Optional[float] = None,
                high_52w: Optional[float] = None,
                low_52w: Optional[float] = None) -> IndicatorVector:
        series = [float(p) for p in prices if p is not None and p > 0]
        vols = [float(v) for v in (volumes or []) if v is not None and v > 0]
        data_points = len(series)

        if current_price is not None and current_price > 0:
            price = float(current_price)
        else:
            price = series[0] if series else 0.0

        if data_points < self.MIN_POINTS:
            return self._empty(price, data_points, high_52w, low_52w)

        if price > 0 and abs(price - series[0]) / series[0] > self.PREPEND_THRESHOLD:
            series.insert(0, price)

        arr = np.array(series, dtype=float)

        # === MOVING AVERAGES ===
        sma5 = self._sma(arr, 5)
        sma20 = self._sma(arr, 20)
        sma60 = self._sma(arr, 60)
        ema12 = self._ema(arr, self.MACD_FAST)
        ema26 = self._ema(arr, self.MACD_SLOW)

        ma_short_above_long = sma5 > sma20 if sma5 is not None and sma20 is not None else None
        ma_golden_cross = sma20 > sma60 if sma20 is not None and sma60 is not None else None
        price_above_sma20 = price > sma20 if sma20 is not None else None
        price_above_sma60 = price > sma60 if sma60 is not None else None

        # === RSI ===
        rsi = self._calculate_rsi(arr, self.RSI_PERIOD)
        rsi_signal = None
        if rsi is not None:
            if rsi < 30:
                rsi_signal = "oversold"
            elif rsi > 70:
                rsi_signal = "overbought"
            else:
                rsi_signal = "neutral"

        # === MACD ===
        macd_line, macd_signal, macd_hist = self._calculate_macd(arr, ema12, ema26)
        macd_bullish = macd_hist > 0 if macd_hist is not None else None

        # === BOLLINGER BANDS ===
        bb_upper, bb_middle, bb_lower, bb_position = self._calculate_bollinger(arr, sma20, price)

        # === VOLATILITY ===
        atr = self._calculate_atr(arr, self.ATR_PERIOD)
        volatility_pct = atr / price * 100 if atr is not None and price > 0 else None
        daily_return_std = self._calculate_return_std(arr)

        # === VOLUME ===
        volume_ratio, volume_trend = self._calculate_volume(vols)

        # === MOMENTUM ===
        roc5 = self._roc(arr, price, 5)
        roc20 = self._roc(arr, price, 20)
        consecutive_up, consecutive_down = self._consecutive_runs(arr)

        # === 52-WEEK RANGE ===
        dist_high, dist_low = self._distance_52w(price, high_52w, low_52w)

        # === COMPOSITE SCORE ===
        score = self._calculate_composite_score(
            rsi=rsi,
            ma_short_above_long=ma_short_above_long,
            ma_golden_cross=ma_golden_cross,
            price_above_sma20=price_above_sma20,
            macd_bullish=macd_bullish,
            bb_position=bb_position,
            roc5=roc5,
            volume_ratio=volume_ratio,
            consecutive_up=consecutive_up,
            consecutive_down=consecutive_down,
        )

        return IndicatorVector(
            sma5=sma5,
            sma20=sma20,
            sma60=sma60,
            ema12=ema12,
            ema26=ema26,
            ma_short_above_long=ma_short_above_long,
            ma_golden_cross=ma_golden_cross,
            price_above_sma20=price_above_sma20,
            price_above_sma60=price_above_sma60,
            rsi14=rsi,
            rsi_signal=rsi_signal,
            macd_line=macd_line,
            macd_signal=macd_signal,
            macd_histogram=macd_hist,
            macd_bullish=macd_bullish,
            bollinger_upper=bb_upper,
            bollinger_middle=bb_middle,
            bollinger_lower=bb_lower,
            bollinger_position=bb_position,
            atr14=atr,
            volatility_pct=volatility_pct,
            daily_return_std=daily_return_std,
            volume_ratio=volume_ratio,
            volume_trend=volume_trend,
            roc5=roc5,
            roc20=roc20,
            consecutive_up=consecutive_up,
            consecutive_down=consecutive_down,
            distance_from_52w_high=dist_high,
            distance_from_52w_low=dist_low,
            technical_score=score,
            technical_signal=self.signal_for_score(score),
            data_points=data_points,
        )

    # === INDICATOR CALCULATIONS ===

    def _sma(self, prices: np.ndarray, period: int) -> Optional[float]:
        if len(prices) < period:
            return None
        return float(np.mean(prices[:period]))

    def _ema(self, prices: np.ndarray, period: int) -> Optional[float]:
        """EMA over the latest 3*period points, seeded with the oldest SMA window."""
        if len(prices) < period:
            return None
        k = 2 / (period + 1)
        window = prices[:period * 3][::-1]  # oldest first
        value = float(np.mean(window[:period]))
        for p in window[period:]:
            value = float(p) * k + value * (1 - k)
        return value

    def _calculate_rsi(self, prices: np.ndarray, period: int = 14) -> Optional[float]:
        """RSI with Wilder's smoothing over the latest 3*period changes"""
        if len(prices) < period + 1:
            return None

        window = prices[:period * 3 + 1]
        changes = (window[:-1] - window[1:])[::-1]  # newer - older, oldest first
        gains = np.where(changes > 0, changes, 0.0)
        losses = np.where(changes < 0, -changes, 0.0)

        avg_gain = float(np.mean(gains[:period]))
        avg_loss = float(np.mean(losses[:period]))
        for i in range(period, len(changes)):
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period

        if avg_loss == 0:
            return 100.0

        rs = avg_gain / avg_loss
        return float(100 - (100 / (1 + rs)))

    def _calculate_macd(self, prices: np.ndarray,
                        ema_fast: Optional[float],
                        ema_slow: Optional[float]) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        """
        MACD line plus an approximate signal line.

        Snapshots carry no running MACD state, so the signal line is an
        EMA(9) over MACD values recomputed on successive trailing windows
        (prices[i:] for i = 0..29). Close to, but not identical with,
        charting-tool values.
        """
        if ema_fast is None or ema_slow is None:
            return None, None, None

        line = ema_fast - ema_slow
        history: List[float] = []  # most recent first
        for i in range(min(len(prices) - self.MACD_SLOW, self.MACD_HISTORY)):
            e_fast = self._ema(prices[i:], self.MACD_FAST)
            e_slow = self._ema(prices[i:], self.MACD_SLOW)
            if e_fast is not None and e_slow is not None:
                history.append(e_fast - e_slow)

        if len(history) < self.MACD_SIGNAL:
            return line, None, None

        k = 2 / (self.MACD_SIGNAL + 1)
        signal = float(np.mean(history[-self.MACD_SIGNAL:]))
        for value in reversed(history[:-self.MACD_SIGNAL]):
            signal = value * k + signal * (1 - k)

        return line, signal, line - signal

    def _calculate_bollinger(self, prices: np.ndarray, sma20: Optional[float],
                             price: float) -> Tuple[Optional[float], ...]:
        """Bollinger Bands (20, 2) on sample std; position is not clamped"""
        if sma20 is None or len(prices) < self.BB_PERIOD:
            return None, None, None, None

        std = float(np.std(prices[:self.BB_PERIOD], ddof=1))
        upper = sma20 + self.BB_STD * std
        lower = sma20 - self.BB_STD * std
        position = (price - lower) / (upper - lower) if upper != lower else None
        return upper, sma20, lower, position

    def _calculate_atr(self, prices: np.ndarray, period: int = 14) -> Optional[float]:
        """Close-to-close ATR: SMA seed over the oldest window, Wilder-smoothed forward"""
        if len(prices) < period + 1:
            return None

        window = prices[:period * 2 + 1]
        true_ranges = np.abs(window[:-1] - window[1:])[::-1]  # oldest first
        if len(true_ranges) < period:
            return None

        atr = float(np.mean(true_ranges[:period]))
        for tr in true_ranges[period:]:
            atr = (atr * (period - 1) + float(tr)) / period
        return atr

    def _calculate_return_std(self, prices: np.ndarray, window: int = 20) -> Optional[float]:
        """Sample std of daily returns, in percent"""
        span = prices[:window + 1]
        if len(span) < 2:
            return None
        returns = (span[:-1] - span[1:]) / span[1:]
        if len(returns) < 5:
            return None
        return float(np.std(returns, ddof=1) * 100)

    def _calculate_volume(self, volumes: List[float]) -> Tuple[Optional[float], Optional[str]]:
        if len(volumes) < 5:
            return None, None
        recent = float(np.mean(volumes[:5]))
        average = float(np.mean(volumes))
        if average <= 0:
            return None, None
        ratio = recent / average
        if ratio > 1.3:
            trend = "increasing"
        elif ratio < 0.7:
            trend = "decreasing"
        else:
            trend = "stable"
        return ratio, trend

    def _roc(self, prices: np.ndarray, price: float, period: int) -> Optional[float]:
        if len(prices) <= period or prices[period] <= 0:
            return None
        return float((price - prices[period]) / prices[period] * 100)

    def _consecutive_runs(self, prices: np.ndarray) -> Tuple[int, int]:
        """Strictly rising/falling adjacent pairs from the newest point back"""
        up = 0
        down = 0
        for i in range(len(prices) - 1):
            if prices[i] > prices[i + 1]:
                if down:
                    break
                up += 1
            elif prices[i] < prices[i + 1]:
                if up:
                    break
                down += 1
            else:
                break
        return up, down

    def _distance_52w(self, price: float, high_52w: Optional[float],
                      low_52w: Optional[float]) -> Tuple[Optional[float], Optional[float]]:
        dist_high = (price - high_52w) / high_52w * 100 if high_52w and high_52w > 0 else None
        dist_low = (price - low_52w) / low_52w * 100 if low_52w and low_52w > 0 else None
        return dist_high, dist_low

    # === SCORING ===

    def _calculate_composite_score(self, rsi: Optional[float],
                                   ma_short_above_long: Optional[bool],
                                   ma_golden_cross: Optional[bool],
                                   price_above_sma20: Optional[bool],
                                   macd_bullish: Optional[bool],
                                   bb_position: Optional[float],
                                   roc5: Optional[float],
                                   volume_ratio: Optional[float],
                                   consecutive_up: int,
                                   consecutive_down: int) -> int:
        """
        Sum per-factor points, normalize by 20 points per contributing
        factor, clamp to [-100, 100].
        """
        score = 0
        factors = 0

        if rsi is not None:
            if rsi < 30:
                score += 20
            elif rsi < 40:
                score += 10
            elif rsi > 70:
                score -= 20
            elif rsi > 60:
                score -= 5
            factors += 1

        if ma_short_above_long is not None:
            score += 15 if ma_short_above_long else -15
            factors += 1
        if ma_golden_cross is not None:
            score += 10 if ma_golden_cross else -10
            factors += 1
        if price_above_sma20 is not None:
            score += 8 if price_above_sma20 else -8
            factors += 1

        if macd_bullish is not None:
            score += 12 if macd_bullish else -12
            factors += 1

        if bb_position is not None:
            if bb_position < 0.1:
                score += 15
            elif bb_position < 0.3:
                score += 8
            elif bb_position > 0.9:
                score -= 15
            elif bb_position > 0.7:
                score -= 8
            factors += 1

        if roc5 is not None:
            if roc5 > 5:
                score += 8
            elif roc5 > 2:
                score += 4
            elif roc5 < -5:
                score -= 8
            elif roc5 < -2:
                score -= 4
            factors += 1

        # Volume-confirmed momentum
        if volume_ratio is not None and roc5 is not None:
            if roc5 > 0 and volume_ratio > 1.3:
                score += 8
            elif roc5 < 0 and volume_ratio > 1.3:
                score -= 8
            factors += 1

        # Overextended runs fade
        if consecutive_up >= 4:
            score -= 5
        if consecutive_down >= 4:
            score += 5

        max_possible = factors * 20 if factors > 0 else 1
        normalized = int(round(score / max_possible * 100))
        return max(-100, min(100, normalized))

    @staticmethod
    def signal_for_score(score: int) -> str:
        if score > 40:
            return "strong_buy"
        elif score > 15:
            return "buy"
        elif score < -40:
            return "strong_sell"
        elif score < -15:
            return "sell"
        return "neutral"

    def _empty(self, price: float, data_points: int,
               high_52w: Optional[float], low_52w: Optional[float]) -> IndicatorVector:
        dist_high, dist_low = self._distance_52w(price, high_52w, low_52w)
        return IndicatorVector(
            distance_from_52w_high=dist_high,
            distance_from_52w_low=dist_low,
            technical_score=0,
            technical_signal="neutral",
            data_points=data_points,
        )


def format_for_prompt(ti: IndicatorVector) -> str:
    """Render the vector as a compact text block for the model request."""
    lines = [f"=== Technical Indicators ({ti.data_points} data points) ==="]

    if ti.sma5 is not None:
        parts = [f"SMA5={ti.sma5:.2f}"]
        if ti.sma20 is not None:
            parts.append(f"SMA20={ti.sma20:.2f}")
        if ti.sma60 is not None:
            parts.append(f"SMA60={ti.sma60:.2f}")
        lines.append(f"Moving Averages: {', '.join(parts)}")

        signals = []
        if ti.ma_short_above_long is True:
            signals.append("Short-term bullish (SMA5>SMA20)")
        elif ti.ma_short_above_long is False:
            signals.append("Short-term bearish (SMA5<SMA20)")
        if ti.ma_golden_cross is True:
            signals.append("Golden cross (SMA20>SMA60)")
        elif ti.ma_golden_cross is False:
            signals.append("Death cross (SMA20<SMA60)")
        if ti.price_above_sma20 is False:
            signals.append("Price below SMA20")
        if signals:
            lines.append(f"  MA Signals: {'; '.join(signals)}")

    if ti.rsi14 is not None:
        lines.append(f"RSI(14): {ti.rsi14:.1f} ({ti.rsi_signal})")

    if ti.macd_line is not None:
        sig = f"{ti.macd_signal:.3f}" if ti.macd_signal is not None else "N/A"
        hist = f"{ti.macd_histogram:.3f}" if ti.macd_histogram is not None else "N/A"
        trend = {True: "Bullish", False: "Bearish", None: "Undetermined"}[ti.macd_bullish]
        lines.append(f"MACD: Line={ti.macd_line:.3f}, Signal={sig}, Histogram={hist} ({trend})")

    if ti.bollinger_upper is not None:
        pos = f"{ti.bollinger_position * 100:.0f}%" if ti.bollinger_position is not None else "N/A"
        lines.append(
            f"Bollinger(20,2): [{ti.bollinger_lower:.2f} / {ti.bollinger_middle:.2f} / "
            f"{ti.bollinger_upper:.2f}], Position={pos}"
        )

    if ti.atr14 is not None and ti.volatility_pct is not None:
        line = f"Volatility: ATR(14)={ti.atr14:.2f} ({ti.volatility_pct:.1f}% of price)"
        if ti.daily_return_std is not None:
            line += f", DailyStdDev={ti.daily_return_std:.2f}%"
        lines.append(line)

    if ti.volume_ratio is not None:
        lines.append(f"Volume: Ratio={ti.volume_ratio:.2f}x avg ({ti.volume_trend})")

    momentum = []
    if ti.roc5 is not None:
        momentum.append(f"ROC5={ti.roc5:.2f}%")
    if ti.roc20 is not None:
        momentum.append(f"ROC20={ti.roc20:.2f}%")
    if ti.consecutive_up > 0:
        momentum.append(f"{ti.consecutive_up} consecutive up")
    if ti.consecutive_down > 0:
        momentum.append(f"{ti.consecutive_down} consecutive down")
    if momentum:
        lines.append(f"Momentum: {', '.join(momentum)}")

    week = []
    if ti.distance_from_52w_high is not None:
        week.append(f"{ti.distance_from_52w_high:.1f}% from 52w high")
    if ti.distance_from_52w_low is not None:
        week.append(f"+{ti.distance_from_52w_low:.1f}% above 52w low")
    if week:
        lines.append(f"52-Week Range: {', '.join(week)}")

    lines.append(f"Technical Score: {ti.technical_score}/100 ({ti.technical_signal.upper()})")
    return "\n".join(lines)
