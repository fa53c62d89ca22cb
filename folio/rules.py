#!/usr/bin/env python3
"""
FALLBACK RULE ENGINE - Deterministic BUY/SELL/HOLD from a DecisionContext

Used whenever the model path is unavailable or returns something unusable.
Given the same context it always produces the same decision.

Signal strength starts at sentiment x 30 and accumulates bounded
adjustments:
 1. Composite technical score (scaled)
 2. RSI extremes
 3. MACD / sentiment agreement
 4. Bollinger extremity
 5. Volume-confirmed momentum
 6. Buy-the-dip (BB position < 0.1 and RSI < 30)
 7. Profit-taking (holding, price > 3% above the recent-window low)
 8. Cost-basis protection (average down with support / don't dump near cost)
 9. PnL bands
10. Valuation & dividend
11. News-volume amplification
12. Sudden volume spike amplification

Overrides:
- Stop-loss short-circuits everything: SELL @ 90
- Max position reached clamps strength to <= 0
- Per-symbol thresholds, incl. quarter-end-only BUY windows
- No shares held turns a SELL into a HOLD

Confidence = min(95, 55 + floor(|strength|))
"""

import calendar
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from .config import SymbolPolicy
from .context import DecisionContext
from .models import (
    BUY, HOLD, SELL, MAX_NEWS_CHARS, MAX_REASONING_CHARS, SOURCE_FALLBACK,
    Decision,
)

logger = logging.getLogger(__name__)


def in_quarter_end_window(day: date, window_days: int) -> bool:
    """True if `day` falls within the last `window_days` days of its quarter."""
    quarter_month = ((day.month - 1) // 3 + 1) * 3
    last_day = calendar.monthrange(day.year, quarter_month)[1]
    quarter_end = date(day.year, quarter_month, last_day)
    return (quarter_end - day).days < window_days


@dataclass
class SignalBreakdown:
    strength: float = 0.0
    factors: Dict[str, float] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    def add(self, name: str, delta: float, note: Optional[str] = None):
        if delta == 0:
            return
        self.strength += delta
        self.factors[name] = round(self.factors.get(name, 0.0) + delta, 2)
        if note:
            self.notes.append(note)


class FallbackRuleEngine:
    """Multi-factor signal-strength engine."""

    SENTIMENT_WEIGHT = 30
    TECHNICAL_WEIGHT = 0.2
    TECHNICAL_CAP = 20
    STRENGTH_CAP = 100

    STOP_LOSS_CONFIDENCE = 90
    BASE_CONFIDENCE = 55
    MAX_CONFIDENCE = 95

    PROFIT_TAKING_RISE = 0.03
    VOLUME_SPIKE_RATIO = 2.0
    VOLUME_SPIKE_MULTIPLIER = 1.25

    def __init__(self, policies: Optional[Dict[str, SymbolPolicy]] = None):
        self.policies = policies or {}

    def policy_for(self, symbol: str) -> SymbolPolicy:
        return self.policies.get(symbol, SymbolPolicy())

    # === SIGNAL STRENGTH ===

    def evaluate(self, ctx: DecisionContext) -> SignalBreakdown:
        """Accumulate signal strength from every factor. Pure."""
        ti = ctx.indicators
        sentiment = ctx.sentiment.score
        pnl = ctx.pnl_pct
        holding = ctx.shares > 0
        sig = SignalBreakdown()

        # 1. Sentiment seed
        sig.add("sentiment", sentiment * self.SENTIMENT_WEIGHT)
        if ctx.sentiment.positive_hits:
            sig.notes.append(f"Positive signals: {', '.join(ctx.sentiment.positive_hits[:4])}")
        if ctx.sentiment.negative_hits:
            sig.notes.append(f"Risk factors: {', '.join(ctx.sentiment.negative_hits[:4])}")

        # 2. Composite technical score
        if ti.data_points >= 5:
            delta = max(-self.TECHNICAL_CAP, min(self.TECHNICAL_CAP, ti.technical_score * self.TECHNICAL_WEIGHT))
            sig.add("technical", delta,
                    f"Technical score {ti.technical_score} ({ti.technical_signal})")

        # 3. RSI extremes
        if ti.rsi14 is not None:
            if ti.rsi14 < 30:
                sig.add("rsi", 10, f"RSI {ti.rsi14:.0f} oversold")
            elif ti.rsi14 > 70:
                sig.add("rsi", -10, f"RSI {ti.rsi14:.0f} overbought")

        # 4. MACD agrees with the news
        if ti.macd_bullish is True and sentiment > 0.1:
            sig.add("macd_sentiment", 8, "MACD bullish, confirmed by news")
        elif ti.macd_bullish is False and sentiment < -0.1:
            sig.add("macd_sentiment", -8, "MACD bearish, confirmed by news")

        # 5. Bollinger extremity
        bb = ti.bollinger_position
        if bb is not None:
            if bb < 0.1:
                sig.add("bollinger", 8, f"Price at lower Bollinger band ({bb:.2f})")
            elif bb > 0.9:
                sig.add("bollinger", -8, f"Price at upper Bollinger band ({bb:.2f})")

        # 6. Volume-confirmed momentum
        if ti.volume_ratio is not None and ti.roc5 is not None and ti.volume_ratio > 1.3:
            if ti.roc5 > 0:
                sig.add("volume_momentum", 6, f"Rising on {ti.volume_ratio:.1f}x volume")
            elif ti.roc5 < 0:
                sig.add("volume_momentum", -6, f"Falling on {ti.volume_ratio:.1f}x volume")

        # 7. Buy-the-dip
        if bb is not None and ti.rsi14 is not None and bb < 0.1 and ti.rsi14 < 30:
            sig.add("buy_the_dip", 12, "Intraday dip: lower band + oversold RSI")

        # 8. Profit-taking off the recent low
        if holding and ctx.recent_low and ctx.price > ctx.recent_low * (1 + self.PROFIT_TAKING_RISE):
            rise = (ctx.price / ctx.recent_low - 1) * 100
            sig.add("profit_taking", -8, f"Up {rise:.1f}% from recent low, take some profit")

        # 9. Cost-basis protection
        if holding and ctx.cost_price and pnl is not None:
            support = (bb is not None and bb < 0.3) or (ti.rsi14 is not None and ti.rsi14 < 40)
            if pnl < 0 and support:
                sig.add("cost_basis", 10,
                        f"Below cost ({pnl:.1f}%) with technical support, average down")
            elif 0 <= pnl < 3 and ti.roc5 is not None and ti.roc5 > 3 and sig.strength < 0:
                sig.add("cost_basis", min(8.0, abs(sig.strength) / 2),
                        "Quick bounce back to cost, avoid selling down at breakeven")

        # 10. PnL bands
        if ctx.cost_price and pnl is not None:
            sig.notes.append(f"Position P&L: {pnl:+.1f}%")
            if pnl > 30:
                sig.add("pnl_band", -15)
            elif pnl > 10:
                sig.add("pnl_band", 10)
            elif pnl < -20:
                sig.add("pnl_band", 15)
            elif pnl < -10:
                sig.add("pnl_band", -5)
            if holding and pnl > 25:
                sig.add("pnl_band", -10, "Large unrealized gain, profit-taking opportunity")

        # 11. Valuation & dividend
        quote = ctx.quote
        if quote.pe is not None and quote.pe > 0:
            if quote.pe < 15:
                sig.add("valuation", 5, f"Cheap at P/E {quote.pe:.1f}")
            elif quote.pe > 40:
                sig.add("valuation", -5, f"Rich at P/E {quote.pe:.1f}")
        if quote.dividend_yield is not None and quote.dividend_yield >= 3:
            sig.add("dividend", 3, f"Dividend yield {quote.dividend_yield:.1f}%")
        if ti.distance_from_52w_low is not None and 0 <= ti.distance_from_52w_low < 5:
            sig.add("valuation", 4, "Trading near 52-week low")

        # 12. News volume
        if ctx.sentiment.news_volume >= 5 and sentiment != 0:
            sig.add("news_volume", 10 if sentiment > 0 else -10)

        # 13. Sudden volume spike amplifies whatever we have
        if ti.volume_ratio is not None and ti.volume_ratio >= self.VOLUME_SPIKE_RATIO:
            sig.add("volume_spike", sig.strength * (self.VOLUME_SPIKE_MULTIPLIER - 1),
                    f"Volume spike {ti.volume_ratio:.1f}x")

        if abs(sig.strength) > self.STRENGTH_CAP:
            sig.add("cap", math.copysign(self.STRENGTH_CAP, sig.strength) - sig.strength)

        if ctx.risk.max_position_reached and sig.strength > 0:
            sig.add("max_position", -sig.strength, "Max position reached, no adding")

        return sig

    # === DECISION ===

    def decide(self, ctx: DecisionContext, llm_error: Optional[str] = None) -> Decision:
        if ctx.risk.stop_loss_triggered:
            return self._stop_loss_decision(ctx, llm_error)

        sig = self.evaluate(ctx)
        policy = self.policy_for(ctx.symbol)
        strength = sig.strength

        if strength > policy.buy_threshold:
            action = BUY
            headline = f"Buy signal for {ctx.symbol}. Multi-factor analysis indicates positive outlook."
        elif strength < policy.sell_threshold:
            action = SELL
            headline = f"Sell signal for {ctx.symbol}. Risk factors outweigh positive indicators."
        else:
            action = HOLD
            headline = f"Neutral outlook for {ctx.symbol}. Maintaining current position."

        if action == BUY and policy.quarter_end_window_days > 0:
            if not in_quarter_end_window(ctx.built_at.date(), policy.quarter_end_window_days):
                action = HOLD
                headline = (f"Buy signal for {ctx.symbol} deferred: outside the "
                            f"quarter-end buy window ({policy.quarter_end_window_days} days).")

        if action == SELL and ctx.shares <= 0:
            action = HOLD
            headline = f"Sell signal for {ctx.symbol}, but no shares held."

        confidence = min(self.MAX_CONFIDENCE, self.BASE_CONFIDENCE + int(math.floor(abs(strength))))
        reasoning = " | ".join([headline] + sig.notes)

        return Decision(
            symbol=ctx.symbol,
            action=action,
            confidence=confidence,
            reasoning=reasoning[:MAX_REASONING_CHARS],
            news_summary=ctx.news[:MAX_NEWS_CHARS],
            market_data=self._market_data(ctx, sig, policy, llm_error),
            created_at=ctx.built_at,
        )

    def _stop_loss_decision(self, ctx: DecisionContext, llm_error: Optional[str]) -> Decision:
        pnl = ctx.risk.pnl_pct if ctx.risk.pnl_pct is not None else ctx.pnl_pct
        pnl_text = f"{pnl:.1f}%" if pnl is not None else "n/a"
        logger.warning(f"{ctx.symbol}: stop-loss forces SELL (PnL {pnl_text})")
        sig = SignalBreakdown(notes=[f"Stop-loss triggered at P&L {pnl_text}"])
        market_data = self._market_data(ctx, sig, self.policy_for(ctx.symbol), llm_error)
        market_data["forced"] = "stop_loss"
        return Decision(
            symbol=ctx.symbol,
            action=SELL,
            confidence=self.STOP_LOSS_CONFIDENCE,
            reasoning=f"Stop-loss triggered for {ctx.symbol} (P&L {pnl_text}). Cutting the position.",
            news_summary=ctx.news[:MAX_NEWS_CHARS],
            market_data=market_data,
            created_at=ctx.built_at,
        )

    def _market_data(self, ctx: DecisionContext, sig: SignalBreakdown,
                     policy: SymbolPolicy, llm_error: Optional[str]) -> Dict:
        data = {
            "source": SOURCE_FALLBACK,
            "current_price": ctx.price,
            "currency": ctx.currency,
            "cost_price": ctx.cost_price,
            "pnl_pct": round(ctx.pnl_pct, 2) if ctx.pnl_pct is not None else None,
            "sentiment_score": round(ctx.sentiment.score, 3),
            "technical_score": ctx.indicators.technical_score,
            "technical_signal": ctx.indicators.technical_signal,
            "signal_strength": round(sig.strength, 1),
            "factors": dict(sig.factors),
            "thresholds": {"buy": policy.buy_threshold, "sell": policy.sell_threshold},
            "positive_signals": len(ctx.sentiment.positive_hits),
            "negative_signals": len(ctx.sentiment.negative_hits),
            "stale_quote": ctx.quote.stale,
            "analysis_timestamp": ctx.built_at.isoformat(),
        }
        if llm_error:
            data["llm_error"] = llm_error
        return data
