#!/usr/bin/env python3
"""
DECISION CONTEXT - Immutable per-symbol snapshot for decision-making

Merges quote, position (with PnL), sentiment, indicator vector, risk flags,
a bounded slice of recent price history and prior decisions into one
object. The context is the sole input of both decision paths.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .indicators import IndicatorCalculator, IndicatorVector, format_for_prompt
from .models import (
    MAX_NEWS_CHARS, Position, PricePoint, PriorDecision, Quote, RiskFlags, SentimentResult,
    utc_now,
)
from .risk import RiskEvaluator, pnl_pct
from .sentiment import SentimentScorer
from .store import DataStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionContext:
    symbol: str
    name: str
    quote: Quote
    position: Position
    pnl_pct: Optional[float]
    news: str
    sentiment: SentimentResult
    indicators: IndicatorVector
    risk: RiskFlags
    price_history: Tuple[PricePoint, ...]
    prior_decisions: Tuple[PriorDecision, ...]
    recent_low: Optional[float]
    technical_summary: str
    built_at: datetime

    @property
    def price(self) -> float:
        return self.quote.price

    @property
    def currency(self) -> str:
        return self.quote.currency

    @property
    def shares(self) -> float:
        return self.position.shares

    @property
    def cost_price(self) -> Optional[float]:
        return self.position.cost_price

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready view for the model request."""
        quote = {k: v for k, v in asdict(self.quote).items() if v is not None}
        return {
            "symbol": self.symbol,
            "name": self.name,
            "quote": quote,
            "position": {
                "shares": self.position.shares,
                "cost_price": self.position.cost_price,
                "cost_currency": self.position.cost_currency,
                "pnl_pct": round(self.pnl_pct, 2) if self.pnl_pct is not None else None,
            },
            "sentiment": {
                "score": round(self.sentiment.score, 3),
                "positive_hits": list(self.sentiment.positive_hits),
                "negative_hits": list(self.sentiment.negative_hits),
            },
            "risk": {
                "stop_loss_triggered": self.risk.stop_loss_triggered,
                "max_position_reached": self.risk.max_position_reached,
                "cooldown_active": self.risk.cooldown_active,
                "daily_trade_count": self.risk.daily_trade_count,
                "daily_trade_limit": self.risk.daily_trade_limit,
            },
            "recent_prices": [
                {"at": p.recorded_at.isoformat(), "price": p.price} for p in self.price_history
            ],
            "prior_decisions": [
                {"at": d.created_at.isoformat(), "action": d.action, "confidence": d.confidence}
                for d in self.prior_decisions
            ],
            "news": self.news[:MAX_NEWS_CHARS],
            "technical_summary": self.technical_summary,
        }


class ContextBuilder:
    """Assembles a DecisionContext. Reads the store, never writes it."""

    HISTORY_LIMIT = 200
    HISTORY_SLICE = 20
    PRIOR_DECISIONS = 5

    def __init__(self, store: DataStore,
                 calculator: IndicatorCalculator,
                 scorer: SentimentScorer,
                 risk_evaluator: RiskEvaluator):
        self.store = store
        self.calculator = calculator
        self.scorer = scorer
        self.risk_evaluator = risk_evaluator

    def build(self, symbol: str, quote: Quote, position: Position, news: str,
              name: str = "", now: Optional[datetime] = None) -> DecisionContext:
        now = now or utc_now()

        history = self.store.get_price_history(symbol, self.HISTORY_LIMIT)
        prior = self.store.get_recent_decisions(symbol, self.PRIOR_DECISIONS)
        trades_today = self.store.count_trades_today(symbol, now)

        indicators = self.calculator.compute_for_history(
            history,
            current_price=quote.price,
            high_52w=quote.fifty_two_week_high,
            low_52w=quote.fifty_two_week_low,
        )
        sentiment = self.scorer.score(news)
        risk = self.risk_evaluator.evaluate(
            current_price=quote.price,
            currency=quote.currency,
            cost_price=position.cost_price,
            shares=position.shares,
            last_decision_at=prior[0].created_at if prior else None,
            daily_trade_count=trades_today,
            cost_currency=position.cost_currency,
            now=now,
        )

        window = tuple(history[:self.HISTORY_SLICE])
        window_prices = [p.price for p in window if p.price > 0]
        if quote.price > 0:
            window_prices.append(quote.price)
        recent_low = min(window_prices) if window_prices else None

        logger.debug(
            f"{symbol}: {indicators.data_points} points, score={indicators.technical_score}, "
            f"sentiment={sentiment.score:.2f}, trades_today={trades_today}"
        )

        return DecisionContext(
            symbol=symbol,
            name=name or position.name or symbol,
            quote=quote,
            position=position,
            pnl_pct=pnl_pct(quote.price, quote.currency, position.cost_price, position.cost_currency),
            news=news,
            sentiment=sentiment,
            indicators=indicators,
            risk=risk,
            price_history=window,
            prior_decisions=tuple(prior),
            recent_low=recent_low,
            technical_summary=format_for_prompt(indicators),
            built_at=now,
        )
