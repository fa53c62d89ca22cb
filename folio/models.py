#!/usr/bin/env python3
"""
DOMAIN MODELS - Shared types for the decision pipeline.

Everything that crosses a module boundary lives here so that the
indicator, risk, decision and sizing modules never see raw store rows.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"
ACTIONS = (BUY, SELL, HOLD)

# Decision sources, recorded in Decision.market_data["source"]
SOURCE_LLM = "llm"
SOURCE_FALLBACK = "fallback_rules"

MAX_REASONING_CHARS = 1000
MAX_NEWS_CHARS = 2000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Quote:
    """Best-effort current quote. dividend_yield is in percent."""
    symbol: str
    price: float
    currency: str = "USD"
    change: Optional[float] = None
    change_percent: Optional[float] = None
    previous_close: Optional[float] = None
    pe: Optional[float] = None
    market_cap: Optional[float] = None
    dividend_yield: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    fifty_two_week_low: Optional[float] = None
    average_volume: Optional[float] = None
    stale: bool = False  # True when rebuilt from the last persisted price


@dataclass(frozen=True)
class PricePoint:
    """A recorded quote. History is always handled most-recent-first."""
    symbol: str
    price: float
    currency: str
    recorded_at: datetime
    change: Optional[float] = None
    change_percent: Optional[float] = None
    previous_close: Optional[float] = None
    pe: Optional[float] = None
    market_cap: Optional[float] = None
    dividend_yield: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    fifty_two_week_low: Optional[float] = None
    average_volume: Optional[float] = None

    @classmethod
    def from_quote(cls, quote: Quote, recorded_at: Optional[datetime] = None) -> "PricePoint":
        return cls(
            symbol=quote.symbol,
            price=quote.price,
            currency=quote.currency,
            recorded_at=recorded_at or utc_now(),
            change=quote.change,
            change_percent=quote.change_percent,
            previous_close=quote.previous_close,
            pe=quote.pe,
            market_cap=quote.market_cap,
            dividend_yield=quote.dividend_yield,
            fifty_two_week_high=quote.fifty_two_week_high,
            fifty_two_week_low=quote.fifty_two_week_low,
            average_volume=quote.average_volume,
        )


@dataclass(frozen=True)
class Position:
    symbol: str
    shares: float = 0
    cost_price: Optional[float] = None
    cost_currency: str = "USD"
    current_price: float = 0.0
    price_currency: str = "USD"
    name: str = ""

    def with_price(self, price: float, currency: str) -> "Position":
        return replace(self, current_price=price, price_currency=currency)


@dataclass(frozen=True)
class PriorDecision:
    action: str
    confidence: int
    created_at: datetime


@dataclass(frozen=True)
class SentimentResult:
    score: float
    positive_hits: Tuple[str, ...] = ()
    negative_hits: Tuple[str, ...] = ()

    @property
    def news_volume(self) -> int:
        return len(self.positive_hits) + len(self.negative_hits)


@dataclass(frozen=True)
class RiskFlags:
    stop_loss_triggered: bool
    max_position_reached: bool
    cooldown_active: bool
    daily_trade_count: int
    daily_trade_limit: int
    pnl_pct: Optional[float] = None
    position_value_usd: float = 0.0
    minutes_since_last_decision: Optional[float] = None

    @property
    def daily_limit_reached(self) -> bool:
        return self.daily_trade_count >= self.daily_trade_limit


@dataclass(frozen=True)
class Decision:
    symbol: str
    action: str
    confidence: int
    reasoning: str
    news_summary: str = ""
    market_data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def source(self) -> str:
        return self.market_data.get("source", "")


@dataclass(frozen=True)
class Trade:
    symbol: str
    action: str
    shares: int
    price: float
    currency: str
    reason: str
    source: str = "ai"
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class SymbolSetting:
    symbol: str
    name: str = ""
    enabled: bool = True
    auto_trade: bool = True
    updated_at: Optional[datetime] = None


def normalize_symbol(raw: str) -> str:
    return raw.strip().upper()
