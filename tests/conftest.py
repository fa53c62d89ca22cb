"""Shared builders and fixtures for the decision pipeline tests."""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock

from folio.config import (
    APIKeys, Config, DEFAULT_SYMBOL_POLICIES, LLMConfig, RiskConfig,
    SchedulerConfig, SizingConfig,
)
from folio.context import DecisionContext
from folio.indicators import IndicatorVector, format_for_prompt
from folio.models import (
    Decision, Position, PricePoint, Quote, RiskFlags, SentimentResult,
)
from folio.risk import pnl_pct as compute_pnl

# Tuesday, mid-quarter, US market open
FIXED_NOW = datetime(2025, 6, 10, 15, 0, tzinfo=timezone.utc)


def make_quote(symbol="AAPL", price=100.0, currency="USD", **extra):
    return Quote(symbol=symbol, price=price, currency=currency, **extra)


def make_position(symbol="AAPL", shares=0, cost_price=None, current_price=100.0,
                  currency="USD", name=""):
    return Position(
        symbol=symbol,
        shares=shares,
        cost_price=cost_price,
        cost_currency=currency,
        current_price=current_price,
        price_currency=currency,
        name=name,
    )


def make_history(prices, symbol="AAPL", currency="USD", end=FIXED_NOW, step_minutes=5,
                 average_volume=None):
    """PricePoints, most-recent-first, `prices[0]` recorded at `end`."""
    return [
        PricePoint(
            symbol=symbol,
            price=p,
            currency=currency,
            recorded_at=end - timedelta(minutes=step_minutes * i),
            average_volume=average_volume,
        )
        for i, p in enumerate(prices)
    ]


def make_risk(stop_loss=False, max_position=False, cooldown=False,
              daily_count=0, daily_limit=6, pnl=None):
    return RiskFlags(
        stop_loss_triggered=stop_loss,
        max_position_reached=max_position,
        cooldown_active=cooldown,
        daily_trade_count=daily_count,
        daily_trade_limit=daily_limit,
        pnl_pct=pnl,
    )


def make_context(
    symbol="AAPL",
    price=100.0,
    currency="USD",
    shares=0,
    cost_price=None,
    sentiment=0.0,
    positive_hits=(),
    negative_hits=(),
    indicators=None,
    risk=None,
    news="",
    recent_low=None,
    built_at=FIXED_NOW,
    **quote_extra,
):
    """A DecisionContext built directly, bypassing the store."""
    quote = make_quote(symbol, price, currency, **quote_extra)
    position = make_position(symbol, shares, cost_price, price, currency)
    pnl = compute_pnl(price, currency, cost_price, currency)
    indicators = indicators or IndicatorVector()
    return DecisionContext(
        symbol=symbol,
        name=symbol,
        quote=quote,
        position=position,
        pnl_pct=pnl,
        news=news,
        sentiment=SentimentResult(sentiment, tuple(positive_hits), tuple(negative_hits)),
        indicators=indicators,
        risk=risk or make_risk(pnl=pnl),
        price_history=(),
        prior_decisions=(),
        recent_low=recent_low,
        technical_summary=format_for_prompt(indicators),
        built_at=built_at,
    )


def make_decision(symbol="AAPL", action="BUY", confidence=80, source="fallback_rules"):
    return Decision(
        symbol=symbol,
        action=action,
        confidence=confidence,
        reasoning=f"{action} for testing",
        market_data={"source": source},
    )


def make_config(anthropic_key="", tavily_key="", **risk_overrides):
    """Config with credentials and limits pinned, independent of the environment."""
    cfg = Config()
    cfg.api_keys = APIKeys(anthropic=anthropic_key, tavily=tavily_key)
    cfg.llm = LLMConfig()
    cfg.risk = RiskConfig(**risk_overrides)
    cfg.sizing = SizingConfig()
    cfg.scheduler = SchedulerConfig()
    cfg.symbol_policies = dict(DEFAULT_SYMBOL_POLICIES)
    return cfg


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def mock_store():
    """A MagicMock DataStore with empty history."""
    store = MagicMock()
    store.get_price_history.return_value = []
    store.get_recent_decisions.return_value = []
    store.count_trades_today.return_value = 0
    store.get_position.return_value = None
    return store
