"""Tests for folio/context.py"""

import json
from datetime import timedelta

import pytest

from folio.config import RiskConfig
from folio.context import ContextBuilder
from folio.indicators import IndicatorCalculator
from folio.models import Decision, Trade
from folio.risk import RiskEvaluator
from folio.sentiment import SentimentScorer
from folio.store import MemoryStore
from tests.conftest import FIXED_NOW, make_history, make_position, make_quote


def _builder(store):
    return ContextBuilder(store, IndicatorCalculator(), SentimentScorer(), RiskEvaluator(RiskConfig()))


class TestContextBuilder:

    def test_build_merges_everything(self):
        store = MemoryStore()
        for point in make_history([float(100 + i % 3) for i in range(30)]):
            store.record_price(point)
        store.record_decision(Decision("AAPL", "HOLD", 60, "wait",
                                       created_at=FIXED_NOW - timedelta(minutes=1)))

        ctx = _builder(store).build(
            "AAPL", make_quote(price=98.0), make_position(shares=10, cost_price=100.0),
            "Analysts upgrade Apple", name="Apple", now=FIXED_NOW,
        )

        assert ctx.name == "Apple"
        assert ctx.indicators.data_points == 30
        assert len(ctx.price_history) == 20
        assert ctx.prior_decisions[0].action == "HOLD"
        assert ctx.pnl_pct == pytest.approx(-2.0)
        assert ctx.sentiment.score == 1.0
        assert ctx.risk.cooldown_active is True
        assert ctx.recent_low == 98.0
        assert "Technical Score" in ctx.technical_summary

    def test_daily_trade_count_comes_from_store(self):
        store = MemoryStore()
        for _ in range(3):
            store.record_trade(Trade("AAPL", "BUY", 10, 100.0, "USD", "x", created_at=FIXED_NOW))
        store.record_trade(Trade("AAPL", "BUY", 10, 100.0, "USD", "x",
                                 created_at=FIXED_NOW - timedelta(days=1)))

        ctx = _builder(store).build("AAPL", make_quote(), make_position(), "", now=FIXED_NOW)
        assert ctx.risk.daily_trade_count == 3

    def test_empty_history_gives_null_vector(self):
        ctx = _builder(MemoryStore()).build("AAPL", make_quote(), make_position(), "", now=FIXED_NOW)
        assert ctx.indicators.data_points == 0
        assert ctx.indicators.technical_score == 0
        assert ctx.recent_low == 100.0

    def test_payload_is_json_ready(self):
        store = MemoryStore()
        for point in make_history([100.0, 101.0, 102.0, 103.0, 104.0, 105.0]):
            store.record_price(point)
        ctx = _builder(store).build("AAPL", make_quote(pe=30.0), make_position(), "news", now=FIXED_NOW)

        payload = ctx.to_payload()
        encoded = json.dumps(payload)
        assert '"symbol": "AAPL"' in encoded
        assert payload["quote"]["pe"] == 30.0
        assert "change" not in payload["quote"]
        assert payload["news"] == "news"
        assert len(payload["recent_prices"]) == 6
