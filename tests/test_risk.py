"""Tests for folio/risk.py"""

from datetime import timedelta

import pytest

from folio.config import RiskConfig
from folio.risk import RiskEvaluator, fx_rate, pnl_pct
from tests.conftest import FIXED_NOW, make_risk


class TestFx:

    def test_known_rates(self):
        assert fx_rate("USD") == 1.0
        assert fx_rate("hkd") == pytest.approx(0.128)

    def test_unknown_currency_is_treated_as_usd(self):
        assert fx_rate("XYZ") == 1.0
        assert fx_rate(None) == 1.0


class TestPnl:

    def test_same_currency(self):
        assert pnl_pct(110.0, "USD", 100.0, "USD") == pytest.approx(10.0)

    def test_no_cost_basis(self):
        assert pnl_pct(110.0, "USD", None) is None
        assert pnl_pct(110.0, "USD", 0) is None

    def test_cross_currency_compares_in_usd(self):
        # 100 HKD now vs 12.8 USD cost -> flat
        assert pnl_pct(100.0, "HKD", 12.8, "USD") == pytest.approx(0.0)


class TestRiskEvaluator:

    def setup_method(self):
        self.evaluator = RiskEvaluator(RiskConfig())

    def _evaluate(self, price=100.0, currency="USD", cost=100.0, shares=10,
                  last_decision_at=None, daily=0):
        return self.evaluator.evaluate(
            current_price=price,
            currency=currency,
            cost_price=cost,
            shares=shares,
            last_decision_at=last_decision_at,
            daily_trade_count=daily,
            cost_currency=currency,
            now=FIXED_NOW,
        )

    def test_stop_loss_armed_below_threshold(self):
        flags = self._evaluate(price=80.0)
        assert flags.stop_loss_triggered is True
        assert flags.pnl_pct == pytest.approx(-20.0)

    def test_stop_loss_not_armed_above_threshold(self):
        assert self._evaluate(price=90.0).stop_loss_triggered is False

    def test_stop_loss_not_armed_at_exact_threshold(self):
        evaluator = RiskEvaluator(RiskConfig())
        flags = evaluator.evaluate(40.8, "USD", 48.0, 100, None, 0, "USD", now=FIXED_NOW)
        assert flags.pnl_pct == -15.0
        assert flags.stop_loss_triggered is False

    def test_stop_loss_needs_shares(self):
        assert self._evaluate(price=50.0, shares=0).stop_loss_triggered is False

    def test_max_position_at_ceiling(self):
        flags = self._evaluate(price=100.0, shares=500)
        assert flags.max_position_reached is True
        assert flags.position_value_usd == pytest.approx(50_000)

    def test_max_position_converts_currency(self):
        assert self._evaluate(price=400.0, currency="HKD", cost=400.0, shares=1000).max_position_reached is True
        assert self._evaluate(price=300.0, currency="HKD", cost=300.0, shares=1000).max_position_reached is False

    def test_cooldown(self):
        recent = self._evaluate(last_decision_at=FIXED_NOW - timedelta(minutes=2))
        assert recent.cooldown_active is True
        assert recent.minutes_since_last_decision == pytest.approx(2.0)

        older = self._evaluate(last_decision_at=FIXED_NOW - timedelta(minutes=10))
        assert older.cooldown_active is False

    def test_no_prior_decision_means_no_cooldown(self):
        flags = self._evaluate(last_decision_at=None)
        assert flags.cooldown_active is False
        assert flags.minutes_since_last_decision is None

    def test_daily_count_carries_limit(self):
        flags = self._evaluate(daily=6)
        assert flags.daily_trade_count == 6
        assert flags.daily_trade_limit == 6
        assert flags.daily_limit_reached is True

    def test_daily_limit_property(self):
        assert make_risk(daily_count=5, daily_limit=6).daily_limit_reached is False
        assert make_risk(daily_count=7, daily_limit=6).daily_limit_reached is True

    def test_custom_config(self):
        evaluator = RiskEvaluator(RiskConfig(stop_loss_pct=-5.0, cooldown_minutes=0))
        flags = evaluator.evaluate(94.0, "USD", 100.0, 10, FIXED_NOW, 0, "USD", now=FIXED_NOW)
        assert flags.stop_loss_triggered is True
        assert flags.cooldown_active is False
