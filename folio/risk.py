#!/usr/bin/env python3
"""
RISK EVALUATOR - Per-cycle risk flags for one position

Flags are recomputed fresh every cycle from the position plus recent
decision/trade history and are never persisted:
1. Stop-loss - unrealized PnL below the configured threshold
2. Max position - position value in USD at or above the ceiling
3. Cooldown - last decision for the symbol is too recent
4. Daily trade count - carried with its limit for the orchestrator gate

FX conversion uses static multipliers (see config.FX_TO_USD). They are
approximations for a simulated ledger, not live rates.
"""

import logging
from datetime import datetime
from typing import Optional

from .config import FX_TO_USD, RiskConfig
from .models import RiskFlags, utc_now

logger = logging.getLogger(__name__)


def fx_rate(currency: Optional[str]) -> float:
    """Multiplier converting one unit of `currency` into USD."""
    code = (currency or "USD").upper()
    rate = FX_TO_USD.get(code)
    if rate is None:
        logger.warning(f"No FX rate for {code}, treating as USD")
        return 1.0
    return rate


def pnl_pct(current_price: float, price_currency: str,
            cost_price: Optional[float], cost_currency: Optional[str] = None) -> Optional[float]:
    """Unrealized PnL in percent, comparing in USD when currencies differ."""
    if not cost_price or cost_price <= 0 or current_price <= 0:
        return None
    price = current_price
    cost = cost_price
    if cost_currency and cost_currency.upper() != (price_currency or "USD").upper():
        price = current_price * fx_rate(price_currency)
        cost = cost_price * fx_rate(cost_currency)
    # rounded so a loss of exactly the threshold does not arm the stop
    return round((price - cost) / cost * 100, 6)


class RiskEvaluator:
    """Turns position + market state into RiskFlags."""

    def __init__(self, config: RiskConfig):
        self.config = config

    def evaluate(self,
                 current_price: float,
                 currency: str,
                 cost_price: Optional[float],
                 shares: float,
                 last_decision_at: Optional[datetime],
                 daily_trade_count: int,
                 cost_currency: Optional[str] = None,
                 now: Optional[datetime] = None) -> RiskFlags:
        now = now or utc_now()

        pnl = pnl_pct(current_price, currency, cost_price, cost_currency)
        stop_loss = shares > 0 and pnl is not None and pnl < self.config.stop_loss_pct

        value_usd = max(current_price, 0) * max(shares, 0) * fx_rate(currency)
        max_position = value_usd >= self.config.max_position_usd

        minutes_since = None
        cooldown = False
        if last_decision_at is not None:
            minutes_since = (now - last_decision_at).total_seconds() / 60
            cooldown = minutes_since < self.config.cooldown_minutes

        if stop_loss:
            logger.warning(f"Stop-loss armed: PnL {pnl:.1f}% < {self.config.stop_loss_pct:.1f}%")

        return RiskFlags(
            stop_loss_triggered=stop_loss,
            max_position_reached=max_position,
            cooldown_active=cooldown,
            daily_trade_count=daily_trade_count,
            daily_trade_limit=self.config.daily_trade_limit,
            pnl_pct=pnl,
            position_value_usd=round(value_usd, 2),
            minutes_since_last_decision=minutes_since,
        )
