#!/usr/bin/env python3
"""
TRADE SIZER - Share quantities and ledger arithmetic for simulated trades

Sizing rules:
- HOLD never trades
- BUY: fixed USD notional for target-notional symbols, otherwise
  max(min_lot, floor(confidence/100 * size_cap))
- SELL: min(shares, max(1, floor(shares * min(0.25, confidence/400))))

Ledger rules:
- BUY recomputes cost as the share-weighted average of old and new lots
- SELL floors shares at zero and leaves cost untouched

Risk gates (daily limit, cooldown, max position) are NOT checked here;
the orchestrator applies them before asking for a size.
"""

import math
from dataclasses import replace
from typing import Dict, Optional

from .config import SizingConfig, SymbolPolicy
from .models import BUY, SELL, Decision, Position, Trade
from .risk import fx_rate


def weighted_average_cost(shares: float, cost: Optional[float],
                          quantity: float, price: float) -> float:
    """(s*c + q*p) / (s+q); an empty or cost-less position takes the new price."""
    if shares <= 0 or cost is None:
        return price
    total = shares + quantity
    if total <= 0:
        return cost
    return (shares * cost + quantity * price) / total


def apply_trade(position: Position, trade: Trade) -> Position:
    """Return the position after `trade`. Pure."""
    if trade.action == BUY:
        cost_currency = position.cost_currency or trade.currency
        has_basis = position.shares > 0 and position.cost_price is not None
        if not has_basis:
            cost_currency = trade.currency
        lot_price = trade.price * fx_rate(trade.currency) / fx_rate(cost_currency)
        new_cost = weighted_average_cost(
            position.shares if has_basis else 0,
            position.cost_price,
            trade.shares,
            lot_price,
        )
        return replace(
            position,
            shares=position.shares + trade.shares,
            cost_price=new_cost,
            cost_currency=cost_currency,
            current_price=trade.price,
            price_currency=trade.currency,
        )

    if trade.action == SELL:
        return replace(
            position,
            shares=max(0, position.shares - trade.shares),
            current_price=trade.price,
            price_currency=trade.currency,
        )

    return position


class TradeSizer:
    """Pure sizing: decision + position state in, share count out."""

    def __init__(self, config: SizingConfig, policies: Optional[Dict[str, SymbolPolicy]] = None):
        self.config = config
        self.policies = policies or {}

    def size(self, decision: Decision, price: float, currency: str, current_shares: float) -> int:
        if price <= 0:
            return 0

        if decision.action == BUY:
            policy = self.policies.get(decision.symbol)
            if policy and policy.target_notional_usd > 0:
                return int(math.floor(policy.target_notional_usd / (price * fx_rate(currency))))
            scaled = math.floor(decision.confidence / 100 * self.config.size_cap)
            return int(max(self.config.min_lot, scaled))

        if decision.action == SELL:
            if current_shares <= 0:
                return 0
            fraction = min(self.config.max_sell_fraction, decision.confidence / 400)
            quantity = max(1, math.floor(current_shares * fraction))
            return int(min(current_shares, quantity))

        return 0

    def build_trade(self, decision: Decision, price: float, currency: str,
                    current_shares: float) -> Optional[Trade]:
        quantity = self.size(decision, price, currency, current_shares)
        if quantity <= 0:
            return None
        return Trade(
            symbol=decision.symbol,
            action=decision.action,
            shares=quantity,
            price=price,
            currency=currency,
            reason=f"AI {decision.action} @ {decision.confidence}% confidence ({decision.source or 'unknown'})",
        )
