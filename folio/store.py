#!/usr/bin/env python3
"""
DATA STORE - Query interface the decision pipeline reads and writes through

Two implementations:
- MemoryStore: in-process simulated ledger (CLI dry runs, tests)
- SupabaseStore (db.py): hosted Postgres tables via the Supabase client

The core never sees raw rows: every method returns the typed models from
models.py.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .models import (
    Decision, Position, PricePoint, PriorDecision, SymbolSetting, Trade,
    normalize_symbol, utc_now,
)
from .sizing import apply_trade

logger = logging.getLogger(__name__)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class DataStore(ABC):
    """Persistence collaborator contract."""

    # ── Positions ────────────────────────────────────────────────────

    @abstractmethod
    def get_position(self, symbol: str) -> Optional[Position]:
        ...

    @abstractmethod
    def get_positions(self) -> List[Position]:
        ...

    @abstractmethod
    def upsert_position(self, position: Position) -> bool:
        ...

    @abstractmethod
    def refresh_position_price(self, symbol: str, price: float, currency: str) -> bool:
        ...

    @abstractmethod
    def update_position(self, symbol: str, trade: Trade) -> Optional[Position]:
        """Apply an executed trade to the stored position."""

    # ── Price history ────────────────────────────────────────────────

    @abstractmethod
    def record_price(self, point: PricePoint) -> bool:
        ...

    @abstractmethod
    def get_price_history(self, symbol: str, limit: int = 200) -> List[PricePoint]:
        """Most-recent-first."""

    # ── Decisions & trades ───────────────────────────────────────────

    @abstractmethod
    def record_decision(self, decision: Decision) -> bool:
        ...

    @abstractmethod
    def get_recent_decisions(self, symbol: str, limit: int = 5) -> List[PriorDecision]:
        """Most-recent-first."""

    @abstractmethod
    def record_trade(self, trade: Trade) -> bool:
        ...

    @abstractmethod
    def count_trades_today(self, symbol: str, now: Optional[datetime] = None) -> int:
        ...

    # ── Settings ─────────────────────────────────────────────────────

    @abstractmethod
    def get_symbol_settings(self, enabled_only: bool = False) -> List[SymbolSetting]:
        ...

    @abstractmethod
    def upsert_symbol_setting(self, setting: SymbolSetting) -> bool:
        ...

    @abstractmethod
    def get_global_auto_trade(self) -> bool:
        ...

    @abstractmethod
    def set_global_auto_trade(self, enabled: bool) -> bool:
        ...

    # ── Action log ───────────────────────────────────────────────────

    @abstractmethod
    def log_action(self, category: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        ...

    @abstractmethod
    def health_snapshot(self, hours: int = 24) -> Dict[str, Any]:
        ...


class MemoryStore(DataStore):
    """In-memory simulated ledger."""

    def __init__(self, positions: Optional[List[Position]] = None, global_auto_trade: bool = True):
        self.positions: Dict[str, Position] = {}
        self.prices: Dict[str, List[PricePoint]] = {}
        self.decisions: List[Decision] = []
        self.trades: List[Trade] = []
        self.settings: Dict[str, SymbolSetting] = {}
        self.logs: List[Dict[str, Any]] = []
        self.global_auto_trade = global_auto_trade
        for position in positions or []:
            self.upsert_position(position)

    # ── Positions ────────────────────────────────────────────────────

    def get_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    def get_positions(self) -> List[Position]:
        return [self.positions[s] for s in sorted(self.positions)]

    def upsert_position(self, position: Position) -> bool:
        self.positions[position.symbol] = position
        if position.symbol not in self.settings:
            self.settings[position.symbol] = SymbolSetting(
                symbol=position.symbol, name=position.name or position.symbol,
            )
        return True

    def refresh_position_price(self, symbol: str, price: float, currency: str) -> bool:
        position = self.positions.get(symbol)
        if position is None:
            return False
        self.positions[symbol] = position.with_price(price, currency)
        return True

    def update_position(self, symbol: str, trade: Trade) -> Optional[Position]:
        position = self.positions.get(symbol) or Position(symbol=symbol, cost_currency=trade.currency)
        updated = apply_trade(position, trade)
        self.positions[symbol] = updated
        return updated

    # ── Price history ────────────────────────────────────────────────

    def record_price(self, point: PricePoint) -> bool:
        self.prices.setdefault(point.symbol, []).append(point)
        return True

    def get_price_history(self, symbol: str, limit: int = 200) -> List[PricePoint]:
        points = sorted(self.prices.get(symbol, []), key=lambda p: p.recorded_at, reverse=True)
        return points[:limit]

    # ── Decisions & trades ───────────────────────────────────────────

    def record_decision(self, decision: Decision) -> bool:
        self.decisions.append(decision)
        return True

    def get_recent_decisions(self, symbol: str, limit: int = 5) -> List[PriorDecision]:
        rows = sorted(
            (d for d in self.decisions if d.symbol == symbol),
            key=lambda d: d.created_at, reverse=True,
        )
        return [PriorDecision(d.action, d.confidence, d.created_at) for d in rows[:limit]]

    def record_trade(self, trade: Trade) -> bool:
        self.trades.append(trade)
        return True

    def count_trades_today(self, symbol: str, now: Optional[datetime] = None) -> int:
        since = start_of_day(now or utc_now())
        return sum(1 for t in self.trades if t.symbol == symbol and t.created_at >= since)

    # ── Settings ─────────────────────────────────────────────────────

    def get_symbol_settings(self, enabled_only: bool = False) -> List[SymbolSetting]:
        rows = [self.settings[s] for s in sorted(self.settings)]
        return [r for r in rows if r.enabled] if enabled_only else rows

    def upsert_symbol_setting(self, setting: SymbolSetting) -> bool:
        symbol = normalize_symbol(setting.symbol)
        self.settings[symbol] = SymbolSetting(
            symbol=symbol,
            name=(setting.name or symbol).strip(),
            enabled=setting.enabled,
            auto_trade=setting.auto_trade,
            updated_at=utc_now(),
        )
        return True

    def get_global_auto_trade(self) -> bool:
        return self.global_auto_trade

    def set_global_auto_trade(self, enabled: bool) -> bool:
        self.global_auto_trade = enabled
        return True

    # ── Action log ───────────────────────────────────────────────────

    def log_action(self, category: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"[{category}] {message}")
        self.logs.append({
            "category": category,
            "message": message,
            "details": details or {},
            "created_at": utc_now(),
        })

    def health_snapshot(self, hours: int = 24) -> Dict[str, Any]:
        since = utc_now() - timedelta(hours=hours)
        trades = sum(1 for t in self.trades if t.created_at > since)
        decisions = sum(1 for d in self.decisions if d.created_at > since)
        return {
            "alive": True,
            "trading": trades > 0 or decisions > 0,
            "trades": trades,
            "decisions": decisions,
        }
