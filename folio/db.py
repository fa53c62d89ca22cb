#!/usr/bin/env python3
"""
DATABASE CLIENT - Supabase-backed DataStore

Tables:
- st-holdings         one row per symbol (shares, cost basis, last price)
- st-price-history    recorded quotes
- st-decisions        append-only decisions
- st-trades           append-only simulated trades
- st-symbol-settings  per-symbol enabled / auto_trade switches
- st-app-settings     key/value (global_auto_trade)
- st-logs             action log

All queries go through the supabase query builder. Every row is decoded
into the models in models.py before it leaves this module. Failures are
logged and return an empty/False default.
"""

import json
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .config import get_config
from .models import (
    Decision, Position, PricePoint, PriorDecision, SymbolSetting, Trade,
    normalize_symbol, utc_now,
)
from .sizing import apply_trade
from .store import DataStore, MemoryStore, start_of_day

logger = logging.getLogger(__name__)

HOLDINGS = "st-holdings"
PRICE_HISTORY = "st-price-history"
DECISIONS = "st-decisions"
TRADES = "st-trades"
SYMBOL_SETTINGS = "st-symbol-settings"
APP_SETTINGS = "st-app-settings"
LOGS = "st-logs"

GLOBAL_AUTO_TRADE_KEY = "global_auto_trade"

_client = None


def _get_client():
    global _client
    if _client is not None:
        return _client

    cfg = get_config()
    if not cfg.has_supabase:
        logger.warning("Supabase not configured - DB operations will be no-ops")
        return None

    try:
        from supabase import create_client
        _client = create_client(cfg.supabase.url, cfg.supabase.service_role_key)
        return _client
    except Exception as e:
        logger.error(f"Failed to connect to Supabase: {e}")
        return None


# ── Typed decoding ───────────────────────────────────────────────────

def _to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    # NUMERIC columns come back as strings from PostgREST
    if value is None or isinstance(value, bool):
        return default
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def _to_int(value: Any, default: int = 0) -> int:
    out = _to_float(value)
    return int(round(out)) if out is not None else default


def _to_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "t", "1", "yes", "on"):
            return True
        if lowered in ("false", "f", "0", "no", "off"):
            return False
    return default


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _to_str(value: Any, default: str = "") -> str:
    return str(value) if value is not None else default


def row_to_position(row: Dict[str, Any]) -> Position:
    return Position(
        symbol=_to_str(row.get("symbol")),
        name=_to_str(row.get("name")),
        shares=_to_float(row.get("shares"), 0.0),
        cost_price=_to_float(row.get("cost_price")),
        cost_currency=_to_str(row.get("cost_currency"), "USD") or "USD",
        current_price=_to_float(row.get("current_price"), 0.0),
        price_currency=_to_str(row.get("price_currency"), "USD") or "USD",
    )


def row_to_price_point(row: Dict[str, Any]) -> PricePoint:
    return PricePoint(
        symbol=_to_str(row.get("symbol")),
        price=_to_float(row.get("price"), 0.0),
        currency=_to_str(row.get("currency"), "USD") or "USD",
        recorded_at=_to_datetime(row.get("recorded_at")) or utc_now(),
        change=_to_float(row.get("change")),
        change_percent=_to_float(row.get("change_percent")),
        previous_close=_to_float(row.get("previous_close")),
        pe=_to_float(row.get("pe_ratio")),
        market_cap=_to_float(row.get("market_cap")),
        dividend_yield=_to_float(row.get("dividend_yield")),
        fifty_two_week_high=_to_float(row.get("fifty_two_week_high")),
        fifty_two_week_low=_to_float(row.get("fifty_two_week_low")),
        average_volume=_to_float(row.get("average_volume")),
    )


def row_to_prior_decision(row: Dict[str, Any]) -> Optional[PriorDecision]:
    created_at = _to_datetime(row.get("created_at"))
    if created_at is None:
        return None
    return PriorDecision(
        action=_to_str(row.get("action")).upper(),
        confidence=_to_int(row.get("confidence")),
        created_at=created_at,
    )


def row_to_symbol_setting(row: Dict[str, Any]) -> SymbolSetting:
    symbol = normalize_symbol(_to_str(row.get("symbol")))
    return SymbolSetting(
        symbol=symbol,
        name=_to_str(row.get("name")) or symbol,
        enabled=_to_bool(row.get("enabled"), True),
        auto_trade=_to_bool(row.get("auto_trade"), True),
        updated_at=_to_datetime(row.get("updated_at")),
    )


def _price_point_row(point: PricePoint) -> Dict[str, Any]:
    return {
        "symbol": point.symbol,
        "price": point.price,
        "currency": point.currency,
        "change": point.change,
        "change_percent": point.change_percent,
        "previous_close": point.previous_close,
        "pe_ratio": point.pe,
        "market_cap": point.market_cap,
        "dividend_yield": point.dividend_yield,
        "fifty_two_week_high": point.fifty_two_week_high,
        "fifty_two_week_low": point.fifty_two_week_low,
        "average_volume": point.average_volume,
        "recorded_at": point.recorded_at.isoformat(),
    }


class SupabaseStore(DataStore):
    """DataStore over the hosted Postgres tables."""

    def __init__(self, client=None):
        self._client = client if client is not None else _get_client()

    @property
    def connected(self) -> bool:
        return self._client is not None

    # ── Positions ────────────────────────────────────────────────────

    def get_position(self, symbol: str) -> Optional[Position]:
        if not self.connected:
            return None
        try:
            resp = (self._client.table(HOLDINGS)
                    .select("*")
                    .eq("symbol", symbol)
                    .limit(1)
                    .execute())
            return row_to_position(resp.data[0]) if resp.data else None
        except Exception as e:
            logger.error(f"get_position: {e}")
            return None

    def get_positions(self) -> List[Position]:
        if not self.connected:
            return []
        try:
            resp = self._client.table(HOLDINGS).select("*").order("symbol").execute()
            return [row_to_position(r) for r in resp.data or []]
        except Exception as e:
            logger.error(f"get_positions: {e}")
            return []

    def upsert_position(self, position: Position) -> bool:
        if not self.connected:
            return False
        try:
            row = {
                "symbol": position.symbol,
                "name": position.name or position.symbol,
                "shares": position.shares,
                "cost_price": position.cost_price,
                "cost_currency": position.cost_currency,
                "current_price": position.current_price,
                "price_currency": position.price_currency,
                "updated_at": utc_now().isoformat(),
            }
            self._client.table(HOLDINGS).upsert(row, on_conflict="symbol").execute()
            return True
        except Exception as e:
            logger.error(f"upsert_position: {e}")
            return False

    def refresh_position_price(self, symbol: str, price: float, currency: str) -> bool:
        if not self.connected:
            return False
        try:
            resp = self._client.table(HOLDINGS).update({
                "current_price": price,
                "price_currency": currency,
                "updated_at": utc_now().isoformat(),
            }).eq("symbol", symbol).execute()
            return bool(resp.data)
        except Exception as e:
            logger.error(f"refresh_position_price: {e}")
            return False

    def update_position(self, symbol: str, trade: Trade) -> Optional[Position]:
        if not self.connected:
            return None
        try:
            resp = (self._client.table(HOLDINGS)
                    .select("*")
                    .eq("symbol", symbol)
                    .limit(1)
                    .execute())
        except Exception as e:
            # a failed read is not an empty holding; writing now would wipe it
            logger.error(f"update_position: read failed, trade not applied: {e}")
            return None
        if resp.data:
            position = row_to_position(resp.data[0])
        else:
            position = Position(symbol=symbol, cost_currency=trade.currency)
        updated = apply_trade(position, trade)
        return updated if self.upsert_position(updated) else None

    # ── Price history ────────────────────────────────────────────────

    def record_price(self, point: PricePoint) -> bool:
        if not self.connected:
            return False
        try:
            self._client.table(PRICE_HISTORY).insert(_price_point_row(point)).execute()
            return True
        except Exception as e:
            logger.error(f"record_price: {e}")
            return False

    def get_price_history(self, symbol: str, limit: int = 200) -> List[PricePoint]:
        if not self.connected:
            return []
        try:
            resp = (self._client.table(PRICE_HISTORY)
                    .select("*")
                    .eq("symbol", symbol)
                    .order("recorded_at", desc=True)
                    .limit(limit)
                    .execute())
            return [row_to_price_point(r) for r in resp.data or []]
        except Exception as e:
            logger.error(f"get_price_history: {e}")
            return []

    # ── Decisions & trades ───────────────────────────────────────────

    def record_decision(self, decision: Decision) -> bool:
        if not self.connected:
            return False
        try:
            row = {
                "symbol": decision.symbol,
                "action": decision.action,
                "confidence": decision.confidence,
                "reasoning": decision.reasoning,
                "news_summary": decision.news_summary,
                "market_data": json.loads(json.dumps(decision.market_data, default=str)),
                "created_at": decision.created_at.isoformat(),
            }
            self._client.table(DECISIONS).insert(row).execute()
            return True
        except Exception as e:
            logger.error(f"record_decision: {e}")
            return False

    def get_recent_decisions(self, symbol: str, limit: int = 5) -> List[PriorDecision]:
        if not self.connected:
            return []
        try:
            resp = (self._client.table(DECISIONS)
                    .select("action,confidence,created_at")
                    .eq("symbol", symbol)
                    .order("created_at", desc=True)
                    .limit(limit)
                    .execute())
            decoded = (row_to_prior_decision(r) for r in resp.data or [])
            return [d for d in decoded if d is not None]
        except Exception as e:
            logger.error(f"get_recent_decisions: {e}")
            return []

    def record_trade(self, trade: Trade) -> bool:
        if not self.connected:
            return False
        try:
            row = {
                "symbol": trade.symbol,
                "action": trade.action,
                "shares": trade.shares,
                "price": trade.price,
                "currency": trade.currency,
                "reason": trade.reason,
                "source": trade.source,
                "created_at": trade.created_at.isoformat(),
            }
            self._client.table(TRADES).insert(row).execute()
            return True
        except Exception as e:
            logger.error(f"record_trade: {e}")
            return False

    def count_trades_today(self, symbol: str, now: Optional[datetime] = None) -> int:
        if not self.connected:
            return 0
        try:
            since = start_of_day(now or utc_now())
            resp = (self._client.table(TRADES)
                    .select("id", count="exact")
                    .eq("symbol", symbol)
                    .gte("created_at", since.isoformat())
                    .execute())
            if resp.count is not None:
                return int(resp.count)
            return len(resp.data or [])
        except Exception as e:
            logger.error(f"count_trades_today: {e}")
            return 0

    # ── Settings ─────────────────────────────────────────────────────

    def get_symbol_settings(self, enabled_only: bool = False) -> List[SymbolSetting]:
        if not self.connected:
            return []
        try:
            query = self._client.table(SYMBOL_SETTINGS).select("*")
            if enabled_only:
                query = query.eq("enabled", True)
            resp = query.order("symbol").execute()
            return [row_to_symbol_setting(r) for r in resp.data or []]
        except Exception as e:
            logger.error(f"get_symbol_settings: {e}")
            return []

    def upsert_symbol_setting(self, setting: SymbolSetting) -> bool:
        if not self.connected:
            return False
        symbol = normalize_symbol(setting.symbol)
        if not symbol:
            return False
        try:
            row = {
                "symbol": symbol,
                "name": (setting.name or symbol).strip(),
                "enabled": setting.enabled,
                "auto_trade": setting.auto_trade,
                "updated_at": utc_now().isoformat(),
            }
            self._client.table(SYMBOL_SETTINGS).upsert(row, on_conflict="symbol").execute()
            return True
        except Exception as e:
            logger.error(f"upsert_symbol_setting: {e}")
            return False

    def get_global_auto_trade(self) -> bool:
        if not self.connected:
            return True
        try:
            resp = (self._client.table(APP_SETTINGS)
                    .select("value")
                    .eq("key", GLOBAL_AUTO_TRADE_KEY)
                    .limit(1)
                    .execute())
            if not resp.data:
                return True
            return _to_bool(resp.data[0].get("value"), True)
        except Exception as e:
            logger.error(f"get_global_auto_trade: {e}")
            return True

    def set_global_auto_trade(self, enabled: bool) -> bool:
        if not self.connected:
            return False
        try:
            self._client.table(APP_SETTINGS).upsert({
                "key": GLOBAL_AUTO_TRADE_KEY,
                "value": "true" if enabled else "false",
                "updated_at": utc_now().isoformat(),
            }, on_conflict="key").execute()
            return True
        except Exception as e:
            logger.error(f"set_global_auto_trade: {e}")
            return False

    # ── Action log ───────────────────────────────────────────────────

    def log_action(self, category: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"[{category}] {message}")
        if not self.connected:
            return
        try:
            self._client.table(LOGS).insert({
                "category": category,
                "message": message,
                "details": json.loads(json.dumps(details or {}, default=str)),
            }).execute()
        except Exception as e:
            logger.error(f"log_action: {e}")

    def health_snapshot(self, hours: int = 24) -> Dict[str, Any]:
        if not self.connected:
            return {"alive": True, "trading": False, "trades": 0, "decisions": 0}
        since = (utc_now() - timedelta(hours=hours)).isoformat()
        counts = {}
        for table, key in ((TRADES, "trades"), (DECISIONS, "decisions")):
            try:
                resp = (self._client.table(table)
                        .select("id", count="exact")
                        .gt("created_at", since)
                        .execute())
                counts[key] = int(resp.count or 0)
            except Exception as e:
                logger.error(f"health_snapshot ({table}): {e}")
                counts[key] = 0
        return {
            "alive": True,
            "trading": counts["trades"] > 0 or counts["decisions"] > 0,
            **counts,
        }


# Singleton
_store: Optional[DataStore] = None


def get_store() -> DataStore:
    """Supabase when configured, otherwise the in-memory ledger."""
    global _store
    if _store is None:
        store = SupabaseStore()
        _store = store if store.connected else MemoryStore()
    return _store
