#!/usr/bin/env python3
"""
CYCLE ORCHESTRATOR - One decision cycle over the enabled instruments

Per instrument, strictly in sequence:
1. Quote (falls back to the last persisted price)
2. Record price point + refresh position price
3. News digest (falls back to a placeholder)
4. Build context -> decide -> record decision
5. Risk gates -> size -> record trade -> update position

One instrument failing never stops the others. A cycle started while
another is still in flight is rejected.

Run as: python -m folio.orchestrator [--symbol MSFT] [--memory]
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Union

from .config import Config, get_config
from .context import ContextBuilder
from .decision import DecisionPolicy
from .errors import SkipReason, TransportFailure
from .indicators import IndicatorCalculator
from .llm import LLMClient
from .market_data import NEWS_FAILED, TavilyNewsSource, YahooQuoteSource
from .models import (
    BUY, HOLD, Decision, Position, PricePoint, Quote, SymbolSetting, Trade,
    normalize_symbol,
)
from .risk import RiskEvaluator
from .rules import FallbackRuleEngine
from .sentiment import SentimentScorer
from .sizing import TradeSizer
from .store import DataStore, MemoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Skip:
    symbol: str
    reason: str
    detail: str = ""


@dataclass
class CycleResult:
    decisions: List[Decision] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    skips: List[Skip] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    rejected: bool = False  # another cycle was already running

    def summary(self) -> Dict[str, Any]:
        return {
            "decisions": len(self.decisions),
            "trades": len(self.trades),
            "skips": [f"{s.symbol}:{s.reason}" for s in self.skips],
            "errors": dict(self.errors),
        }


class CycleOrchestrator:
    """Drives the decision pipeline. Owns no algorithmic logic."""

    def __init__(self, store: DataStore, quotes, news,
                 builder: ContextBuilder, policy: DecisionPolicy,
                 sizer: TradeSizer, config: Config):
        self.store = store
        self.quotes = quotes
        self.news = news
        self.builder = builder
        self.policy = policy
        self.sizer = sizer
        self.config = config
        self.running = False
        self._lock = threading.Lock()

    def run_decision_cycle(self, enabled_symbols: Sequence[Union[str, SymbolSetting]],
                           global_auto_trade: bool) -> CycleResult:
        if not self._lock.acquire(blocking=False):
            logger.warning("Decision cycle already running, skipping")
            return CycleResult(rejected=True)

        self.running = True
        result = CycleResult()
        t0 = time.time()
        try:
            for entry in enabled_symbols:
                setting = self._as_setting(entry)
                try:
                    self._process_symbol(setting, global_auto_trade, result)
                except Exception as e:
                    logger.error(f"{setting.symbol}: cycle step failed: {e}", exc_info=True)
                    result.errors[setting.symbol] = str(e)

            elapsed = time.time() - t0
            logger.info(
                f"Cycle done: {len(result.decisions)} decisions | "
                f"{len(result.trades)} trades | {len(result.skips)} skips | "
                f"{len(result.errors)} errors | {elapsed:.1f}s"
            )
            self.store.log_action(
                "cycle",
                f"Processed {len(result.decisions)} symbols, executed {len(result.trades)} trades",
                result.summary(),
            )
        finally:
            self.running = False
            self._lock.release()
        return result

    def _as_setting(self, entry: Union[str, SymbolSetting]) -> SymbolSetting:
        if isinstance(entry, SymbolSetting):
            symbol = normalize_symbol(entry.symbol)
            return entry if symbol == entry.symbol else replace(entry, symbol=symbol)
        symbol = normalize_symbol(entry)
        return SymbolSetting(symbol=symbol, name=self.config.policy_for(symbol).name)

    # ── Per-symbol pipeline ──────────────────────────────────────────

    def _process_symbol(self, setting: SymbolSetting, global_auto_trade: bool, result: CycleResult):
        symbol = setting.symbol
        position = self.store.get_position(symbol) or Position(symbol=symbol, name=setting.name)

        quote = self._fetch_quote(symbol, position)
        if quote is None:
            self._skip(result, symbol, SkipReason.NO_PRICE, "no quote and no persisted price")
            return

        if not quote.stale:
            self.store.record_price(PricePoint.from_quote(quote))
            if self.store.refresh_position_price(symbol, quote.price, quote.currency):
                position = position.with_price(quote.price, quote.currency)

        name = setting.name or position.name or symbol
        news = self._fetch_news(symbol, name)

        ctx = self.builder.build(symbol, quote, position, news, name=name)
        decision = self.policy.decide(ctx)
        self.store.record_decision(decision)
        result.decisions.append(decision)
        logger.info(
            f"{symbol}: {decision.action} @ {decision.confidence}% "
            f"({decision.source}) price={quote.price:.2f} {quote.currency}"
        )

        if not (global_auto_trade and setting.auto_trade):
            self._skip(result, symbol, SkipReason.AUTO_TRADE_DISABLED)
            return
        if decision.action == HOLD:
            self._skip(result, symbol, SkipReason.HOLD)
            return

        risk = ctx.risk
        if risk.daily_limit_reached:
            self._skip(result, symbol, SkipReason.DAILY_LIMIT,
                       f"{risk.daily_trade_count}/{risk.daily_trade_limit} trades today")
            return
        if risk.cooldown_active:
            self._skip(result, symbol, SkipReason.COOLDOWN,
                       f"{risk.minutes_since_last_decision:.1f} min since last decision"
                       if risk.minutes_since_last_decision is not None else "")
            return
        if decision.action == BUY and risk.max_position_reached:
            self._skip(result, symbol, SkipReason.MAX_POSITION,
                       f"position ${risk.position_value_usd:,.0f}")
            return

        trade = self.sizer.build_trade(decision, quote.price, quote.currency, position.shares)
        if trade is None:
            self._skip(result, symbol, SkipReason.ZERO_SIZE)
            return

        self._execute(trade, result)

    def _fetch_quote(self, symbol: str, position: Position) -> Optional[Quote]:
        try:
            quote = self.quotes.get_quote(symbol)
        except Exception as e:
            logger.warning(f"{symbol}: quote fetch failed: {e}")
            quote = None
        if quote is not None and quote.price > 0:
            return quote

        if position.current_price > 0:
            logger.info(f"{symbol}: using last position price {position.current_price}")
            return Quote(symbol=symbol, price=position.current_price,
                         currency=position.price_currency, stale=True)

        history = self.store.get_price_history(symbol, 1)
        if history and history[0].price > 0:
            last = history[0]
            logger.info(f"{symbol}: using last recorded price {last.price}")
            return Quote(
                symbol=symbol, price=last.price, currency=last.currency,
                pe=last.pe, dividend_yield=last.dividend_yield,
                fifty_two_week_high=last.fifty_two_week_high,
                fifty_two_week_low=last.fifty_two_week_low,
                stale=True,
            )
        return None

    def _fetch_news(self, symbol: str, name: str) -> str:
        try:
            return self.news.search_news(symbol, name)
        except TransportFailure as e:
            logger.warning(f"{symbol}: news unavailable: {e}")
        except Exception as e:
            logger.warning(f"{symbol}: news search error: {e}")
        return NEWS_FAILED

    def _execute(self, trade: Trade, result: CycleResult):
        if not self.store.record_trade(trade):
            logger.error(f"{trade.symbol}: trade not recorded, position left unchanged")
            self._skip(result, trade.symbol, SkipReason.LEDGER_WRITE_FAILED,
                       f"{trade.action} {trade.shares}")
            return

        updated = self.store.update_position(trade.symbol, trade)
        result.trades.append(trade)
        if updated is None:
            logger.error(f"{trade.symbol}: trade recorded but position update failed")
            result.errors[trade.symbol] = "position update failed after trade"
        else:
            logger.info(
                f"{trade.symbol}: executed {trade.action} {trade.shares} @ {trade.price:.2f} {trade.currency}"
            )
        self.store.log_action("trade", f"{trade.action} {trade.shares} {trade.symbol} @ {trade.price}", {
            "reason": trade.reason,
            "position_updated": updated is not None,
            "shares_after": updated.shares if updated else None,
            "cost_price_after": updated.cost_price if updated else None,
        })

    def _skip(self, result: CycleResult, symbol: str, reason: str, detail: str = ""):
        result.skips.append(Skip(symbol, reason, detail))
        if reason in (SkipReason.DAILY_LIMIT, SkipReason.COOLDOWN, SkipReason.MAX_POSITION):
            logger.info(f"{symbol}: {reason} skip {detail}".rstrip())
            self.store.log_action("risk_gate", f"{symbol}: {reason} skip", {"detail": detail})
        else:
            logger.debug(f"{symbol}: no trade ({reason})")


def build_orchestrator(config: Optional[Config] = None,
                       store: Optional[DataStore] = None) -> CycleOrchestrator:
    """Default wiring: yfinance quotes, Tavily news, Claude with rule fallback."""
    cfg = config or get_config()
    if store is None:
        from .db import get_store
        store = get_store()

    rules = FallbackRuleEngine(cfg.symbol_policies)
    builder = ContextBuilder(
        store=store,
        calculator=IndicatorCalculator(),
        scorer=SentimentScorer(),
        risk_evaluator=RiskEvaluator(cfg.risk),
    )
    return CycleOrchestrator(
        store=store,
        quotes=YahooQuoteSource(timeout=cfg.scheduler.quote_timeout),
        news=TavilyNewsSource(cfg, timeout=cfg.scheduler.news_timeout),
        builder=builder,
        policy=DecisionPolicy(cfg, LLMClient(cfg), rules),
        sizer=TradeSizer(cfg.sizing, cfg.symbol_policies),
        config=cfg,
    )


def enabled_symbols_for(store: DataStore, config: Config) -> List[SymbolSetting]:
    settings = store.get_symbol_settings(enabled_only=True)
    if settings:
        return settings
    return [SymbolSetting(symbol=s, name=p.name) for s, p in config.symbol_policies.items()]


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Run one portfolio decision cycle")
    parser.add_argument("--symbol", "-s", action="append", help="Symbol to process (repeatable)")
    parser.add_argument("--memory", action="store_true", help="Use an in-memory ledger instead of Supabase")
    parser.add_argument("--no-trade", action="store_true", help="Record decisions only")
    parser.add_argument("--health", action="store_true", help="Print the last-24h activity snapshot and exit")
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    cfg = get_config()
    orchestrator = build_orchestrator(cfg, MemoryStore() if args.memory else None)
    store = orchestrator.store

    if args.health:
        print(json.dumps(store.health_snapshot(), indent=2))
        return

    symbols = args.symbol or enabled_symbols_for(store, cfg)
    auto_trade = not args.no_trade and store.get_global_auto_trade()
    result = orchestrator.run_decision_cycle(symbols, auto_trade)

    if args.json:
        print(json.dumps(result.summary(), indent=2, default=str))
        return

    print("\n" + "=" * 60)
    print("DECISION CYCLE")
    print("=" * 60)
    for d in result.decisions:
        print(f"  {d.symbol:<10} {d.action:<5} {d.confidence:>3}%  [{d.source}]  {d.reasoning[:80]}")
    for t in result.trades:
        print(f"  TRADE {t.symbol:<10} {t.action} {t.shares} @ {t.price:.2f} {t.currency}")
    for s in result.skips:
        print(f"  skip  {s.symbol:<10} {s.reason} {s.detail}")
    for symbol, err in result.errors.items():
        print(f"  ERROR {symbol:<10} {err}")


if __name__ == "__main__":
    main()
