#!/usr/bin/env python3
"""
AUTONOMOUS SCHEDULER - Runs the decision cycle on an interval.

- First cycle a few seconds after start
- Then every SCHEDULER_INTERVAL_MIN minutes (default 5, min 1)
- A tick only runs if at least one monitored symbol's exchange is open
- A tick is skipped while the previous cycle is still running

Run as: python -m folio.scheduler
"""

import logging
import signal
import threading
from datetime import datetime, time as dtime
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .config import Config, get_config
from .models import SymbolSetting
from .orchestrator import CycleOrchestrator, CycleResult, build_orchestrator, enabled_symbols_for

logger = logging.getLogger(__name__)

Session = Tuple[dtime, dtime]

# (timezone, trading sessions in exchange-local time)
US_MARKET = ("America/New_York", [(dtime(9, 30), dtime(16, 0))])
HK_MARKET = ("Asia/Hong_Kong", [(dtime(9, 30), dtime(12, 0)), (dtime(13, 0), dtime(16, 0))])
CN_MARKET = ("Asia/Shanghai", [(dtime(9, 30), dtime(11, 30)), (dtime(13, 0), dtime(15, 0))])
JP_MARKET = ("Asia/Tokyo", [(dtime(9, 0), dtime(11, 30)), (dtime(12, 30), dtime(15, 0))])

SUFFIX_MARKETS = {
    ".HK": HK_MARKET,
    ".SS": CN_MARKET,
    ".SZ": CN_MARKET,
    ".SH": CN_MARKET,
    ".T": JP_MARKET,
}


def market_for_symbol(symbol: str) -> Tuple[str, List[Session]]:
    upper = symbol.upper()
    for suffix, market in SUFFIX_MARKETS.items():
        if upper.endswith(suffix):
            return market
    return US_MARKET


def is_market_open_for_symbol(symbol: str, now: Optional[datetime] = None) -> bool:
    """Weekday and inside one of the exchange's sessions (start inclusive, end exclusive)."""
    tz_name, sessions = market_for_symbol(symbol)
    tz = ZoneInfo(tz_name)
    local = now.astimezone(tz) if now is not None else datetime.now(tz)
    if local.weekday() >= 5:
        return False
    t = local.time()
    return any(start <= t < end for start, end in sessions)


def is_any_market_open(symbols: Iterable[str], now: Optional[datetime] = None) -> bool:
    return any(is_market_open_for_symbol(s, now) for s in symbols)


class TradingScheduler:
    """Interval loop around one CycleOrchestrator. stop() cancels the wait."""

    def __init__(self, orchestrator: Optional[CycleOrchestrator] = None,
                 config: Optional[Config] = None):
        self.cfg = config or get_config()
        self.orchestrator = orchestrator or build_orchestrator(self.cfg)
        self.running = False
        self._stop = threading.Event()
        self._tick_count = 0

    @property
    def interval_seconds(self) -> int:
        return max(1, self.cfg.scheduler.interval_minutes) * 60

    def install_signal_handlers(self):
        signal.signal(signal.SIGINT, self._shutdown)
        signal.signal(signal.SIGTERM, self._shutdown)

    def _shutdown(self, signum, frame):
        logger.info("Scheduler shutting down...")
        self.stop()

    def stop(self):
        self.running = False
        self._stop.set()

    def _symbols(self) -> List[SymbolSetting]:
        return enabled_symbols_for(self.orchestrator.store, self.cfg)

    def run_once(self, now: Optional[datetime] = None) -> Optional[CycleResult]:
        """One tick. Returns None when skipped."""
        self._tick_count += 1
        if self.orchestrator.running:
            logger.info("Previous cycle still running, skipping tick")
            return None

        settings = self._symbols()
        if not settings:
            logger.info("No enabled symbols")
            return None

        if not is_any_market_open([s.symbol for s in settings], now):
            logger.debug("All markets closed, skipping tick")
            return None

        store = self.orchestrator.store
        global_auto_trade = store.get_global_auto_trade()
        logger.info(
            f"=== CYCLE {self._tick_count} START === {len(settings)} symbols | "
            f"auto_trade={'on' if global_auto_trade else 'off'}"
        )
        try:
            return self.orchestrator.run_decision_cycle(settings, global_auto_trade)
        except Exception as e:
            logger.error(f"Cycle failed: {e}", exc_info=True)
            store.log_action("scheduler", f"Cycle failed: {e}")
            return None

    def run(self):
        """Main loop - runs until stop() or a signal."""
        self.running = True
        self._stop.clear()
        logger.info("=" * 60)
        logger.info("Folio scheduler started")
        logger.info("=" * 60)
        logger.info(f"  Interval: {self.interval_seconds // 60} min")
        logger.info(f"  First cycle in {self.cfg.scheduler.startup_delay_seconds}s")

        wait = self.cfg.scheduler.startup_delay_seconds
        while self.running and not self._stop.wait(wait):
            self.run_once()
            wait = self.interval_seconds

        self.running = False
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    scheduler = TradingScheduler()
    scheduler.install_signal_handlers()
    scheduler.run()
