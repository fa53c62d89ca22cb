#!/usr/bin/env python3
"""
MARKET DATA - Quote and news collaborators

Sources:
- Quotes: Yahoo Finance via yfinance (ticker info, then last daily close)
- News: Tavily search API (optional, needs TAVILY_API_KEY)

Both are best-effort: a failed quote returns None, a failed news search
returns a placeholder digest. Neither ever raises into the cycle.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Any, Dict, Optional

import httpx
import yfinance as yf

from .config import Config
from .models import Quote

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"

NO_NEWS_KEY = "No news API key configured. Using technical signals only."
NEWS_FAILED = "News search failed. Using technical signals only."
NO_NEWS_FOUND = "No relevant news found."


def _num(value: Any) -> Optional[float]:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _dividend_yield_pct(info: Dict[str, Any]) -> Optional[float]:
    """Dividend yield in percent. dividendYield is already a percent (0.74 = 0.74%);
    trailingAnnualDividendYield is a fraction."""
    value = _num(info.get("dividendYield"))
    if value is not None:
        return value
    trailing = _num(info.get("trailingAnnualDividendYield"))
    return trailing * 100 if trailing is not None else None


class YahooQuoteSource:
    """Yahoo Finance quotes with fundamentals where available"""

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        # ticker.info takes no timeout, so the whole fetch runs on a worker
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="quote")

    def get_quote(self, symbol: str) -> Optional[Quote]:
        future = self._executor.submit(self._fetch, symbol)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeout:
            future.cancel()
            logger.warning(f"Quote for {symbol} timed out after {self.timeout}s")
            return None

    def _fetch(self, symbol: str) -> Optional[Quote]:
        try:
            ticker = yf.Ticker(symbol)
            info: Dict[str, Any] = {}
            try:
                info = ticker.info or {}
            except Exception as e:
                logger.debug(f"{symbol}: ticker.info unavailable: {e}")

            price = _num(info.get("regularMarketPrice")) or _num(info.get("currentPrice"))
            if not price:
                hist = ticker.history(period="5d", interval="1d", timeout=self.timeout)
                if hist.empty:
                    logger.warning(f"{symbol}: no quote data")
                    return None
                price = _num(hist["Close"].iloc[-1])
            if not price or price <= 0:
                return None

            return Quote(
                symbol=symbol,
                price=price,
                currency=(info.get("currency") or "USD").upper(),
                change=_num(info.get("regularMarketChange")),
                change_percent=_num(info.get("regularMarketChangePercent")),
                previous_close=_num(info.get("regularMarketPreviousClose")),
                pe=_num(info.get("trailingPE")),
                market_cap=_num(info.get("marketCap")),
                dividend_yield=_dividend_yield_pct(info),
                fifty_two_week_high=_num(info.get("fiftyTwoWeekHigh")),
                fifty_two_week_low=_num(info.get("fiftyTwoWeekLow")),
                average_volume=_num(info.get("averageVolume")),
            )
        except Exception as e:
            logger.warning(f"Failed to fetch quote for {symbol}: {e}")
            return None


class TavilyNewsSource:
    """Latest-news digest for a symbol via Tavily search"""

    def __init__(self, config: Config, timeout: int = 20, max_results: int = 8):
        self.config = config
        self.timeout = timeout
        self.max_results = max_results

    def search_news(self, symbol: str, name: str = "") -> str:
        if not self.config.has_tavily:
            return NO_NEWS_KEY

        company = name or self.config.policy_for(symbol).name or symbol
        try:
            resp = httpx.post(
                TAVILY_URL,
                json={
                    "api_key": self.config.api_keys.tavily,
                    "query": f"{company} {symbol} stock market news latest financial analysis",
                    "search_depth": "advanced",
                    "max_results": self.max_results,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"{symbol}: news search failed: {e}")
            return NEWS_FAILED

        if resp.status_code != 200:
            logger.warning(f"{symbol}: news search returned {resp.status_code}")
            return NEWS_FAILED

        try:
            results = resp.json().get("results") or []
        except ValueError as e:
            logger.warning(f"{symbol}: unreadable news response: {e}")
            return NEWS_FAILED

        lines = [
            f"- {r.get('title', '').strip()}: {(r.get('content') or '')[:300]}"
            for r in results if isinstance(r, dict)
        ]
        return "\n".join(lines) or NO_NEWS_FOUND
