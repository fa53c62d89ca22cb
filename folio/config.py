#!/usr/bin/env python3
"""
CONFIG - Environment-driven settings for the decision pipeline

Reads .env from the project root (process environment wins). Risk
limits and the scheduler interval can be overridden per deployment;
per-symbol policies live in DEFAULT_SYMBOL_POLICIES.
"""

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Optional
from dotenv import load_dotenv

# Load .env from project root
BASE_DIR = Path(__file__).parent.parent
load_dotenv(BASE_DIR / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


@dataclass(frozen=True)
class SupabaseConfig:
    url: str
    service_role_key: str
    query_timeout: int = 15


@dataclass(frozen=True)
class APIKeys:
    anthropic: str
    tavily: str


@dataclass(frozen=True)
class LLMConfig:
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 800
    timeout: int = 60


@dataclass(frozen=True)
class RiskConfig:
    stop_loss_pct: float = -15.0        # PnL % below which we force a SELL
    max_position_usd: float = 50_000    # Position ceiling in USD
    cooldown_minutes: float = 3         # Keep below scheduler.interval_minutes
    daily_trade_limit: int = 6


@dataclass(frozen=True)
class SizingConfig:
    min_lot: int = 10
    size_cap: int = 50
    max_sell_fraction: float = 0.25


@dataclass(frozen=True)
class SchedulerConfig:
    interval_minutes: int = 5
    startup_delay_seconds: int = 5
    quote_timeout: int = 10
    news_timeout: int = 20


@dataclass(frozen=True)
class SymbolPolicy:
    """Per-symbol overrides for the rule engine and sizer."""
    name: str = ""
    buy_threshold: float = 15.0
    sell_threshold: float = -15.0
    # BUY only allowed in the last N days of a calendar quarter (0 = always)
    quarter_end_window_days: int = 0
    # Fixed USD notional per BUY instead of confidence-scaled lots
    target_notional_usd: float = 0.0


DEFAULT_SYMBOL_POLICIES: Dict[str, SymbolPolicy] = {
    "MSFT": SymbolPolicy(
        name="Microsoft",
        quarter_end_window_days=7,
        target_notional_usd=5_000,
    ),
    "01810.HK": SymbolPolicy(
        name="Xiaomi",
        buy_threshold=12.0,
        sell_threshold=-20.0,
    ),
}

# Static FX multipliers to USD. Approximations, not live rates.
FX_TO_USD: Dict[str, float] = {
    "USD": 1.0,
    "HKD": 0.128,
    "CNY": 0.138,
    "JPY": 0.0067,
    "EUR": 1.08,
    "GBP": 1.27,
}


class Config:
    """Centralized configuration with typed access."""

    def __init__(self):
        self.supabase = SupabaseConfig(
            url=os.getenv("SUPABASE_URL", ""),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
        )
        self.api_keys = APIKeys(
            anthropic=os.getenv("ANTHROPIC_API_KEY", ""),
            tavily=os.getenv("TAVILY_API_KEY", ""),
        )
        self.llm = LLMConfig(
            model=os.getenv("ANTHROPIC_MODEL", LLMConfig.model),
        )
        self.risk = RiskConfig(
            stop_loss_pct=_env_float("STOP_LOSS_PCT", RiskConfig.stop_loss_pct),
            max_position_usd=_env_float("MAX_POSITION_USD", RiskConfig.max_position_usd),
            cooldown_minutes=_env_float("COOLDOWN_MINUTES", RiskConfig.cooldown_minutes),
            daily_trade_limit=_env_int("DAILY_TRADE_LIMIT", RiskConfig.daily_trade_limit),
        )
        self.sizing = SizingConfig()
        self.scheduler = SchedulerConfig(
            interval_minutes=max(1, _env_int("SCHEDULER_INTERVAL_MIN", SchedulerConfig.interval_minutes)),
        )
        self.symbol_policies: Dict[str, SymbolPolicy] = dict(DEFAULT_SYMBOL_POLICIES)
        self.base_dir = BASE_DIR

    def policy_for(self, symbol: str) -> SymbolPolicy:
        return self.symbol_policies.get(symbol, SymbolPolicy())

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase.url and self.supabase.service_role_key)

    @property
    def has_anthropic(self) -> bool:
        return bool(self.api_keys.anthropic)

    @property
    def has_tavily(self) -> bool:
        return bool(self.api_keys.tavily)


# Singleton
_config: Optional[Config] = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config
