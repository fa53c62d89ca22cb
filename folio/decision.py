#!/usr/bin/env python3
"""
DECISION POLICY - Model-backed decision with a deterministic fallback

Per invocation:
1. Stop-loss armed  -> rule engine's forced SELL, model not consulted
2. Model path       -> request, call, strict parse
3. Any failure      -> rule engine on the same context, error recorded

Failures on the model path (missing key, transport error, timeout,
non-2xx, empty body, malformed JSON, invalid action) are all treated the
same. The model call is never retried.
"""

import logging
from typing import Optional

from .config import Config
from .context import DecisionContext
from .errors import TransportFailure, ValidationFailure
from .llm import Err, LLMClient, build_request, parse_model_response
from .models import MAX_NEWS_CHARS, SOURCE_LLM, Decision
from .rules import FallbackRuleEngine

logger = logging.getLogger(__name__)


class DecisionPolicy:

    def __init__(self, config: Config, llm: Optional[LLMClient], rules: FallbackRuleEngine):
        self.config = config
        self.llm = llm
        self.rules = rules

    def decide(self, ctx: DecisionContext) -> Decision:
        if ctx.risk.stop_loss_triggered:
            return self.rules.decide(ctx)

        error = self._model_unavailable_reason()
        if error is None:
            decision, error = self._ask_model(ctx)
            if decision is not None:
                return decision

        logger.info(f"{ctx.symbol}: using fallback rules ({error})")
        return self.rules.decide(ctx, llm_error=error)

    def _model_unavailable_reason(self) -> Optional[str]:
        if self.llm is None or not self.llm.configured:
            return "model not configured"
        return None

    def _ask_model(self, ctx: DecisionContext):
        request = build_request(ctx.to_payload(), self.config)
        try:
            raw = self.llm.call(request)
        except (TransportFailure, ValidationFailure) as exc:
            logger.warning(f"{ctx.symbol}: model call failed: {exc}")
            return None, str(exc)
        except Exception as exc:
            logger.warning(f"{ctx.symbol}: unexpected error in model call: {exc}")
            return None, f"unexpected error: {exc}"

        result = parse_model_response(raw)
        if isinstance(result, Err):
            logger.warning(f"{ctx.symbol}: rejected model response: {result.reason}")
            return None, result.reason

        verdict = result.value
        logger.info(f"{ctx.symbol}: model says {verdict.action} @ {verdict.confidence}%")
        return Decision(
            symbol=ctx.symbol,
            action=verdict.action,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            news_summary=ctx.news[:MAX_NEWS_CHARS],
            market_data={
                "source": SOURCE_LLM,
                "model": self.config.llm.model,
                "current_price": ctx.price,
                "currency": ctx.currency,
                "cost_price": ctx.cost_price,
                "pnl_pct": round(ctx.pnl_pct, 2) if ctx.pnl_pct is not None else None,
                "sentiment_score": round(ctx.sentiment.score, 3),
                "technical_score": ctx.indicators.technical_score,
                "technical_signal": ctx.indicators.technical_signal,
                "stale_quote": ctx.quote.stale,
                "analysis_timestamp": ctx.built_at.isoformat(),
            },
            created_at=ctx.built_at,
        )
