#!/usr/bin/env python3
"""
MODEL CLIENT - Claude request/response contract for trade decisions

The model must answer with a single JSON object:
    {"action": "BUY|SELL|HOLD", "confidence": 0-100, "reasoning": "..."}
optionally wrapped in a ```json fenced block.

Parsing never raises: parse_model_response returns Ok(verdict) or
Err(reason), and every failure is handled the same way by the caller
(fall through to the rule engine).
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx

from .config import Config
from .errors import TransportFailure, ValidationFailure
from .models import ACTIONS, MAX_REASONING_CHARS

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"

ALLOWED_KEYS = {"action", "confidence", "reasoning"}

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are a disciplined portfolio manager running a simulated personal portfolio. "
    "For the instrument described by the user, decide whether to BUY, SELL or HOLD "
    "right now. Weigh the technical indicators, the news digest, the position's cost "
    "basis and the explicit risk flags. Avoid flip-flopping against your prior "
    "decisions unless the data has clearly changed.\n\n"
    "You MUST respond with ONLY a JSON object with exactly these fields:\n"
    '- "action": one of "BUY", "SELL", "HOLD"\n'
    '- "confidence": integer 0-100\n'
    '- "reasoning": short string (at most 3 sentences)\n\n'
    "No other fields, no prose outside the JSON."
)


@dataclass(frozen=True)
class ModelVerdict:
    action: str
    confidence: int
    reasoning: str


@dataclass(frozen=True)
class Ok:
    value: ModelVerdict


@dataclass(frozen=True)
class Err:
    reason: str


ParseResult = Union[Ok, Err]


def extract_json_text(text: str) -> Optional[str]:
    """Fenced block first, else the outermost {...} span."""
    fenced = _FENCED_BLOCK.search(text)
    if fenced and fenced.group(1).strip():
        return fenced.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _coerce_confidence(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip().rstrip("%"))
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def parse_model_response(text: Optional[str]) -> ParseResult:
    if not text or not text.strip():
        return Err("empty response")

    candidate = extract_json_text(text)
    if candidate is None:
        return Err("no JSON object in response")

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return Err(f"invalid JSON: {exc.msg}")

    if not isinstance(parsed, dict):
        return Err(f"expected object, got {type(parsed).__name__}")

    unknown = set(parsed) - ALLOWED_KEYS
    if unknown:
        return Err(f"unexpected fields: {', '.join(sorted(unknown))}")

    action = parsed.get("action")
    if not isinstance(action, str) or action.strip().upper() not in ACTIONS:
        return Err(f"invalid action: {action!r}")

    confidence = _coerce_confidence(parsed.get("confidence"))
    if confidence is None:
        return Err(f"invalid confidence: {parsed.get('confidence')!r}")

    reasoning = parsed.get("reasoning", "")
    if reasoning is None:
        reasoning = ""
    if not isinstance(reasoning, str):
        return Err("reasoning must be a string")

    return Ok(ModelVerdict(
        action=action.strip().upper(),
        confidence=int(round(max(0.0, min(100.0, confidence)))),
        reasoning=reasoning.strip()[:MAX_REASONING_CHARS],
    ))


def build_request(payload: Dict[str, Any], config: Config) -> Dict[str, Any]:
    """Messages API body for one symbol."""
    user_prompt = (
        f"Decide on {payload.get('name') or payload.get('symbol')} ({payload.get('symbol')}).\n\n"
        f"{payload.get('technical_summary', '')}\n\n"
        f"Context:\n{json.dumps(payload, indent=2, default=str)}"
    )
    return {
        "model": config.llm.model,
        "max_tokens": config.llm.max_tokens,
        "system": SYSTEM_PROMPT,
        "messages": [{"role": "user", "content": user_prompt}],
    }


class LLMClient:
    """Thin Anthropic Messages API client. Raises on any failure."""

    def __init__(self, config: Config):
        self.config = config

    @property
    def configured(self) -> bool:
        return self.config.has_anthropic

    def call(self, request: Dict[str, Any]) -> str:
        if not self.configured:
            raise TransportFailure("ANTHROPIC_API_KEY not configured")

        try:
            resp = httpx.post(
                API_URL,
                headers={
                    "x-api-key": self.config.api_keys.anthropic,
                    "anthropic-version": API_VERSION,
                    "content-type": "application/json",
                },
                json=request,
                timeout=self.config.llm.timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportFailure(f"model call timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"model call failed: {exc}") from exc

        if resp.status_code != 200:
            raise TransportFailure(f"model API returned {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
            text = "".join(
                block.get("text", "") for block in body.get("content", [])
                if block.get("type") == "text"
            )
        except (ValueError, AttributeError, TypeError) as exc:
            raise ValidationFailure(f"unreadable model response: {exc}") from exc

        if not text.strip():
            raise ValidationFailure("empty model response")
        return text
