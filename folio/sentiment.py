#!/usr/bin/env python3
"""
NEWS SENTIMENT - Weighted keyword scoring over a news digest

Each phrase carries a weight (3 = strong, 2 = moderate, 1 = mild,
0.5 = low-signal buzzwords). Occurrences are counted case-insensitively on
word boundaries and capped per phrase so a single syndicated article
repeated across sources cannot swing the score on its own.

Score = (positive - negative) / (positive + negative), in [-1, 1].
"""

import re
from typing import Dict, List, Pattern, Tuple

from .models import SentimentResult

POSITIVE_KEYWORDS: Dict[str, float] = {
    "beat": 3,
    "upgrade": 3,
    "record": 2,
    "surge": 2,
    "rally": 2,
    "bullish": 2,
    "outperform": 2,
    "buy rating": 3,
    "breakthrough": 2,
    "exceed": 2,
    "revenue growth": 2,
    "partnership": 1,
    "expansion": 1,
    "growth": 1,
    "strong": 1,
    "profit": 1,
    "dividend": 1,
    "innovation": 1,
    "momentum": 1,
    "market share": 1,
    "ai": 0.5,
    "cloud": 0.5,
}

NEGATIVE_KEYWORDS: Dict[str, float] = {
    "downgrade": 3,
    "miss": 3,
    "sell rating": 3,
    "default": 3,
    "lawsuit": 2,
    "investigation": 2,
    "recession": 2,
    "bearish": 2,
    "underperform": 2,
    "sanction": 2,
    "ban": 2,
    "decline": 1,
    "drop": 1,
    "weak": 1,
    "layoff": 1,
    "loss": 1,
    "warning": 1,
    "cut": 1,
    "tariff": 1,
    "debt": 1,
    "concern": 0.5,
}

# Negated bad news reads as mildly good news
NEGATION_PATTERNS: List[str] = [
    r"\bnot (?:a |an )?(?:decline|drop|loss|concern|downgrade|miss)\b",
    r"\bdespite (?:the |a |an )?(?:concern|decline|drop|weak\w*|tariff\w*|headwind\w*)",
    r"\bno sign(?:s)? of (?:weakness|slowdown|decline)\b",
    r"\bbetter than (?:feared|expected)\b",
    r"\b(?:fears|concerns) (?:eased|ease|easing)\b",
    r"\bshrug(?:s|ged)? off\b",
]


class SentimentScorer:
    """Pure scorer: free text in, SentimentResult out."""

    MAX_HITS_PER_PHRASE = 3
    NEGATION_BONUS = 1.5

    def __init__(self,
                 positive: Dict[str, float] = None,
                 negative: Dict[str, float] = None,
                 negations: List[str] = None):
        self.positive = self._compile(positive if positive is not None else POSITIVE_KEYWORDS)
        self.negative = self._compile(negative if negative is not None else NEGATIVE_KEYWORDS)
        self.negations = [
            re.compile(p, re.IGNORECASE)
            for p in (negations if negations is not None else NEGATION_PATTERNS)
        ]

    @staticmethod
    def _compile(table: Dict[str, float]) -> List[Tuple[str, float, Pattern]]:
        return [
            (phrase, weight, re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE))
            for phrase, weight in table.items()
        ]

    def _accumulate(self, text: str, table) -> Tuple[float, List[str]]:
        total = 0.0
        hits = []
        for phrase, weight, pattern in table:
            count = min(len(pattern.findall(text)), self.MAX_HITS_PER_PHRASE)
            if count:
                total += weight * count
                hits.append(phrase)
        return total, hits

    def score(self, text: str) -> SentimentResult:
        if not text:
            return SentimentResult(score=0.0)

        positive_total, positive_hits = self._accumulate(text, self.positive)
        negative_total, negative_hits = self._accumulate(text, self.negative)

        negations = sum(len(p.findall(text)) for p in self.negations)
        positive_total += negations * self.NEGATION_BONUS

        total = positive_total + negative_total
        if total == 0:
            return SentimentResult(score=0.0)

        score = (positive_total - negative_total) / total
        return SentimentResult(
            score=max(-1.0, min(1.0, score)),
            positive_hits=tuple(positive_hits),
            negative_hits=tuple(negative_hits),
        )
