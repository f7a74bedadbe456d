"""Word lists feeding the deterministic bias and tone scorers.

Weights are signed: negative leans left / negative tone, positive leans right /
positive tone. All matching is on lowercase whole words or phrases.
"""

from __future__ import annotations

import re
from typing import Dict, Tuple


LEAN_PRIORS = {
    "left": -80.0,
    "center-left": -40.0,
    "center": 0.0,
    "center-right": 40.0,
    "right": 80.0,
}

FACTUAL_TIERS = {
    "very-high": 95,
    "high": 85,
    "mostly-factual": 70,
    "mixed": 50,
    "low": 30,
    "very-low": 15,
}

POLITICAL_TERMS: Dict[str, float] = {
    "progressive": -1.0,
    "climate justice": -1.5,
    "social justice": -1.5,
    "systemic racism": -1.5,
    "gun violence": -1.0,
    "undocumented": -1.0,
    "workers' rights": -1.0,
    "reproductive rights": -1.5,
    "inequality": -0.5,
    "corporate greed": -1.5,
    "billionaires": -0.5,
    "universal healthcare": -1.0,
    "conservative": 1.0,
    "illegal immigrants": 1.5,
    "illegal aliens": 2.0,
    "border crisis": 1.5,
    "tax relief": 1.0,
    "pro-life": 1.5,
    "second amendment": 1.0,
    "woke": 1.5,
    "radical left": 2.0,
    "big government": 1.0,
    "job creators": 1.0,
    "law and order": 1.0,
}

LOADED_TERMS: Dict[str, float] = {
    "slams": 1.0,
    "blasts": 1.0,
    "destroys": 1.5,
    "shocking": 1.5,
    "outrage": 1.5,
    "furious": 1.0,
    "chaos": 1.0,
    "disaster": 1.0,
    "catastrophic": 1.0,
    "devastating": 1.0,
    "explosive": 1.0,
    "bombshell": 1.5,
    "scandal": 1.0,
    "horrifying": 1.5,
    "unbelievable": 1.0,
    "you won't believe": 2.0,
    "mind-blowing": 1.5,
    "slammed": 1.0,
    "meltdown": 1.0,
    "crushes": 1.0,
    "epic": 1.0,
    "jaw-dropping": 1.5,
}

ATTRIBUTION_TERMS = (
    "according to",
    "said in a statement",
    "data show",
    "data showed",
    "reported",
    "announced",
    "official",
    "study",
    "survey",
    "percent",
    "filing",
)

OPINION_TERMS = (
    "opinion",
    "i think",
    "we believe",
    "should",
    "must",
    "clearly",
    "obviously",
    "arguably",
    "editorial",
    "column",
)

TONE_TERMS: Dict[str, float] = {
    "gain": 0.6,
    "gains": 0.6,
    "growth": 0.6,
    "record high": 0.8,
    "rally": 0.7,
    "surge": 0.5,
    "win": 0.7,
    "wins": 0.7,
    "breakthrough": 0.9,
    "recovery": 0.6,
    "improve": 0.5,
    "improves": 0.5,
    "success": 0.8,
    "celebrate": 0.8,
    "approve": 0.3,
    "approved": 0.3,
    "hope": 0.5,
    "boost": 0.5,
    "loss": -0.6,
    "losses": -0.6,
    "decline": -0.5,
    "falls": -0.5,
    "plunge": -0.8,
    "crash": -0.9,
    "crisis": -0.8,
    "war": -0.8,
    "dead": -0.9,
    "killed": -1.0,
    "deaths": -0.9,
    "attack": -0.8,
    "fraud": -0.8,
    "lawsuit": -0.4,
    "fears": -0.6,
    "warning": -0.5,
    "layoffs": -0.7,
    "recession": -0.8,
    "disaster": -0.9,
    "scandal": -0.7,
}

SUBJECTIVE_TERMS = OPINION_TERMS + ("amazing", "terrible", "awful", "great", "best", "worst", "shocking", "incredible")

FACT_CHECK_DOMAINS = (
    "snopes.com",
    "politifact.com",
    "factcheck.org",
    "fullfact.org",
    "apnews.com/hub/ap-fact-check",
    "reuters.com/fact-check",
    "afp.com",
    "factcheck.afp.com",
    "leadstories.com",
    "checkyourfact.com",
)

FALSE_MARKERS = ("false claim", "debunked", "fabricated", "hoax", "fake news")
DISPUTED_MARKERS = ("disputed", "misleading", "unproven", "unsubstantiated", "lacks context")
SATIRE_MARKERS = ("satire", "satirical", "parody")

_PATTERN_CACHE: Dict[str, re.Pattern] = {}


def _pattern(term: str) -> re.Pattern:
    pat = _PATTERN_CACHE.get(term)
    if pat is None:
        pat = re.compile(r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])")
        _PATTERN_CACHE[term] = pat
    return pat


def count_hits(text: str, terms) -> int:
    lowered = text.lower()
    return sum(len(_pattern(term).findall(lowered)) for term in terms)


def weighted_hits(text: str, weights: Dict[str, float]) -> Tuple[float, int]:
    """Sum of weights over all matches, and the number of matches."""
    lowered = text.lower()
    total = 0.0
    hits = 0
    for term, weight in weights.items():
        n = len(_pattern(term).findall(lowered))
        if n:
            total += weight * n
            hits += n
    return total, hits
