from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, Iterable, List, TypeVar

from aviso.config import DEFAULT_TRUST_WEIGHTS, normalize_weights
from aviso.engine.lexicon import (
    ATTRIBUTION_TERMS,
    DISPUTED_MARKERS,
    FACT_CHECK_DOMAINS,
    FACTUAL_TIERS,
    FALSE_MARKERS,
    LEAN_PRIORS,
    LOADED_TERMS,
    OPINION_TERMS,
    POLITICAL_TERMS,
    SATIRE_MARKERS,
    SUBJECTIVE_TERMS,
    TONE_TERMS,
    count_hits,
    weighted_hits,
)
from aviso.engine.text import to_iso
from aviso.models import (
    BIAS_BUCKETS,
    AggregatorData,
    Article,
    BiasAnalysis,
    BiasScore,
    CoverageAnalysis,
    FactCheckResult,
    PoliticalBiasHistogram,
    SentimentAnalysis,
    Source,
    SourceEvolution,
    StoryCluster,
    TimelineEntry,
    TrustMetrics,
)


logger = logging.getLogger("aviso.scoring")

T = TypeVar("T")

URL_RE = re.compile(r"https?://[^\s\"'<>)]+")
NUMBER_RE = re.compile(r"\b\d+(?:[.,]\d+)?%?")

CORROBORATION_MIN_SOURCES = 3
CORROBORATION_MIN_TRUST = 80
NEUTRAL_BAND = 0.15
# Most severe first; breaks ties in the cluster-wide fact-check consensus.
STATUS_SEVERITY = ["false", "disputed", "satire", "verified"]


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def bias_bucket(score: float) -> str:
    """Five equal-width bins over [-100, 100]."""
    score = _clamp(score, -100.0, 100.0)
    index = min(4, int((score + 100.0) // 40.0))
    return BIAS_BUCKETS[index]


def _text(article: Article) -> str:
    return f"{article.title} {article.excerpt}"


def _safe(name: str, article_id: str, fn: Callable[[], T], default: Callable[[], T]) -> T:
    try:
        return fn()
    except Exception as exc:
        logger.warning("scoring degraded metric=%s article=%s err=%s", name, article_id, exc)
        return default()


class ScoringEngine:
    def __init__(
        self,
        trust_weights: dict | None = None,
        false_fact_penalty: float = 0.2,
        mixed_threshold: float = 100.0,
    ):
        self.weights = normalize_weights(trust_weights, DEFAULT_TRUST_WEIGHTS)
        self.false_fact_penalty = _clamp(false_fact_penalty, 0.0, 1.0)
        self.mixed_threshold = mixed_threshold

    @classmethod
    def from_settings(cls, settings) -> "ScoringEngine":
        return cls(
            trust_weights=settings.trust_weights,
            false_fact_penalty=settings.false_fact_penalty,
            mixed_threshold=settings.mixed_disagreement_threshold,
        )

    # -- per-article metrics -------------------------------------------------

    def trust(self, article: Article, source: Source, fact_check: FactCheckResult | None) -> TrustMetrics:
        status = fact_check.status if fact_check else "unverified"
        factual = FACTUAL_TIERS.get(source.bias_rating.factual, 50)
        if status == "verified":
            factual = factual + (100 - factual) * 0.5
        elif status == "false":
            factual = 0
        elif status == "disputed":
            factual = factual * 0.6
        elif status == "satire":
            factual = factual * 0.5

        loaded, _ = weighted_hits(_text(article), LOADED_TERMS)
        editorial = _clamp(source.bias_rating.overall - min(30.0, loaded * 5.0), 0, 100)

        components = {
            "source_credibility": int(source.trust_rating),
            "factual_accuracy": int(round(_clamp(factual, 0, 100))),
            "transparency": int(source.transparency_score),
            "editorial": int(round(editorial)),
        }
        overall = sum(self.weights[name] * value for name, value in components.items())
        if status == "false":
            overall *= self.false_fact_penalty
        overall = _clamp(round(overall), min(components.values()), max(components.values()))
        return TrustMetrics(overall=int(overall), **components)

    def bias(self, article: Article, source: Source) -> BiasAnalysis:
        text = _text(article)
        lean = source.bias_rating.political
        prior = LEAN_PRIORS.get(lean)
        signal, hits = weighted_hits(text, POLITICAL_TERMS)
        text_score = _clamp(signal * 25.0, -100.0, 100.0)
        if prior is None:
            political = BiasScore(score=round(text_score, 1), confidence=min(1.0, 0.1 * hits))
        elif hits:
            political = BiasScore(score=round(0.7 * prior + 0.3 * text_score, 1), confidence=min(1.0, 0.6 + 0.1 * hits))
        else:
            political = BiasScore(score=prior, confidence=0.6)

        tone, tone_hits = weighted_hits(text, TONE_TERMS)
        loaded, loaded_hits = weighted_hits(text, LOADED_TERMS)
        emotional = BiasScore(
            score=round(_clamp(tone * 30.0 - loaded * 20.0, -100.0, 100.0), 1),
            confidence=round(min(1.0, 0.2 + 0.1 * (tone_hits + loaded_hits)), 3),
        )

        attribution = count_hits(text, ATTRIBUTION_TERMS) + len(NUMBER_RE.findall(text))
        opinion = count_hits(text, OPINION_TERMS)
        factual = BiasScore(
            score=round(_clamp((attribution - opinion) * 20.0, -100.0, 100.0), 1),
            confidence=round(min(1.0, 0.3 + 0.1 * (attribution + opinion)), 3),
        )

        overall = bias_bucket(political.score)
        p, e = political.score, emotional.score
        if p * e < 0 and abs(p - e) > self.mixed_threshold:
            overall = "mixed"
        confidence = round((political.confidence + emotional.confidence + factual.confidence) / 3.0, 3)
        return BiasAnalysis(political=political, emotional=emotional, factual=factual, overall=overall, confidence=confidence)

    def fact_check(
        self,
        article: Article,
        peers: Iterable[Article] = (),
        sources: Dict[str, Source] | None = None,
        now: datetime | None = None,
    ) -> FactCheckResult:
        """Automated check from fact-check citations and cluster corroboration.

        A status other than ``unverified`` that is already attached is returned
        unchanged; only :meth:`recheck` replaces it.
        """
        previous = article.fact_check
        if previous is not None and previous.status != "unverified":
            return previous

        text = f"{article.title} {article.excerpt} {article.tldr or ''}"
        candidates = URL_RE.findall(text) + [article.canonical_url]
        citations = sorted({url for url in candidates if any(d in url.lower() for d in FACT_CHECK_DOMAINS)})
        checked = to_iso(now) if now else None

        if citations:
            lowered = text.lower()
            if any(m in lowered for m in SATIRE_MARKERS):
                return FactCheckResult(status="satire", confidence=0.7, sources=citations, last_checked=checked)
            if any(m in lowered for m in FALSE_MARKERS):
                return FactCheckResult(status="false", confidence=0.75, sources=citations, last_checked=checked)
            if any(m in lowered for m in DISPUTED_MARKERS):
                return FactCheckResult(status="disputed", confidence=0.6, sources=citations, last_checked=checked)

        sources = sources or {}
        corroborating: Dict[str, str] = {}
        for peer in [article, *peers]:
            src = sources.get(peer.source_id)
            if src is None or src.trust_rating < CORROBORATION_MIN_TRUST:
                continue
            corroborating.setdefault(peer.source_id, peer.canonical_url)
        if len(corroborating) >= CORROBORATION_MIN_SOURCES:
            urls = sorted(set(citations) | set(corroborating.values()))
            confidence = min(0.95, 0.5 + 0.1 * len(corroborating))
            return FactCheckResult(status="verified", confidence=confidence, sources=urls, last_checked=checked)

        return FactCheckResult(status="unverified", confidence=0.3 if citations else 0.0, sources=citations, last_checked=checked)

    def recheck(
        self,
        status: str,
        sources: List[str],
        confidence: float,
        notes: str | None,
        now: datetime,
    ) -> FactCheckResult:
        return FactCheckResult(status=status, sources=sources, confidence=confidence, notes=notes, last_checked=to_iso(now))

    def sentiment(self, article: Article) -> SentimentAnalysis:
        text = _text(article)
        total, hits = weighted_hits(text, TONE_TERMS)
        if not hits:
            return SentimentAnalysis()
        score = round(total / (abs(total) + 2.0), 3)
        label = "neutral"
        if score >= NEUTRAL_BAND:
            label = "positive"
        elif score <= -NEUTRAL_BAND:
            label = "negative"
        subjectivity = min(1.0, 0.2 * count_hits(text, SUBJECTIVE_TERMS))
        return SentimentAnalysis(
            score=score,
            label=label,
            confidence=round(min(1.0, hits / 5.0), 3),
            subjectivity=round(subjectivity, 3),
        )

    # -- cluster metrics -----------------------------------------------------

    def coverage(
        self,
        members: List[Article],
        sources: Dict[str, Source],
        previous: CoverageAnalysis | None = None,
    ) -> CoverageAnalysis:
        source_ids = sorted({a.source_id for a in members})
        leans = sorted({sources[s].bias_rating.political for s in source_ids if s in sources})
        countries = sorted({sources[s].country for s in source_ids if s in sources and sources[s].country})
        n = len(source_ids)
        completeness = (
            60.0 * (1.0 - 0.7 ** n)
            + 25.0 * min(len(leans), 5) / 5.0
            + 15.0 * min(len(countries), 3) / 3.0
        )
        completeness = round(completeness, 1)
        if previous is not None:
            completeness = max(completeness, previous.completeness)
        return CoverageAnalysis(
            perspectives=len(leans),
            sources=n,
            geographic=countries,
            political=leans,
            completeness=completeness,
        )

    def aggregate(
        self,
        cluster: StoryCluster,
        members: List[Article],
        previous: AggregatorData | None = None,
    ) -> AggregatorData:
        total = len(members)
        buckets = Counter()
        for article in members:
            score = article.bias_analysis.political.score if article.bias_analysis else 0.0
            buckets[bias_bucket(score)] += 1
        shares = {b: round(100.0 * buckets[b] / total, 1) if total else 0.0 for b in BIAS_BUCKETS}
        histogram = PoliticalBiasHistogram(
            left=shares["left"],
            center_left=shares["center-left"],
            center=shares["center"],
            center_right=shares["center-right"],
            right=shares["right"],
        )

        trusts = [t for t in (a.effective_trust() for a in members) if t is not None]
        average_trust = round(sum(trusts) / len(trusts), 1) if trusts else 0.0

        statuses = Counter(a.fact_check.status for a in members if a.fact_check and a.fact_check.status != "unverified")
        consensus = "unverified"
        if statuses:
            top = max(statuses.values())
            tied = [s for s in STATUS_SEVERITY if statuses.get(s) == top]
            consensus = tied[0]

        present = [i for i, b in enumerate(BIAS_BUCKETS) if buckets[b]]
        spread = (max(present) - min(present)) / 4.0 if present else 0.0
        contested = sum(1 for a in members if a.fact_check and a.fact_check.status in ("disputed", "false"))
        controversy = round(60.0 * spread + 40.0 * (contested / total if total else 0.0), 1)

        timeline = self._timeline(members, previous)
        return AggregatorData(
            total_sources=len({a.source_id for a in members}),
            political_bias=histogram,
            average_trust_score=average_trust,
            fact_check_status=consensus,
            controversy_level=controversy,
            coverage_gaps=[f"no {b} coverage" for b in BIAS_BUCKETS if not buckets[b]],
            source_evolution=SourceEvolution(timeline=timeline, consensus_level=round(100.0 - controversy, 1)),
        )

    def _timeline(self, members: List[Article], previous: AggregatorData | None) -> List[TimelineEntry]:
        existing: List[TimelineEntry] = []
        if previous is not None and previous.source_evolution is not None:
            existing = list(previous.source_evolution.timeline)
        seen = {entry.article_id for entry in existing}
        for article in sorted(members, key=lambda a: (a.published_at, a.id)):
            if article.id in seen:
                continue
            trust = article.effective_trust() or 0
            if not existing:
                significance = "breaking"
            elif trust >= 85:
                significance = "major"
            else:
                significance = "minor"
            existing.append(
                TimelineEntry(
                    timestamp=article.published_at,
                    article_id=article.id,
                    source=article.source_name or article.source_id,
                    headline=article.title,
                    trust_score=trust,
                    significance=significance,
                )
            )
            seen.add(article.id)
        return sorted(existing, key=lambda e: (e.timestamp, e.article_id))

    # -- orchestration -------------------------------------------------------

    def score_article(
        self,
        article: Article,
        source: Source,
        peers: Iterable[Article] = (),
        sources: Dict[str, Source] | None = None,
        now: datetime | None = None,
    ) -> Article:
        """Attach per-article metrics in place. Never raises."""
        peers = list(peers)
        sources = sources or {source.id: source}
        article.fact_check = _safe(
            "fact_check", article.id, lambda: self.fact_check(article, peers, sources, now), FactCheckResult
        )
        article.trust_score = _safe(
            "trust", article.id, lambda: self.trust(article, source, article.fact_check), TrustMetrics
        )
        article.bias_analysis = _safe("bias", article.id, lambda: self.bias(article, source), BiasAnalysis)
        article.sentiment = _safe("sentiment", article.id, lambda: self.sentiment(article), SentimentAnalysis)
        return article

    def score_cluster(
        self,
        cluster: StoryCluster,
        articles: Dict[str, Article],
        sources: Dict[str, Source],
        now: datetime | None = None,
    ) -> List[Article]:
        """Score every member, then attach cluster-level coverage and rollup.

        Mutates ``cluster`` and the member articles in ``articles``; returns the
        members that were scored.
        """
        members = [articles[aid] for aid in cluster.article_ids if aid in articles]
        for article in members:
            source = sources.get(article.source_id)
            if source is None:
                logger.warning("scoring skipped article=%s unknown source=%s", article.id, article.source_id)
                continue
            peers = [m for m in members if m.id != article.id]
            self.score_article(article, source, peers, sources, now)

        cluster.coverage = _safe(
            "coverage", cluster.id, lambda: self.coverage(members, sources, cluster.coverage),
            lambda: cluster.coverage or CoverageAnalysis(),
        )
        cluster.aggregator_data = _safe(
            "aggregate", cluster.id, lambda: self.aggregate(cluster, members, cluster.aggregator_data),
            lambda: cluster.aggregator_data or AggregatorData(),
        )
        for article in members:
            article.coverage = cluster.coverage
            article.aggregator_data = cluster.aggregator_data
        return members
