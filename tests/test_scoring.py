import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from aviso.engine.scoring import ScoringEngine, bias_bucket
from aviso.engine.text import to_iso
from aviso.models import (
    Article,
    BiasAnalysis,
    BiasRating,
    CoverageAnalysis,
    FactCheckResult,
    Source,
    StoryCluster,
)


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _source(sid, trust=70, lean="center", factual="mostly-factual", overall=60, transparency=60, country="US"):
    return Source(
        id=sid,
        name=sid.upper(),
        feed_url=f"https://{sid}.example.com/rss",
        trust_rating=trust,
        transparency_score=transparency,
        country=country,
        bias_rating=BiasRating(political=lean, factual=factual, overall=overall),
    )


def _article(aid, source_id, title="Central bank publishes quarterly report", excerpt="", url=None, hours_ago=1):
    return Article(
        id=aid,
        source_id=source_id,
        source_name=source_id.upper(),
        canonical_url=url or f"https://{source_id}.example.com/{aid}",
        title=title,
        excerpt=excerpt,
        published_at=to_iso(NOW - timedelta(hours=hours_ago)),
        imported_at=to_iso(NOW),
    )


class BiasBucketTests(unittest.TestCase):
    def test_equal_width_bins(self):
        self.assertEqual(bias_bucket(-100), "left")
        self.assertEqual(bias_bucket(-60), "center-left")
        self.assertEqual(bias_bucket(-20), "center")
        self.assertEqual(bias_bucket(0), "center")
        self.assertEqual(bias_bucket(20), "center-right")
        self.assertEqual(bias_bucket(59.9), "center-right")
        self.assertEqual(bias_bucket(60), "right")
        self.assertEqual(bias_bucket(100), "right")

    def test_out_of_range_is_clamped(self):
        self.assertEqual(bias_bucket(-250), "left")
        self.assertEqual(bias_bucket(250), "right")


class TrustTests(unittest.TestCase):
    def setUp(self):
        self.engine = ScoringEngine()

    def test_high_trust_source_without_fact_check_sources(self):
        source = _source("wire", trust=95, factual="high", overall=90, transparency=80)
        article = _article("a1", "wire")
        self.engine.score_article(article, source, now=NOW)
        self.assertEqual(article.fact_check.status, "unverified")
        self.assertEqual(article.fact_check.confidence, 0.0)
        self.assertEqual(article.trust_score.source_credibility, 95)
        self.assertEqual(article.trust_score.overall, 90)

    def test_overall_stays_within_component_bounds(self):
        source = _source("tab", trust=30, factual="low", overall=40, transparency=90)
        article = _article("a1", "tab", title="Shocking bombshell scandal rocks capital")
        metrics = self.engine.trust(article, source, None)
        components = [
            metrics.source_credibility,
            metrics.factual_accuracy,
            metrics.transparency,
            metrics.editorial,
        ]
        self.assertGreaterEqual(metrics.overall, min(components))
        self.assertLessEqual(metrics.overall, max(components))
        self.assertLess(metrics.editorial, 40)

    def test_false_rating_penalizes_trust(self):
        source = _source("wire", trust=90, factual="high", overall=85)
        article = _article("a1", "wire")
        baseline = self.engine.trust(article, source, None).overall
        false = FactCheckResult(status="false", confidence=0.9, sources=["https://www.snopes.com/fact-check/x"])
        penalized = self.engine.trust(article, source, false)
        self.assertEqual(penalized.factual_accuracy, 0)
        self.assertLess(penalized.overall, baseline)

    def test_weights_are_normalized(self):
        engine = ScoringEngine(trust_weights={"source_credibility": 2, "factual_accuracy": 0, "transparency": 0, "editorial": 0})
        source = _source("wire", trust=77)
        self.assertEqual(engine.trust(_article("a1", "wire"), source, None).overall, 77)


class FactCheckTests(unittest.TestCase):
    def setUp(self):
        self.engine = ScoringEngine()

    def test_empty_sources_force_unverified(self):
        self.assertEqual(FactCheckResult(status="verified", confidence=0.9).status, "unverified")
        result = self.engine.recheck("false", [], 0.8, "no links", NOW)
        self.assertEqual(result.status, "unverified")

    def test_corroboration_by_trusted_sources_verifies(self):
        sources = {s.id: s for s in (_source("a", trust=90), _source("b", trust=85), _source("c", trust=80))}
        article = _article("x1", "a")
        peers = [_article("x2", "b"), _article("x3", "c")]
        result = self.engine.fact_check(article, peers, sources, NOW)
        self.assertEqual(result.status, "verified")
        self.assertEqual(len(result.sources), 3)
        self.assertAlmostEqual(result.confidence, 0.8)

    def test_low_trust_peers_do_not_corroborate(self):
        sources = {s.id: s for s in (_source("a", trust=90), _source("b", trust=50), _source("c", trust=40))}
        result = self.engine.fact_check(_article("x1", "a"), [_article("x2", "b"), _article("x3", "c")], sources, NOW)
        self.assertEqual(result.status, "unverified")

    def test_fact_check_citation_with_false_marker(self):
        article = _article(
            "x1",
            "wire",
            title="Viral hoax about vaccine chips debunked",
            excerpt="See https://www.snopes.com/fact-check/vaccine-chips for details.",
        )
        result = self.engine.fact_check(article, [], {"wire": _source("wire")}, NOW)
        self.assertEqual(result.status, "false")
        self.assertEqual(result.sources, ["https://www.snopes.com/fact-check/vaccine-chips"])

    def test_existing_editorial_status_is_kept(self):
        article = _article("x1", "wire")
        article.fact_check = FactCheckResult(status="disputed", confidence=0.7, sources=["https://fullfact.org/x"])
        self.assertEqual(self.engine.fact_check(article, [], {}, NOW).status, "disputed")


class BiasAndSentimentTests(unittest.TestCase):
    def setUp(self):
        self.engine = ScoringEngine()

    def test_source_prior_drives_political_score(self):
        analysis = self.engine.bias(_article("a1", "r"), _source("r", lean="right"))
        self.assertEqual(analysis.political.score, 80.0)
        self.assertEqual(analysis.overall, "right")

    def test_mixed_when_political_and_emotional_disagree(self):
        article = _article("a1", "s", title="Record high rally as fans celebrate success and breakthrough")
        analysis = self.engine.bias(article, _source("s", lean="center-left"))
        self.assertEqual(analysis.political.score, -40.0)
        self.assertEqual(analysis.emotional.score, 100.0)
        self.assertEqual(analysis.overall, "mixed")

    def test_sentiment_labels(self):
        positive = self.engine.sentiment(_article("a1", "s", title="Markets rally to record high on recovery hope"))
        negative = self.engine.sentiment(_article("a2", "s", title="Dozens killed as crisis deepens, fears of war"))
        neutral = self.engine.sentiment(_article("a3", "s", title="Committee meets on Tuesday"))
        self.assertEqual(positive.label, "positive")
        self.assertEqual(negative.label, "negative")
        self.assertEqual(neutral.label, "neutral")
        self.assertTrue(-1.0 <= negative.score <= 1.0)

    def test_failed_metric_degrades_to_default(self):
        article = _article("a1", "s")
        with patch.object(ScoringEngine, "bias", side_effect=RuntimeError("boom")):
            with self.assertLogs("aviso.scoring", level="WARNING") as logs:
                self.engine.score_article(article, _source("s"), now=NOW)
        self.assertEqual(article.bias_analysis, BiasAnalysis())
        self.assertIsNotNone(article.trust_score)
        self.assertTrue(any("metric=bias" in line for line in logs.output))


class ClusterMetricTests(unittest.TestCase):
    def setUp(self):
        self.engine = ScoringEngine()
        self.sources = {
            "left": _source("left", trust=80, lean="left", country="GB"),
            "right": _source("right", trust=70, lean="right", country="US"),
            "mid": _source("mid", trust=95, lean="center", factual="very-high", overall=95, transparency=95),
        }

    def _cluster(self, articles):
        return StoryCluster(
            id="c1",
            article_ids=[a.id for a in articles],
            source_ids=sorted({a.source_id for a in articles}),
            created_at=to_iso(NOW),
            first_published_at=min(a.published_at for a in articles),
            last_published_at=max(a.published_at for a in articles),
            last_activity_at=max(a.published_at for a in articles),
        )

    def test_coverage_completeness_never_decreases(self):
        members = [_article("a1", "left"), _article("a2", "right"), _article("a3", "mid")]
        wide = self.engine.coverage(members, self.sources)
        narrow = self.engine.coverage(members[:1], self.sources, previous=wide)
        self.assertEqual(wide.sources, 3)
        self.assertEqual(wide.perspectives, 3)
        self.assertEqual(wide.geographic, ["GB", "US"])
        self.assertEqual(narrow.completeness, wide.completeness)
        self.assertGreaterEqual(
            self.engine.coverage(members, self.sources, previous=CoverageAnalysis(completeness=99.0)).completeness, 99.0
        )

    def test_score_cluster_rollup(self):
        members = [_article("a1", "left", hours_ago=3), _article("a2", "right", hours_ago=2)]
        articles = {a.id: a for a in members}
        cluster = self._cluster(members)
        self.engine.score_cluster(cluster, articles, self.sources, NOW)

        data = cluster.aggregator_data
        self.assertEqual(data.total_sources, 2)
        self.assertEqual(data.political_bias.left, 50.0)
        self.assertEqual(data.political_bias.right, 50.0)
        self.assertIn("no center coverage", data.coverage_gaps)
        self.assertEqual(data.controversy_level, 60.0)
        timeline = data.source_evolution.timeline
        self.assertEqual([e.article_id for e in timeline], ["a1", "a2"])
        self.assertEqual(timeline[0].significance, "breaking")
        self.assertIs(articles["a1"].aggregator_data, cluster.aggregator_data)

    def test_timeline_is_append_only(self):
        first = _article("a1", "left", hours_ago=3)
        cluster = self._cluster([first])
        articles = {"a1": first}
        self.engine.score_cluster(cluster, articles, self.sources, NOW)
        original = cluster.aggregator_data.source_evolution.timeline[0]

        second = _article("a2", "mid", hours_ago=1)
        cluster.article_ids.append("a2")
        articles["a2"] = second
        self.engine.score_cluster(cluster, articles, self.sources, NOW)
        timeline = cluster.aggregator_data.source_evolution.timeline
        self.assertEqual(timeline[0], original)
        self.assertEqual(timeline[1].significance, "major")

    def test_consensus_prefers_more_severe_status_on_tie(self):
        a1, a2 = _article("a1", "left"), _article("a2", "right")
        a1.fact_check = FactCheckResult(status="verified", sources=["https://x"])
        a2.fact_check = FactCheckResult(status="disputed", sources=["https://y"])
        data = self.engine.aggregate(self._cluster([a1, a2]), [a1, a2])
        self.assertEqual(data.fact_check_status, "disputed")


if __name__ == "__main__":
    unittest.main()
