from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List

from aviso.engine.clustering import ClusterEngine, apply_back_references
from aviso.engine.scoring import ScoringEngine
from aviso.engine.text import to_iso
from aviso.errors import NotFoundError
from aviso.infra.metrics import fetch_metrics_summary
from aviso.models import Article, FactCheckRequest, IngestSummary, Source, StoryCluster
from aviso.services.fetcher import FetcherService
from aviso.services.registry import SourceRegistry
from aviso.services.repository import ArticleRepository, IngestBatch


logger = logging.getLogger("aviso.ingest")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestPipelineService:
    """Fetch -> dedupe -> cluster -> score -> commit, one cycle at a time.

    Every write of a cycle goes through a single ``commit_batch`` so readers
    never see a half-applied cycle. Also the only writer of scoring metrics
    outside a cycle (source re-ratings, fact-check re-checks).
    """

    def __init__(
        self,
        repo: ArticleRepository,
        registry: SourceRegistry,
        fetcher: FetcherService,
        clusterer: ClusterEngine,
        scoring: ScoringEngine,
    ):
        self.repo = repo
        self.registry = registry
        self.fetcher = fetcher
        self.clusterer = clusterer
        self.scoring = scoring

    @classmethod
    def from_settings(cls, settings, repo: ArticleRepository, registry: SourceRegistry, fetcher=None):
        return cls(
            repo=repo,
            registry=registry,
            fetcher=fetcher or FetcherService.from_settings(settings),
            clusterer=ClusterEngine.from_settings(settings),
            scoring=ScoringEngine.from_settings(settings),
        )

    def run_cycle(self, now: datetime | None = None) -> IngestSummary:
        now = now or _utcnow()
        summary = IngestSummary(started_at=to_iso(now))
        sources = self.registry.list_active_sources()
        outcomes = self.fetcher.fetch_all(sources, now)

        drafts: Dict[str, Article] = {}
        touched_sources = []
        for outcome in outcomes:
            if not outcome.ok:
                summary.sources_failed += 1
                summary.errors[outcome.source.id] = outcome.result.error_msg or "fetch failed"
                continue
            summary.sources_ok += 1
            summary.dropped += outcome.result.dropped
            outcome.source.last_fetched_at = to_iso(now)
            touched_sources.append(outcome.source)
            for draft in outcome.drafts:
                summary.fetched += 1
                if draft.id in drafts:
                    summary.duplicates += 1
                    continue
                drafts[draft.id] = draft

        existing = self.repo.existing_article_ids(drafts.keys())
        summary.duplicates += len(existing)
        fresh = [d for aid, d in drafts.items() if aid not in existing]
        summary.new = len(fresh)

        self._cluster_and_commit(fresh, now, summary, touched_sources)
        summary.finished_at = to_iso(_utcnow())
        summary.metrics = fetch_metrics_summary([o.result.debug_view() for o in outcomes])
        logger.info(
            "ingest cycle sources_ok=%s sources_failed=%s fetched=%s new=%s duplicates=%s dropped=%s "
            "clusters_created=%s clusters_merged=%s clusters_updated=%s frozen=%s | %s",
            summary.sources_ok,
            summary.sources_failed,
            summary.fetched,
            summary.new,
            summary.duplicates,
            summary.dropped,
            summary.clusters_created,
            summary.clusters_merged,
            summary.clusters_updated,
            summary.frozen,
            summary.metrics,
        )
        return summary

    def _cluster_and_commit(self, fresh: List[Article], now: datetime, summary: IngestSummary, touched_sources) -> None:
        open_clusters = self.repo.list_open_clusters()
        member_ids = [aid for c in open_clusters for aid in c.article_ids]
        members = self.repo.get_articles(member_ids)

        outcome = self.clusterer.assign(fresh, open_clusters, members, now)
        articles: Dict[str, Article] = dict(members)
        articles.update({a.id: a for a in fresh})
        sources = {s.id: s for s in self.registry.list_sources()}

        changed = self._score_clusters(outcome.clusters.values(), articles, sources, now)
        for article_id, cluster_id in outcome.assignments.items():
            if article_id in articles and article_id not in changed:
                articles[article_id].cluster_id = cluster_id
                changed[article_id] = articles[article_id]

        untouched = [c for c in open_clusters if c.id not in outcome.clusters and c.id not in outcome.removed]
        frozen = self.clusterer.freeze_stale(untouched, now)
        for cluster in frozen:
            logger.info("froze stale cluster %s", cluster.id)

        batch = IngestBatch(
            articles=list(changed.values()),
            clusters=list(outcome.clusters.values()) + frozen,
            removed_clusters=list(outcome.removed),
            sources=touched_sources,
            last_ingest_at=to_iso(now),
        )
        self.repo.commit_batch(batch)
        summary.clusters_created = outcome.created
        summary.clusters_merged = outcome.merged
        summary.clusters_updated = len(outcome.updated)
        summary.frozen = len(frozen)

    def _score_clusters(self, clusters, articles: Dict[str, Article], sources, now: datetime) -> Dict[str, Article]:
        changed: Dict[str, Article] = {}
        for cluster in clusters:
            apply_back_references(cluster, articles)
            for article in self.scoring.score_cluster(cluster, articles, sources, now):
                changed[article.id] = article
            for aid in cluster.article_ids:
                if aid in articles:
                    changed[aid] = articles[aid]
        return changed

    def _rescore(self, seed: List[Article], now: datetime, updated_sources: List[Source] | None = None) -> int:
        """Re-score the clusters that ``seed`` articles belong to, in one batch.

        ``updated_sources`` are scored with and written in the same batch.
        """
        updated_sources = list(updated_sources or [])
        articles: Dict[str, Article] = {a.id: a for a in seed}
        clusters: Dict[str, StoryCluster] = {}
        loose: List[Article] = []
        for article in seed:
            cluster = self.repo.get_cluster(article.cluster_id) if article.cluster_id else None
            if cluster is None:
                loose.append(article)
                continue
            clusters[cluster.id] = cluster
        member_ids = [aid for c in clusters.values() for aid in c.article_ids if aid not in articles]
        articles.update(self.repo.get_articles(member_ids))
        sources = {s.id: s for s in self.registry.list_sources()}
        sources.update({s.id: s for s in updated_sources})

        changed = self._score_clusters(clusters.values(), articles, sources, now)
        for article in loose:
            source = sources.get(article.source_id)
            if source is not None:
                self.scoring.score_article(article, source, sources=sources, now=now)
                changed[article.id] = article
        self.repo.commit_batch(
            IngestBatch(articles=list(changed.values()), clusters=list(clusters.values()), sources=updated_sources)
        )
        return len(changed)

    def rescore_source(self, source: Source, now: datetime | None = None) -> int:
        """Store a re-rated source and re-score its articles in one commit."""
        seed = self.repo.list_articles(source_id=source.id)
        count = self._rescore(seed, now or _utcnow(), updated_sources=[source])
        logger.info("rescored source=%s articles=%s", source.id, count)
        return count

    def recheck_fact(self, req: FactCheckRequest, now: datetime | None = None) -> Article:
        now = now or _utcnow()
        article = self.repo.get_article(req.article_id)
        if article is None:
            raise NotFoundError(f"Article {req.article_id} not found")
        article.fact_check = self.scoring.recheck(req.status, req.sources, req.confidence, req.notes, now)
        self._rescore([article], now)
        logger.info(
            "fact-check recheck article=%s status=%s sources=%s",
            article.id,
            article.fact_check.status,
            len(article.fact_check.sources),
        )
        return self.repo.get_article(article.id)

    def purge(self, retention_days: int, now: datetime | None = None) -> int:
        removed = self.repo.purge(retention_days, now=now)
        if removed:
            logger.info("purged %s articles older than %s days", removed, retention_days)
        return removed
