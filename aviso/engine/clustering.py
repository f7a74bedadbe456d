from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from aviso.errors import ClusterConflictError
from aviso.engine.text import SIMILARITY_FUNCS, build_cluster_id, canonical_tokens, parse_iso, to_iso
from aviso.models import Article, StoryCluster


logger = logging.getLogger("aviso.cluster")


@dataclass
class ClusterOutcome:
    clusters: Dict[str, StoryCluster] = field(default_factory=dict)
    removed: List[str] = field(default_factory=list)
    assignments: Dict[str, str] = field(default_factory=dict)
    created: int = 0
    merged: int = 0
    updated: set = field(default_factory=set)
    conflicts: int = 0


def _order_key(cluster: StoryCluster):
    return (cluster.created_at, cluster.first_published_at, cluster.id)


def _draft_key(article: Article):
    return (article.published_at, article.source_id, article.id)


class ClusterEngine:
    """Assigns incoming articles to story clusters by headline token overlap.

    A cluster only accepts an article published within ``window_hours`` of
    every current member. When an article matches several open clusters, they
    are merged if the combined span still fits the window; otherwise the
    article joins the single best match. Merges keep the earliest-created id.
    """

    def __init__(
        self,
        window_hours: float = 48.0,
        threshold: float = 0.5,
        metric: str = "jaccard",
        min_shared_tokens: int = 2,
        stale_hours: float = 72.0,
    ):
        if metric not in SIMILARITY_FUNCS:
            raise ValueError(f"unknown similarity metric: {metric}")
        self.window = timedelta(hours=window_hours)
        self.threshold = threshold
        self.similarity = SIMILARITY_FUNCS[metric]
        self.min_shared_tokens = min_shared_tokens
        self.stale = timedelta(hours=stale_hours)

    @classmethod
    def from_settings(cls, settings) -> "ClusterEngine":
        return cls(
            window_hours=settings.cluster_window_hours,
            threshold=settings.similarity_threshold,
            metric=settings.similarity_metric,
            min_shared_tokens=settings.min_shared_tokens,
            stale_hours=settings.cluster_stale_hours,
        )

    def is_stale(self, cluster: StoryCluster, now: datetime) -> bool:
        last = parse_iso(cluster.last_activity_at)
        return last is None or now - last > self.stale

    def _fits_window(self, first: str, last: str, published: str) -> bool:
        lo = parse_iso(first)
        hi = parse_iso(last)
        at = parse_iso(published)
        if not lo or not hi or not at:
            return False
        return abs(at - lo) <= self.window and abs(at - hi) <= self.window

    def _score(self, tokens: List[str], cluster: StoryCluster, token_index: Dict[str, List[str]]) -> float:
        best = 0.0
        for member_id in cluster.article_ids:
            other = token_index.get(member_id)
            if not other:
                continue
            if len(set(tokens) & set(other)) < self.min_shared_tokens:
                continue
            best = max(best, self.similarity(tokens, other))
        return best

    def assign(
        self,
        drafts: Iterable[Article],
        open_clusters: Iterable[StoryCluster],
        members: Dict[str, Article],
        now: datetime,
    ) -> ClusterOutcome:
        """Cluster ``drafts`` against ``open_clusters``.

        ``members`` maps article id to Article for every member of the open
        clusters. Drafts are processed in (published_at, source_id, id) order,
        so the result does not depend on fetch arrival order.
        """
        outcome = ClusterOutcome()
        articles: Dict[str, Article] = dict(members)
        token_index = {aid: canonical_tokens(a.title) for aid, a in members.items()}
        clusters: Dict[str, StoryCluster] = {}
        for cluster in open_clusters:
            if cluster.frozen or self.is_stale(cluster, now):
                continue
            clusters[cluster.id] = cluster.model_copy(deep=True)
        url_index = {url: c.id for c in clusters.values() for url in c.canonical_urls}

        for draft in sorted(drafts, key=_draft_key):
            articles[draft.id] = draft
            tokens = canonical_tokens(draft.title)
            token_index[draft.id] = tokens

            url_match = url_index.get(draft.canonical_url)
            if url_match in clusters and self._fits_window(
                clusters[url_match].first_published_at, clusters[url_match].last_published_at, draft.published_at
            ):
                target = clusters[url_match]
            else:
                target = self._match(draft, tokens, clusters, token_index, articles, outcome)

            if target is None:
                target = self._create(draft, tokens, now)
                clusters[target.id] = target
                outcome.created += 1
            else:
                self._add_member(target, draft, articles)
                outcome.updated.add(target.id)
            for url in target.canonical_urls:
                url_index[url] = target.id
            outcome.assignments[draft.id] = target.id

        for cid in outcome.removed:
            outcome.updated.discard(cid)
        touched = set(outcome.updated) | {cid for cid in outcome.assignments.values()}
        outcome.clusters = {cid: clusters[cid] for cid in touched if cid in clusters}
        return outcome

    def _match(self, draft, tokens, clusters, token_index, articles, outcome) -> StoryCluster | None:
        candidates = []
        for cluster in sorted(clusters.values(), key=_order_key):
            if not self._fits_window(cluster.first_published_at, cluster.last_published_at, draft.published_at):
                continue
            score = self._score(tokens, cluster, token_index)
            if score >= self.threshold:
                candidates.append((score, cluster))
        if not candidates:
            return None
        # Best score first; equal scores keep the earliest-created cluster.
        best = sorted(candidates, key=lambda pair: (-pair[0], _order_key(pair[1])))[0][1]
        if len(candidates) == 1:
            return best

        group = [c for _, c in candidates]
        first = min([c.first_published_at for c in group] + [draft.published_at])
        last = max([c.last_published_at for c in group] + [draft.published_at])
        lo, hi = parse_iso(first), parse_iso(last)
        if not lo or not hi or hi - lo > self.window:
            return best
        try:
            survivor = self._merge(group, clusters, articles, outcome)
        except ClusterConflictError as exc:
            outcome.conflicts += 1
            logger.error("cluster conflict, keeping clusters separate: %s", exc)
            return best
        return survivor

    def _merge(self, group, clusters, articles, outcome) -> StoryCluster:
        ordered = sorted(group, key=_order_key)
        survivor, absorbed = ordered[0], ordered[1:]
        seen = set(survivor.article_ids)
        for other in absorbed:
            overlap = seen & set(other.article_ids)
            if overlap:
                raise ClusterConflictError(f"{survivor.id} and {other.id} share members {sorted(overlap)}")
            seen |= set(other.article_ids)

        for other in absorbed:
            for member_id in other.article_ids:
                survivor.article_ids.append(member_id)
                outcome.assignments[member_id] = survivor.id
            other.merged_into = survivor.id
            clusters.pop(other.id, None)
            outcome.removed.append(other.id)
            outcome.merged += 1
            logger.info("merged cluster %s into %s", other.id, survivor.id)
        survivor.canonical_urls = sorted(set(survivor.canonical_urls).union(*[o.canonical_urls for o in absorbed]))
        self._refresh(survivor, articles)
        outcome.updated.add(survivor.id)
        return survivor

    def _create(self, draft: Article, tokens: List[str], now: datetime) -> StoryCluster:
        return StoryCluster(
            id=build_cluster_id(draft.id),
            article_ids=[draft.id],
            source_ids=[draft.source_id],
            canonical_title=draft.title,
            canonical_article_id=draft.id,
            tokens=tokens,
            canonical_urls=[draft.canonical_url] if draft.canonical_url else [],
            created_at=to_iso(now),
            first_published_at=draft.published_at,
            last_published_at=draft.published_at,
            last_activity_at=draft.published_at,
        )

    def _add_member(self, cluster: StoryCluster, draft: Article, articles: Dict[str, Article]) -> None:
        if draft.id not in cluster.article_ids:
            cluster.article_ids.append(draft.id)
        if draft.canonical_url and draft.canonical_url not in cluster.canonical_urls:
            cluster.canonical_urls.append(draft.canonical_url)
        self._refresh(cluster, articles)

    def _refresh(self, cluster: StoryCluster, articles: Dict[str, Article]) -> None:
        known = [articles[aid] for aid in cluster.article_ids if aid in articles]
        if not known:
            return
        published = sorted(a.published_at for a in known)
        cluster.first_published_at = min(cluster.first_published_at, published[0])
        cluster.last_published_at = max(cluster.last_published_at, published[-1])
        cluster.last_activity_at = max(cluster.last_activity_at, cluster.last_published_at)
        sources = {a.source_id for a in known} | set(cluster.source_ids)
        cluster.source_ids = sorted(sources)
        canonical = sorted(known, key=lambda a: (a.published_at, a.id))[0]
        cluster.canonical_title = canonical.title
        cluster.canonical_article_id = canonical.id
        cluster.tokens = canonical_tokens(canonical.title)

    def freeze_stale(self, clusters: Iterable[StoryCluster], now: datetime) -> List[StoryCluster]:
        frozen = []
        for cluster in clusters:
            if not cluster.frozen and self.is_stale(cluster, now):
                cluster.frozen = True
                frozen.append(cluster)
        return frozen


def apply_back_references(cluster: StoryCluster, articles: Dict[str, Article]) -> None:
    """Point every member at its cluster and at the other members."""
    for aid in cluster.article_ids:
        article = articles.get(aid)
        if article is None:
            continue
        article.cluster_id = cluster.id
        article.related_articles = [other for other in cluster.article_ids if other != aid]
