from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from aviso.config import DEFAULT_PERSONAL_WEIGHTS, normalize_weights
from aviso.engine.text import parse_iso
from aviso.models import CATEGORIES, Article, CategoryInfo, FeedFilters, FeedPage, PersonalizedRequest


RECENCY_DECAY_LAMBDA = 0.045
RECENCY_DECAY_FLOOR = 0.35
RELATED_LIMIT = 5

LEAN_GROUPS = {
    "left": "left",
    "center-left": "left",
    "center": "center",
    "mixed": "center",
    "center-right": "right",
    "right": "right",
}


def newest_first(articles: Iterable[Article]) -> List[Article]:
    return sorted(articles, key=lambda a: (a.published_at, a.id), reverse=True)


def published_only(articles: Iterable[Article]) -> List[Article]:
    return [a for a in articles if a.status == "published"]


def paginate(articles: List[Article], limit: int, offset: int) -> FeedPage:
    total = len(articles)
    window = articles[offset : offset + limit] if offset < total else []
    return FeedPage(
        articles=window,
        total=total,
        has_more=offset + len(window) < total,
        limit=limit,
        offset=offset,
    )


def lean_group(article: Article) -> str:
    if article.bias_analysis is None:
        return "center"
    return LEAN_GROUPS.get(article.bias_analysis.overall, "center")


def balance(articles: List[Article]) -> List[Article]:
    """Round-robin across left/center/right groups, keeping each group's order."""
    groups: Dict[str, List[Article]] = {"left": [], "center": [], "right": []}
    for article in articles:
        groups[lean_group(article)].append(article)
    out: List[Article] = []
    index = 0
    while len(out) < len(articles):
        for key in ("left", "center", "right"):
            if index < len(groups[key]):
                out.append(groups[key][index])
        index += 1
    return out


def apply_filters(articles: Iterable[Article], filters: FeedFilters | None) -> List[Article]:
    items = list(articles)
    if filters is None:
        return items
    if filters.min_trust is not None:
        items = [a for a in items if (a.effective_trust() or 0) >= filters.min_trust]
    if filters.sources:
        wanted = set(filters.sources)
        items = [a for a in items if a.source_id in wanted]
    if filters.categories:
        wanted = set(filters.categories)
        items = [a for a in items if a.category in wanted]
    return items


def category_feed(
    articles: Iterable[Article],
    category: str | None = None,
    limit: int = 20,
    offset: int = 0,
    filters: FeedFilters | None = None,
) -> FeedPage:
    items = published_only(articles)
    if category:
        items = [a for a in items if a.category == category]
    items = newest_first(apply_filters(items, filters))
    if filters is not None and filters.balanced:
        items = balance(items)
    return paginate(items, limit, offset)


def trending(articles: Iterable[Article], now: datetime, window_hours: float, limit: int) -> List[Article]:
    cutoff = now - timedelta(hours=window_hours)
    recent = []
    for article in published_only(articles):
        published = parse_iso(article.published_at)
        if published is not None and published >= cutoff:
            recent.append(article)
    recent.sort(key=lambda a: (-a.view_count, a.published_at, a.id))
    return recent[:limit]


def recency_decay(article: Article, now: datetime) -> float:
    published = parse_iso(article.published_at)
    if published is None:
        return RECENCY_DECAY_FLOOR
    age_hours = max(0.0, (now - published).total_seconds() / 3600.0)
    return max(RECENCY_DECAY_FLOOR, math.exp(-RECENCY_DECAY_LAMBDA * age_hours))


def personal_score(article: Article, prefs: PersonalizedRequest, weights: dict, now: datetime) -> float:
    followed = 1.0 if article.source_id in prefs.followed_sources else 0.0
    if article.category in prefs.category_affinity:
        affinity = prefs.category_affinity[article.category]
    else:
        affinity = 1.0 if article.category in prefs.followed_categories else 0.0
    affinity = max(0.0, min(1.0, float(affinity)))
    general = (article.effective_trust() or 0) / 100.0
    blended = weights["followed"] * followed + weights["affinity"] * affinity + weights["general"] * general
    return blended * recency_decay(article, now)


def personalized(
    articles: Iterable[Article],
    prefs: PersonalizedRequest,
    now: datetime,
    weights: dict | None = None,
) -> List[Article]:
    """Blend followed sources, category affinity and trusted general news.

    One article per story cluster survives: the best-scoring member.
    """
    weights = normalize_weights(weights, DEFAULT_PERSONAL_WEIGHTS)
    candidates = published_only(articles)
    if prefs.min_trust is not None:
        candidates = [a for a in candidates if (a.effective_trust() or 0) >= prefs.min_trust]
    scored = [(personal_score(a, prefs, weights, now), a) for a in candidates]
    scored.sort(key=lambda pair: (-pair[0], _neg_ts(pair[1]), pair[1].id))

    seen_clusters = set()
    out: List[Article] = []
    for _, article in scored:
        key = article.cluster_id or article.id
        if key in seen_clusters:
            continue
        seen_clusters.add(key)
        out.append(article)
    if prefs.balanced:
        out = balance(out)
    return out[: prefs.limit]


def _neg_ts(article: Article) -> float:
    published = parse_iso(article.published_at)
    return -published.timestamp() if published else 0.0


def search(articles: Iterable[Article], query: str, limit: int = 20) -> List[Article]:
    needle = (query or "").strip().casefold()
    if not needle:
        return []
    matches = [
        a
        for a in published_only(articles)
        if needle in a.title.casefold() or needle in (a.excerpt or "").casefold()
    ]
    return newest_first(matches)[:limit]


def related(article: Article, articles: Iterable[Article], limit: int = RELATED_LIMIT) -> List[Article]:
    pool = {a.id: a for a in published_only(articles) if a.id != article.id}
    same_story = newest_first(pool[aid] for aid in article.related_articles if aid in pool)
    picked = {a.id for a in same_story}
    others = newest_first(
        a
        for a in pool.values()
        if a.id not in picked and (a.category == article.category or a.source_id == article.source_id)
    )
    return (same_story + others)[:limit]


def category_listing(articles: Iterable[Article]) -> List[CategoryInfo]:
    counts = Counter(a.category for a in published_only(articles))
    return [CategoryInfo(id=cid, name=name, article_count=counts.get(cid, 0)) for cid, name in CATEGORIES.items()]
