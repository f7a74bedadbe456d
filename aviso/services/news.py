from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List

from aviso.engine import feed
from aviso.engine.normalizer import resolve_category
from aviso.errors import NotFoundError, ValidationError
from aviso.infra.cache import Cache, cache_key
from aviso.infra.metrics import hash_block
from aviso.models import Article, CategoryInfo, FeedFilters, FeedPage, PersonalizedRequest, Source
from aviso.services.registry import SourceRegistry
from aviso.services.repository import ArticleRepository


MAX_PAGE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_page(limit: int, offset: int = 0, max_limit: int = MAX_PAGE) -> None:
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}")
    if offset < 0:
        raise ValidationError("offset must be >= 0")


class NewsService:
    """Read side for readers: feeds, lookups, search and view counts."""

    def __init__(
        self,
        repo: ArticleRepository,
        registry: SourceRegistry,
        settings,
        cache: Cache | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repo = repo
        self.registry = registry
        self.settings = settings
        self.cache = cache
        self.clock = clock

    def _cached(self, key_parts: list, producer: Callable[[], object]):
        if self.cache is None:
            return producer()
        key = cache_key("aviso", f"g{self.repo.generation()}", *key_parts)
        return self.cache.get_or_set(key, producer)

    @staticmethod
    def _category(value: str) -> str:
        category = resolve_category(value)
        if category is None:
            raise ValidationError(f"unknown category {value!r}")
        return category

    def get_feed(
        self,
        category: str | None = None,
        limit: int = 20,
        offset: int = 0,
        filters: FeedFilters | None = None,
    ) -> FeedPage:
        check_page(limit, offset)
        filters = filters or FeedFilters()
        if category:
            category = self._category(category)
        if filters.categories:
            filters = filters.model_copy(update={"categories": [self._category(c) for c in filters.categories]})

        def _build():
            page = feed.category_feed(self.repo.list_articles(status="published"), category, limit, offset, filters)
            return page.model_dump(mode="json")

        digest = hash_block({"category": category, "limit": limit, "offset": offset, "filters": filters.model_dump()})
        return FeedPage.model_validate(self._cached(["feed", digest[:16]], _build))

    def get_article(self, article_id: str) -> Article:
        article = self.repo.get_article(article_id)
        if article is None or article.status != "published":
            raise NotFoundError(f"Article {article_id} not found")
        return article

    def related(self, article_id: str, limit: int = feed.RELATED_LIMIT) -> List[Article]:
        check_page(limit, 0)
        article = self.get_article(article_id)
        return feed.related(article, self.repo.list_articles(status="published"), limit)

    def increment_view(self, article_id: str) -> None:
        if not self.repo.increment_view_count(article_id):
            raise NotFoundError(f"Article {article_id} not found")

    def search(self, query: str, limit: int = 20) -> List[Article]:
        check_page(limit, 0)
        return feed.search(self.repo.list_articles(status="published"), query, limit)

    def trending(self, limit: int | None = None) -> List[Article]:
        if limit is None:
            limit = self.settings.trending_limit
        check_page(limit, 0)

        def _build():
            items = feed.trending(
                self.repo.list_articles(status="published"), self.clock(), self.settings.trending_window_hours, limit
            )
            return [a.model_dump(mode="json") for a in items]

        return [Article.model_validate(row) for row in self._cached(["trending", str(limit)], _build)]

    def personalized(self, prefs: PersonalizedRequest) -> List[Article]:
        return feed.personalized(
            self.repo.list_articles(status="published"), prefs, self.clock(), self.settings.personal_weights
        )

    def sources(self) -> List[Source]:
        return self.registry.list_sources()

    def categories(self) -> List[CategoryInfo]:
        return feed.category_listing(self.repo.list_articles(status="published"))
