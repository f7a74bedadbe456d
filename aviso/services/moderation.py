from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, List

from aviso.engine.feed import newest_first, paginate, trending
from aviso.engine.normalizer import resolve_category
from aviso.engine.text import to_iso
from aviso.errors import NotFoundError, ValidationError
from aviso.models import (
    Article,
    ArticleUpdate,
    BulkOperation,
    BulkOperationRequest,
    DashboardStats,
    FactCheckRequest,
    FeedPage,
    Moderation,
    ModerationRequest,
    Source,
    SourceUpdate,
)
from aviso.services.ingest import IngestPipelineService
from aviso.services.news import check_page
from aviso.services.registry import SourceRegistry
from aviso.services.repository import ArticleRepository


logger = logging.getLogger("aviso.moderation")

ADMIN_STATUSES = ("all", "published", "draft", "pending", "flagged")
BULK_HISTORY_LIMIT = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_found(article_id: str) -> str:
    return f"Article {article_id} not found"


def _is_pending(article: Article) -> bool:
    return article.status == "draft" and article.moderation_status in (None, "pending")


class ModerationService:
    """Admin boundary: human review, bulk edits and editorial overrides."""

    def __init__(
        self,
        repo: ArticleRepository,
        registry: SourceRegistry,
        ingest: IngestPipelineService,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repo = repo
        self.registry = registry
        self.ingest = ingest
        self.clock = clock

    def _article(self, article_id: str) -> Article:
        article = self.repo.get_article(article_id)
        if article is None:
            raise NotFoundError(_not_found(article_id))
        return article

    def moderate(self, req: ModerationRequest) -> Moderation:
        article = self._article(req.article_id)
        if req.status == "approved":
            article.status = "published"
        elif req.status == "rejected":
            article.status = "draft"
        article.moderation_status = req.status
        record = Moderation(
            id=uuid.uuid4().hex,
            article_id=article.id,
            status=req.status,
            reason=req.reason,
            moderator=req.moderator,
            created_at=to_iso(self.clock()),
        )
        self.repo.save_moderation(record, article)
        logger.info("moderated article=%s status=%s moderator=%s", article.id, req.status, req.moderator or "-")
        return record

    def _validate_bulk(self, req: BulkOperationRequest) -> dict:
        params = dict(req.params or {})
        if req.operation == "update_category":
            category = resolve_category(str(params.get("category") or ""))
            if category is None:
                raise ValidationError(f"update_category needs a known category, got {params.get('category')!r}")
            params["category"] = category
        elif req.operation == "update_trust_score":
            value = params.get("trust_score")
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
                raise ValidationError(f"update_trust_score needs trust_score in 0..100, got {value!r}")
            params["trust_score"] = int(round(value))
        return params

    def bulk(self, req: BulkOperationRequest) -> BulkOperation:
        """Apply one operation per id. Missing ids are reported, not fatal."""
        params = self._validate_bulk(req)
        op = BulkOperation(
            id=uuid.uuid4().hex,
            operation=req.operation,
            article_ids=list(req.article_ids),
            params=params,
            created_at=to_iso(self.clock()),
        )
        for article_id in req.article_ids:
            try:
                self._apply_bulk_item(req.operation, article_id, params)
                op.success += 1
            except NotFoundError:
                op.failed += 1
                op.errors.append(_not_found(article_id))
        if op.failed == 0:
            op.status = "completed"
        elif op.success == 0:
            op.status = "failed"
        else:
            op.status = "partial"
        op.completed_at = to_iso(self.clock())
        self.repo.save_bulk_operation(op)
        logger.info(
            "bulk operation=%s id=%s success=%s failed=%s status=%s",
            op.operation,
            op.id,
            op.success,
            op.failed,
            op.status,
        )
        return op

    def _apply_bulk_item(self, operation: str, article_id: str, params: dict) -> None:
        if operation == "delete":
            if not self.repo.delete_article(article_id):
                raise NotFoundError(_not_found(article_id))
            return
        article = self._article(article_id)
        if operation == "publish":
            article.status = "published"
            article.moderation_status = "approved"
        elif operation == "archive":
            article.status = "draft"
            article.moderation_status = "archived"
        elif operation == "update_category":
            article.category = params["category"]
        elif operation == "update_trust_score":
            article.trust_override = params["trust_score"]
        self.repo.put_article(article)

    def bulk_history(self, limit: int = BULK_HISTORY_LIMIT) -> List[BulkOperation]:
        check_page(limit)
        return self.repo.list_bulk_operations(limit=min(limit, BULK_HISTORY_LIMIT))

    def list_articles(
        self,
        status: str = "all",
        category: str | None = None,
        source_id: str | None = None,
        q: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> FeedPage:
        if status not in ADMIN_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(ADMIN_STATUSES)}")
        check_page(limit, offset)
        items = self.repo.list_articles(source_id=source_id)
        if status in ("published", "draft"):
            items = [a for a in items if a.status == status]
        elif status == "pending":
            items = [a for a in items if _is_pending(a)]
        elif status == "flagged":
            items = [a for a in items if a.moderation_status == "flagged"]
        if category:
            resolved = resolve_category(category)
            if resolved is None:
                raise ValidationError(f"unknown category {category!r}")
            items = [a for a in items if a.category == resolved]
        if q:
            needle = q.strip().casefold()
            items = [a for a in items if needle in a.title.casefold() or needle in a.excerpt.casefold()]
        return paginate(newest_first(items), limit, offset)

    def update_article(self, article_id: str, update: ArticleUpdate) -> Article:
        article = self._article(article_id)
        if update.category is not None:
            category = resolve_category(update.category)
            if category is None:
                raise ValidationError(f"unknown category {update.category!r}")
            article.category = category
        if update.title is not None:
            if not update.title.strip():
                raise ValidationError("title must not be empty")
            article.title = update.title.strip()
        if update.excerpt is not None:
            article.excerpt = update.excerpt
        if update.status is not None:
            article.status = update.status
        if update.clear_trust_override:
            article.trust_override = None
        elif update.trust_override is not None:
            article.trust_override = update.trust_override
        self.repo.put_article(article)
        logger.info("updated article=%s", article_id)
        return article

    def delete_article(self, article_id: str) -> None:
        if not self.repo.delete_article(article_id):
            raise NotFoundError(_not_found(article_id))
        logger.info("deleted article=%s", article_id)

    def fact_check(self, req: FactCheckRequest) -> Article:
        return self.ingest.recheck_fact(req, now=self.clock())

    def update_source(self, source_id: str, update: SourceUpdate) -> Source:
        source, ratings_changed = self.registry.prepare_update(source_id, update)
        if ratings_changed:
            self.ingest.rescore_source(source, now=self.clock())
        else:
            self.registry.register(source)
        return source

    def stats(self, trending_window_hours: float = 24.0, trending_limit: int = 10) -> DashboardStats:
        now = self.clock()
        articles = self.repo.list_articles()
        sources = self.registry.list_sources()
        today = to_iso(now)[:10]
        trusts = [t for t in (a.effective_trust() for a in articles) if t is not None]
        return DashboardStats(
            total_articles=len(articles),
            published_articles=sum(1 for a in articles if a.status == "published"),
            draft_articles=sum(1 for a in articles if a.status == "draft"),
            total_sources=len(sources),
            active_sources=sum(1 for s in sources if s.active),
            today_articles=sum(1 for a in articles if a.imported_at[:10] == today),
            pending_moderation=sum(1 for a in articles if _is_pending(a)),
            flagged_articles=sum(1 for a in articles if a.moderation_status == "flagged"),
            automated_articles=sum(1 for a in articles if a.is_automated),
            curated_articles=sum(1 for a in articles if not a.is_automated),
            average_trust=round(sum(trusts) / len(trusts), 1) if trusts else 0.0,
            articles_by_category=dict(Counter(a.category for a in articles)),
            articles_by_source=dict(Counter(a.source_id for a in articles)),
            trending_ids=[a.id for a in trending(articles, now, trending_window_hours, trending_limit)],
            last_ingest_at=self.repo.get_kv("last_ingest_at"),
        )
