from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError

from aviso.config import Settings, load_settings
from aviso.engine.text import to_iso
from aviso.errors import AvisoError, NotFoundError, ValidationError
from aviso.infra.cache import Cache, init_cache
from aviso.infra.db import init_db
from aviso.models import (
    ArticleUpdate,
    BulkOperationRequest,
    FactCheckRequest,
    FeedFilters,
    ModerationRequest,
    OpResult,
    PersonalizedRequest,
    SourceUpdate,
)
from aviso.providers.base import HttpTransport
from aviso.services.fetcher import FetcherService
from aviso.services.ingest import IngestPipelineService
from aviso.services.moderation import ModerationService
from aviso.services.news import NewsService
from aviso.services.registry import SourceRegistry
from aviso.services.repository import ArticleRepository, SqlArticleRepository


logger = logging.getLogger("aviso.api")

STATUS_BY_ERROR = {NotFoundError: 404, ValidationError: 422}


@dataclass
class Services:
    settings: Settings
    repo: ArticleRepository
    registry: SourceRegistry
    news: NewsService
    ingest: IngestPipelineService
    moderation: ModerationService


def build_services(
    settings: Settings,
    transport: HttpTransport | None = None,
    cache: Cache | None = None,
    use_cache: bool = True,
) -> Services:
    db = init_db(settings.database_url)
    repo = SqlArticleRepository(db)
    registry = SourceRegistry(repo)
    if cache is None and use_cache:
        cache = init_cache(settings.redis_url, settings.cache_ttl_seconds)
    fetcher = FetcherService.from_settings(settings, transport=transport)
    ingest = IngestPipelineService.from_settings(settings, repo, registry, fetcher=fetcher)
    return Services(
        settings=settings,
        repo=repo,
        registry=registry,
        news=NewsService(repo, registry, settings, cache=cache),
        ingest=ingest,
        moderation=ModerationService(repo, registry, ingest),
    )


def _ok(data: Any = None) -> dict:
    return OpResult(ok=True, data=jsonable_encoder(data)).model_dump()


def _fail(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=OpResult(ok=False, error_code=code, error_msg=message).model_dump())


def _invalid(errors) -> JSONResponse:
    fields = sorted({".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in errors})
    return _fail(422, "validation_error", f"invalid request: {', '.join(f for f in fields if f) or 'body'}")


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or (services.settings if services else load_settings())
    services = services or build_services(settings)
    app = FastAPI(title="aviso")
    app.state.services = services

    @app.exception_handler(AvisoError)
    async def _aviso_error(request: Request, exc: AvisoError):
        status = STATUS_BY_ERROR.get(type(exc))
        if status is None:
            logger.error("request failed path=%s err=%s", request.url.path, exc)
            return _fail(500, "internal_error", "internal error")
        return _fail(status, exc.code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError):
        return _invalid(exc.errors())

    @app.exception_handler(SchemaError)
    async def _schema_invalid(request: Request, exc: SchemaError):
        return _invalid(exc.errors())

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return _fail(500, "internal_error", "internal error")

    @app.get("/health")
    def health():
        repo = services.repo
        return _ok(
            {
                "service": "aviso",
                "version": os.getenv("SERVICE_VERSION") or os.getenv("GIT_SHA") or "dev",
                "tsISO": to_iso(services.news.clock()),
                "store_generation": repo.generation(),
                "last_ingest_at": repo.get_kv("last_ingest_at"),
                "active_sources": len(services.registry.list_active_sources()),
            }
        )

    @app.get("/feed")
    def get_feed(
        category: str | None = None,
        limit: int = 20,
        offset: int = 0,
        min_trust: int | None = Query(None, ge=0, le=100),
        balanced: bool = False,
        sources: str | None = None,
        categories: str | None = None,
    ):
        filters = FeedFilters(
            min_trust=min_trust,
            balanced=balanced,
            sources=_split(sources),
            categories=_split(categories),
        )
        return _ok(services.news.get_feed(category=category, limit=limit, offset=offset, filters=filters))

    @app.get("/articles/{article_id}")
    def get_article(article_id: str):
        return _ok(services.news.get_article(article_id))

    @app.get("/articles/{article_id}/related")
    def get_related(article_id: str, limit: int = 5):
        return _ok(services.news.related(article_id, limit=limit))

    @app.post("/articles/{article_id}/view")
    def increment_view(article_id: str):
        services.news.increment_view(article_id)
        return _ok({"id": article_id})

    @app.get("/search")
    def search(q: str = "", limit: int = 20):
        return _ok(services.news.search(q, limit=limit))

    @app.get("/trending")
    def trending(limit: int | None = None):
        return _ok(services.news.trending(limit=limit))

    @app.post("/feed/personalized")
    def personalized(prefs: PersonalizedRequest):
        return _ok(services.news.personalized(prefs))

    @app.get("/sources")
    def list_sources():
        return _ok(services.news.sources())

    @app.get("/categories")
    def list_categories():
        return _ok(services.news.categories())

    @app.get("/admin/articles")
    def admin_articles(
        status: str = "all",
        category: str | None = None,
        source_id: str | None = None,
        q: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ):
        page = services.moderation.list_articles(
            status=status, category=category, source_id=source_id, q=q, limit=limit, offset=offset
        )
        return _ok(page)

    @app.patch("/admin/articles/{article_id}")
    def admin_update_article(article_id: str, update: ArticleUpdate):
        return _ok(services.moderation.update_article(article_id, update))

    @app.delete("/admin/articles/{article_id}")
    def admin_delete_article(article_id: str):
        services.moderation.delete_article(article_id)
        return _ok({"id": article_id})

    @app.post("/admin/moderate")
    def admin_moderate(req: ModerationRequest):
        return _ok(services.moderation.moderate(req))

    @app.post("/admin/bulk")
    def admin_bulk(req: BulkOperationRequest):
        return _ok(services.moderation.bulk(req))

    @app.get("/admin/bulk")
    def admin_bulk_history(limit: int = 20):
        return _ok(services.moderation.bulk_history(limit=limit))

    @app.post("/admin/fact-check")
    def admin_fact_check(req: FactCheckRequest):
        return _ok(services.moderation.fact_check(req))

    @app.put("/admin/sources/{source_id}")
    def admin_update_source(source_id: str, update: SourceUpdate):
        return _ok(services.moderation.update_source(source_id, update))

    @app.post("/admin/ingest")
    def admin_ingest():
        return _ok(services.ingest.run_cycle())

    @app.get("/admin/stats")
    def admin_stats():
        return _ok(
            services.moderation.stats(
                trending_window_hours=settings.trending_window_hours,
                trending_limit=settings.trending_limit,
            )
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aviso.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8001")),
    )
