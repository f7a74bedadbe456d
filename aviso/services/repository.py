from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List

from aviso.infra.db import DB, Tx, purge_old
from aviso.models import Article, BulkOperation, Moderation, Source, StoryCluster


ARTICLE_COLUMNS = [
    "id",
    "source_id",
    "cluster_id",
    "category",
    "status",
    "published_at",
    "imported_at",
    "view_count",
    "data_json",
]
CLUSTER_COLUMNS = ["id", "frozen", "first_published_at", "last_activity_at", "data_json"]
SOURCE_COLUMNS = ["id", "name", "active", "data_json", "updated_at"]


@dataclass
class IngestBatch:
    """Everything one ingestion cycle writes. Applied in a single transaction."""

    articles: List[Article] = field(default_factory=list)
    clusters: List[StoryCluster] = field(default_factory=list)
    removed_clusters: List[str] = field(default_factory=list)
    sources: List[Source] = field(default_factory=list)
    last_ingest_at: str | None = None


class ArticleRepository(ABC):
    @abstractmethod
    def get_article(self, article_id: str) -> Article | None: ...

    @abstractmethod
    def get_articles(self, ids: Iterable[str]) -> Dict[str, Article]: ...

    @abstractmethod
    def list_articles(self, status: str | None = None, source_id: str | None = None) -> List[Article]: ...

    @abstractmethod
    def existing_article_ids(self, ids: Iterable[str]) -> set: ...

    @abstractmethod
    def put_article(self, article: Article) -> None: ...

    @abstractmethod
    def delete_article(self, article_id: str) -> bool: ...

    @abstractmethod
    def increment_view_count(self, article_id: str) -> bool: ...

    @abstractmethod
    def get_cluster(self, cluster_id: str) -> StoryCluster | None: ...

    @abstractmethod
    def list_open_clusters(self) -> List[StoryCluster]: ...

    @abstractmethod
    def get_source(self, source_id: str) -> Source | None: ...

    @abstractmethod
    def list_sources(self) -> List[Source]: ...

    @abstractmethod
    def put_source(self, source: Source) -> None: ...

    @abstractmethod
    def save_moderation(self, moderation: Moderation, article: Article | None = None) -> None: ...

    @abstractmethod
    def list_moderations(self, article_id: str | None = None) -> List[Moderation]: ...

    @abstractmethod
    def save_bulk_operation(self, op: BulkOperation) -> None: ...

    @abstractmethod
    def list_bulk_operations(self, limit: int = 20) -> List[BulkOperation]: ...

    @abstractmethod
    def commit_batch(self, batch: IngestBatch) -> int: ...

    @abstractmethod
    def generation(self) -> int: ...

    @abstractmethod
    def get_kv(self, key: str) -> str | None: ...

    @abstractmethod
    def purge(self, retention_days: int, now: datetime | None = None) -> int: ...


def _dump(model) -> str:
    return json.dumps(model.model_dump(mode="json"), separators=(",", ":"), ensure_ascii=False)


def _article_row(article: Article) -> tuple:
    return (
        article.id,
        article.source_id,
        article.cluster_id,
        article.category,
        article.status,
        article.published_at,
        article.imported_at,
        article.view_count,
        _dump(article),
    )


def _cluster_row(cluster: StoryCluster) -> tuple:
    return (
        cluster.id,
        1 if cluster.frozen else 0,
        cluster.first_published_at,
        cluster.last_activity_at,
        _dump(cluster),
    )


def _source_row(source: Source, now_iso: str | None) -> tuple:
    return (source.id, source.name, 1 if source.active else 0, _dump(source), now_iso)


def _load_article(row: dict) -> Article:
    data = json.loads(row["data_json"])
    # view_count column is authoritative.
    data["view_count"] = int(row["view_count"] or 0)
    return Article.model_validate(data)


class SqlArticleRepository(ArticleRepository):
    def __init__(self, db: DB):
        self.db = db

    # -- articles ------------------------------------------------------------

    def get_article(self, article_id: str) -> Article | None:
        row = self.db.fetchone("SELECT view_count, data_json FROM articles WHERE id = ?", (article_id,))
        return _load_article(row) if row else None

    def get_articles(self, ids: Iterable[str]) -> Dict[str, Article]:
        ids = list(dict.fromkeys(ids))
        out: Dict[str, Article] = {}
        for start in range(0, len(ids), 500):
            chunk = ids[start : start + 500]
            placeholders = ", ".join(["?"] * len(chunk))
            rows = self.db.fetchall(
                f"SELECT view_count, data_json FROM articles WHERE id IN ({placeholders})", tuple(chunk)
            )
            for row in rows:
                article = _load_article(row)
                out[article.id] = article
        return out

    def list_articles(self, status: str | None = None, source_id: str | None = None) -> List[Article]:
        sql = "SELECT view_count, data_json FROM articles WHERE 1=1"
        params: list = []
        if status:
            sql += " AND status = ?"
            params.append(status)
        if source_id:
            sql += " AND source_id = ?"
            params.append(source_id)
        sql += " ORDER BY published_at DESC, id DESC"
        return [_load_article(row) for row in self.db.fetchall(sql, tuple(params))]

    def existing_article_ids(self, ids: Iterable[str]) -> set:
        return set(self.get_articles(ids).keys())

    def put_article(self, article: Article) -> None:
        with self.db.transaction() as tx:
            self._write_articles(tx, [article])
            self._bump_generation(tx)

    def delete_article(self, article_id: str) -> bool:
        with self.db.transaction() as tx:
            row = tx.fetchone("SELECT cluster_id FROM articles WHERE id = ?", (article_id,))
            if row is None:
                return False
            tx.execute("DELETE FROM articles WHERE id = ?", (article_id,))
            cluster_id = row.get("cluster_id")
            if cluster_id:
                crow = tx.fetchone("SELECT data_json FROM clusters WHERE id = ?", (cluster_id,))
                if crow:
                    cluster = StoryCluster.model_validate(json.loads(crow["data_json"]))
                    cluster.article_ids = [aid for aid in cluster.article_ids if aid != article_id]
                    if cluster.article_ids:
                        self._write_clusters(tx, [cluster])
                    else:
                        tx.execute("DELETE FROM clusters WHERE id = ?", (cluster_id,))
            self._bump_generation(tx)
        return True

    def increment_view_count(self, article_id: str) -> bool:
        return self.db.execute("UPDATE articles SET view_count = view_count + 1 WHERE id = ?", (article_id,)) > 0

    # -- clusters ------------------------------------------------------------

    def get_cluster(self, cluster_id: str) -> StoryCluster | None:
        row = self.db.fetchone("SELECT data_json FROM clusters WHERE id = ?", (cluster_id,))
        return StoryCluster.model_validate(json.loads(row["data_json"])) if row else None

    def list_open_clusters(self) -> List[StoryCluster]:
        rows = self.db.fetchall("SELECT data_json FROM clusters WHERE frozen = 0 ORDER BY id")
        return [StoryCluster.model_validate(json.loads(r["data_json"])) for r in rows]

    # -- sources -------------------------------------------------------------

    def get_source(self, source_id: str) -> Source | None:
        row = self.db.fetchone("SELECT data_json FROM sources WHERE id = ?", (source_id,))
        return Source.model_validate(json.loads(row["data_json"])) if row else None

    def list_sources(self) -> List[Source]:
        rows = self.db.fetchall("SELECT data_json FROM sources ORDER BY id")
        return [Source.model_validate(json.loads(r["data_json"])) for r in rows]

    def put_source(self, source: Source) -> None:
        with self.db.transaction() as tx:
            tx.upsert("sources", SOURCE_COLUMNS, ["id"], [_source_row(source, source.last_fetched_at)])
            self._bump_generation(tx)

    # -- moderation and bulk history -----------------------------------------

    def save_moderation(self, moderation: Moderation, article: Article | None = None) -> None:
        with self.db.transaction() as tx:
            tx.upsert(
                "moderations",
                ["id", "article_id", "status", "created_at", "data_json"],
                ["id"],
                [(moderation.id, moderation.article_id, moderation.status, moderation.created_at, _dump(moderation))],
            )
            if article is not None:
                self._write_articles(tx, [article])
            self._bump_generation(tx)

    def list_moderations(self, article_id: str | None = None) -> List[Moderation]:
        if article_id:
            rows = self.db.fetchall(
                "SELECT data_json FROM moderations WHERE article_id = ? ORDER BY created_at DESC, id DESC",
                (article_id,),
            )
        else:
            rows = self.db.fetchall("SELECT data_json FROM moderations ORDER BY created_at DESC, id DESC")
        return [Moderation.model_validate(json.loads(r["data_json"])) for r in rows]

    def save_bulk_operation(self, op: BulkOperation) -> None:
        self.db.upsert("bulk_operations", ["id", "created_at", "data_json"], ["id"], [(op.id, op.created_at, _dump(op))])

    def list_bulk_operations(self, limit: int = 20) -> List[BulkOperation]:
        rows = self.db.fetchall(
            "SELECT data_json FROM bulk_operations ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        )
        return [BulkOperation.model_validate(json.loads(r["data_json"])) for r in rows]

    # -- batches and bookkeeping ---------------------------------------------

    def commit_batch(self, batch: IngestBatch) -> int:
        with self.db.transaction() as tx:
            self._write_articles(tx, batch.articles)
            self._write_clusters(tx, batch.clusters)
            for cluster_id in batch.removed_clusters:
                tx.execute("DELETE FROM clusters WHERE id = ?", (cluster_id,))
            if batch.sources:
                tx.upsert("sources", SOURCE_COLUMNS, ["id"], [_source_row(s, s.last_fetched_at) for s in batch.sources])
            if batch.last_ingest_at:
                tx.upsert("kv_store", ["key", "value"], ["key"], [("last_ingest_at", batch.last_ingest_at)])
            return self._bump_generation(tx)

    def generation(self) -> int:
        return int(self.get_kv("store_generation") or 0)

    def get_kv(self, key: str) -> str | None:
        row = self.db.fetchone("SELECT value FROM kv_store WHERE key = ?", (key,))
        return row.get("value") if row else None

    def purge(self, retention_days: int, now: datetime | None = None) -> int:
        removed = purge_old(self.db, retention_days, now=now)
        if removed:
            with self.db.transaction() as tx:
                self._bump_generation(tx)
        return removed

    def _write_articles(self, tx: Tx, articles: List[Article]) -> None:
        tx.upsert("articles", ARTICLE_COLUMNS, ["id"], [_article_row(a) for a in articles], keep_cols=["view_count"])

    def _write_clusters(self, tx: Tx, clusters: List[StoryCluster]) -> None:
        tx.upsert("clusters", CLUSTER_COLUMNS, ["id"], [_cluster_row(c) for c in clusters])

    def _bump_generation(self, tx: Tx) -> int:
        row = tx.fetchone("SELECT value FROM kv_store WHERE key = ?", ("store_generation",))
        current = int(row["value"]) if row and row.get("value") else 0
        tx.upsert("kv_store", ["key", "value"], ["key"], [("store_generation", str(current + 1))])
        return current + 1
