from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

try:
    import psycopg
    from psycopg.rows import dict_row
except Exception:  # pragma: no cover - optional dependency
    psycopg = None
    dict_row = None


def _sqlite_path(url: str) -> str:
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "", 1)
    return url


def _row_to_dict(row):
    if row is None:
        return None
    if isinstance(row, dict):
        return row
    try:
        return dict(row)
    except Exception:
        return row


def _upsert_sql(table: str, columns: list[str], conflict_cols: list[str], keep_cols: list[str] | None = None) -> str:
    cols = ", ".join(columns)
    placeholders = ", ".join(["?"] * len(columns))
    conflict = ", ".join(conflict_cols)
    skip = set(conflict_cols) | set(keep_cols or [])
    updates = ", ".join([f"{col}=EXCLUDED.{col}" for col in columns if col not in skip])
    if not updates:
        return f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) ON CONFLICT ({conflict}) DO NOTHING"
    return f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) ON CONFLICT ({conflict}) DO UPDATE SET {updates}"


@dataclass
class Tx:
    """Cursor-bound view of DB used while the lock is already held."""

    db: "DB"
    cur: object

    def execute(self, sql: str, params: tuple | dict = ()) -> int:
        self.cur.execute(self.db._prepare(sql), params)
        return self.cur.rowcount

    def executemany(self, sql: str, seq: list[tuple]) -> None:
        if not seq:
            return
        self.cur.executemany(self.db._prepare(sql), seq)

    def fetchone(self, sql: str, params: tuple | dict = ()):
        self.cur.execute(self.db._prepare(sql), params)
        return _row_to_dict(self.cur.fetchone())

    def fetchall(self, sql: str, params: tuple | dict = ()):
        self.cur.execute(self.db._prepare(sql), params)
        return [_row_to_dict(r) for r in self.cur.fetchall()]

    def upsert(
        self,
        table: str,
        columns: list[str],
        conflict_cols: list[str],
        rows: list[tuple],
        keep_cols: list[str] | None = None,
    ) -> None:
        if not rows:
            return
        self.executemany(_upsert_sql(table, columns, conflict_cols, keep_cols), rows)


@dataclass
class DB:
    conn: object
    lock: threading.Lock
    dialect: str

    def _prepare(self, sql: str) -> str:
        if self.dialect == "postgres":
            return sql.replace("?", "%s")
        return sql

    @contextmanager
    def transaction(self):
        with self.lock:
            tx = Tx(db=self, cur=self.conn.cursor())
            try:
                yield tx
            except Exception:
                self.conn.rollback()
                raise
            self.conn.commit()

    def execute(self, sql: str, params: tuple | dict = ()) -> int:
        with self.transaction() as tx:
            return tx.execute(sql, params)

    def executemany(self, sql: str, seq: list[tuple]) -> None:
        if not seq:
            return
        with self.transaction() as tx:
            tx.executemany(sql, seq)

    def fetchone(self, sql: str, params: tuple | dict = ()):
        with self.lock:
            cur = self.conn.cursor()
            cur.execute(self._prepare(sql), params)
            return _row_to_dict(cur.fetchone())

    def fetchall(self, sql: str, params: tuple | dict = ()):
        with self.lock:
            cur = self.conn.cursor()
            cur.execute(self._prepare(sql), params)
            rows = cur.fetchall()
            return [_row_to_dict(r) for r in rows]

    def upsert(
        self,
        table: str,
        columns: list[str],
        conflict_cols: list[str],
        rows: list[tuple],
        keep_cols: list[str] | None = None,
    ) -> None:
        if not rows:
            return
        with self.transaction() as tx:
            tx.upsert(table, columns, conflict_cols, rows, keep_cols=keep_cols)


def init_db(database_url: str) -> DB:
    parsed = urlparse(database_url)
    if parsed.scheme in ("", "sqlite"):
        path = _sqlite_path(database_url)
        conn = sqlite3.connect(path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        db = DB(conn=conn, lock=threading.Lock(), dialect="sqlite")
    elif parsed.scheme in ("postgres", "postgresql"):
        if psycopg is None:
            raise ValueError("psycopg is required for Postgres support.")
        conn = psycopg.connect(database_url, row_factory=dict_row)
        db = DB(conn=conn, lock=threading.Lock(), dialect="postgres")
    else:
        raise ValueError("Unsupported database scheme.")
    _create_schema(db)
    return db


def _create_schema(db: DB) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            name TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            data_json TEXT NOT NULL,
            updated_at TEXT
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL,
            cluster_id TEXT,
            category TEXT,
            status TEXT NOT NULL,
            published_at TEXT NOT NULL,
            imported_at TEXT NOT NULL,
            view_count INTEGER NOT NULL DEFAULT 0,
            data_json TEXT NOT NULL
        )
        """
    )
    db.execute("CREATE INDEX IF NOT EXISTS idx_articles_published ON articles (published_at)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_articles_cluster ON articles (cluster_id)")
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS clusters (
            id TEXT PRIMARY KEY,
            frozen INTEGER NOT NULL DEFAULT 0,
            first_published_at TEXT,
            last_activity_at TEXT,
            data_json TEXT NOT NULL
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS moderations (
            id TEXT PRIMARY KEY,
            article_id TEXT NOT NULL,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            data_json TEXT NOT NULL
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS bulk_operations (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            data_json TEXT NOT NULL
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT
        )
        """
    )


def purge_old(db: DB, retention_days: int, now: datetime | None = None) -> int:
    """Drop whole stories whose newest member is past retention. Returns articles removed."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    cutoff_iso = cutoff.replace(microsecond=0).isoformat().replace("+00:00", "Z")
    with db.transaction() as tx:
        removed = tx.execute(
            """
            DELETE FROM articles
            WHERE published_at < ?
              AND (cluster_id IS NULL
                   OR cluster_id NOT IN (SELECT id FROM clusters)
                   OR cluster_id IN (SELECT id FROM clusters WHERE last_activity_at < ?))
            """,
            (cutoff_iso, cutoff_iso),
        )
        tx.execute("DELETE FROM clusters WHERE last_activity_at < ?", (cutoff_iso,))
        tx.execute("DELETE FROM moderations WHERE created_at < ?", (cutoff_iso,))
    return removed
