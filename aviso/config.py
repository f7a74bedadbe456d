import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
import yaml

BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=BASE_DIR / ".env.local")
load_dotenv(dotenv_path=BASE_DIR / ".env")


DEFAULT_TRUST_WEIGHTS = {
    "source_credibility": 0.50,
    "factual_accuracy": 0.20,
    "transparency": 0.15,
    "editorial": 0.15,
}
DEFAULT_PERSONAL_WEIGHTS = {"followed": 0.45, "affinity": 0.30, "general": 0.25}


@dataclass
class Settings:
    database_url: str
    redis_url: str
    cache_ttl_seconds: int
    sources_path: str
    request_timeout: float
    fetch_deadline_seconds: float
    fetch_retries: int
    fetch_backoff_seconds: float
    fetch_concurrency: int
    user_agent: str
    max_items_per_feed: int
    cluster_window_hours: float
    similarity_threshold: float
    similarity_metric: str
    min_shared_tokens: int
    cluster_stale_hours: float
    trust_weights: dict
    false_fact_penalty: float
    mixed_disagreement_threshold: float
    trending_window_hours: float
    trending_limit: int
    personal_weights: dict
    ingest_interval_minutes: int
    retention_days: int
    log_level: str


def _load_yaml_config() -> dict:
    config_path = os.getenv("CONFIG_PATH", str(BASE_DIR / "config.yaml"))
    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}
    except FileNotFoundError:
        return {}


def normalize_weights(weights: dict | None, defaults: dict) -> dict:
    if not weights:
        return dict(defaults)

    def _coerce(name: str) -> float:
        try:
            value = float(weights.get(name, defaults[name]))
        except (TypeError, ValueError):
            value = defaults[name]
        return max(0.0, value)

    raw = {name: _coerce(name) for name in defaults}
    total = sum(raw.values())
    if total <= 0:
        return dict(defaults)
    return {name: value / total for name, value in raw.items()}


def load_settings() -> Settings:
    cfg = _load_yaml_config()
    fetch = cfg.get("fetch") or {}
    cluster = cfg.get("cluster") or {}
    scoring = cfg.get("scoring") or {}
    feed = cfg.get("feed") or {}
    return Settings(
        database_url=os.getenv("DATABASE_URL", cfg.get("database_url") or "sqlite:///./aviso.db"),
        redis_url=os.getenv("REDIS_URL", cfg.get("redis_url") or ""),
        cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", cfg.get("cache_ttl_seconds") or 30)),
        sources_path=os.getenv("SOURCES_PATH", cfg.get("sources_path") or str(BASE_DIR / "sources.yaml")),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", fetch.get("request_timeout") or 30)),
        fetch_deadline_seconds=float(os.getenv("FETCH_DEADLINE_SECONDS", fetch.get("deadline_seconds") or 90)),
        fetch_retries=int(os.getenv("FETCH_RETRIES", fetch.get("retries") or 3)),
        fetch_backoff_seconds=float(os.getenv("FETCH_BACKOFF_SECONDS", fetch.get("backoff_seconds") or 0.5)),
        fetch_concurrency=int(os.getenv("FETCH_CONCURRENCY", fetch.get("concurrency") or 6)),
        user_agent=os.getenv("FETCH_USER_AGENT", fetch.get("user_agent") or "Mozilla/5.0 (compatible; AvisoNews/1.0)"),
        max_items_per_feed=int(os.getenv("MAX_ITEMS_PER_FEED", fetch.get("max_items_per_feed") or 50)),
        cluster_window_hours=float(os.getenv("CLUSTER_WINDOW_HOURS", cluster.get("window_hours") or 48)),
        similarity_threshold=float(os.getenv("SIMILARITY_THRESHOLD", cluster.get("similarity_threshold") or 0.5)),
        similarity_metric=os.getenv("SIMILARITY_METRIC", cluster.get("similarity_metric") or "jaccard"),
        min_shared_tokens=int(os.getenv("MIN_SHARED_TOKENS", cluster.get("min_shared_tokens") or 2)),
        cluster_stale_hours=float(os.getenv("CLUSTER_STALE_HOURS", cluster.get("stale_hours") or 72)),
        trust_weights=normalize_weights(scoring.get("trust_weights"), DEFAULT_TRUST_WEIGHTS),
        false_fact_penalty=float(os.getenv("FALSE_FACT_PENALTY", scoring.get("false_fact_penalty") or 0.2)),
        mixed_disagreement_threshold=float(
            os.getenv("MIXED_DISAGREEMENT_THRESHOLD", scoring.get("mixed_disagreement_threshold") or 100)
        ),
        trending_window_hours=float(os.getenv("TRENDING_WINDOW_HOURS", feed.get("trending_window_hours") or 24)),
        trending_limit=int(os.getenv("TRENDING_LIMIT", feed.get("trending_limit") or 10)),
        personal_weights=normalize_weights(feed.get("personal_weights"), DEFAULT_PERSONAL_WEIGHTS),
        ingest_interval_minutes=int(
            os.getenv("NEWS_INGEST_INTERVAL_MINUTES", cfg.get("news_ingest_interval_minutes") or 10)
        ),
        retention_days=int(os.getenv("RETENTION_DAYS", cfg.get("retention_days") or 30)),
        log_level=os.getenv("LOG_LEVEL", cfg.get("log_level") or "INFO"),
    )


def default_settings(**overrides) -> Settings:
    """Defaults without reading env or config.yaml; in-memory sqlite."""
    base = Settings(
        database_url="sqlite:///:memory:",
        redis_url="",
        cache_ttl_seconds=1,
        sources_path="",
        request_timeout=1.0,
        fetch_deadline_seconds=5.0,
        fetch_retries=3,
        fetch_backoff_seconds=0.0,
        fetch_concurrency=4,
        user_agent="aviso-tests",
        max_items_per_feed=50,
        cluster_window_hours=48.0,
        similarity_threshold=0.5,
        similarity_metric="jaccard",
        min_shared_tokens=2,
        cluster_stale_hours=72.0,
        trust_weights=dict(DEFAULT_TRUST_WEIGHTS),
        false_fact_penalty=0.2,
        mixed_disagreement_threshold=100.0,
        trending_window_hours=24.0,
        trending_limit=10,
        personal_weights=dict(DEFAULT_PERSONAL_WEIGHTS),
        ingest_interval_minutes=10,
        retention_days=30,
        log_level="INFO",
    )
    for key, value in overrides.items():
        setattr(base, key, value)
    return base
