from __future__ import annotations

from typing import Any, List, Literal

from pydantic import BaseModel, Field, model_validator


CATEGORIES = {
    "tech": "Technology",
    "business": "Business",
    "world": "World",
    "health": "Health",
    "gaming": "Gaming",
    "science": "Science",
    "sports": "Sports",
    "politics": "Politics",
    "entertainment": "Entertainment",
    "environment": "Environment",
}

BIAS_BUCKETS = ["left", "center-left", "center", "center-right", "right"]
FACT_CHECK_STATUSES = ["verified", "disputed", "false", "unverified", "satire"]
ModerationStatus = Literal["approved", "rejected", "flagged"]
BulkOperationType = Literal["publish", "delete", "archive", "update_category", "update_trust_score"]


class BiasRating(BaseModel):
    political: str = "center"
    factual: str = "mostly-factual"
    overall: int = Field(default=50, ge=0, le=100)


class Ownership(BaseModel):
    type: Literal["public", "private", "government", "nonprofit", "cooperative"] = "private"
    parent: str | None = None
    subsidiaries: List[str] = Field(default_factory=list)


class Source(BaseModel):
    id: str
    name: str
    feed_url: str = ""
    homepage_url: str | None = None
    kind: Literal["rss", "googlenews", "newsapi", "newsdata"] = "rss"
    category: str | None = None
    topic: str | None = None
    country: str | None = None
    language: str = "en"
    bias_rating: BiasRating = Field(default_factory=BiasRating)
    trust_rating: int = Field(default=50, ge=0, le=100)
    transparency_score: int = Field(default=50, ge=0, le=100)
    ownership: Ownership = Field(default_factory=Ownership)
    active: bool = True
    auto_publish: bool = True
    exclude_keywords: List[str] = Field(default_factory=list)
    allowlist: List[str] = Field(default_factory=list)
    blocklist: List[str] = Field(default_factory=list)
    api_key_env: str | None = None
    max_items: int | None = None
    last_fetched_at: str | None = None


class TrustMetrics(BaseModel):
    overall: int = 0
    source_credibility: int = 0
    factual_accuracy: int = 0
    transparency: int = 0
    editorial: int = 0


class BiasScore(BaseModel):
    score: float = 0.0
    confidence: float = 0.0


class BiasAnalysis(BaseModel):
    political: BiasScore = Field(default_factory=BiasScore)
    emotional: BiasScore = Field(default_factory=BiasScore)
    factual: BiasScore = Field(default_factory=BiasScore)
    overall: Literal["left", "center-left", "center", "center-right", "right", "mixed"] = "center"
    confidence: float = 0.0


class FactCheckResult(BaseModel):
    status: Literal["verified", "disputed", "false", "unverified", "satire"] = "unverified"
    confidence: float = 0.0
    sources: List[str] = Field(default_factory=list)
    last_checked: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _unverified_without_sources(self) -> "FactCheckResult":
        if not self.sources:
            self.status = "unverified"
        return self


class CoverageAnalysis(BaseModel):
    perspectives: int = 0
    sources: int = 0
    geographic: List[str] = Field(default_factory=list)
    political: List[str] = Field(default_factory=list)
    completeness: float = 0.0


class SentimentAnalysis(BaseModel):
    score: float = 0.0
    label: Literal["positive", "negative", "neutral"] = "neutral"
    confidence: float = 0.0
    subjectivity: float = 0.0


class PoliticalBiasHistogram(BaseModel):
    left: float = 0.0
    center_left: float = 0.0
    center: float = 0.0
    center_right: float = 0.0
    right: float = 0.0


class TimelineEntry(BaseModel):
    timestamp: str
    article_id: str
    source: str
    headline: str
    trust_score: int = 0
    significance: Literal["breaking", "major", "minor"] = "minor"


class SourceEvolution(BaseModel):
    timeline: List[TimelineEntry] = Field(default_factory=list)
    consensus_level: float = 0.0


class AggregatorData(BaseModel):
    total_sources: int = 0
    political_bias: PoliticalBiasHistogram = Field(default_factory=PoliticalBiasHistogram)
    average_trust_score: float = 0.0
    fact_check_status: str = "unverified"
    controversy_level: float = 0.0
    coverage_gaps: List[str] = Field(default_factory=list)
    source_evolution: SourceEvolution | None = None


class Article(BaseModel):
    id: str
    source_id: str
    source_name: str = ""
    canonical_url: str
    guid: str | None = None
    title: str
    title_ai: str | None = None
    excerpt: str = ""
    tldr: str | None = None
    tags: List[str] = Field(default_factory=list)
    category: str = "world"
    image_url: str = ""
    author: str | None = None
    read_time: int = 1
    published_at: str
    imported_at: str
    view_count: int = 0
    status: Literal["published", "draft"] = "published"
    is_automated: bool = True
    moderation_status: str | None = None
    cluster_id: str | None = None
    related_articles: List[str] = Field(default_factory=list)
    trust_score: TrustMetrics | None = None
    trust_override: int | None = Field(default=None, ge=0, le=100)
    bias_analysis: BiasAnalysis | None = None
    fact_check: FactCheckResult | None = None
    coverage: CoverageAnalysis | None = None
    sentiment: SentimentAnalysis | None = None
    aggregator_data: AggregatorData | None = None

    def effective_trust(self) -> int | None:
        if self.trust_override is not None:
            return self.trust_override
        if self.trust_score is None:
            return None
        return self.trust_score.overall


class StoryCluster(BaseModel):
    id: str
    article_ids: List[str] = Field(default_factory=list)
    source_ids: List[str] = Field(default_factory=list)
    canonical_title: str = ""
    canonical_article_id: str | None = None
    tokens: List[str] = Field(default_factory=list)
    canonical_urls: List[str] = Field(default_factory=list)
    created_at: str
    first_published_at: str
    last_published_at: str
    last_activity_at: str
    frozen: bool = False
    merged_into: str | None = None
    coverage: CoverageAnalysis | None = None
    aggregator_data: AggregatorData | None = None


class FeedFilters(BaseModel):
    min_trust: int | None = Field(default=None, ge=0, le=100)
    balanced: bool = False
    sources: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class FeedPage(BaseModel):
    articles: List[Article] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False
    limit: int = 20
    offset: int = 0


class PersonalizedRequest(BaseModel):
    followed_sources: List[str] = Field(default_factory=list)
    followed_categories: List[str] = Field(default_factory=list)
    category_affinity: dict[str, float] = Field(default_factory=dict)
    min_trust: int | None = Field(default=None, ge=0, le=100)
    balanced: bool = False
    limit: int = Field(default=20, ge=1, le=100)


class CategoryInfo(BaseModel):
    id: str
    name: str
    article_count: int = 0


class ModerationRequest(BaseModel):
    article_id: str
    status: ModerationStatus
    reason: str | None = None
    moderator: str | None = None


class Moderation(BaseModel):
    id: str
    article_id: str
    status: ModerationStatus
    reason: str | None = None
    moderator: str | None = None
    created_at: str


class BulkOperationRequest(BaseModel):
    operation: BulkOperationType
    article_ids: List[str] = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class BulkOperation(BaseModel):
    id: str
    operation: BulkOperationType
    article_ids: List[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)
    status: Literal["completed", "partial", "failed"] = "completed"
    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    created_at: str
    completed_at: str | None = None


class ArticleUpdate(BaseModel):
    title: str | None = None
    excerpt: str | None = None
    category: str | None = None
    status: Literal["published", "draft"] | None = None
    trust_override: int | None = Field(default=None, ge=0, le=100)
    clear_trust_override: bool = False


class SourceUpdate(BaseModel):
    trust_rating: int | None = Field(default=None, ge=0, le=100)
    bias_rating: BiasRating | None = None
    transparency_score: int | None = Field(default=None, ge=0, le=100)
    active: bool | None = None
    auto_publish: bool | None = None


class FactCheckRequest(BaseModel):
    article_id: str
    status: Literal["verified", "disputed", "false", "unverified", "satire"]
    sources: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    notes: str | None = None


class IngestSummary(BaseModel):
    started_at: str
    finished_at: str | None = None
    sources_ok: int = 0
    sources_failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)
    fetched: int = 0
    new: int = 0
    duplicates: int = 0
    dropped: int = 0
    clusters_created: int = 0
    clusters_merged: int = 0
    clusters_updated: int = 0
    frozen: int = 0
    metrics: str = ""


class DashboardStats(BaseModel):
    total_articles: int = 0
    published_articles: int = 0
    draft_articles: int = 0
    total_sources: int = 0
    active_sources: int = 0
    today_articles: int = 0
    pending_moderation: int = 0
    flagged_articles: int = 0
    automated_articles: int = 0
    curated_articles: int = 0
    average_trust: float = 0.0
    articles_by_category: dict[str, int] = Field(default_factory=dict)
    articles_by_source: dict[str, int] = Field(default_factory=dict)
    trending_ids: List[str] = Field(default_factory=list)
    last_ingest_at: str | None = None


class OpResult(BaseModel):
    ok: bool
    data: Any = None
    error_code: str | None = None
    error_msg: str | None = None
