from __future__ import annotations

import re
from datetime import datetime
from typing import List

from aviso.errors import ParseError
from aviso.engine.text import (
    article_id,
    canonicalize_url,
    domain_matches,
    extract_domain,
    first_sentences,
    parse_any_date,
    read_time_minutes,
    strip_html,
    strip_outlet_suffix,
    to_iso,
    truncate,
)
from aviso.models import CATEGORIES, Article, Source
from aviso.providers.base import RawItem


EXCERPT_LIMIT = 200
MAX_TAGS = 5

CATEGORY_ALIASES = {
    "technology": "tech",
    "sci/tech": "tech",
    "general": "world",
    "top": "world",
    "international": "world",
    "nation": "world",
    "domestic": "world",
    "sport": "sports",
    "finance": "business",
    "economy": "business",
    "markets": "business",
    "games": "gaming",
    "video games": "gaming",
    "climate": "environment",
    "political": "politics",
    "lifestyle": "entertainment",
}

CATEGORY_RULES = [
    ("tech", re.compile(r"\b(tech|technology|software|ai|startup|apple|google|microsoft)\b")),
    ("business", re.compile(r"\b(business|economy|market|stock|finance|company)\b")),
    ("health", re.compile(r"\b(health|medical|hospital|doctor|covid|disease)\b")),
    ("gaming", re.compile(r"\b(game|gaming|esports|playstation|xbox)\b")),
    ("science", re.compile(r"\b(science|research|study|discovery|space|nasa)\b")),
]

TAG_VOCABULARY = [
    "technology", "tech", "ai", "artificial intelligence", "machine learning",
    "business", "finance", "economy", "stock market",
    "health", "medical", "science", "research",
    "politics", "government", "policy",
    "sports", "football", "basketball", "soccer",
    "entertainment", "movies", "music",
    "world", "international", "global",
    "climate", "environment", "energy",
]


def resolve_category(value: str | None) -> str | None:
    if not value:
        return None
    key = value.strip().lower()
    key = CATEGORY_ALIASES.get(key, key)
    return key if key in CATEGORIES else None


def infer_category(text: str) -> str:
    lowered = text.lower()
    for category, pattern in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return "world"


def pick_category(raw: RawItem, source: Source, text: str) -> str:
    for value in raw.categories:
        resolved = resolve_category(value)
        if resolved:
            return resolved
    return resolve_category(source.category) or infer_category(text)


def extract_tags(text: str, keywords: List[str] | None = None) -> List[str]:
    lowered = text.lower()
    tags: List[str] = []
    for kw in keywords or []:
        kw = str(kw).strip().lower()
        if kw and kw not in tags:
            tags.append(kw)
    for tag in TAG_VOCABULARY:
        if tag in tags:
            continue
        if re.search(r"\b" + re.escape(tag) + r"\b", lowered):
            tags.append(tag)
    return tags[:MAX_TAGS]


def pick_image(candidates: List[str]) -> str:
    for url in candidates:
        url = (url or "").strip()
        if url.startswith(("http://", "https://")):
            return url
    return ""


def passes_filters(raw: RawItem, source: Source) -> bool:
    """Per-source keyword and link-domain filters."""
    if source.exclude_keywords:
        text = f"{raw.title} {raw.summary}".lower()
        if any(kw.lower() in text for kw in source.exclude_keywords if kw):
            return False
    if source.allowlist or source.blocklist:
        domain = extract_domain(raw.link)
        if source.blocklist and domain_matches(domain, source.blocklist):
            return False
        if source.allowlist and not domain_matches(domain, source.allowlist):
            return False
    return True


def normalize_item(raw: RawItem, source: Source, now: datetime) -> Article:
    title = strip_html(raw.title)
    if not title:
        raise ParseError(source.id, "missing title")
    link = (raw.link or "").strip()
    if not link:
        raise ParseError(source.id, f"missing link for '{truncate(title, 60)}'")
    published = parse_any_date(raw.published)
    if published is None:
        raise ParseError(source.id, f"unparseable published date {raw.published!r} for {link}")

    description = strip_html(raw.summary)
    body = strip_html(raw.content) or description
    text = f"{title} {description}"
    canonical = canonicalize_url(link)
    key = (raw.guid or "").strip() or canonical

    return Article(
        id=article_id(source.id, key),
        source_id=source.id,
        source_name=source.name,
        canonical_url=canonical,
        guid=raw.guid,
        title=title,
        title_ai=strip_outlet_suffix(title),
        excerpt=truncate(description, EXCERPT_LIMIT),
        tldr=first_sentences(body) or None,
        tags=extract_tags(text, raw.keywords),
        category=pick_category(raw, source, text),
        image_url=pick_image(raw.image_candidates),
        author=strip_html(raw.author) or None,
        read_time=read_time_minutes(body),
        published_at=to_iso(published),
        imported_at=to_iso(now),
        status="published" if source.auto_publish else "draft",
        is_automated=source.auto_publish,
        moderation_status=None if source.auto_publish else "pending",
    )
