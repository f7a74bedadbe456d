from __future__ import annotations

import logging
import re
from urllib.parse import urlencode

import feedparser

from aviso.errors import FetchError
from aviso.models import Source
from aviso.providers.base import HttpTransport, RawItem


logger = logging.getLogger("aviso.fetcher")

GOOGLE_NEWS_BASE = "https://news.google.com/rss"
GOOGLE_NEWS_TOPICS = {
    "tech": "TECHNOLOGY",
    "technology": "TECHNOLOGY",
    "business": "BUSINESS",
    "world": "WORLD",
    "general": "WORLD",
    "science": "SCIENCE",
    "health": "HEALTH",
    "sports": "SPORTS",
    "entertainment": "ENTERTAINMENT",
}

IMG_SRC_RE = re.compile(r"<img[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)


def _locale_params(source: Source) -> dict:
    lang = source.language or "en"
    country = (source.country or "US").upper()
    return {"hl": lang, "gl": country, "ceid": f"{country}:{lang}"}


def google_news_url(source: Source) -> str:
    topic = GOOGLE_NEWS_TOPICS.get((source.topic or source.category or "").lower())
    query = urlencode(_locale_params(source))
    if topic:
        return f"{GOOGLE_NEWS_BASE}/headlines/section/topic/{topic}?{query}"
    return f"{GOOGLE_NEWS_BASE}?{query}"


def _is_image(kind: str | None) -> bool:
    return not kind or kind.startswith("image")


def _entry_images(entry) -> list[str]:
    out: list[str] = []
    for enc in entry.get("enclosures") or []:
        href = enc.get("href") or enc.get("url")
        if href and _is_image(enc.get("type")):
            out.append(href)
    for media in entry.get("media_content") or []:
        url = media.get("url")
        if url and (media.get("medium") == "image" or _is_image(media.get("type"))):
            out.append(url)
    for thumb in entry.get("media_thumbnail") or []:
        if thumb.get("url"):
            out.append(thumb["url"])
    html = entry.get("summary") or ""
    if entry.get("content"):
        html = f"{html} {entry['content'][0].get('value', '')}"
    match = IMG_SRC_RE.search(html)
    if match:
        out.append(match.group(1))
    return out


def parse_feed(text: str, source_id: str) -> list[RawItem]:
    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        raise FetchError(source_id, f"malformed feed: {feed.get('bozo_exception')}")
    items: list[RawItem] = []
    for entry in feed.entries:
        content = ""
        if entry.get("content"):
            content = entry["content"][0].get("value", "")
        categories = [t.get("term") for t in entry.get("tags") or [] if t.get("term")]
        items.append(
            RawItem(
                title=entry.get("title", ""),
                link=entry.get("link", ""),
                guid=entry.get("id"),
                summary=entry.get("summary", "") or entry.get("description", ""),
                content=content,
                published=entry.get("published") or entry.get("updated"),
                author=entry.get("author"),
                categories=categories,
                image_candidates=_entry_images(entry),
            )
        )
    return items


def fetch_rss(source: Source, transport: HttpTransport) -> list[RawItem]:
    if source.kind == "googlenews":
        return _fetch_google_news(source, transport)
    if not source.feed_url:
        raise FetchError(source.id, "missing feed_url")
    try:
        text = transport.get_text(source.feed_url)
    except Exception as exc:
        raise FetchError(source.id, str(exc)) from exc
    return parse_feed(text, source.id)


def _fetch_google_news(source: Source, transport: HttpTransport) -> list[RawItem]:
    url = source.feed_url or google_news_url(source)
    fallback = f"{GOOGLE_NEWS_BASE}?{urlencode(_locale_params(source))}"
    try:
        text = transport.get_text(url)
    except Exception as exc:
        if url == fallback:
            raise FetchError(source.id, str(exc)) from exc
        logger.info("google news topic feed failed for %s, trying top stories: %s", source.id, exc)
        try:
            text = transport.get_text(fallback)
        except Exception as fallback_exc:
            raise FetchError(source.id, str(fallback_exc)) from fallback_exc
    return parse_feed(text, source.id)
