from __future__ import annotations

import os

from aviso.errors import FetchError
from aviso.models import Source
from aviso.providers.base import HttpTransport, RawItem


NEWSAPI_URL = "https://newsapi.org/v2/top-headlines"
NEWSDATA_URL = "https://newsdata.io/api/1/news"

NEWSAPI_CATEGORIES = {"business", "entertainment", "general", "health", "science", "sports", "technology"}
CATEGORY_TO_NEWSAPI = {"tech": "technology", "world": "general"}


def _api_key(source: Source, default_env: str) -> str:
    key = os.getenv(source.api_key_env or default_env, "")
    if not key:
        raise FetchError(source.id, f"missing api key ({source.api_key_env or default_env})")
    return key


def fetch_newsapi(source: Source, transport: HttpTransport, max_items: int = 50) -> list[RawItem]:
    params = {"apiKey": _api_key(source, "NEWSAPI_KEY"), "pageSize": str(min(max_items, 100)), "sortBy": "publishedAt"}
    category = CATEGORY_TO_NEWSAPI.get(source.category or "", source.category)
    if category in NEWSAPI_CATEGORIES:
        params["category"] = category
    if source.language:
        params["language"] = source.language
    if source.country:
        params["country"] = source.country.lower()
    try:
        payload = transport.get_json(source.feed_url or NEWSAPI_URL, params=params)
    except Exception as exc:
        raise FetchError(source.id, str(exc)) from exc
    if not isinstance(payload, dict) or payload.get("status") != "ok":
        message = payload.get("message") if isinstance(payload, dict) else "unexpected payload"
        raise FetchError(source.id, f"newsapi error: {message}")
    items: list[RawItem] = []
    for row in payload.get("articles") or []:
        if not isinstance(row, dict):
            continue
        items.append(
            RawItem(
                title=row.get("title") or "",
                link=row.get("url") or "",
                guid=row.get("url"),
                summary=row.get("description") or "",
                content=row.get("content") or "",
                published=row.get("publishedAt"),
                author=row.get("author"),
                image_candidates=[row["urlToImage"]] if row.get("urlToImage") else [],
            )
        )
    return items


def fetch_newsdata(source: Source, transport: HttpTransport, max_items: int = 50) -> list[RawItem]:
    params = {
        "apikey": _api_key(source, "NEWSDATA_KEY"),
        "language": source.language or "en",
        "category": CATEGORY_TO_NEWSAPI.get(source.category or "", source.category) or "top",
    }
    try:
        payload = transport.get_json(source.feed_url or NEWSDATA_URL, params=params)
    except Exception as exc:
        raise FetchError(source.id, str(exc)) from exc
    if not isinstance(payload, dict) or payload.get("status") != "success":
        raise FetchError(source.id, "newsdata error")
    items: list[RawItem] = []
    for row in (payload.get("results") or [])[:max_items]:
        if not isinstance(row, dict):
            continue
        creators = row.get("creator") or []
        items.append(
            RawItem(
                title=row.get("title") or "",
                link=row.get("link") or "",
                guid=row.get("article_id") or row.get("link"),
                summary=row.get("description") or "",
                content=row.get("content") or "",
                published=row.get("pubDate"),
                author=creators[0] if creators else None,
                categories=list(row.get("category") or []),
                image_candidates=[row["image_url"]] if row.get("image_url") else [],
                keywords=list(row.get("keywords") or []),
            )
        )
    return items
