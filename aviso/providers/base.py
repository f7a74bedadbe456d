from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from aviso.infra.http import get_json, get_text


T = TypeVar("T")


@dataclass
class ProviderResult(Generic[T]):
    ok: bool
    source: str
    data: T | None
    latency_ms: int
    error_code: str | None
    error_msg: str | None
    dropped: int = 0

    def debug_view(self) -> dict:
        return {
            "source": self.source,
            "ok": self.ok,
            "latency_ms": self.latency_ms,
            "items": len(self.data or []),
            "dropped": self.dropped,
            "error_code": self.error_code or "",
            "error_msg": self.error_msg or "",
        }


@dataclass
class RawItem:
    """One feed entry before normalization. Field names follow RSS, not any one API."""

    title: str
    link: str
    guid: str | None = None
    summary: str = ""
    content: str = ""
    published: str | None = None
    author: str | None = None
    categories: list[str] = field(default_factory=list)
    image_candidates: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)


@dataclass
class HttpTransport:
    timeout: float = 30.0
    attempts: int = 3
    backoff: float = 0.5
    user_agent: str = "Mozilla/5.0 (compatible; AvisoNews/1.0)"
    sleep: Callable[[float], None] = time.sleep

    def _headers(self) -> dict:
        return {"User-Agent": self.user_agent}

    def get_text(self, url: str, params: dict | None = None) -> str:
        return get_text(
            url,
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
            attempts=self.attempts,
            backoff=self.backoff,
            sleep=self.sleep,
        )

    def get_json(self, url: str, params: dict | None = None):
        return get_json(
            url,
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
            attempts=self.attempts,
            backoff=self.backoff,
            sleep=self.sleep,
        )
