from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable

import redis
from cachetools import TTLCache


logger = logging.getLogger("aviso.cache")


@dataclass
class Cache:
    redis_client: redis.Redis | None
    memory: TTLCache
    ttl_seconds: int
    lock: RLock

    def get(self, key: str):
        if self.redis_client is not None:
            try:
                data = self.redis_client.get(key)
                if data:
                    return json.loads(data)
            except Exception as exc:
                logger.debug("redis get failed for %s: %s", key, exc)
        with self.lock:
            return self.memory.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.redis_client is not None:
            try:
                self.redis_client.setex(key, self.ttl_seconds, json.dumps(value))
            except Exception as exc:
                logger.debug("redis set failed for %s: %s", key, exc)
        with self.lock:
            self.memory[key] = value

    def get_or_set(self, key: str, producer: Callable[[], Any]):
        cached = self.get(key)
        if cached is not None:
            return cached
        value = producer()
        self.set(key, value)
        return value


def init_cache(redis_url: str, ttl_seconds: int) -> Cache:
    client = None
    if redis_url:
        try:
            client = redis.from_url(redis_url, socket_timeout=1)
            client.ping()
        except Exception as exc:
            logger.info("redis unavailable, using in-process cache: %s", exc)
            client = None
    return Cache(
        redis_client=client,
        memory=TTLCache(maxsize=512, ttl=max(1, ttl_seconds)),
        ttl_seconds=max(1, ttl_seconds),
        lock=RLock(),
    )


def cache_key(*parts: str) -> str:
    return ":".join([str(p) for p in parts if p not in (None, "")])
