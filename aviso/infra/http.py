from __future__ import annotations

import time
from typing import Callable

import httpx


def _backoff_delay(backoff: float, attempt: int) -> float:
    return backoff * (2 ** attempt)


def _request(
    url: str,
    params: dict | None,
    headers: dict | None,
    timeout: float,
    attempts: int,
    backoff: float,
    sleep: Callable[[float], None],
) -> httpx.Response:
    last_err = None
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            with httpx.Client(timeout=timeout, follow_redirects=True) as client:
                res = client.get(url, params=params, headers=headers)
                res.raise_for_status()
                return res
        except Exception as exc:
            last_err = exc
            if attempt < attempts - 1:
                sleep(_backoff_delay(backoff, attempt))
    raise last_err


def get_json(
    url: str,
    params: dict | None = None,
    headers: dict | None = None,
    timeout: float = 10.0,
    attempts: int = 3,
    backoff: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
):
    return _request(url, params, headers, timeout, attempts, backoff, sleep).json()


def get_text(
    url: str,
    params: dict | None = None,
    headers: dict | None = None,
    timeout: float = 10.0,
    attempts: int = 3,
    backoff: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    return _request(url, params, headers, timeout, attempts, backoff, sleep).text
