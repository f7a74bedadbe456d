#!/usr/bin/env python3
import os
import sys

import httpx

AVISO_URL = os.getenv("AVISO_HEALTH_URL", "http://localhost:8001/health")

REQUIRED_KEYS = ["service", "version", "tsISO", "store_generation", "last_ingest_at", "active_sources"]


def fetch_json(url: str):
    res = httpx.get(url, timeout=6)
    res.raise_for_status()
    return res.json()


def validate(resp):
    if not resp.get("ok"):
        raise AssertionError(f"health not ok: {resp.get('error_code')} {resp.get('error_msg')}")
    data = resp.get("data") or {}
    missing = [k for k in REQUIRED_KEYS if k not in data]
    if missing:
        raise AssertionError(f"missing keys in health response: {missing}")
    if data.get("active_sources", 0) <= 0:
        raise AssertionError("no active sources registered")


def main():
    try:
        validate(fetch_json(AVISO_URL))
    except Exception as exc:
        print(f"aviso health check failed: {exc}")
        sys.exit(1)
    print("health smoke test ok")


if __name__ == "__main__":
    main()
