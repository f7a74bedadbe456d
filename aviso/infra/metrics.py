from __future__ import annotations

import hashlib
import json
from typing import Any


def stable_json_dumps(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def hash_block(payload: Any) -> str:
    raw = stable_json_dumps(payload)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def fetch_metrics_summary(results: list[dict]) -> str:
    """One segment per source, e.g. ``reuters ok 412ms items=18``."""
    parts: list[str] = []
    for res in results:
        source = res.get("source", "unknown")
        status = "ok" if res.get("ok", False) else "err"
        seg = f"{source} {status} {res.get('latency_ms', 0)}ms"
        if res.get("ok"):
            seg += f" items={res.get('items', 0)}"
            if res.get("dropped"):
                seg += f" dropped={res['dropped']}"
        elif res.get("error_code"):
            seg += f" {res['error_code']}"
        parts.append(seg)
    return " | ".join(parts)
