from __future__ import annotations

import hashlib
import html
import math
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


TAG_RE = re.compile(r"<[^>]+>")
WORD_RE = re.compile(r"[a-z0-9]+")
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
OUTLET_SUFFIX_RE = re.compile(r"\s+(?:-|\||–|—)\s+([^-|–—]{1,60})$")

TRACKING_QUERY_PREFIXES = ("utm_",)
TRACKING_QUERY_KEYS = {
    "ref",
    "ref_src",
    "src",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
    "cmpid",
    "igshid",
    "mkt_tok",
    "yclid",
    "ocid",
    "cmp",
}

STOP_WORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "have", "in", "into",
    "is", "it", "its", "of", "on", "or", "over", "says", "said", "that", "the", "their", "this",
    "to", "was", "were", "will", "with", "after", "amid", "new", "report", "reports", "live", "update",
}

# Applied to the lowercased title before punctuation is stripped, so "0.25%" still matches.
PHRASE_ALIASES = [
    (re.compile(r"\bfederal reserve\b"), "fed"),
    (re.compile(r"\bu\.s\.|\bunited states\b"), "us"),
    (re.compile(r"\bu\.k\.|\bunited kingdom\b|\bbritain\b"), "uk"),
    (re.compile(r"\beuropean union\b"), "eu"),
    (re.compile(r"\bquarter[- ](?:percentage[- ])?point\b"), "25bp"),
    (re.compile(r"(?<![\d.])0?\.25\s*(?:%|percent\b|percentage points?\b)"), "25bp"),
    (re.compile(r"\b25 ?(?:basis points|bps?)\b"), "25bp"),
    (re.compile(r"\bhalf[- ](?:percentage[- ])?point\b"), "50bp"),
    (re.compile(r"(?<![\d.])0?\.5\s*(?:%|percent\b|percentage points?\b)"), "50bp"),
    (re.compile(r"\b50 ?(?:basis points|bps?)\b"), "50bp"),
    (re.compile(r"\binterest rates?\b"), "rate"),
    (re.compile(r"\bartificial intelligence\b"), "ai"),
    (re.compile(r"\bprime minister\b"), "pm"),
]

WORD_ALIASES = {
    "hike": "raise",
    "hikes": "raise",
    "hiked": "raise",
    "raises": "raise",
    "raised": "raise",
    "raising": "raise",
    "lifts": "raise",
    "lifted": "raise",
    "increase": "raise",
    "increases": "raise",
    "increased": "raise",
    "cuts": "cut",
    "lowers": "cut",
    "lowered": "cut",
    "slashes": "cut",
    "trims": "cut",
    "rates": "rate",
    "america": "us",
    "american": "us",
    "americans": "us",
    "bps": "bp",
}


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    plain = TAG_RE.sub(" ", value)
    plain = html.unescape(plain)
    return re.sub(r"\s+", " ", plain).strip()


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    cut = value[: limit - 3].rstrip()
    return f"{cut}..."


def strip_outlet_suffix(title: str) -> str:
    """Drop a trailing ' - Outlet' or ' | Outlet' from a headline."""
    stripped = OUTLET_SUFFIX_RE.sub("", title.strip())
    return stripped.strip() or title.strip()


def first_sentences(text: str, count: int = 2, limit: int = 150) -> str:
    sentences = SENTENCE_RE.findall(text or "")
    if not sentences:
        return truncate((text or "").strip(), limit)
    return truncate(" ".join(s.strip() for s in sentences[:count]), limit)


def read_time_minutes(text: str, wpm: int = 200) -> int:
    words = len((text or "").split())
    return max(1, math.ceil(words / wpm))


def canonical_title(title: str) -> str:
    lowered = title.lower()
    lowered = re.sub(r"[^a-z0-9\s]", " ", lowered)
    lowered = re.sub(r"\s+", " ", lowered).strip()
    return lowered


def _stem(word: str) -> str:
    if word in WORD_ALIASES:
        return WORD_ALIASES[word]
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def canonical_tokens(title: str) -> List[str]:
    """Sorted, de-duplicated similarity tokens for a headline."""
    lowered = strip_outlet_suffix(title).lower()
    for pattern, replacement in PHRASE_ALIASES:
        lowered = pattern.sub(f" {replacement} ", lowered)
    tokens = set()
    for word in WORD_RE.findall(lowered):
        if word in STOP_WORDS:
            continue
        tokens.add(_stem(word))
    return sorted(tokens)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def cosine(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / math.sqrt(len(set_a) * len(set_b))


SIMILARITY_FUNCS = {"jaccard": jaccard, "cosine": cosine}


def canonicalize_url(url: str | None) -> str:
    if not url:
        return ""
    try:
        parsed = urlparse(url.strip())
    except Exception:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    filtered = []
    for key, val in parse_qsl(parsed.query or "", keep_blank_values=False):
        k = key.lower()
        if any(k.startswith(p) for p in TRACKING_QUERY_PREFIXES):
            continue
        if k in TRACKING_QUERY_KEYS:
            continue
        filtered.append((key, val))
    clean_query = urlencode(filtered, doseq=True)
    netloc = parsed.netloc.lower()
    path = parsed.path.rstrip("/") or "/"
    cleaned = parsed._replace(scheme=parsed.scheme.lower(), netloc=netloc, path=path, query=clean_query, fragment="")
    return urlunparse(cleaned)


def extract_domain(url: str) -> str:
    try:
        netloc = urlparse(url).netloc
    except Exception:
        return ""
    netloc = netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]
    return netloc


def domain_matches(domain: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.lower().strip()
        if pattern.startswith("www."):
            pattern = pattern[4:]
        if pattern and (domain == pattern or domain.endswith("." + pattern)):
            return True
    return False


def parse_any_date(value: str | None) -> datetime | None:
    if not value:
        return None
    value = str(value).strip()
    if not value:
        return None
    if re.fullmatch(r"\d{14}", value):
        try:
            return datetime.strptime(value, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    dt = None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if not dt:
        return None
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso(value: str | None) -> datetime | None:
    return parse_any_date(value)


def hours_between(a: str, b: str) -> float:
    dt_a = parse_iso(a)
    dt_b = parse_iso(b)
    if not dt_a or not dt_b:
        return math.inf
    return abs((dt_a - dt_b).total_seconds()) / 3600.0


def article_id(source_id: str, key: str) -> str:
    digest = hashlib.sha1(f"{source_id}|{key}".encode("utf-8")).hexdigest()[:16]
    return f"{source_id}-{digest}"


def build_cluster_id(key: str) -> str:
    return "c" + hashlib.md5(key.encode("utf-8")).hexdigest()[:12]
