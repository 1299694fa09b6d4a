"""URL and domain helpers for candidate filtering and document metadata."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse


def is_http_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        p = urlparse(url.strip())
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.netloc)


def canonicalize_url(url: str) -> str:
    """Canonical form used on documents: scheme + host + path.

    - Query string and fragment are dropped
    - Scheme and host are lowercased
    - A trailing slash is stripped
    Unparseable input is returned unchanged.
    """
    if not url:
        return ""
    try:
        p = urlparse(url.strip())
    except ValueError:
        return url
    if not p.scheme or not p.netloc:
        return url
    canon = f"{p.scheme.lower()}://{p.netloc.lower()}{p.path}".rstrip("/")
    return canon or url


def source_domain(url: str) -> str:
    """Bare host of ``url`` with a leading ``www.`` removed."""
    try:
        host = (urlparse(url or "").hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_rule_domain(domain: str) -> str:
    """``https://News.Example.com/path`` -> ``news.example.com``."""
    d = (domain or "").strip().lower()
    for prefix in ("https://", "http://"):
        if d.startswith(prefix):
            d = d[len(prefix):]
    return d.split("/", 1)[0]


def domain_matches(domain: str, rule_domain: str) -> bool:
    """Exact match or subdomain suffix match."""
    d = (domain or "").lower()
    r = (rule_domain or "").lower()
    if not d or not r:
        return False
    return d == r or d.endswith("." + r)


def parse_seen_date(value: Optional[str]) -> Optional[datetime]:
    """Parse the index's seen date.

    Accepts ``20260217T101500Z``, ``20260217`` and ISO-8601. Returns an aware
    UTC datetime, or None when the value cannot be parsed.
    """
    if not value:
        return None
    s = str(value).strip()
    if not s:
        return None
    for fmt in ("%Y%m%dT%H%M%SZ", "%Y%m%d"):
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
