"""Fulltext fetch + extraction for a single article URL.

Policy:
- One deterministic strategy (trafilatura) per attempt; no fallbacks.
- Never raises for expected failures; the result carries status and error.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

import hashlib
import ipaddress
import json
import re
import time
from urllib.parse import urlparse

import requests
import trafilatura

from newsharvest.ingestion.url_utils import parse_seen_date

METHOD = "trafilatura"
MIN_TEXT_LENGTH = 200


@dataclass(frozen=True)
class FulltextResult:
    text: Optional[str]
    confidence: float
    status: str
    error: Optional[str] = None
    headline: Optional[str] = None
    published_at: Optional[datetime] = None
    method: str = METHOD
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok" and bool(self.text)


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

_WS_RE = re.compile(r"\s+")


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in net for net in _PRIVATE_NETS)


def _validate_fetch_url(url: str) -> Optional[str]:
    """Return error string if URL should not be fetched (SSRF/abuse protections)."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


def content_fingerprint(text: str) -> str:
    """sha256 of the whitespace-normalized text."""
    normalized = _WS_RE.sub(" ", text or "").strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def quality_score(text: str) -> float:
    # heuristic confidence by length
    n = len((text or "").strip())
    if n >= 4000:
        return 0.95
    if n >= 1500:
        return 0.80
    if n >= 600:
        return 0.55
    return 0.30


def _page_date(value: Optional[str]) -> Optional[datetime]:
    parsed = parse_seen_date(value)
    if parsed is None or parsed.year < 1971:
        return None
    return parsed.astimezone(timezone.utc)


def extract_from_html(html: str, url: str, *, min_text_length: int = MIN_TEXT_LENGTH) -> FulltextResult:
    raw = trafilatura.extract(
        html,
        url=url,
        output_format="json",
        with_metadata=True,
        include_comments=False,
        include_tables=False,
    )
    if not raw:
        return FulltextResult(text=None, confidence=0.0, status="no_extract", error="no_extract")
    doc = json.loads(raw)
    text = (doc.get("text") or "").strip()
    if len(text) < min_text_length:
        return FulltextResult(text=None, confidence=0.0, status="too_short", error=f"too_short:{len(text)}")
    return FulltextResult(
        text=text,
        confidence=quality_score(text),
        status="ok",
        headline=(doc.get("title") or None),
        published_at=_page_date(doc.get("date")),
    )


def fetch_and_extract(
    url: str,
    *,
    timeout: float = 15,
    max_bytes: int = 2_000_000,
    user_agent: str = "NewsHarvest/1.0",
    min_text_length: int = MIN_TEXT_LENGTH,
    session: Optional[requests.Session] = None,
) -> FulltextResult:
    start = time.monotonic()

    def _done(res: FulltextResult) -> FulltextResult:
        elapsed = int((time.monotonic() - start) * 1000)
        return replace(res, duration_ms=elapsed)

    if not url:
        return _done(FulltextResult(text=None, confidence=0.0, status="error", error="empty_url"))
    err = _validate_fetch_url(url)
    if err:
        return _done(FulltextResult(text=None, confidence=0.0, status="blocked", error=err))
    http = session or requests
    try:
        resp = http.get(
            url,
            headers={"User-Agent": user_agent},
            timeout=(5, timeout),
            allow_redirects=True,
            stream=True,
        )
        status_code = resp.status_code
        if status_code >= 400:
            return _done(FulltextResult(text=None, confidence=0.0, status=f"http_{status_code}", error=f"http_{status_code}"))
        # Size guardrail: read up to max_bytes
        content = b""
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            if not chunk:
                continue
            content += chunk
            if len(content) > max_bytes:
                return _done(FulltextResult(text=None, confidence=0.0, status="too_large", error="too_large"))
        html = content.decode(resp.encoding or "utf-8", errors="replace")
        if not html.strip():
            return _done(FulltextResult(text=None, confidence=0.0, status="empty", error="empty_html"))
        return _done(extract_from_html(html, url, min_text_length=min_text_length))
    except requests.Timeout:
        return _done(FulltextResult(text=None, confidence=0.0, status="timeout", error="fetch_timeout"))
    except (requests.RequestException, LookupError, ValueError) as e:
        return _done(FulltextResult(text=None, confidence=0.0, status="error", error=str(e)))
