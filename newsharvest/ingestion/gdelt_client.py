"""GDELT 2.1 doc API client (candidate discovery).

The doc API is free and keyless but quirky:
- the JSON envelope is not stable (top-level list, ``articles``, ``results``
  or some other array field)
- errors and throttling come back as HTML or text with a 200 or 429
- it enforces a minimum interval between requests (handled by the caller)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from newsharvest.errors import UpstreamError
from newsharvest.ingestion.article_types import Candidate

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.gdeltproject.org/api/v2/doc/doc"


@dataclass(frozen=True)
class QueryParams:
    query: str
    max_records: int = 100
    timespan: Optional[str] = None
    mode: str = "artlist"
    format: str = "json"

    def to_request_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "query": self.query,
            "mode": self.mode,
            "format": self.format,
            "maxrecords": self.max_records,
        }
        if self.timespan:
            params["timespan"] = self.timespan
        return params


def locate_articles(data: Any) -> List[Any]:
    """Find the article array in a loosely shaped response body."""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    for key in ("articles", "results"):
        value = data.get(key)
        if isinstance(value, list):
            return value
    for key, value in data.items():
        if isinstance(value, list) and value:
            logger.debug(f"[gdelt] Found article array under key {key!r}")
            return value
    return []


def to_candidate(record: Any) -> Optional[Candidate]:
    if not isinstance(record, dict):
        return None
    url = str(record.get("url") or "").strip()
    if not url:
        return None
    title = record.get("title")
    domain = str(record.get("domain") or "").strip().lower()
    return Candidate(
        url=url,
        title=str(title).strip() if title else None,
        seen_date=record.get("seendate") or record.get("date") or None,
        domain=domain or None,
        language=record.get("language") or None,
        country=record.get("sourcecountry") or record.get("sourceCountry") or None,
        raw=record,
    )


class GDELTClient:
    """Executes one query against the doc API with retry and backoff.

    ``max_attempts`` tries per query, waiting ``backoff``, ``2*backoff``,
    ``4*backoff``... between them. Exhausting the attempts raises the last
    ``UpstreamError``; it never degrades to an empty list.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff: float = 1.0,
        user_agent: str = "NewsHarvest/1.0",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self._sleep = sleep

    def search(self, params: QueryParams) -> List[Candidate]:
        assert params.query and params.query.strip(), "GDELT query parameter is required"

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, min=self.backoff, max=self.backoff * 4),
            retry=retry_if_exception_type(UpstreamError),
            sleep=self._sleep,
            reraise=True,
            before_sleep=self._log_retry,
        )
        records = retrying(self._request_once, params)

        out: List[Candidate] = []
        for record in records:
            candidate = to_candidate(record)
            if candidate is not None:
                out.append(candidate)
        logger.info(f"[gdelt] {len(out)} article(s) for query {params.query[:120]!r}")
        return out

    def _request_once(self, params: QueryParams) -> List[Any]:
        try:
            resp = self.session.get(
                self.endpoint,
                params=params.to_request_params(),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"GDELT request failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise UpstreamError(f"GDELT API error: {resp.status_code} {resp.text[:300]}", status_code=resp.status_code)

        content_type = resp.headers.get("Content-Type") or ""
        if "application/json" not in content_type.lower():
            raise UpstreamError(f"GDELT returned non-JSON response: {content_type or 'unknown'} {resp.text[:200]!r}")

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"GDELT returned invalid JSON: {e}") from e
        return locate_articles(data)

    @staticmethod
    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(f"[gdelt] Attempt {retry_state.attempt_number} failed ({exc}); retrying in {wait:.1f}s")
