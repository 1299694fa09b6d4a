"""Build bounded article-index queries from weighted topic terms.

Query syntax rules of the index:
- Parentheses only around OR groups; a single term is never parenthesized.
- Space means AND. An explicit ``AND`` keyword breaks parsing, so filters are
  appended with a plain space.
- Phrases (whitespace, hyphens, non-ASCII letters) must be double-quoted.

The OR portion of a query has a hard length ceiling upstream; longer
expressions are silently truncated or rejected. Terms are therefore packed
greedily into batches whose OR expression stays within ``max_term_chars``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from newsharvest.ingestion.article_types import WeightedTerm
from newsharvest.ingestion.locales import language_name

logger = logging.getLogger(__name__)

DEFAULT_MAX_TERM_CHARS = 200
DEFAULT_KEYWORD = "news"


@dataclass(frozen=True)
class QueryBatch:
    terms: Tuple[str, ...]
    keywords: str
    query: str


def _needs_quotes(term: str) -> bool:
    if any(ch.isspace() for ch in term):
        return True
    if "-" in term:
        return True
    return not term.isascii()


def render_term(name: str) -> Optional[str]:
    """Normalize one term for the query; None when nothing is left."""
    cleaned = " ".join((name or "").replace('"', " ").split()).lower()
    if not cleaned:
        return None
    if _needs_quotes(cleaned):
        return f'"{cleaned}"'
    return cleaned


def or_group(parts: Sequence[str]) -> str:
    if len(parts) == 1:
        return parts[0]
    return "(" + " OR ".join(parts) + ")"


def batch_terms(rendered: Sequence[str], max_term_chars: int = DEFAULT_MAX_TERM_CHARS) -> List[List[str]]:
    """Greedily pack rendered terms so each OR group fits ``max_term_chars``."""
    batches: List[List[str]] = []
    current: List[str] = []
    for term in rendered:
        if len(term) > max_term_chars:
            logger.warning(f"[query] Term {term!r} alone exceeds {max_term_chars} chars; querying it on its own")
        if current and len(or_group(current + [term])) > max_term_chars:
            batches.append(current)
            current = []
        current.append(term)
    if current:
        batches.append(current)
    return batches


def locale_clause(languages: Iterable[str] = (), regions: Iterable[str] = ()) -> str:
    """``(sourcelang:portuguese OR sourcelang:english) sourcecountry:BR``"""
    clauses: List[str] = []
    langs = [f"sourcelang:{language_name(code)}" for code in languages if code and code.strip()]
    if langs:
        clauses.append(or_group(langs))
    countries = [f"sourcecountry:{code.strip().upper()}" for code in regions if code and code.strip()]
    if countries:
        clauses.append(or_group(countries))
    return " ".join(clauses)


def order_terms(terms: Iterable[WeightedTerm]) -> List[WeightedTerm]:
    return sorted(terms, key=lambda t: t.weight, reverse=True)


def build_queries(
    terms: Iterable[WeightedTerm],
    languages: Iterable[str] = (),
    regions: Iterable[str] = (),
    *,
    max_term_chars: int = DEFAULT_MAX_TERM_CHARS,
    default_keyword: str = DEFAULT_KEYWORD,
) -> List[QueryBatch]:
    """Turn weighted terms plus locale filters into one or more queries.

    Heavier terms go first so they land in the first batch. With no usable
    terms a single query on ``default_keyword`` is returned.
    """
    rendered: List[str] = []
    seen = set()
    for term in order_terms(terms):
        r = render_term(term.name)
        if r and r not in seen:
            seen.add(r)
            rendered.append(r)

    batches = batch_terms(rendered, max_term_chars) if rendered else [[default_keyword]]
    suffix = locale_clause(list(languages), list(regions))

    out: List[QueryBatch] = []
    for batch in batches:
        keywords = or_group(batch)
        query = f"{keywords} {suffix}" if suffix else keywords
        out.append(QueryBatch(terms=tuple(batch), keywords=keywords, query=query))
    logger.info(f"[query] Built {len(out)} batch(es) from {len(rendered)} term(s)")
    return out
