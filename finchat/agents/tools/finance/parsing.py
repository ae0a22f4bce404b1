from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit, urlunsplit

from finchat.agents.tools.finance.constants import FINANCIAL_DATA_SOURCES, _MAX_CONTENT_CHARS, _MAX_RESULTS_LIMIT


def normalize_url(url: str) -> str:
    parsed = urlsplit(url.strip())
    normalized = parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower(), fragment="")
    return urlunsplit(normalized)


def bound_text(value: Any, *, max_chars: int) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    if len(text) <= max_chars:
        return text
    return f"{text[: max_chars - 1].rstrip()}…"


def parse_max_results(max_results: int) -> int:
    if max_results < 1:
        return 1
    return min(max_results, _MAX_RESULTS_LIMIT)


def included_sources_for(data_type: str | None) -> list[str] | None:
    """Source allow-list for a financial data type; ``None`` lets the backend pick."""

    if not data_type or data_type == "auto":
        return None
    return list(FINANCIAL_DATA_SOURCES[data_type])


def parse_search_results(raw: Any, *, fallback_title: str) -> list[dict[str, Any]]:
    candidates = raw.get("results", []) if isinstance(raw, dict) else raw if isinstance(raw, list) else []

    normalized_results: list[dict[str, Any]] = []
    for item in candidates:
        if not isinstance(item, dict):
            continue
        url = item.get("url")
        if not isinstance(url, str) or not url.strip():
            continue
        metadata = item.get("metadata") if isinstance(item.get("metadata"), dict) else {}
        normalized_results.append(
            {
                "title": bound_text(item.get("title"), max_chars=240) or fallback_title,
                "url": normalize_url(url),
                "content": bound_text(item.get("content"), max_chars=_MAX_CONTENT_CHARS),
                "date": metadata.get("date") or item.get("publication_date"),
                "source": metadata.get("source") or item.get("source"),
                "data_type": item.get("data_type"),
                "relevance_score": item.get("relevance_score"),
            }
        )
    return normalized_results


def format_search_response(
    raw: Any,
    *,
    search_type: str,
    query: str,
    data_type: str | None = None,
) -> dict[str, Any]:
    results = parse_search_results(
        raw,
        fallback_title="Financial Data" if search_type == "financial_search" else "Web Result",
    )
    response: dict[str, Any] = {
        "type": search_type,
        "query": query,
        "result_count": len(results),
        "results": results,
    }
    if data_type is not None:
        response["data_type"] = data_type
    if not results:
        response["message"] = f'No results found for "{query}". Try rephrasing the search.'
    return response
