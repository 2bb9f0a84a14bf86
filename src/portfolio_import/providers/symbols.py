from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from portfolio_import.config.settings import get_settings
from portfolio_import.providers.http import JsonFetcher, request_json
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SEARCH_LIMIT = 6


@dataclass(frozen=True)
class SymbolMatch:
    symbol: str
    name: str = ""


def _match_score(query: str, match: SymbolMatch) -> tuple[int, int, str]:
    symbol = match.symbol.upper()
    name = match.name.upper()
    if symbol == query:
        rank = 0
    elif symbol.startswith(query):
        rank = 1
    elif name.startswith(query):
        rank = 2
    elif query in name:
        rank = 3
    else:
        rank = 4
    return (rank, len(symbol), symbol)


def rank_symbol_matches(query: str, matches: list[SymbolMatch], limit: int = DEFAULT_SEARCH_LIMIT) -> list[SymbolMatch]:
    needle = query.strip().upper()
    unique: dict[str, SymbolMatch] = {}
    for match in matches:
        unique.setdefault(match.symbol.upper(), match)
    ordered = sorted(unique.values(), key=lambda item: _match_score(needle, item))
    return ordered[:limit]


def _parse_matches(payload: Any) -> list[SymbolMatch]:
    items = payload.get("results", []) if isinstance(payload, dict) else payload
    matches: list[SymbolMatch] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        symbol = str(item.get("symbol") or item.get("ticker") or "").strip().upper()
        if not symbol:
            continue
        matches.append(SymbolMatch(symbol=symbol, name=str(item.get("name") or "").strip()))
    return matches


class SymbolSearchClient:
    """Ticker lookup used when correcting a reviewed row by hand."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        fetcher: JsonFetcher | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = base_url or settings.symbol_search_url
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self.fetcher = fetcher or request_json

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[SymbolMatch]:
        text = (query or "").strip()
        if not text or not self.base_url:
            return []
        try:
            payload = self.fetcher(
                "GET",
                f"{self.base_url}/search",
                timeout_seconds=self.timeout_seconds,
                params={"q": text, "limit": limit},
            )
        except requests.RequestException as exc:
            logger.warning("Symbol search for %r failed: %s", text, exc)
            return []
        return rank_symbol_matches(text, _parse_matches(payload), limit=limit)
