from __future__ import annotations

from typing import Any, Callable

import requests

USER_AGENT = "PortfolioImport/1.0 (+local)"

JsonFetcher = Callable[..., Any]


def request_json(
    method: str,
    url: str,
    *,
    timeout_seconds: float,
    params: dict[str, Any] | None = None,
    json_body: dict[str, Any] | None = None,
    files: dict[str, Any] | None = None,
) -> Any:
    response = requests.request(
        method,
        url,
        params=params,
        json=json_body,
        files=files,
        timeout=timeout_seconds,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    )
    response.raise_for_status()
    return response.json()
