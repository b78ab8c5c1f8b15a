from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

from .config import FetchConfig
from .errors import NetworkError, ValidationError

logger = logging.getLogger(__name__)


def create_client(cfg: FetchConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": cfg.api_user_agent, "Accept": "application/json"},
        timeout=cfg.request_timeout,
        follow_redirects=True,
        transport=transport,
    )


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    clean_headers = {key: value for key, value in (headers or {}).items() if value is not None}
    clean_params = {key: value for key, value in (params or {}).items() if value is not None}
    logger.debug("GET %s %s", url, clean_params or "")
    try:
        response = await client.get(url, params=clean_params or None, headers=clean_headers or None)
    except httpx.HTTPError as exc:
        raise NetworkError(f"Network error fetching {url}: {exc}") from exc

    if not response.is_success:
        detail = response.text.strip()
        message = detail or response.reason_phrase
        raise NetworkError(f"HTTP {response.status_code} error fetching {url}: {message}", response.status_code)

    try:
        return response.json()
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON payload from {url}: {exc}") from exc


def json_array_param(values: Iterable[Any], limit: Optional[int] = None) -> Optional[str]:
    """Encode a multi-value filter as a JSON array string.

    Registries reject arrays longer than their documented cap, so the list is
    truncated here rather than passed through. Returns None for an empty list.
    """

    items = list(values)
    if limit is not None:
        items = items[:limit]
    if not items:
        return None
    return json.dumps(items, separators=(",", ":"))
