from __future__ import annotations

import uuid
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import httpx

from schemas.article import BacklinkAuthority, BacklinkOpportunity, IntegrationDescriptor


DEFAULT_TIMEOUT = httpx.Timeout(20.0, connect=10.0)
PAGE_SIZE = 10


def query_domain(query: str) -> str:
    """'https://example.com/blog/x' -> 'example.com'; bare domains pass through."""
    q = (query or "").strip()
    if "://" in q:
        return (urlparse(q).netloc or q).lower()
    return q.split("/")[0].lower()


def authority_for_rank(domain_rank: Any) -> BacklinkAuthority:
    try:
        rank = int(float(domain_rank))
    except (TypeError, ValueError):
        return BacklinkAuthority.emerging
    if rank > 40:
        return BacklinkAuthority.high
    if rank > 20:
        return BacklinkAuthority.medium
    return BacklinkAuthority.emerging


def _to_opportunity(item: dict[str, Any]) -> Optional[BacklinkOpportunity]:
    url = str(item.get("url_from") or "").strip()
    if not url:
        return None
    first_seen = str(item.get("first_seen") or "unknown date")
    return BacklinkOpportunity(
        id=uuid.uuid4().hex[:9],
        url=url,
        title=str(item.get("link_text") or "").strip() or "Referring Page",
        reason=f"Discovered via Serpstat. Detected on {first_seen}.",
        authority=authority_for_rank(item.get("domain_rank")),
    )


async def fetch_backlinks(
    query: str,
    integration: IntegrationDescriptor,
    *,
    client: Optional[httpx.AsyncClient] = None,
    logger: Callable[[str], None] = print,
) -> list[BacklinkOpportunity]:
    """
    New backlinks for the query's domain via Serpstat's JSON-RPC API.

    Any transport or API error is logged and yields [] (backlinks are an
    optional enrichment of the brief).
    """
    payload = {
        "id": uuid.uuid4().hex[:7],
        "method": "SerpstatBacklinksProcedure.getNewBacklinks",
        "params": {
            "query": query_domain(query),
            "searchType": "domain",
            "size": PAGE_SIZE,
        },
    }

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
    try:
        resp = await http.post(integration.base_url, params={"token": integration.credential}, json=payload)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger(f"🟠 Serpstat request failed: {e}")
        return []
    finally:
        if owns_client:
            await http.aclose()

    if not isinstance(data, dict):
        return []
    if data.get("error"):
        err = data["error"]
        logger(f"🟠 Serpstat API error: {err.get('message') if isinstance(err, dict) else err}")
        return []

    result = data.get("result")
    rows = (result.get("data") if isinstance(result, dict) else None) or []
    out: list[BacklinkOpportunity] = []
    for row in rows:
        if isinstance(row, dict):
            opp = _to_opportunity(row)
            if opp is not None:
                out.append(opp)
    return out
