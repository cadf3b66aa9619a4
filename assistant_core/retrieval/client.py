"""检索服务客户端。"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Protocol

import httpx

from assistant_core.domain.exceptions import ApiError, ConfigurationError, NetworkError
from assistant_core.domain.models import RetrievalHit

SearchMode = Literal["text", "images"]


@dataclass
class SearchResponse:
    hits: List[RetrievalHit]
    metadata: Dict[str, Any] = field(default_factory=dict)


class SearchClient(Protocol):
    async def search(self, query: str, mode: SearchMode) -> SearchResponse:
        ...


class HttpSearchClient:
    """调用外部检索服务，返回结构: {"hits": [...], "metadata": {...}}。"""

    def __init__(self, settings, count: int = 10):
        self._settings = settings
        self._count = count

    async def search(self, query: str, mode: SearchMode) -> SearchResponse:
        url = getattr(self._settings, "search_url", None)
        if not url:
            raise ConfigurationError(code="MISSING_SEARCH_URL", message="SEARCH_URL not set")
        headers = {"Accept": "application/json"}
        key = getattr(self._settings, "search_api_key", None)
        if key:
            headers["X-API-Key"] = key
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.get(
                    url,
                    params={"query": query, "mode": mode, "count": self._count},
                    headers=headers,
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            raise ApiError(code="SEARCH_ERROR", message=resp.text, http_status=resp.status_code)
        data = resp.json()
        hits = [self._to_hit(raw) for raw in data.get("hits") or [] if raw.get("url")]
        return SearchResponse(hits=hits, metadata=data.get("metadata") or {})

    @staticmethod
    def _to_hit(raw: Dict[str, Any]) -> RetrievalHit:
        return RetrievalHit(
            title=raw.get("title") or raw["url"],
            url=raw["url"],
            source=raw.get("source") or "",
            description=raw.get("description") or "",
            snippets=[str(s) for s in raw.get("snippets") or []],
            image_url=raw.get("image_url") or raw.get("thumbnail"),
        )
