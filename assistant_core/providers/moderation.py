"""内容审核客户端。

审核服务不可用时放行（fail open），只记录日志；被明确标记时由调用方
抛出 ModerationRejected。
"""

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Protocol

import httpx

from assistant_core.infrastructure.logging.logger import logger

Direction = Literal["input", "output"]


@dataclass
class ModerationVerdict:
    allowed: bool
    categories: List[str] = field(default_factory=list)
    source: str = "remote"


class ModerationClient(Protocol):
    async def check(self, text: str, direction: Direction) -> ModerationVerdict:
        ...


class HttpModerationClient:
    def __init__(self, settings):
        self._settings = settings

    async def check(self, text: str, direction: Direction) -> ModerationVerdict:
        url: Optional[str] = getattr(self._settings, "moderation_url", None)
        if not url or not text.strip():
            return ModerationVerdict(allowed=True, source="skipped")
        headers = {"Content-Type": "application/json"}
        key = getattr(self._settings, "moderation_api_key", None)
        if key:
            headers["Authorization"] = f"Bearer {key}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(url, json={"text": text, "direction": direction}, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "moderation.unavailable",
                extra={"extra": {"direction": direction, "error": str(exc)}},
            )
            return ModerationVerdict(allowed=True, source="fail-open")
        flagged = bool(data.get("flagged"))
        categories = [str(c) for c in data.get("categories") or []]
        if flagged:
            logger.warning(
                "moderation.flagged",
                extra={"extra": {"direction": direction, "categories": categories}},
            )
        return ModerationVerdict(allowed=not flagged, categories=categories)
