"""检索增强。

augment() 把检索结果序列化为带编号的来源列表、摘录和引用说明，附加到
本回合发给模型的 system prompt 上；同时生成 RetrievalContext 供最终
assistant 消息的 metadata 使用。存储中的用户消息不受影响。
检索失败或无结果时返回 None，回合照常继续。
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from assistant_core.domain.models import RetrievalContext, RetrievalHit
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.retrieval.client import SearchClient, SearchMode, SearchResponse


@dataclass
class Augmentation:
    prompt_text: str
    context: RetrievalContext


class RetrievalAugmenter:
    def __init__(self, client: SearchClient, max_hits: int = 5, provider: str = "web"):
        self._client = client
        self._max_hits = max_hits
        self._provider = provider

    async def augment(self, query: str, mode: SearchMode = "text") -> Optional[Augmentation]:
        query = (query or "").strip()
        if not query:
            return None
        started = time.monotonic()
        # 搜索、元数据解析和格式化的任何失败都只让本回合跳过检索
        try:
            response = await self._client.search(query, mode)
            hits = response.hits[: self._max_hits]
            if not hits:
                logger.info("retrieval.empty", extra={"extra": {"query": query, "mode": mode}})
                return None
            context = self._build_context(query, mode, response, hits, started)
            prompt = format_images(hits) if mode == "images" else format_text(hits)
            return Augmentation(prompt_text=prompt + citation_instructions(context), context=context)
        except Exception as exc:
            logger.warning(
                "retrieval.failed",
                extra={"extra": {"query": query, "mode": mode, "error": str(exc)}},
            )
            return None

    def _build_context(
        self,
        query: str,
        mode: SearchMode,
        response: SearchResponse,
        hits: List[RetrievalHit],
        started: float,
    ) -> RetrievalContext:
        meta = response.metadata
        fetched_at = datetime.now(timezone.utc)
        raw_fetched = meta.get("fetchedAt") or meta.get("fetched_at")
        if raw_fetched:
            try:
                fetched_at = datetime.fromisoformat(str(raw_fetched).replace("Z", "+00:00"))
            except ValueError:
                pass
        measured = int((time.monotonic() - started) * 1000)
        return RetrievalContext(
            query=query,
            hits=hits,
            fetched_at=fetched_at,
            provider=str(meta.get("provider") or self._provider),
            count=_as_int(meta.get("count"), len(response.hits)),
            mode=mode,
            duration_ms=_as_int(meta.get("durationMs"), measured),
        )


def _as_int(value: object, default: int) -> int:
    """服务端元数据不可信：无法解析为非负整数时使用本地值。"""

    if isinstance(value, bool):
        return default
    try:
        number = int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return default
    return number if number >= 0 else default


def format_text(hits: List[RetrievalHit]) -> str:
    listing = []
    for idx, hit in enumerate(hits, start=1):
        source = f"{hit.source} • " if hit.source else ""
        listing.append(f"[{idx}] {hit.title or hit.url}\n{source}{hit.description}\n{hit.url}")
    out = "WEB SEARCH RESULTS (cite as [n]):\n" + "\n\n".join(listing)
    snippets = [
        f"[{idx}] Snippets: " + " … ".join(hit.snippets[:3])
        for idx, hit in enumerate(hits, start=1)
        if hit.snippets
    ]
    if snippets:
        out += "\n\nSnippets:\n" + "\n".join(snippets)
    return out


def format_images(hits: List[RetrievalHit]) -> str:
    listing = []
    for idx, hit in enumerate(hits, start=1):
        image = hit.image_url or hit.url
        source = f" ({hit.source})" if hit.source else ""
        listing.append(f"[{idx}] {hit.title or hit.url}{source}\nimage: {image}\npage: {hit.url}")
    return "IMAGE REFERENCES (cite as [n]):\n" + "\n\n".join(listing)


def citation_instructions(context: RetrievalContext) -> str:
    suffix = f" via {context.provider}" if context.provider else ""
    suffix += f" (fetched {context.fetched_at.strftime('%Y-%m-%d %H:%M UTC')})"
    return (
        f"\n\nCITATIONS{suffix}:\n"
        "1. Cite information from the search results using [1], [2] style inline references.\n"
        "2. Add a Sources section at the end listing each cited [n] with its title and URL."
    )
