"""会话导出格式（文本 / JSON），JSON 与内存两种 Store 共用。"""

import json
from typing import Any, Dict, Iterable, List, Optional

from assistant_core.domain.models import Message

_ROLE_LABELS = {"user": "You", "assistant": "AI", "tool": "Tool"}


def describe_retrieval(meta: Optional[Dict[str, Any]]) -> str:
    if not meta:
        return ""
    parts: List[str] = []
    if meta.get("provider"):
        parts.append(str(meta["provider"]))
    if meta.get("mode"):
        parts.append("Image references" if meta["mode"] == "images" else "Web search")
    count = meta.get("count")
    if isinstance(count, int):
        parts.append(f"{count} result{'' if count == 1 else 's'}")
    if meta.get("duration_ms"):
        parts.append(f"{meta['duration_ms']}ms")
    if meta.get("fetched_at"):
        parts.append(f"fetched {meta['fetched_at']}")
    lines = []
    if parts:
        lines.append("Sources: " + " • ".join(parts))
    if meta.get("query"):
        lines.append(f'Query: "{meta["query"]}"')
    return "\n".join(lines)


def _message_text(message: Message) -> str:
    if message.role == "tool":
        names = ", ".join(
            f"{r.name} ({'ok' if r.outcome.success else 'failed'})" for r in message.tool_results
        )
        return names or "[No text]"
    return message.text or "[No text]"


def export_text(messages: Iterable[Message]) -> str:
    blocks = []
    for message in messages:
        label = _ROLE_LABELS.get(message.role, "Tool")
        lines = [f"{label}: {_message_text(message)}"]
        summary = describe_retrieval(message.metadata.get("retrieval"))
        if summary:
            lines.append(summary)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def export_json(messages: Iterable[Message]) -> str:
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False, indent=2)
