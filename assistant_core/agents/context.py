"""上下文裁剪。

- relevant_history: 从完整历史中选出最近的 window 条消息发给模型，
  但绝不把 assistant 的工具调用与其 tool 结果拆到窗口两侧；
  中断回合遗留的“有调用无结果”或“有结果无调用”的消息直接丢弃。
- prune_tool_result: 大体量工具结果在入库和回传模型前压缩为
  “成功标记 + 计数 + 少量条目”，让模型知道结果被截断。
"""

import json
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from assistant_core.config.settings import settings
from assistant_core.domain.models import Message
from assistant_core.tools.definitions import ToolOutcome

_MAX_FIELD_CHARS = 500

# 各工具保留的字段；未列出的工具保留全部字段（字符串仍会被截断）
_FIELD_WHITELIST: Dict[str, Sequence[str]] = {
    "queryEmails": ("id", "threadId", "subject", "from", "to", "date", "snippet"),
    "getFileContent": ("id", "name", "mimeType", "content"),
    "logFinancials": ("id", "date", "mrr", "gmv", "signups"),
}


def _answers(call_msg: Message, result_msg: Message) -> bool:
    call_ids = {c.id for c in call_msg.tool_calls}
    result_ids = {r.call_id for r in result_msg.tool_results}
    return bool(call_ids) and call_ids == result_ids


def _drop_dangling(messages: Sequence[Message]) -> List[Message]:
    out: List[Message] = []
    i = 0
    n = len(messages)
    while i < n:
        msg = messages[i]
        if msg.role == "assistant" and msg.tool_calls:
            nxt = messages[i + 1] if i + 1 < n else None
            if nxt is not None and nxt.role == "tool" and _answers(msg, nxt):
                out.extend((msg, nxt))
                i += 2
                continue
            i += 1
            continue
        if msg.role == "tool":
            i += 1
            continue
        out.append(msg)
        i += 1
    return out


def relevant_history(messages: Iterable[Message], window: Optional[int] = None) -> List[Message]:
    window = window or settings.history_window
    msgs = _drop_dangling(list(messages))
    if len(msgs) <= window:
        return msgs
    start = len(msgs) - window
    # 窗口起点落在 tool 消息上时向前扩展到对应的调用消息
    while start > 0 and msgs[start].role == "tool":
        start -= 1
    return msgs[start:]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 4)


def _payload_size(payload: Any) -> int:
    try:
        return len(json.dumps(payload, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return len(str(payload))


def _clip(value: str, limit: int = _MAX_FIELD_CHARS) -> str:
    if len(value) <= limit:
        return value
    return value[:limit] + "…"


def _trim_item(item: Any, fields: Optional[Sequence[str]], max_items: int) -> Any:
    if isinstance(item, str):
        return _clip(item)
    if not isinstance(item, dict):
        return item
    keys = [k for k in fields if k in item] if fields else list(item.keys())
    trimmed: Dict[str, Any] = {}
    for key in keys:
        value = item[key]
        if isinstance(value, str):
            trimmed[key] = _clip(value)
        elif isinstance(value, list):
            trimmed[key] = value[:max_items]
            if len(value) > max_items:
                trimmed[f"{key}Count"] = len(value)
        else:
            trimmed[key] = value
    return trimmed


def prune_tool_result(
    payload: Any,
    tool_name: str,
    max_items: Optional[int] = None,
    max_chars: Optional[int] = None,
) -> Any:
    max_items = max_items or settings.tool_result_max_items
    max_chars = max_chars or settings.tool_result_max_chars
    if isinstance(payload, dict) and payload.get("success") is False:
        return payload
    if _payload_size(payload) <= max_chars:
        return payload

    fields = _FIELD_WHITELIST.get(tool_name)
    if isinstance(payload, list):
        return {
            "success": True,
            "count": len(payload),
            "items": [_trim_item(x, fields, max_items) for x in payload[:max_items]],
            "truncated": len(payload) > max_items,
        }
    if isinstance(payload, dict):
        out: Dict[str, Any] = {"success": True}
        first_count: Optional[int] = None
        truncated = False
        for key, value in payload.items():
            if key == "success":
                continue
            if isinstance(value, list):
                out[key] = [_trim_item(x, fields, max_items) for x in value[:max_items]]
                out[f"{key}Count"] = len(value)
                truncated = truncated or len(value) > max_items
                if first_count is None:
                    first_count = len(value)
            elif isinstance(value, str):
                out[key] = _clip(value)
                truncated = truncated or len(value) > _MAX_FIELD_CHARS
            elif isinstance(value, dict):
                out[key] = _trim_item(value, None, max_items)
            else:
                out[key] = value
        out.setdefault("count", first_count if first_count is not None else 1)
        out["truncated"] = truncated
        return out
    text = str(payload)
    return {"success": True, "count": 1, "data": _clip(text), "truncated": len(text) > _MAX_FIELD_CHARS}


def prune_outcome(outcome: ToolOutcome, tool_name: str) -> ToolOutcome:
    if not outcome.success:
        return outcome
    pruned = prune_tool_result(outcome.payload, tool_name)
    if pruned is outcome.payload:
        return outcome
    return ToolOutcome.ok(pruned)
