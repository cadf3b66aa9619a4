"""统一的对话数据模型。

本模块定义了助手在 Store、Provider、Agent Loop 之间共享的标准数据结构：

- Message: 一条对话消息，由若干 Part 组成（文本/内联文件/工具调用/工具结果）。
- ModelResponse: Provider 解析后的统一响应（文本或工具调用列表）。
- QuotaState / RetrievalContext: 配额与检索上下文。

所有 Provider 适配器与存储实现都只依赖这些模型，并负责与各自的
JSON 格式互相转换（见 message_from_dict / Message.to_dict）。
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from assistant_core.tools.definitions import ToolCall, ToolOutcome, ToolResult


# 会话中的消息角色；system prompt 不进入会话历史
Role = Literal["user", "assistant", "tool"]

# 持久化时替换内联文件数据的占位符
FILE_DATA_PLACEHOLDER = "[file data removed for storage]"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


@dataclass
class TextPart:
    text: str


@dataclass
class InlineFilePart:
    """内联文件。data 为 base64 文本，持久化后被占位符替换，仅保留引用。"""

    mime_type: str
    data: str
    name: str = ""
    file_id: Optional[str] = None

    @property
    def stripped(self) -> bool:
        return self.data == FILE_DATA_PLACEHOLDER


@dataclass
class ToolCallPart:
    call: ToolCall


@dataclass
class ToolResultPart:
    result: ToolResult


Part = Union[TextPart, InlineFilePart, ToolCallPart, ToolResultPart]


@dataclass
class Message:
    """一条会话消息。

    - role: user / assistant / tool。
    - parts: 有序的内容片段。assistant 消息可以同时包含文本和工具调用；
      tool 消息只包含 ToolResultPart，且恰好回应上一条 assistant 消息的全部调用。
    - metadata: 附加信息（检索引用、错误分类、用量等），不发送给模型。
    """

    role: Role
    parts: List[Part]
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"m-{uuid4().hex}")
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, text: str, attachment: Optional["InlineFilePart"] = None) -> "Message":
        parts: List[Part] = [TextPart(text)]
        if attachment is not None:
            parts.append(attachment)
        return cls(role="user", parts=parts)

    @classmethod
    def assistant(cls, text: str, metadata: Optional[Dict[str, Any]] = None) -> "Message":
        return cls(role="assistant", parts=[TextPart(text)], metadata=dict(metadata or {}))

    @classmethod
    def assistant_calls(cls, text: Optional[str], calls: List[ToolCall]) -> "Message":
        parts: List[Part] = [TextPart(text)] if text else []
        parts.extend(ToolCallPart(c) for c in calls)
        return cls(role="assistant", parts=parts)

    @classmethod
    def tool(cls, results: List[ToolResult]) -> "Message":
        return cls(role="tool", parts=[ToolResultPart(r) for r in results])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> List[ToolCall]:
        return [p.call for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> List[ToolResult]:
        return [p.result for p in self.parts if isinstance(p, ToolResultPart)]

    @property
    def files(self) -> List[InlineFilePart]:
        return [p for p in self.parts if isinstance(p, InlineFilePart)]

    @property
    def has_file(self) -> bool:
        return any(isinstance(p, InlineFilePart) for p in self.parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "parts": [_part_to_dict(p) for p in self.parts],
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
        }


def _part_to_dict(part: Part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, InlineFilePart):
        return {
            "type": "inline_file",
            "mime_type": part.mime_type,
            "data": part.data,
            "name": part.name,
            "file_id": part.file_id,
        }
    if isinstance(part, ToolCallPart):
        return {"type": "tool_call", **part.call.to_dict()}
    return {"type": "tool_result", **part.result.to_dict()}


def _part_from_dict(data: Dict[str, Any]) -> Part:
    kind = data.get("type")
    if kind == "text":
        return TextPart(data.get("text") or "")
    if kind == "inline_file":
        return InlineFilePart(
            mime_type=data.get("mime_type") or "application/octet-stream",
            data=data.get("data") or FILE_DATA_PLACEHOLDER,
            name=data.get("name") or "",
            file_id=data.get("file_id"),
        )
    if kind == "tool_call":
        return ToolCallPart(ToolCall(id=data["id"], name=data["name"], arguments=data.get("arguments") or {}))
    if kind == "tool_result":
        return ToolResultPart(
            ToolResult(
                call_id=data["id"],
                name=data.get("name") or "",
                outcome=ToolOutcome.from_dict(data.get("outcome") or {}),
            )
        )
    raise ValueError(f"Unknown part type: {kind!r}")


def message_from_dict(data: Dict[str, Any]) -> Message:
    """从 JSON 字典还原 Message（与 Message.to_dict 对应）。"""

    return Message(
        id=data["id"],
        role=data["role"],
        parts=[_part_from_dict(p) for p in data.get("parts") or []],
        metadata=data.get("metadata") or {},
        created_at=_parse_iso(data["created_at"]),
    )


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ModelResponse:
    """一次模型调用的统一结果：纯文本，或者一个以上的工具调用。"""

    text: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    finish_reason: Optional[str] = None


@dataclass
class Attachment:
    """调用方提交的原始附件。"""

    name: str
    mime_type: str
    data: bytes

    def to_part(self, file_id: Optional[str] = None) -> InlineFilePart:
        encoded = base64.b64encode(self.data).decode("ascii")
        return InlineFilePart(mime_type=self.mime_type, data=encoded, name=self.name, file_id=file_id)


@dataclass
class QuotaState:
    """后端报告的用量状态，limit 为 None 表示不限量。"""

    plan_id: str
    used: int
    limit: Optional[int]

    @property
    def exceeded(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


@dataclass
class RetrievalHit:
    title: str
    url: str
    source: str = ""
    description: str = ""
    snippets: List[str] = field(default_factory=list)
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "source": self.source,
            "description": self.description,
            "snippets": list(self.snippets),
            "image_url": self.image_url,
        }


@dataclass
class RetrievalContext:
    """检索上下文，作为 metadata["retrieval"] 挂在它所支撑的 assistant 消息上。"""

    query: str
    hits: List[RetrievalHit]
    fetched_at: datetime
    provider: str
    count: int
    mode: Literal["text", "images"] = "text"
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "hits": [h.to_dict() for h in self.hits],
            "fetched_at": _iso(self.fetched_at),
            "provider": self.provider,
            "count": self.count,
            "mode": self.mode,
            "duration_ms": self.duration_ms,
        }
