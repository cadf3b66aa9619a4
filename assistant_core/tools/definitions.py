"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在 Agent Loop 中保存和执行模型触发的工具调用（ToolCall / ToolResult）。

ToolOutcome 只有两种形态：成功（payload）或失败（reason + error_kind），
构造时即校验，不存在“两者皆有”或“两者皆无”的结果。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from assistant_core.domain.exceptions import ErrorKind


class ActionName(str, Enum):
    """模型可调用的领域动作（封闭集合）。"""

    CREATE_TASK = "createTask"
    UPDATE_TASK = "updateTask"
    ADD_NOTE = "addNote"
    UPDATE_NOTE = "updateNote"
    DELETE_NOTE = "deleteNote"
    CREATE_CRM_ITEM = "createCrmItem"
    UPDATE_CRM_ITEM = "updateCrmItem"
    CREATE_CONTACT = "createContact"
    UPDATE_CONTACT = "updateContact"
    DELETE_CONTACT = "deleteContact"
    CREATE_MEETING = "createMeeting"
    UPDATE_MEETING = "updateMeeting"
    DELETE_MEETING = "deleteMeeting"
    LOG_FINANCIALS = "logFinancials"
    CREATE_EXPENSE = "createExpense"
    DELETE_ITEM = "deleteItem"
    CREATE_MARKETING_ITEM = "createMarketingItem"
    UPDATE_MARKETING_ITEM = "updateMarketingItem"
    UPDATE_SETTINGS = "updateSettings"
    UPLOAD_DOCUMENT = "uploadDocument"
    UPDATE_DOCUMENT = "updateDocument"
    GET_FILE_CONTENT = "getFileContent"
    QUERY_EMAILS = "queryEmails"

    @classmethod
    def lookup(cls, name: str) -> Optional["ActionName"]:
        """按模型给出的名称查找动作，未知名称返回 None 而不是抛异常。"""

        try:
            return cls(name)
        except ValueError:
            return None


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供 LLM 调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。"""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class ToolOutcome:
    """工具执行结果：成功或失败二选一。"""

    success: bool
    payload: Any = None
    reason: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def __post_init__(self) -> None:
        if self.success:
            if self.reason is not None or self.error_kind is not None:
                raise ValueError("successful outcome cannot carry a failure reason")
            if self.payload is None:
                raise ValueError("successful outcome requires a payload")
        else:
            if not self.reason:
                raise ValueError("failed outcome requires a reason")
            if self.payload is not None:
                raise ValueError("failed outcome cannot carry a payload")

    @classmethod
    def ok(cls, payload: Any = None) -> "ToolOutcome":
        return cls(success=True, payload={} if payload is None else payload)

    @classmethod
    def failure(
        cls, reason: str, kind: ErrorKind = ErrorKind.TOOL_EXECUTION_FAILED
    ) -> "ToolOutcome":
        return cls(success=False, reason=reason, error_kind=kind)

    def to_response(self) -> Dict[str, Any]:
        """序列化为回传给模型的 function response。"""

        if not self.success:
            return {
                "success": False,
                "message": self.reason,
                "error": self.error_kind.value if self.error_kind else None,
            }
        if isinstance(self.payload, dict):
            return {"success": True, **{k: v for k, v in self.payload.items() if k != "success"}}
        return {"success": True, "data": self.payload}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "payload": self.payload,
            "reason": self.reason,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolOutcome":
        if data.get("success"):
            return cls.ok(data.get("payload"))
        kind = data.get("error_kind") or ErrorKind.TOOL_EXECUTION_FAILED.value
        return cls.failure(data.get("reason") or "unknown failure", ErrorKind(kind))


@dataclass
class ToolResult:
    """一次工具调用的结果，与 ToolCall 通过 call_id 一一对应。"""

    call_id: str
    name: str
    outcome: ToolOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.call_id, "name": self.name, "outcome": self.outcome.to_dict()}
