"""工具系统：动作名、工具 schema、类型化注册表与调度器。"""

from assistant_core.tools.actions import ActionHandler, DomainActions, bind_actions
from assistant_core.tools.catalog import default_tool_defs, relevant_tool_defs
from assistant_core.tools.definitions import ActionName, ToolCall, ToolDef, ToolOutcome, ToolParam, ToolResult
from assistant_core.tools.dispatcher import ToolDispatcher

__all__ = [
    "ActionHandler",
    "ActionName",
    "DomainActions",
    "ToolCall",
    "ToolDef",
    "ToolDispatcher",
    "ToolOutcome",
    "ToolParam",
    "ToolResult",
    "bind_actions",
    "default_tool_defs",
    "relevant_tool_defs",
]
