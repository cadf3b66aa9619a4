"""工具调度器。

ToolDispatcher 是 ToolResult 的唯一生产者：
- 未注册的工具名返回 unknown_tool 失败结果，不抛异常；
- 动作抛出的任何异常都转换为 tool_execution_failed 失败结果；
- 同一回合内同一个 call id 只执行一次，重复投递直接复用第一次的结果。
"""

import asyncio
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from assistant_core.config.settings import settings
from assistant_core.domain.exceptions import ErrorKind
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.tools.actions import ActionHandler
from assistant_core.tools.definitions import ActionName, ToolCall, ToolOutcome, ToolResult


class ToolDispatcher:
    def __init__(self, registry: Mapping[ActionName, ActionHandler], memory: Optional[int] = None):
        self._registry: Dict[ActionName, ActionHandler] = dict(registry)
        self._memory = memory or settings.dispatcher_memory
        self._calls: "OrderedDict[str, asyncio.Future[ToolResult]]" = OrderedDict()

    @property
    def registered(self) -> List[str]:
        return [name.value for name in self._registry]

    def begin_turn(self) -> None:
        """开始新回合时清空 call id 记录；去重只在同一回合内生效。"""

        self._calls.clear()

    async def execute(self, call: ToolCall) -> ToolResult:
        existing = self._calls.get(call.id)
        if existing is not None:
            self._calls.move_to_end(call.id)
            logger.info(
                "dispatcher.duplicate_call",
                extra={"extra": {"call_id": call.id, "tool": call.name}},
            )
            return await existing
        future = asyncio.ensure_future(self._run(call))
        self._calls[call.id] = future
        while len(self._calls) > self._memory:
            self._calls.popitem(last=False)
        return await future

    async def execute_batch(self, calls: Sequence[ToolCall]) -> List[ToolResult]:
        """并发执行同一轮的全部调用，按 call id 去重，结果顺序与调用顺序一致。"""

        unique: "OrderedDict[str, ToolCall]" = OrderedDict()
        for call in calls:
            unique.setdefault(call.id, call)
        if len(unique) != len(calls):
            logger.warning(
                "dispatcher.duplicate_ids_in_batch",
                extra={"extra": {"calls": len(calls), "unique": len(unique)}},
            )
        return list(await asyncio.gather(*(self.execute(c) for c in unique.values())))

    async def _run(self, call: ToolCall) -> ToolResult:
        action = ActionName.lookup(call.name)
        handler = self._registry.get(action) if action is not None else None
        if handler is None:
            logger.warning("dispatcher.unknown_tool", extra={"extra": {"call_id": call.id, "tool": call.name}})
            return ToolResult(
                call_id=call.id,
                name=call.name,
                outcome=ToolOutcome.failure(f"Unknown function: {call.name}", ErrorKind.UNKNOWN_TOOL),
            )
        try:
            raw = await handler(dict(call.arguments or {}))
        except Exception as exc:
            logger.warning(
                "dispatcher.action_failed",
                extra={"extra": {"call_id": call.id, "tool": call.name, "error": str(exc)}},
            )
            return ToolResult(
                call_id=call.id,
                name=call.name,
                outcome=ToolOutcome.failure(f"Error executing {call.name}: {exc}"),
            )
        outcome = self._normalize(call.name, raw)
        logger.info(
            "dispatcher.action_done",
            extra={"extra": {"call_id": call.id, "tool": call.name, "success": outcome.success}},
        )
        return ToolResult(call_id=call.id, name=call.name, outcome=outcome)

    @staticmethod
    def _normalize(name: str, raw: Any) -> ToolOutcome:
        if isinstance(raw, dict) and raw.get("success") is False:
            return ToolOutcome.failure(str(raw.get("message") or f"{name} failed"))
        return ToolOutcome.ok(raw)
