"""Module Assistant：按作用域运行的对话式工具调用编排器。

一个 ModuleAssistant 实例对应一个 (功能区, workspace, 用户) 作用域，持有该作用域
独享的会话存储与限流窗口。submit() 执行一个完整回合：

1. 写入用户消息（附件只持久化一次，之后仅以名称/ID 引用）。
2. 本地限流 -> 套餐配额，任一拦截都直接生成一条错误 assistant 消息，不调用模型。
3. 可选检索增强，只影响发给模型的 system prompt。
4. 模型请求与并发工具执行交替进行，直到得到纯文本回答或超出迭代上限。
5. 清洗输出、写入最终消息、通知观察者。

同一作用域内回合进行中再次提交会被忽略（返回 None），防止两个循环交错写入。
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple
from uuid import uuid4

from assistant_core.config.settings import settings
from assistant_core.domain.conversation import ConversationStore, ScopeKey
from assistant_core.domain.exceptions import BusinessError
from assistant_core.domain.models import Attachment, Message
from assistant_core.flows.graph import LoopRuntime, build_graph
from assistant_core.flows.state import LoopState, TurnState
from assistant_core.guards.quota import QuotaGate
from assistant_core.guards.rate_limiter import SlidingWindowRateLimiter
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.infrastructure.storage.file_store import FileStore
from assistant_core.providers.base import ModelClient
from assistant_core.retrieval.augmenter import RetrievalAugmenter
from assistant_core.tools.catalog import relevant_tool_defs
from assistant_core.tools.definitions import ToolDef
from assistant_core.tools.dispatcher import ToolDispatcher

_ACTION_INTENT = re.compile(
    r"\b(create|add|make|update|change|delete|remove|log|upload|set)\b", re.IGNORECASE
)

REPORT_PROMPTS = {
    "dashboard": "Generate a short status report of open tasks, priorities and upcoming due dates.",
    "crm": "Generate a pipeline report: stages, recent meetings and suggested next steps.",
    "marketing": "Generate a marketing report covering active campaigns, budgets and timelines.",
    "financials": "Generate a financial summary of recent MRR, GMV, signups and expenses.",
}
DEFAULT_REPORT_PROMPT = "Generate a concise report of the current state of this workspace area."


def wants_action(text: str) -> bool:
    """粗略判断用户是否在请求执行操作，用于决定是否携带工具定义。"""

    return bool(_ACTION_INTENT.search(text or ""))


@dataclass
class TurnOutcome:
    state: LoopState
    text: str
    error: Optional[BaseException] = None
    messages: List[Message] = field(default_factory=list)
    tool_rounds: int = 0
    trail: List[LoopState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == LoopState.TERMINAL_TEXT


class ModuleAssistant:
    def __init__(
        self,
        scope: ScopeKey,
        model: ModelClient,
        dispatcher: ToolDispatcher,
        store: ConversationStore,
        quota_gate: QuotaGate,
        system_prompt: str,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        tools: Optional[List[ToolDef]] = None,
        augmenter: Optional[RetrievalAugmenter] = None,
        file_store: Optional[FileStore] = None,
        max_tool_iterations: Optional[int] = None,
        history_window: Optional[int] = None,
    ):
        self.scope = scope
        self._store = store
        self._system_prompt = system_prompt
        self._file_store = file_store
        self._busy = False
        self._max_tool_iterations = max_tool_iterations or settings.max_tool_iterations
        self._runtime = LoopRuntime(
            scope=scope,
            model=model,
            dispatcher=dispatcher,
            store=store,
            rate_limiter=rate_limiter
            or SlidingWindowRateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_seconds),
            quota_gate=quota_gate,
            tools=tools if tools is not None else relevant_tool_defs(scope.feature),
            max_tool_iterations=self._max_tool_iterations,
            history_window=history_window or settings.history_window,
            augmenter=augmenter,
        )
        self._graph = build_graph(self._runtime)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._runtime.rate_limiter

    def on_new_message(self, callback: Callable[[Message], Any]) -> None:
        self._runtime.observers.append(callback)

    def history(self) -> List[Message]:
        return self._store.all()

    def clear(self) -> None:
        self._store.clear()

    def export_text(self) -> str:
        return self._store.export_text()

    def export_json(self) -> str:
        return self._store.export_json()

    async def generate_report(self) -> Optional[TurnOutcome]:
        prompt = REPORT_PROMPTS.get(self.scope.feature, DEFAULT_REPORT_PROMPT)
        return await self.submit(prompt, tools_enabled=False)

    async def submit(
        self,
        text: str,
        *,
        attachment: Optional[Attachment] = None,
        tools_enabled: Optional[bool] = None,
        web_search: Optional[str] = None,
    ) -> Optional[TurnOutcome]:
        text = (text or "").strip()
        if not text and attachment is None:
            return None
        if self._busy:
            logger.warning("assistant.busy", extra={"extra": {"scope": self.scope.storage_key}})
            return None
        self._busy = True
        try:
            return await self._run_turn(text, attachment, tools_enabled, web_search)
        finally:
            self._busy = False

    async def _run_turn(
        self,
        text: str,
        attachment: Optional[Attachment],
        tools_enabled: Optional[bool],
        web_search: Optional[str],
    ) -> TurnOutcome:
        trace_id = f"tr-{uuid4().hex}"
        self._runtime.dispatcher.begin_turn()
        user_message, early_error = await self._user_message(text, attachment, trace_id)
        try:
            working = self._store.all()
        except BusinessError as exc:
            working = []
            early_error = early_error or exc
        working.append(user_message)
        try:
            self._store.append(user_message)
        except BusinessError as exc:
            early_error = early_error or exc
        if early_error is not None:
            logger.error(
                "assistant.turn_setup_failed",
                extra={"extra": {"trace_id": trace_id, "scope": self.scope.storage_key, "error": str(early_error)}},
            )

        state: TurnState = {
            "trace_id": trace_id,
            "state": LoopState.IDLE,
            "trail": [LoopState.IDLE],
            "user_text": text,
            "working": working,
            "new_messages": [user_message],
            "system_prompt": self._system_prompt,
            "tools_enabled": wants_action(text) if tools_enabled is None else tools_enabled,
            "web_search": web_search,
            "tool_rounds": 0,
            "pending": None,
            "final_text": None,
            "error": early_error,
            "retrieval": None,
        }
        logger.info(
            "assistant.turn_start",
            extra={
                "extra": {
                    "trace_id": trace_id,
                    "scope": self.scope.storage_key,
                    "tools_enabled": state["tools_enabled"],
                    "attachment": attachment.name if attachment else None,
                }
            },
        )
        # 每轮工具往返经过 request + tools 两个节点
        limit = 2 * self._max_tool_iterations + 10
        final: TurnState = await self._graph.ainvoke(state, config={"recursion_limit": limit})
        last = final["new_messages"][-1]
        return TurnOutcome(
            state=final["state"],
            text=last.text,
            error=final.get("error"),
            messages=list(final["new_messages"]),
            tool_rounds=final.get("tool_rounds", 0),
            trail=list(final.get("trail", [])),
        )

    async def _user_message(
        self, text: str, attachment: Optional[Attachment], trace_id: str
    ) -> Tuple[Message, Optional[BaseException]]:
        """构造用户消息；附件存储失败时消息照常写入，错误交给回合以错误回复结束。"""

        if attachment is None:
            return Message.user(text), None
        file_id = None
        error: Optional[BaseException] = None
        if self._file_store is not None:
            try:
                file_id = await self._file_store.store(attachment.name, attachment.mime_type, attachment.data)
            except Exception as exc:
                logger.error(
                    "assistant.attachment_store_failed",
                    extra={"extra": {"trace_id": trace_id, "file": attachment.name, "error": str(exc)}},
                )
                error = exc
        prefixed = f"[File Attached: {attachment.name}]\n\n{text}".rstrip()
        return Message.user(prefixed, attachment=attachment.to_part(file_id)), error
