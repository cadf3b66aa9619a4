"""对外 API 服务模块。

AssistantHub 按 ScopeKey 懒创建 ModuleAssistant：每个作用域拥有独立的会话存储、
限流窗口与工具调度器；模型客户端、配额后端与领域动作在作用域之间共享。
"""

from typing import Any, Dict, Optional

from assistant_core.agents.assistant import ModuleAssistant
from assistant_core.config.settings import settings
from assistant_core.domain.conversation import ScopeKey
from assistant_core.domain.models import Attachment
from assistant_core.guards.quota import QuotaGate, UsageBackend
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.infrastructure.storage.file_store import FileStore, LocalFileStore
from assistant_core.infrastructure.storage.json_store import JsonConversationStore
from assistant_core.prompts import load_system_prompt
from assistant_core.providers import create_provider
from assistant_core.providers.base import ModelClient
from assistant_core.retrieval import HttpSearchClient, RetrievalAugmenter, SearchClient
from assistant_core.tools.actions import DomainActions, bind_actions
from assistant_core.tools.dispatcher import ToolDispatcher


class AssistantHub:
    def __init__(
        self,
        actions: DomainActions,
        usage_backend: UsageBackend,
        model: Optional[ModelClient] = None,
        search_client: Optional[SearchClient] = None,
        file_store: Optional[FileStore] = None,
        storage_root: Optional[str] = None,
        locale: str = "en",
    ):
        self._registry = bind_actions(actions)
        self._quota_gate = QuotaGate(usage_backend)
        self._model = model
        self._storage_root = storage_root or settings.storage_root
        self._file_store = file_store or LocalFileStore(self._storage_root)
        if search_client is None and settings.search_url:
            search_client = HttpSearchClient(settings)
        self._augmenter = (
            RetrievalAugmenter(search_client, max_hits=settings.search_max_hits) if search_client else None
        )
        self._locale = locale
        self._assistants: Dict[ScopeKey, ModuleAssistant] = {}

    def get(self, scope: ScopeKey) -> ModuleAssistant:
        assistant = self._assistants.get(scope)
        if assistant is None:
            model = self._model or create_provider(workspaceId=scope.workspace_id, tab=scope.feature)
            assistant = ModuleAssistant(
                scope=scope,
                model=model,
                dispatcher=ToolDispatcher(self._registry),
                store=JsonConversationStore(scope, root=self._storage_root),
                quota_gate=self._quota_gate,
                system_prompt=load_system_prompt(scope.feature, self._locale),
                augmenter=self._augmenter,
                file_store=self._file_store,
            )
            self._assistants[scope] = assistant
        return assistant

    async def chat(
        self,
        scope: ScopeKey,
        text: str,
        attachment: Optional[Attachment] = None,
        tools_enabled: Optional[bool] = None,
        web_search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """执行一次对话回合并返回可直接序列化的结果。

        Returns:
            包含终止状态、最终文本、错误描述与本回合新增消息的字典；
            空输入或作用域忙碌时返回 {"ignored": True}。
        """
        outcome = await self.get(scope).submit(
            text, attachment=attachment, tools_enabled=tools_enabled, web_search=web_search
        )
        if outcome is None:
            return {"ignored": True}
        result: Dict[str, Any] = {
            "ignored": False,
            "state": outcome.state.value,
            "text": outcome.text,
            "tool_rounds": outcome.tool_rounds,
            "messages": [m.to_dict() for m in outcome.messages],
        }
        if outcome.error is not None:
            result["error"] = outcome.messages[-1].metadata.get("error")
            logger.info(
                "api.chat_error",
                extra={"extra": {"scope": scope.storage_key, **(result["error"] or {})}},
            )
        return result
