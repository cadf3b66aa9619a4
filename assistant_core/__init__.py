"""Assistant Core 顶层包。

该包实现工作区应用中的对话式工具调用编排器（Module Assistant），
包括配置加载、领域模型、限流与配额、工具调度、检索增强、
基于 LangGraph 的回合状态机、输出清洗与会话持久化。
"""

from assistant_core.agents.assistant import ModuleAssistant, TurnOutcome
from assistant_core.api.service import AssistantHub
from assistant_core.domain.conversation import ScopeKey

__all__ = ["AssistantHub", "ModuleAssistant", "ScopeKey", "TurnOutcome"]
