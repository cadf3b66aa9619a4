"""LLM Provider 集成层。

该包下的模块负责：
- 定义模型调用抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (groq_client) 与可选的内容审核 (moderation)。
"""

from typing import Literal, Optional

from assistant_core.config.settings import settings
from assistant_core.providers.base import ModelClient
from assistant_core.providers.groq_client import GroqClient
from assistant_core.providers.moderation import HttpModerationClient
from assistant_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None, **context) -> ModelClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "groq")).lower()
    get_provider_config(provider_name)
    moderation = HttpModerationClient(settings) if settings.moderation_url else None
    return GroqClient(settings, moderation=moderation, context=context)


DefaultProviderName = Literal["groq"]
