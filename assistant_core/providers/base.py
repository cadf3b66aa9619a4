from typing import List, Optional, Protocol

from assistant_core.domain.models import Message, ModelResponse
from assistant_core.tools.definitions import ToolDef


class ModelClient(Protocol):
    """语言模型调用的统一接口。

    失败时抛出 TransportError（网络/服务故障）、QuotaExceeded（套餐用量耗尽）
    或 ModerationRejected（输入或输出被审核拦截）。
    """

    name: str

    async def respond(
        self,
        history: List[Message],
        system_prompt: str,
        tools_enabled: bool,
        tools: Optional[List[ToolDef]] = None,
    ) -> ModelResponse:
        ...
