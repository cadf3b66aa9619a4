"""套餐配额校验。

配额计数由后端维护，这里只读取并分类；用量的增加发生在后端处理模型请求时。
后端查询失败时放行，由 Provider 返回的配额错误做最终兜底。
"""

from typing import Dict, Optional, Protocol

from assistant_core.domain.exceptions import QuotaExceeded
from assistant_core.domain.models import QuotaState
from assistant_core.infrastructure.logging.logger import logger


class UsageBackend(Protocol):
    async def fetch_usage(self, workspace_id: str) -> QuotaState:
        ...


class StaticUsageBackend:
    """内存中的用量表，按 workspace 保存 QuotaState。"""

    def __init__(self, states: Optional[Dict[str, QuotaState]] = None):
        self._states: Dict[str, QuotaState] = dict(states or {})

    def set(self, workspace_id: str, state: QuotaState) -> None:
        self._states[workspace_id] = state

    async def fetch_usage(self, workspace_id: str) -> QuotaState:
        return self._states.get(workspace_id) or QuotaState(plan_id="free", used=0, limit=None)


class QuotaGate:
    def __init__(self, backend: UsageBackend):
        self._backend = backend

    @staticmethod
    def classify(state: QuotaState) -> None:
        if state.exceeded:
            raise QuotaExceeded(usage=state.used, limit=state.limit, plan=state.plan_id)

    async def check(self, workspace_id: Optional[str]) -> Optional[QuotaState]:
        if not workspace_id:
            logger.info("quota.no_workspace")
            return None
        try:
            state = await self._backend.fetch_usage(workspace_id)
        except Exception as exc:
            logger.warning(
                "quota.backend_unavailable",
                extra={"extra": {"workspace_id": workspace_id, "error": str(exc)}},
            )
            return None
        self.classify(state)
        return state
