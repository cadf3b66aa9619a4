from typing import Any, Dict, List

from assistant_core.domain.conversation import ConversationStore, ScopeKey
from assistant_core.domain.exceptions import BusinessError
from assistant_core.domain.models import Message
from assistant_core.infrastructure.storage import export
from assistant_core.infrastructure.storage.json_store import strip_inline_data


class InMemoryConversationStore(ConversationStore):
    """进程内会话存储，语义与 JsonConversationStore 一致（本地运行/测试使用）。"""

    def __init__(self, scope: ScopeKey):
        self.scope = scope
        self._messages: List[Message] = []

    def append(self, message: Message) -> None:
        self._messages.append(strip_inline_data(message))

    def all(self) -> List[Message]:
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def attach_metadata(self, metadata: Dict[str, Any]) -> Message:
        for message in reversed(self._messages):
            if message.role == "assistant":
                message.metadata = {**message.metadata, **metadata}
                return message
        raise BusinessError(code="NO_ASSISTANT_MESSAGE", message=self.scope.storage_key)

    def export_text(self) -> str:
        return export.export_text(self._messages)

    def export_json(self) -> str:
        return export.export_json(self._messages)
