import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from .models import Message


_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class ScopeKey:
    """会话作用域：(功能区, workspace, 用户)。限流与会话存储均按此隔离。"""

    feature: str
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def storage_key(self) -> str:
        """目录名：可读前缀 + 原始三元组的摘要。

        前缀经过字符替换后可能重复（如 "a_b"/"c" 与 "a"/"b_c"），
        摘要基于未替换的原值（None 与字面量 "default" 不同），保证不同作用域不会共用目录。
        """

        readable = f"{self.feature}_{self.workspace_id or 'default'}_{self.user_id or 'anonymous'}"
        exact = json.dumps([self.feature, self.workspace_id, self.user_id], ensure_ascii=False)
        digest = hashlib.sha256(exact.encode("utf-8")).hexdigest()[:16]
        return f"{_UNSAFE.sub('-', readable)[:80]}_{digest}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.feature,
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
        }


class ConversationStore(Protocol):
    def append(self, message: Message) -> None:
        ...

    def all(self) -> List[Message]:
        ...

    def clear(self) -> None:
        ...

    def export_text(self) -> str:
        ...

    def export_json(self) -> str:
        ...

    def attach_metadata(self, metadata: Dict[str, Any]) -> Message:
        ...
