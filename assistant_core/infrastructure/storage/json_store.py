import json
import os
import shutil
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from assistant_core.config.settings import settings
from assistant_core.domain.conversation import ConversationStore, ScopeKey
from assistant_core.domain.exceptions import BusinessError
from assistant_core.domain.models import (
    FILE_DATA_PLACEHOLDER,
    InlineFilePart,
    Message,
    message_from_dict,
)
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.infrastructure.storage import export


def strip_inline_data(message: Message) -> Message:
    """返回去掉内联文件字节的副本，只保留文件名、类型和 file_id。"""

    if not message.has_file:
        return message
    parts = [
        replace(p, data=FILE_DATA_PLACEHOLDER) if isinstance(p, InlineFilePart) else p
        for p in message.parts
    ]
    return replace(message, parts=parts)


class JsonConversationStore(ConversationStore):
    """按作用域落盘的会话存储。

    目录结构: <root>/conversations/<scope.storage_key>/{meta.json, messages.jsonl}
    消息只追加；唯一允许的修改是给最近一条 assistant 消息补充 metadata。
    """

    def __init__(self, scope: ScopeKey, root: str | Path | None = None):
        self.scope = scope
        self._root = Path(root or settings.storage_root).resolve()
        self._dir = self._root / "conversations" / scope.storage_key
        self._msgs_path = self._dir / "messages.jsonl"

    def append(self, message: Message) -> None:
        stored = strip_inline_data(message)
        try:
            # 会话在第一条消息写入时才创建
            self._dir.mkdir(parents=True, exist_ok=True)
            line = json.dumps(stored.to_dict(), ensure_ascii=False)
            with self._msgs_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        self._write_meta()

    def all(self) -> List[Message]:
        items: List[Message] = []
        if not self._msgs_path.exists():
            return items
        try:
            lines = self._msgs_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        for idx, line in enumerate(lines):
            if not line.strip():
                continue
            try:
                items.append(message_from_dict(json.loads(line)))
            except (ValueError, KeyError) as e:
                logger.warning(
                    "store.corrupt_line",
                    extra={"extra": {"scope": self.scope.storage_key, "line": idx, "error": str(e)}},
                )
        return items

    def clear(self) -> None:
        if not self._dir.exists():
            return
        try:
            shutil.rmtree(self._dir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))
        logger.info("store.cleared", extra={"extra": {"scope": self.scope.storage_key}})

    def attach_metadata(self, metadata: Dict[str, Any]) -> Message:
        messages = self.all()
        for idx in range(len(messages) - 1, -1, -1):
            if messages[idx].role == "assistant":
                target = messages[idx]
                target.metadata = {**target.metadata, **metadata}
                self._rewrite(messages)
                return target
        raise BusinessError(code="NO_ASSISTANT_MESSAGE", message=self.scope.storage_key)

    def export_text(self) -> str:
        return export.export_text(self.all())

    def export_json(self) -> str:
        return export.export_json(self.all())

    def _rewrite(self, messages: List[Message]) -> None:
        tmp_path = self._dir / f"messages.{uuid4().hex}.jsonl.tmp"
        body = "".join(json.dumps(m.to_dict(), ensure_ascii=False) + "\n" for m in messages)
        try:
            tmp_path.write_text(body, encoding="utf-8")
            os.replace(tmp_path, self._msgs_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        self._write_meta(len(messages))

    def _write_meta(self, count: int | None = None) -> None:
        meta_path = self._dir / "meta.json"
        tmp_path = self._dir / f"meta.{uuid4().hex}.json.tmp"
        if count is None:
            count = sum(1 for line in self._msgs_path.read_text(encoding="utf-8").splitlines() if line.strip())
        obj = {
            "scope": self.scope.as_dict(),
            "updated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "message_count": count,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
