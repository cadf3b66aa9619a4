"""附件持久化。

FileStore 是外部文档存储的抽象，每次用户提交最多调用一次 store()。
LocalFileStore 把文件写到 <storage_root>/files 下，供本地运行使用。
"""

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from assistant_core.config.settings import settings
from assistant_core.domain.exceptions import BusinessError


class FileStore(Protocol):
    async def store(self, name: str, mime_type: str, data: bytes) -> str:
        ...


class LocalFileStore:
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve() / "files"

    async def store(self, name: str, mime_type: str, data: bytes) -> str:
        file_id = f"f-{uuid4().hex}"
        await asyncio.to_thread(self._write, file_id, name, mime_type, data)
        return file_id

    def _write(self, file_id: str, name: str, mime_type: str, data: bytes) -> None:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]+", "-", name) or "file"
        fdir = self._root / file_id
        try:
            fdir.mkdir(parents=True, exist_ok=True)
            tmp_path = fdir / f"{safe_name}.tmp"
            tmp_path.write_bytes(data)
            os.replace(tmp_path, fdir / safe_name)
            (fdir / "meta.json").write_text(
                json.dumps({"id": file_id, "name": name, "mime_type": mime_type, "size": len(data)}),
                encoding="utf-8",
            )
        except OSError as e:
            raise BusinessError(code="FILE_STORE_ERROR", message=str(e))
