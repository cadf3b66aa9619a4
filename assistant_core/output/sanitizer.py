"""模型输出清洗。

- chart/json 代码块（或内容可解析为图表配置的无标签代码块）转换为 markdown 表格；
  解析失败的块整体丢弃，消息其余部分保留。
- 其他代码块去掉围栏、保留内容；残留的 ``` 全部移除。
- 移除 script/iframe/style/object/embed 等标签。

sanitize 是幂等的：各步骤循环执行到输出不再变化为止。
"""

import json
import re
from typing import Any, List, Optional

# 三种形式：多行闭合块、单行 ```lang {...}```、截断到文本末尾的未闭合块
_FENCE = re.compile(
    r"```[ \t]*([A-Za-z0-9_+-]*)([^\n]*?)(?:```|\n(.*?)(```|\Z))", re.DOTALL
)
_BACKTICK_RUN = re.compile(r"`{3,}")
_TILDE_FENCE = re.compile(r"^[ \t]*~{3,}.*$", re.MULTILINE)
_BLOCKED_PAIR = re.compile(
    r"<(script|iframe|style|object|embed)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_BLOCKED_TAG = re.compile(r"</?(script|iframe|style|object|embed)\b[^>]*>", re.IGNORECASE)
_BLANK_RUNS = re.compile(r"\n{3,}")
_TRAILING_WS = re.compile(r"[ \t]+\n")

_TABLE_LANGS = {"chart", "json"}
_MAX_PASSES = 8


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    text = str(value).replace("\n", " ").replace("`", "'")
    return text.replace("|", "\\|").strip()


def _table(header: List[str], rows: List[List[Any]]) -> List[str]:
    lines = ["| " + " | ".join(_cell(h) for h in header) + " |"]
    lines.append("| " + " | ".join("---" for _ in header) + " |")
    for row in rows:
        lines.append("| " + " | ".join(_cell(v) for v in row) + " |")
    return lines


def _render(config: Any, name_key: str, value_key: str) -> str:
    lines: List[str] = []
    if isinstance(config, dict) and isinstance(config.get("data"), list):
        nk = str(config.get("nameKey") or name_key)
        vk = str(config.get("dataKey") or config.get("valueKey") or value_key)
        rows = [[row.get(nk), row.get(vk)] for row in config["data"] if isinstance(row, dict)]
        if not rows:
            raise ValueError("chart has no data rows")
        if config.get("title"):
            lines += [f"**{_cell(config['title'])}**", ""]
        lines += _table([nk, vk], rows)
    elif isinstance(config, list) and config and all(isinstance(r, dict) for r in config):
        if all(name_key in r and value_key in r for r in config):
            columns = [name_key, value_key]
        else:
            columns = []
            for row in config:
                columns.extend(k for k in row if k not in columns)
        lines += _table(columns, [[row.get(c) for c in columns] for row in config])
    elif isinstance(config, dict) and config:
        lines += _table(["key", "value"], [[k, v] for k, v in config.items()])
    else:
        raise ValueError("unsupported block content")
    return "\n".join(lines)


def _parse(body: str) -> Optional[Any]:
    try:
        return json.loads(body)
    except ValueError:
        return None


def _replace_fences(text: str, name_key: str, value_key: str) -> str:
    def sub(match: "re.Match[str]") -> str:
        raw_lang, info, multiline, closing = match.groups()
        lang = raw_lang.lower()
        if multiline is None:
            # 单行块：内容就在开头围栏同一行
            body = info
            kept = info.strip() or raw_lang
        else:
            body = multiline
            # 未闭合块的首行可能是正文而不是 info string
            kept = body if closing else f"{info}\n{body}"
        if lang in _TABLE_LANGS:
            config = _parse(body)
        elif not lang:
            config = _parse(body)
            if config is None or not isinstance(config, (dict, list)):
                return "\n" + kept.strip() + "\n"
        else:
            return "\n" + kept.strip() + "\n"
        if config is None:
            return "\n"
        try:
            return "\n\n" + _render(config, name_key, value_key) + "\n\n"
        except ValueError:
            return "\n"

    return _FENCE.sub(sub, text)


def _strip_blocked(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = _BLOCKED_PAIR.sub("", text)
        text = _BLOCKED_TAG.sub("", text)
    return text


def _pass(text: str, name_key: str, value_key: str) -> str:
    text = _strip_blocked(text)
    text = _replace_fences(text, name_key, value_key)
    text = _BACKTICK_RUN.sub("", text)
    text = _TILDE_FENCE.sub("", text)
    text = _TRAILING_WS.sub("\n", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def sanitize(raw: Optional[str], name_key: str = "name", value_key: str = "value") -> str:
    text = (raw or "").replace("\r\n", "\n")
    for _ in range(_MAX_PASSES):
        cleaned = _pass(text, name_key, value_key)
        if cleaned == text:
            break
        text = cleaned
    return text
