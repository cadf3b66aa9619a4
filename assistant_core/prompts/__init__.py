"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取功能区对应的 system prompt，
找不到专用文件时回退到 default.md。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent

_FEATURE_FILES = {
    "investors": "crm",
    "customers": "crm",
    "partners": "crm",
    "platform": "dashboard",
}


def load_system_prompt(feature: str, locale: str = "en") -> str:
    """根据功能区和语言加载系统提示词文本。"""

    base = PROMPTS_DIR / locale
    name = _FEATURE_FILES.get(feature, feature)
    fname = base / f"{name}.md"
    if not fname.exists():
        fname = base / "default.md"
    return fname.read_text(encoding="utf-8")
