"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("ASSISTANT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class AssistantSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(default="groq", description="默认使用的 Provider 名称")
    default_model: str = Field(
        default="assistant-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )
    groq_api_key: Optional[str] = Field(default=None, description="Groq API 密钥")
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="OpenAI 兼容接口基础URL",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 内容审核（可选） ----
    moderation_url: Optional[str] = Field(default=None, description="审核服务地址，未配置则跳过")
    moderation_api_key: Optional[str] = Field(default=None, description="审核服务密钥")

    # ---- 检索增强 ----
    search_url: Optional[str] = Field(default=None, description="检索服务地址")
    search_api_key: Optional[str] = Field(default=None, description="检索服务密钥")
    search_max_hits: int = Field(default=5, ge=1, le=20, description="写入提示词的结果条数")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- Agent Loop ----
    history_window: int = Field(default=15, ge=1, le=200, description="发送给模型的最近消息数")
    rate_limit_window_seconds: float = Field(default=60.0, gt=0, description="限流滑动窗口（秒）")
    rate_limit_max_requests: int = Field(default=10, ge=1, description="窗口内允许的请求数")
    max_tool_iterations: int = Field(
        default=10,
        ge=1,
        le=50,
        description="单个回合内工具调用最大往返次数",
    )
    tool_result_max_items: int = Field(default=5, ge=1, description="工具结果数组保留条数")
    tool_result_max_chars: int = Field(default=4000, ge=200, description="工具结果超过此长度才裁剪")
    dispatcher_memory: int = Field(default=512, ge=1, description="Dispatcher 记住的 call id 数量")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("groq_api_key", "moderation_api_key", "search_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = AssistantSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = AssistantSettings
