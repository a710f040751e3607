"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field
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
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 服务端接口 ----
    api_base_url: str = Field(
        default="http://localhost:5000",
        description="聊天后端的基础 URL",
    )
    chat_stream_path: str = Field(default="/api/chat/stream", description="流式回答接口路径")
    mentions_path: str = Field(default="/api/mentions", description="@mention 候选搜索接口路径")

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    stream_idle_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="等待下一个响应分块的最长时间（秒），为空表示不限制",
    )

    # ---- @mention ----
    mention_blur_grace_ms: int = Field(
        default=200,
        ge=0,
        description="输入框失焦后保留候选列表的宽限时间（毫秒）",
    )
    mention_search_cache_ttl: float = Field(
        default=30.0,
        ge=0,
        description="候选搜索结果缓存时间（秒），0 表示不缓存",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

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

    def endpoint(self, path: str) -> str:
        """拼接 api_base_url 与接口路径。"""

        return f"{self.api_base_url.rstrip('/')}/{path.lstrip('/')}"


settings = Settings()
