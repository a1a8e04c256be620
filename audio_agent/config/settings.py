"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次递减。
"""

import os
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AUDIO_AGENT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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

    # ---- Provider 相关配置 ----
    default_provider: str = Field(default="kimi", description="默认使用的 Provider 名称")
    default_model: str = Field(
        default="audio-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )
    kimi_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("kimi_api_key", "moonshot_api_key"),
        description="Kimi / Moonshot API 密钥",
    )
    kimi_base_url: str = Field(default="https://api.moonshot.cn/v1", description="Kimi API 基础URL")
    http_timeout: float = Field(default=120.0, ge=1.0, description="HTTP 超时时间（秒）")
    temperature: float = Field(default=0.6, ge=0.0, le=2.0, description="生成温度")
    max_tool_rounds: int = Field(
        default=20,
        ge=1,
        le=50,
        description="单轮对话内模型⇄工具往返的最大轮数",
    )

    # ---- 音频提取 ----
    output_dir: str = Field(default="./output", description="extract_audio 默认输出目录")
    downloader_bin: str = Field(default="yt-dlp", description="下载器可执行文件")
    probe_bin: str = Field(default="ffprobe", description="媒体探测可执行文件")
    download_timeout: float = Field(default=300.0, ge=1.0, description="下载超时时间（秒）")
    probe_timeout: float = Field(default=10.0, ge=1.0, description="ffprobe 超时时间（秒）")
    max_output_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="子进程输出捕获上限（字节）",
    )
    bilibili_sessdata: Optional[str] = Field(default=None, description="Bilibili SESSDATA cookie")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("kimi_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip() or None
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


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """首次调用时才读取配置；配置非法时抛出 pydantic 的 ValidationError，由入口处理。"""

    return Settings()
