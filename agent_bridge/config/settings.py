"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
宿主进程与沙箱内的 Agent 共用同一份 Settings 定义，
但只有宿主进程会持有外部平台的凭据。
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
    explicit = os.getenv("AGENT_CONFIG_FILE")
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

    # ---- 目录布局 ----
    data_dir: str = Field(default="data", description="数据根目录，ipc/ 与 sessions/ 位于其下")
    groups_dir: str = Field(default="groups", description="各群组工作目录的根目录")
    main_group_folder: str = Field(default="main", description="特权（main）群组的目录名")
    registry_file: str = Field(
        default="data/resource_mappings.yaml",
        description="外部资源 -> 群组 映射文件（YAML 或 JSON）",
    )
    assistant_name: str = Field(default="Andy", description="助手名称，写入系统提示词")
    marketplace_account: str = Field(
        default="ebay",
        description="卖家账号在映射文件中的资源 ID，ebay_ 请求按它做授权",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 邮箱（文件 IPC）----
    ipc_poll_interval_ms: int = Field(default=1000, ge=10, description="宿主轮询 ipc 目录的间隔（毫秒）")
    ipc_result_timeout_ms: int = Field(
        default=30000,
        ge=100,
        description="Agent 端等待请求结果的最长时间（毫秒）",
    )
    result_poll_interval_ms: int = Field(default=500, ge=10, description="等待结果时的轮询间隔（毫秒）")

    # ---- 补全接口（OpenAI 兼容）----
    llm_base_url: str = Field(default="http://localhost:11434/v1", description="chat/completions 基础 URL")
    llm_model: str = Field(default="qwen2.5:7b", description="默认模型名")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="默认生成温度")
    llm_max_tokens: int = Field(default=2048, ge=1, description="单次补全最大 token 数")
    llm_timeout: float = Field(default=300.0, ge=1.0, description="补全请求超时时间（秒）")
    llm_api_key: Optional[str] = Field(default=None, description="补全接口密钥（可选）")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("llm_api_key")
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

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser().resolve()

    @property
    def groups_path(self) -> Path:
        return Path(self.groups_dir).expanduser().resolve()


settings = Settings()
