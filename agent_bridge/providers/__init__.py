"""补全 Provider 集成层。

- base: Provider 抽象接口。
- model_config: 默认模型参数与群组覆盖项的合并。
- openai_compat: OpenAI 兼容 chat/completions 的 httpx 实现。
- salvage: tool_use_failed 响应的抢救解析。
"""

from typing import Optional

from agent_bridge.config.settings import Settings, settings as default_settings
from agent_bridge.providers.base import ProviderClient
from agent_bridge.providers.model_config import ModelConfig, resolve_model_config
from agent_bridge.providers.openai_compat import OpenAICompatClient


def create_provider(settings: Optional[Settings] = None) -> ProviderClient:
    """根据配置创建 Provider 实例。"""

    return OpenAICompatClient.from_settings(settings or default_settings)


__all__ = ["ModelConfig", "OpenAICompatClient", "ProviderClient", "create_provider", "resolve_model_config"]
