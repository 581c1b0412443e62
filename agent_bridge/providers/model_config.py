"""模型配置。

全局默认值来自 Settings（llm_model / llm_temperature / llm_max_tokens），
每个群组可以在登记信息里覆盖其中任意一项，未给出的项回落到默认值。
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class ModelConfig:
    """单次 Agent 调用使用的模型参数。"""

    model: str
    temperature: float
    max_tokens: int


def resolve_model_config(settings, overrides: Optional[Mapping[str, Any]] = None) -> ModelConfig:
    """合并群组覆盖项与全局默认值。

    overrides 可以使用 snake_case 或 camelCase（maxTokens）键名，值为 None 视为未设置。
    """

    overrides = overrides or {}

    def pick(*keys: str):
        for key in keys:
            value = overrides.get(key)
            if value is not None:
                return value
        return None

    model = pick("model") or settings.llm_model
    temperature = pick("temperature")
    max_tokens = pick("max_tokens", "maxTokens")
    return ModelConfig(
        model=str(model),
        temperature=float(temperature) if temperature is not None else settings.llm_temperature,
        max_tokens=int(max_tokens) if max_tokens is not None else settings.llm_max_tokens,
    )
