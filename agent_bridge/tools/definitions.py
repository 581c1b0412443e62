"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给模型（ToolDef / ToolParam）。
- 在 Agent 循环中保存和执行模型触发的工具调用（ToolCall）。
"""

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any] = field(default_factory=lambda: {"type": "string"})


@dataclass
class ToolDef:
    """一个可供模型调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    arguments 保留模型给出的原始 JSON 字符串，由 Agent 循环负责解析，
    这样写回会话历史时不会丢失模型的原文。
    """

    id: str
    name: str
    arguments: str = "{}"

