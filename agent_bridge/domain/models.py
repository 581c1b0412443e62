"""统一的对话与结果数据模型。

本模块定义了 Agent 循环与补全 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给补全接口的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

Provider 适配器只依赖这些模型，并负责在各自的 API JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Literal, Optional, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from agent_bridge.tools.definitions import ToolCall, ToolDef


# 与 OpenAI 兼容接口的 role 字段对应
Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色。
    - content: 纯文本内容；assistant 只发起工具调用时可以为 None。
    - tool_calls: assistant 触发工具调用时的调用列表。
    - tool_call_id: role 为 "tool" 时，关联到对应的工具调用。
    """

    role: Role
    content: Optional[str]
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None


@dataclass
class ChatRequest:
    """一次完整的补全请求。

    tools 为空时 Provider 不会在请求体中携带 tools 字段，
    Agent 循环借此强制模型给出纯文本回答。
    """

    model: str
    messages: List[ChatMessage]
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    tools: Optional[List["ToolDef"]] = None
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次补全调用的最终结果。

    - provider: Provider 名（如 "openai-compat"）。
    - model: 实际使用的模型名。
    - choices: 候选回答，可能为空（上层视为错误）。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON；从失败响应中抢救出的结果该字段为 None。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
