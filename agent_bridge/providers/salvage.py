"""从 tool_use_failed 错误响应中抢救模型输出。

部分 OpenAI 兼容服务（如 Groq）在模型生成的工具调用格式不合规时返回 400，
并把原始生成内容放在 error.failed_generation 里。这里尽量把它还原成
一条正常的 assistant 消息：优先解析为工具调用，其次提取文本。
"""

import json
import re
import time
from typing import Optional

from agent_bridge.domain.models import ChatMessage
from agent_bridge.tools.definitions import ToolCall

_FUNCTION_RE = re.compile(r"<function=(\w+)>([\s\S]*?)</function>")
_TEXT_RE = re.compile(r'"text"\s*:\s*"([^"]+)"')


def salvage_tool_use_failure(body: str) -> Optional[ChatMessage]:
    """解析失败响应体，无法抢救时返回 None。"""

    if "tool_use_failed" not in body:
        return None
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return None
    error = data.get("error") if isinstance(data, dict) else None
    failed = error.get("failed_generation") if isinstance(error, dict) else None
    if not isinstance(failed, str) or not failed:
        return None

    match = _FUNCTION_RE.search(failed)
    if match:
        name, arguments = match.group(1), match.group(2)
        return ChatMessage(
            role="assistant",
            content=None,
            tool_calls=[ToolCall(id=f"call_{int(time.time() * 1000)}", name=name, arguments=arguments)],
        )

    match = _TEXT_RE.search(failed)
    if match:
        return ChatMessage(role="assistant", content=match.group(1))
    return None
