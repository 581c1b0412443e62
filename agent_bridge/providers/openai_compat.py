"""OpenAI 兼容补全接口的 Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 ``{base_url}/chat/completions`` 的请求格式（Ollama、Groq、vLLM 等）。
3. 调用 HTTP 接口并把网络/限流/接口错误映射为业务异常。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。

400 tool_use_failed 响应会先尝试抢救（见 salvage），抢救成功时视为正常结果。
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx

from agent_bridge.domain.exceptions import ApiError, NetworkError, RateLimitError
from agent_bridge.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from agent_bridge.providers.salvage import salvage_tool_use_failure
from agent_bridge.tools.definitions import ToolCall, ToolDef

_RETRY_AFTER_RE = re.compile(r"try again in (\d+\.?\d*)s")


def parse_retry_after(text: str) -> Optional[float]:
    """从限流响应中提取建议等待秒数，例如 "Please try again in 17.3s"。"""

    match = _RETRY_AFTER_RE.search(text or "")
    return float(match.group(1)) if match else None


class OpenAICompatClient:
    """OpenAI 兼容接口客户端。"""

    name = "openai-compat"

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 300.0):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "OpenAICompatClient":
        return cls(settings.llm_base_url, settings.llm_api_key, settings.llm_timeout)

    def chat(self, req: ChatRequest) -> ChatResult:
        payload = self._build_payload(req)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                resp = client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"Request timed out: {e}", timeout=self._timeout)
        except httpx.RequestError as e:
            # DNS 失败、连接被拒绝等
            raise NetworkError(code="NETWORK_ERROR", message=f"Connection failed: {e}")

        if resp.status_code in (429, 413):
            raise RateLimitError(
                code="RATE_LIMIT",
                message=f"LLM API error {resp.status_code}: {resp.text}",
                http_status=resp.status_code,
                retry_after=parse_retry_after(resp.text),
            )
        if resp.status_code == 400:
            salvaged = salvage_tool_use_failure(resp.text)
            if salvaged is not None:
                finish = "tool_calls" if salvaged.tool_calls else "stop"
                return ChatResult(
                    provider=self.name,
                    model=req.model,
                    choices=[ChatChoice(index=0, message=salvaged, finish_reason=finish)],
                )
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"LLM API error {resp.status_code}: {resp.text}",
                http_status=resp.status_code,
            )
        return self._parse_response(resp.json(), req)

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [message_to_payload(m) for m in req.messages],
            "temperature": req.temperature,
        }
        if req.max_tokens:
            payload["max_tokens"] = req.max_tokens
        # 工具列表为空时不带 tools 字段，强制模型给出纯文本回答
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = message_from_payload(ch.get("message") or {})
            choices.append(ChatChoice(index=i, message=msg, finish_reason=ch.get("finish_reason")))
        usage = None
        usage_raw = data.get("usage")
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 function tool 描述。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            prop = dict(param.schema or {"type": "string"})
            if param.description:
                prop["description"] = param.description
            properties[name] = prop
            if param.required:
                required.append(name)
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {"type": "object", "properties": properties, "required": required},
            },
        }


def message_to_payload(message: ChatMessage) -> Dict[str, Any]:
    """ChatMessage -> OpenAI 格式 dict，会话文件也使用这一格式。"""

    payload: Dict[str, Any] = {"role": message.role, "content": message.content}
    if message.tool_calls:
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in message.tool_calls
        ]
    if message.tool_call_id:
        payload["tool_call_id"] = message.tool_call_id
    return payload


def message_from_payload(payload: Dict[str, Any]) -> ChatMessage:
    """OpenAI 格式 dict -> ChatMessage。

    arguments 若被服务端以对象形式返回，会重新编码为 JSON 字符串。
    """

    tool_calls: List[ToolCall] = []
    for idx, call in enumerate(payload.get("tool_calls") or []):
        func = call.get("function") or {}
        arguments = func.get("arguments")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments or {}, ensure_ascii=False)
        tool_calls.append(
            ToolCall(
                id=call.get("id") or f"tool_call_{idx}",
                name=func.get("name") or call.get("name") or "",
                arguments=arguments,
            )
        )
    return ChatMessage(
        role=payload.get("role") or "assistant",
        content=payload.get("content"),
        tool_calls=tool_calls or None,
        tool_call_id=payload.get("tool_call_id"),
    )
