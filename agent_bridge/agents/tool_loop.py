"""工具调用 Agent 循环。

一次调用的流程：加载会话 -> 组装 [system] + 最近历史 + 用户消息 ->
反复“生成 / 执行工具”，直到模型给出纯文本回答、触发护栏或用完轮次预算。
护栏与预算两种退出都会再做一次不带工具的补全，强制模型输出文本。

每个出口都会把会话写回磁盘：磁盘上保存完整历史，加载时只回放最近 MAX_HISTORY 条。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional
import json
import logging
import time

from agent_bridge.domain.exceptions import ApiError, NetworkError, RateLimitError
from agent_bridge.domain.models import ChatMessage, ChatRequest, ChatResult
from agent_bridge.domain.session import Session, SessionStore
from agent_bridge.infrastructure.logging.logger import logger
from agent_bridge.providers.base import ProviderClient
from agent_bridge.providers.model_config import ModelConfig
from agent_bridge.tools.definitions import ToolCall, ToolDef
from agent_bridge.tools.executor import ExecutionRouter

MAX_TOOL_ITERATIONS = 10
MAX_SAME_TOOL = 3
MAX_SEND_MESSAGES = 2
SEND_MESSAGE_TOOL = "send_message"
MAX_TOOL_RESULT_CHARS = 1200
TRUNCATION_MARKER = "\n... (truncated)"
MAX_HISTORY = 20
MAX_RETRIES = 2
DEFAULT_RETRY_WAIT_SECONDS = 20

GUARDRAIL_FALLBACK = "Sorry, I had trouble processing that. Please try again."
BUDGET_FALLBACK = "I reached my processing limit. Please try again."


@dataclass
class AgentOutcome:
    status: Literal["success", "error"]
    result: Optional[str] = None
    new_session_id: Optional[str] = None
    error: Optional[str] = None
    iterations: int = 0


def truncate_tool_result(text: str) -> str:
    if len(text) > MAX_TOOL_RESULT_CHARS:
        return text[:MAX_TOOL_RESULT_CHARS] + TRUNCATION_MARKER
    return text


def guardrail_message(tool_name: str) -> str:
    return (
        f'Tool "{tool_name}" has been called too many times. '
        "Stop calling tools and respond to the user with what you have."
    )


class ToolCallingAgent:
    def __init__(
        self,
        provider: ProviderClient,
        store: SessionStore,
        router: ExecutionRouter,
        tool_defs: List[ToolDef],
        model_config: ModelConfig,
        group_folder: str,
        system_prompt: str,
        timeout_seconds: Optional[float] = None,
    ):
        self._provider = provider
        self._store = store
        self._router = router
        self._tool_defs = list(tool_defs)
        self._model_config = model_config
        self._group_folder = group_folder
        self._system_prompt = system_prompt
        self._timeout_seconds = timeout_seconds

    def run(self, prompt: str, session_id: Optional[str] = None) -> AgentOutcome:
        start = time.monotonic()
        log_ctx: Dict[str, Any] = {"group": self._group_folder, "model": self._model_config.model}
        self._log(logging.INFO, "Running agent", log_ctx, base_url=getattr(self._provider, "base_url", None))
        iterations = 0
        try:
            session, session_id = self._load_session(session_id)
            log_ctx["session_id"] = session_id
            history = session.messages[-MAX_HISTORY:]
            messages: List[ChatMessage] = [
                ChatMessage(role="system", content=self._system_prompt),
                *history,
                ChatMessage(role="user", content=prompt),
            ]
            first_new = 1 + len(history)
            call_counts: Dict[str, int] = {}

            while iterations < MAX_TOOL_ITERATIONS:
                iterations += 1
                result = self._complete(messages, self._tool_defs, log_ctx)
                if not result.choices:
                    raise ApiError(code="API_ERROR", message="No choices in completion response")
                reply = result.choices[0].message
                messages.append(ChatMessage(role="assistant", content=reply.content, tool_calls=reply.tool_calls))

                if not reply.tool_calls:
                    self._persist(session, session_id, messages[first_new:])
                    self._log(
                        logging.INFO,
                        "Agent completed",
                        log_ctx,
                        iterations=iterations,
                        duration_ms=int((time.monotonic() - start) * 1000),
                    )
                    return AgentOutcome(
                        status="success",
                        result=reply.content or None,
                        new_session_id=session_id,
                        iterations=iterations,
                    )

                tripped = False
                for call in reply.tool_calls:
                    call_counts[call.name] = call_counts.get(call.name, 0) + 1
                    limit = MAX_SEND_MESSAGES if call.name == SEND_MESSAGE_TOOL else MAX_SAME_TOOL
                    if call_counts[call.name] > limit:
                        self._log(
                            logging.WARNING,
                            "Tool call limit reached",
                            log_ctx,
                            tool=call.name,
                            count=call_counts[call.name],
                        )
                        messages.append(
                            ChatMessage(role="tool", content=guardrail_message(call.name), tool_call_id=call.id)
                        )
                        tripped = True
                        continue
                    content = truncate_tool_result(self._execute(call, log_ctx))
                    messages.append(ChatMessage(role="tool", content=content, tool_call_id=call.id))

                if tripped:
                    final = self._forced_answer(messages, log_ctx)
                    self._persist(session, session_id, messages[first_new:])
                    self._log(
                        logging.INFO,
                        "Agent completed (guardrail forced text response)",
                        log_ctx,
                        iterations=iterations,
                        duration_ms=int((time.monotonic() - start) * 1000),
                    )
                    return AgentOutcome(
                        status="success",
                        result=final or GUARDRAIL_FALLBACK,
                        new_session_id=session_id,
                        iterations=iterations,
                    )

            self._log(logging.WARNING, "Hit max tool iterations, forcing final response", log_ctx, iterations=iterations)
            final = self._forced_answer(messages, log_ctx)
            self._persist(session, session_id, messages[first_new:])
            self._log(
                logging.INFO,
                "Agent completed",
                log_ctx,
                iterations=iterations,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            return AgentOutcome(
                status="success",
                result=final or BUDGET_FALLBACK,
                new_session_id=session_id,
                iterations=iterations,
            )
        except Exception as e:  # noqa: BLE001 - 整次调用的失败统一转换为错误结果
            self._log(
                logging.ERROR,
                "Agent error",
                log_ctx,
                error=str(e),
                iterations=iterations,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            return AgentOutcome(status="error", error=self._user_error(e), iterations=iterations)

    def _load_session(self, session_id: Optional[str]):
        if session_id:
            session = self._store.load(self._group_folder, session_id)
            if session is not None:
                return session, session_id
            # 找不到时沿用调用方给出的 id，从空历史开始
            return Session(), session_id
        return Session(), self._store.new_session_id()

    def _persist(self, session: Session, session_id: str, new_messages: List[ChatMessage]) -> None:
        session.messages = list(session.messages) + list(new_messages)
        self._store.save(self._group_folder, session_id, session)

    def _complete(self, messages: List[ChatMessage], tools: List[ToolDef], log_ctx: Dict[str, Any]) -> ChatResult:
        req = ChatRequest(
            model=self._model_config.model,
            messages=list(messages),
            temperature=self._model_config.temperature,
            max_tokens=self._model_config.max_tokens,
            tools=tools or None,
        )
        attempt = 0
        while True:
            try:
                return self._provider.chat(req)
            except RateLimitError as e:
                if attempt >= MAX_RETRIES:
                    raise
                attempt += 1
                wait = e.retry_after if e.retry_after is not None else DEFAULT_RETRY_WAIT_SECONDS
                self._log(logging.INFO, "Rate limited, waiting before retry", log_ctx, attempt=attempt, wait_secs=wait)
                time.sleep(wait + 1)

    def _forced_answer(self, messages: List[ChatMessage], log_ctx: Dict[str, Any]) -> str:
        result = self._complete(messages, [], log_ctx)
        if not result.choices:
            return ""
        return result.choices[0].message.content or ""

    def _execute(self, call: ToolCall, log_ctx: Dict[str, Any]) -> str:
        try:
            args = json.loads(call.arguments) if call.arguments else {}
            if not isinstance(args, dict):
                raise ValueError("arguments must be a JSON object")
        except ValueError:
            self._log(logging.WARNING, "Failed to parse tool arguments", log_ctx, tool=call.name, raw_args=call.arguments)
            args = {}
        self._log(logging.DEBUG, "Executing tool", log_ctx, tool=call.name, tool_call_id=call.id)
        try:
            return self._router.execute(call.name, args)
        except Exception as e:  # noqa: BLE001 - 工具异常作为结果返回给模型
            self._log(logging.ERROR, "Tool execution error", log_ctx, tool=call.name, error=str(e))
            return f"Tool error: {e}"

    def _user_error(self, error: Exception) -> str:
        """把底层错误转换为面向用户的提示。"""

        text = str(error)
        lowered = text.lower()
        base_url = getattr(self._provider, "base_url", "the model endpoint")
        code = getattr(error, "code", None)
        if code == "TIMEOUT" or "timed out" in lowered or "aborted" in lowered:
            timeout = self._timeout_seconds
            if timeout is None:
                timeout = float(getattr(error, "extra", {}).get("timeout") or 0)
            return f"Request timed out after {timeout:g}s. The model may be too slow or overloaded."
        if (
            isinstance(error, NetworkError)
            or "econnrefused" in lowered
            or "connection refused" in lowered
            or "connection failed" in lowered
        ):
            return f"Cannot connect to the model endpoint at {base_url}. Is it running?"
        if "model" in lowered and "not found" in lowered:
            return f'Model "{self._model_config.model}" not found on {base_url}.'
        return text

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})

