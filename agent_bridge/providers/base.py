"""Provider 抽象接口。

Agent 循环不直接依赖具体的 HTTP 调用，而是依赖此协议：

- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 错误统一抛出 domain.exceptions 中的 BusinessError 子类；
  限流（RateLimitError）由上层决定是否重试。

测试中可以用一个实现了 chat() 的小类替换真实客户端。
"""

from typing import Protocol

from agent_bridge.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """补全 Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - base_url: 补全接口地址，用于生成用户可读的错误提示。
    - chat(req): 执行一次非流式补全调用，返回统一的 ChatResult。
    """

    name: str
    base_url: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...
