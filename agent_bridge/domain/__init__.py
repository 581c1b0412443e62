"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- ipc: 邮箱请求、结果、资源映射与授权判定。
- session: 会话历史模型及 SessionStore 抽象。
- exceptions: 业务异常类型定义。
"""
