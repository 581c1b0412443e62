"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 Agent 循环或宿主分发层做统一捕获与用户提示。

注意：授权拒绝不是异常，而是以 success=false 的 IpcResult 返回给调用方。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MAILBOX_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 retry_after、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """补全接口返回非 2xx 且不可重试的错误时抛出。"""


class RateLimitError(BusinessError):
    """限流类错误（429 / 413），由 Agent 循环负责重试/退避。

    extra["retry_after"] 为服务端建议的等待秒数，未给出时为 None。
    """

    @property
    def retry_after(self):
        return self.extra.get("retry_after")


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
