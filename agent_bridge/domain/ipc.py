"""文件邮箱（IPC）相关的领域模型。

- IpcRequest: 调用方写入 tasks/ 或 messages/ 的请求，写入后不可变。
- IpcResult: 宿主针对某个 requestId 写回 results/ 的结果，每个 requestId 至多一份。
- ResourceMapping: 外部资源（频道、会话等）到所属群组的映射。
- AuthDecision: 授权闸门的判定结果。

磁盘上的 JSON 使用 camelCase 字段名，与沙箱内其他进程保持一致。
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# 信封字段，其余字段全部归入 payload
_ENVELOPE_KEYS = {
    "type",
    "requestId",
    "sourceGroup",
    "groupFolder",
    "isPrivileged",
    "isMain",
    "timestamp",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# new_request_id() 生成的形状；其他值一律视为缺失，不能拼进结果路径
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def is_valid_request_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_REQUEST_ID_RE.match(value))


@dataclass
class IpcRequest:
    """一次邮箱请求。

    source_group / is_privileged 在宿主侧会被重写为由目录推导出的值，
    payload 中的任何身份声明都不参与授权判断。
    """

    type: str
    request_id: Optional[str] = None
    source_group: str = ""
    is_privileged: bool = False
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IpcRequest":
        payload = {k: v for k, v in data.items() if k not in _ENVELOPE_KEYS}
        return cls(
            type=str(data.get("type") or ""),
            request_id=data.get("requestId") or None,
            source_group=str(data.get("sourceGroup") or data.get("groupFolder") or ""),
            is_privileged=bool(data.get("isPrivileged", data.get("isMain", False))),
            payload=payload,
            timestamp=str(data.get("timestamp") or utc_now_iso()),
        )


@dataclass(frozen=True)
class IpcResult:
    """宿主写回的结果，message 直接来自外部动作的描述文本。"""

    success: bool
    message: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IpcResult":
        return cls(success=bool(data.get("success")), message=str(data.get("message") or ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass(frozen=True)
class ResourceMapping:
    """外部资源 ID 与所属群组的绑定。"""

    external_id: str
    owner_group: str
    is_privileged: bool = False


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "AuthDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "AuthDecision":
        return cls(allowed=False, reason=reason)
