"""文件邮箱传输层。

沙箱内的 Agent 与宿主进程只通过共享目录交换文件：

- enqueue: 先写 ``*.tmp`` 再 rename，rename 即发布点，读方永远看不到半截文件。
- await_result: 轮询 ``{requestId}.json``，读到后立即删除并返回。
- write_result: 宿主写回结果，同样使用 tmp + rename。

只有写方会 rename 进来，也只有唯一的等待方会删除结果文件，因此不需要加锁。
写入到 rename 之间崩溃会留下孤儿 ``.tmp`` 文件，读方不会看到它们，清理不在本模块范围内。
"""

from __future__ import annotations

import json
import os
import random
import string
import time
from pathlib import Path
from typing import Any, Dict, Union

from agent_bridge.domain.exceptions import BusinessError, ValidationError
from agent_bridge.domain.ipc import IpcResult, is_valid_request_id


PathLike = Union[str, Path]

DEFAULT_POLL_INTERVAL_MS = 500
TIMEOUT_MESSAGE = "Request timed out"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    """生成 ``{毫秒时间戳}-{6 位随机后缀}`` 形式的全局唯一 ID。"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"{int(time.time() * 1000)}-{suffix}"


def group_ipc_dir(data_dir: PathLike, group_folder: str) -> Path:
    return Path(data_dir) / "ipc" / group_folder


def tasks_dir(data_dir: PathLike, group_folder: str) -> Path:
    return group_ipc_dir(data_dir, group_folder) / "tasks"


def messages_dir(data_dir: PathLike, group_folder: str) -> Path:
    return group_ipc_dir(data_dir, group_folder) / "messages"


def results_dir(data_dir: PathLike, group_folder: str) -> Path:
    return group_ipc_dir(data_dir, group_folder) / "results"


def _publish(target: Path, data: Dict[str, Any]) -> None:
    tmp_path = target.with_name(target.name + ".tmp")
    try:
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, target)
    except OSError as e:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise BusinessError(code="MAILBOX_WRITE_ERROR", message=str(e), path=str(target))


def enqueue(directory: PathLike, type: str, fields: Dict[str, Any]) -> str:
    """把一条请求原子地写入 directory，返回生成的文件名。"""
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{new_request_id()}.json"
    data = {"type": type, **fields}
    _publish(target_dir / filename, data)
    return filename


def write_result(directory: PathLike, request_id: str, result: IpcResult) -> Path:
    """宿主侧写回结果；路径只取决于 requestId，重启后的等待方依然能找到。"""
    if not is_valid_request_id(request_id):
        raise ValidationError(code="INVALID_REQUEST_ID", message=f"invalid requestId: {request_id!r}")
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{request_id}.json"
    _publish(target, result.to_dict())
    return target


def await_result(
    directory: PathLike,
    request_id: str,
    max_wait_ms: int,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
) -> IpcResult:
    """阻塞等待 requestId 对应的结果。

    超时与解析失败都以 success=False 的 IpcResult 返回，不抛异常；
    解析失败时结果文件同样会被删除，不会重试。
    """
    result_path = Path(directory) / f"{request_id}.json"
    deadline = time.monotonic() + max_wait_ms / 1000.0
    interval = max(poll_interval_ms, 1) / 1000.0

    while True:
        if result_path.exists():
            try:
                data = json.loads(result_path.read_text(encoding="utf-8"))
                return IpcResult.from_dict(data)
            except (OSError, ValueError, AttributeError) as e:
                return IpcResult(success=False, message=f"Failed to read result: {e}")
            finally:
                try:
                    result_path.unlink()
                except FileNotFoundError:
                    pass
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return IpcResult(success=False, message=TIMEOUT_MESSAGE)
        time.sleep(min(interval, remaining))
