"""宿主侧邮箱轮询。

每一轮遍历 ``{data_dir}/ipc/*/`` 下的 messages/ 与 tasks/，
读取、删除（消费）后交给 DispatcherChain。请求的来源群组与特权标记
由所在目录推导，payload 里的自称身份会被覆盖。
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

from agent_bridge.domain.ipc import IpcRequest
from agent_bridge.infrastructure.logging.logger import log_event
from .base import DispatcherChain, HostContext


ERRORS_DIR = "errors"
INBOX_SUBDIRS = ("messages", "tasks")


class MailboxWatcher:
    def __init__(
        self,
        chain: DispatcherChain,
        context: HostContext,
        data_dir: Optional[Union[str, Path]] = None,
    ):
        self._chain = chain
        self._context = context
        self._data_dir = Path(data_dir) if data_dir is not None else context.settings.data_path
        self._ipc_root = self._data_dir / "ipc"

    def _pending(self) -> Iterator[Tuple[str, Path]]:
        if not self._ipc_root.exists():
            return
        for group_dir in sorted(p for p in self._ipc_root.iterdir() if p.is_dir()):
            if group_dir.name == ERRORS_DIR:
                continue
            for sub in INBOX_SUBDIRS:
                inbox = group_dir / sub
                if not inbox.is_dir():
                    continue
                # 只处理已发布的 *.json，*.json.tmp 尚未 rename，不可见
                for path in sorted(inbox.glob("*.json")):
                    yield group_dir.name, path

    def _quarantine(self, group: str, path: Path, error: str) -> None:
        errors_dir = self._ipc_root / ERRORS_DIR
        errors_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(path, errors_dir / f"{group}-{path.name}")
        except FileNotFoundError:
            return
        log_event(logging.ERROR, "Unreadable request moved to errors", group=group, file=path.name, error=error)

    def process_once(self) -> int:
        """处理当前所有待办请求，返回被分发器认领的请求数。"""
        dispatched = 0
        for group, path in self._pending():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("request is not a JSON object")
            except FileNotFoundError:
                # 另一轮已经消费
                continue
            except (OSError, ValueError) as e:
                self._quarantine(group, path, str(e))
                continue

            try:
                path.unlink()
            except FileNotFoundError:
                continue

            request = IpcRequest.from_dict(data)
            claimed_group = request.source_group
            request.source_group = group
            request.is_privileged = self._context.is_privileged(group)
            if claimed_group and claimed_group != group:
                log_event(
                    logging.WARNING,
                    "Request claimed a different source group",
                    group=group,
                    claimed=claimed_group,
                    type=request.type,
                )

            if self._chain.dispatch(request, self._data_dir):
                dispatched += 1
        return dispatched

    def run(self, stop_event: threading.Event) -> None:
        interval = self._context.settings.ipc_poll_interval_ms / 1000.0
        log_event(logging.INFO, "Mailbox watcher started", ipc_root=str(self._ipc_root))
        while not stop_event.is_set():
            try:
                self.process_once()
            except Exception as e:  # noqa: BLE001 - 单轮失败不终止轮询
                log_event(logging.ERROR, "Mailbox poll failed", error=str(e))
            stop_event.wait(interval)
        log_event(logging.INFO, "Mailbox watcher stopped")
