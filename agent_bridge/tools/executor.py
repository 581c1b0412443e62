"""工具执行路由。

每个工具属于三种落地方式之一：

- 本地：群组目录下的受限文件读写、读取任务快照，不经过邮箱；
- 单向投递：写入邮箱后立即返回一条确认文本；
- 往返：写入带 requestId 的请求并阻塞等待宿主写回结果（或超时）。

特权工具在本地再做一次身份检查，与宿主侧的授权闸门相互独立。
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from agent_bridge.domain.ipc import utc_now_iso
from agent_bridge.infrastructure.logging.logger import log_event
from agent_bridge.infrastructure.mailbox.transport import (
    await_result,
    enqueue,
    group_ipc_dir,
    messages_dir,
    new_request_id,
    results_dir,
    tasks_dir,
)

MAX_FILE_SIZE = 100 * 1024
SCHEDULE_TYPES = ("cron", "interval", "once")

ToolHandler = Callable[[Dict[str, Any]], str]


class PathRejected(ValueError):
    """相对路径未通过群组目录校验。"""


@dataclass
class ToolContext:
    """一次 Agent 调用的身份与目录信息，由宿主在启动时给出。"""

    group_folder: str
    chat_jid: str
    is_privileged: bool
    data_dir: Union[str, Path]
    groups_dir: Union[str, Path]

    @property
    def group_dir(self) -> Path:
        return (Path(self.groups_dir) / self.group_folder).resolve()

    @property
    def ipc_dir(self) -> Path:
        return group_ipc_dir(self.data_dir, self.group_folder)


def resolve_group_path(relative_path: Any, group_dir: Path) -> Path:
    """把模型给出的相对路径解析到群组目录内，越界时抛出 PathRejected。"""

    if not relative_path or not isinstance(relative_path, str):
        raise PathRejected("Path is required")
    if Path(relative_path).is_absolute() or relative_path.startswith(("/", "\\")):
        raise PathRejected("Absolute paths are not allowed")
    if ".." in relative_path:
        raise PathRejected("Path traversal (..) is not allowed")
    resolved = (group_dir / relative_path).resolve()
    try:
        resolved.relative_to(group_dir)
    except ValueError:
        # 符号链接等情况
        raise PathRejected("Path resolves outside the group directory")
    return resolved


class ExecutionRouter:
    def __init__(
        self,
        context: ToolContext,
        result_timeout_ms: int = 30000,
        result_poll_interval_ms: int = 500,
    ):
        self._ctx = context
        self._result_timeout_ms = result_timeout_ms
        self._result_poll_interval_ms = result_poll_interval_ms
        self._handlers: Dict[str, ToolHandler] = {
            "send_message": self._send_message,
            "read_file": self._read_file,
            "write_file": self._write_file,
            "list_tasks": self._list_tasks,
            "schedule_task": self._schedule_task,
            "pause_task": self._task_action("pause_task", "pause requested"),
            "resume_task": self._task_action("resume_task", "resume requested"),
            "cancel_task": self._task_action("cancel_task", "cancellation requested"),
            "channel_send": self._channel_send,
            "register_group": self._register_group,
            "platform_post": self._platform_post,
            "ebay_search": self._marketplace("ebay_search", query="query"),
            "ebay_get_item": self._marketplace("ebay_get_item", itemId="item_id"),
            "ebay_get_orders": self._marketplace("ebay_get_orders"),
            "ebay_get_order": self._marketplace("ebay_get_order", orderId="order_id"),
            "ebay_get_inventory": self._marketplace("ebay_get_inventory"),
            "ebay_mark_shipped": self._marketplace(
                "ebay_mark_shipped",
                orderId="order_id",
                trackingNumber="tracking_number",
                carrier="carrier",
            ),
        }

    @property
    def context(self) -> ToolContext:
        return self._ctx

    def execute(self, name: str, args: Optional[Dict[str, Any]]) -> str:
        handler = self._handlers.get(name)
        if handler is None:
            return f"Unknown tool: {name}"
        return handler(args or {})

    # --- 共用 ---

    def _envelope(self) -> Dict[str, Any]:
        return {
            "sourceGroup": self._ctx.group_folder,
            "isPrivileged": self._ctx.is_privileged,
            "timestamp": utc_now_iso(),
        }

    def _round_trip(self, type: str, fields: Dict[str, Any]) -> str:
        request_id = new_request_id()
        enqueue(
            tasks_dir(self._ctx.data_dir, self._ctx.group_folder),
            type,
            {"requestId": request_id, **fields, **self._envelope()},
        )
        result = await_result(
            results_dir(self._ctx.data_dir, self._ctx.group_folder),
            request_id,
            self._result_timeout_ms,
            self._result_poll_interval_ms,
        )
        if not result.success:
            log_event(logging.WARNING, "Round trip failed", type=type, request_id=request_id, outcome=result.message)
            return f"Error: {result.message}"
        return result.message

    # --- 本地文件 ---

    def _read_file(self, args: Dict[str, Any]) -> str:
        try:
            path = resolve_group_path(args.get("path"), self._ctx.group_dir)
        except PathRejected as e:
            return f"Error: {e}"
        if not path.exists():
            return f"File not found: {args.get('path')}"
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return f"Error reading file: {e}"
        return content or "(empty file)"

    def _write_file(self, args: Dict[str, Any]) -> str:
        try:
            path = resolve_group_path(args.get("path"), self._ctx.group_dir)
        except PathRejected as e:
            return f"Error: {e}"
        content = "" if args.get("content") is None else str(args["content"])
        if len(content.encode("utf-8")) > MAX_FILE_SIZE:
            return f"Error: Content exceeds maximum file size of {MAX_FILE_SIZE // 1024}KB"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            return f"Error writing file: {e}"
        return f"File written: {args.get('path')} ({len(content)} chars)"

    def _list_tasks(self, args: Dict[str, Any]) -> str:
        snapshot = self._ctx.ipc_dir / "current_tasks.json"
        if not snapshot.exists():
            return "No scheduled tasks found."
        try:
            all_tasks = json.loads(snapshot.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            return f"Error reading tasks: {e}"
        if not isinstance(all_tasks, list):
            return "Error reading tasks: snapshot is not a list"
        tasks = [
            t
            for t in all_tasks
            if isinstance(t, dict) and (self._ctx.is_privileged or t.get("groupFolder") == self._ctx.group_folder)
        ]
        if not tasks:
            return "No scheduled tasks found."
        lines = []
        for t in tasks:
            prompt = str(t.get("prompt") or "")[:50]
            lines.append(
                f"- [{t.get('id')}] {prompt}... ({t.get('schedule_type')}: {t.get('schedule_value')})"
                f" - {t.get('status')}, next: {t.get('next_run') or 'N/A'}"
            )
        return "\n".join(lines)

    # --- 单向投递 ---

    def _send_message(self, args: Dict[str, Any]) -> str:
        filename = enqueue(
            messages_dir(self._ctx.data_dir, self._ctx.group_folder),
            "message",
            {"chatJid": self._ctx.chat_jid, "text": args.get("text"), **self._envelope()},
        )
        return f"Message queued for delivery ({filename})"

    def _schedule_task(self, args: Dict[str, Any]) -> str:
        schedule_type = args.get("schedule_type")
        if schedule_type not in SCHEDULE_TYPES:
            return f"Error: schedule_type must be one of {', '.join(SCHEDULE_TYPES)}"
        filename = enqueue(
            tasks_dir(self._ctx.data_dir, self._ctx.group_folder),
            "schedule_task",
            {
                "prompt": args.get("prompt"),
                "schedule_type": schedule_type,
                "schedule_value": args.get("schedule_value"),
                "context_mode": args.get("context_mode") or "group",
                "chatJid": self._ctx.chat_jid,
                "createdBy": self._ctx.group_folder,
                **self._envelope(),
            },
        )
        return f"Task scheduled ({filename}): {schedule_type} - {args.get('schedule_value')}"

    def _task_action(self, type: str, verb: str) -> ToolHandler:
        def _run(args: Dict[str, Any]) -> str:
            task_id = args.get("task_id")
            enqueue(
                tasks_dir(self._ctx.data_dir, self._ctx.group_folder),
                type,
                {"taskId": task_id, **self._envelope()},
            )
            return f"Task {task_id} {verb}."

        return _run

    def _register_group(self, args: Dict[str, Any]) -> str:
        if not self._ctx.is_privileged:
            return "Only the main group can register new groups."
        enqueue(
            tasks_dir(self._ctx.data_dir, self._ctx.group_folder),
            "register_group",
            {
                "jid": args.get("jid"),
                "name": args.get("name"),
                "folder": args.get("folder"),
                "trigger": args.get("trigger"),
                **self._envelope(),
            },
        )
        return f'Group "{args.get("name")}" registration requested.'

    # --- 往返 ---

    def _channel_send(self, args: Dict[str, Any]) -> str:
        return self._round_trip("channel_send", {"channelId": args.get("channel_id"), "text": args.get("text")})

    def _platform_post(self, args: Dict[str, Any]) -> str:
        if not self._ctx.is_privileged:
            return "Only the main group can post to the platform."
        return self._round_trip("platform_post", {"content": args.get("content")})

    def _marketplace(self, type: str, **fields: str) -> ToolHandler:
        """电商工具：参数名从 snake_case 改成请求里的 camelCase，授权交给宿主。"""

        def _run(args: Dict[str, Any]) -> str:
            return self._round_trip(type, {key: args.get(arg) for key, arg in fields.items()})

        return _run
