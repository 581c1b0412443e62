"""各集成的具体分发器。

每个分发器只包装一类特权动作；目标资源存在时一律先过授权闸门。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from agent_bridge.domain.ipc import IpcRequest, IpcResult
from agent_bridge.infrastructure.logging.logger import log_event
from .base import TaskDispatcher
from .ports import ActionOutcome


def _to_result(outcome: ActionOutcome) -> IpcResult:
    return IpcResult(success=bool(outcome.success), message=str(outcome.message))


def _not_configured(what: str) -> IpcResult:
    return IpcResult(success=False, message=f"{what} is not configured on this host")


def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


class MessageDispatcher(TaskDispatcher):
    """send_message 写入 messages/ 的 "message" 请求。"""

    family = "message"

    def can_handle(self, request_type: str) -> bool:
        return request_type == "message"

    def _dispatch(self, request: IpcRequest) -> IpcResult:
        chat_jid = _text(request.payload, "chatJid")
        text = _text(request.payload, "text")
        if not chat_jid or not text:
            return IpcResult(success=False, message="Message requires chatJid and text")
        decision = self._context.authorize(request, chat_jid)
        if not decision.allowed:
            return self._denied(decision)
        sender = self._context.chat_sender
        if sender is None:
            return _not_configured("Chat sender")
        return _to_result(sender.send_message(chat_jid, text))


class SchedulerDispatcher(TaskDispatcher):
    """定时任务的创建与生命周期管理。"""

    family = "scheduler"
    TYPES = frozenset({"schedule_task", "pause_task", "resume_task", "cancel_task"})
    SCHEDULE_TYPES = frozenset({"cron", "interval", "once"})

    def can_handle(self, request_type: str) -> bool:
        return request_type in self.TYPES

    def _dispatch(self, request: IpcRequest) -> IpcResult:
        scheduler = self._context.scheduler
        if scheduler is None:
            return _not_configured("Task scheduler")

        payload = request.payload
        if request.type == "schedule_task":
            chat_jid = _text(payload, "chatJid")
            prompt = _text(payload, "prompt")
            schedule_type = _text(payload, "schedule_type")
            schedule_value = _text(payload, "schedule_value")
            if not (chat_jid and prompt and schedule_type and schedule_value):
                return IpcResult(
                    success=False,
                    message="schedule_task requires chatJid, prompt, schedule_type and schedule_value",
                )
            if schedule_type not in self.SCHEDULE_TYPES:
                return IpcResult(success=False, message=f"Unsupported schedule_type: {schedule_type}")
            decision = self._context.authorize(request, chat_jid)
            if not decision.allowed:
                return self._denied(decision)
            spec = {
                "prompt": prompt,
                "schedule_type": schedule_type,
                "schedule_value": schedule_value,
                "context_mode": _text(payload, "context_mode") or "group",
                "chat_jid": chat_jid,
                "group_folder": request.source_group,
                "created_by": request.source_group,
            }
            return _to_result(scheduler.create_task(spec))

        task_id = _text(payload, "taskId")
        if not task_id:
            return IpcResult(success=False, message=f"{request.type} requires taskId")
        action = {
            "pause_task": scheduler.pause_task,
            "resume_task": scheduler.resume_task,
            "cancel_task": scheduler.cancel_task,
        }[request.type]
        return _to_result(action(task_id, request.source_group, request.is_privileged))


class ChannelDispatcher(TaskDispatcher):
    """外部频道集成，认领所有 ``channel_`` 前缀的类型，调用方会等待结果。"""

    family = "channel"
    PREFIX = "channel_"
    reply_expected = True

    def can_handle(self, request_type: str) -> bool:
        return request_type.startswith(self.PREFIX)

    def _dispatch(self, request: IpcRequest) -> IpcResult:
        if request.type != "channel_send":
            return IpcResult(success=False, message=f"Unsupported channel action: {request.type}")
        channel_id = _text(request.payload, "channelId")
        text = _text(request.payload, "text")
        if not channel_id or not text:
            return IpcResult(success=False, message="channel_send requires channelId and text")
        decision = self._context.authorize(request, channel_id)
        if not decision.allowed:
            return self._denied(decision)
        client = self._context.channel_client
        if client is None:
            return _not_configured("Channel client")
        return _to_result(client.send_text(channel_id, text))


class AdminDispatcher(TaskDispatcher):
    """仅 main 群组可用的管理类动作。

    register_group 成功后立即重新加载登记表；platform_post 需要等待结果。
    """

    family = "admin"
    TYPES = frozenset({"register_group", "platform_post"})

    def can_handle(self, request_type: str) -> bool:
        return request_type in self.TYPES

    def expects_reply(self, request: IpcRequest) -> bool:
        # platform_post 必须有关联键；register_group 允许 fire-and-forget
        return request.type == "platform_post"

    def _dispatch(self, request: IpcRequest) -> IpcResult:
        if not request.is_privileged:
            log_event(
                logging.WARNING,
                "Privileged action rejected",
                type=request.type,
                source_group=request.source_group,
            )
            return IpcResult(success=False, message="Unauthorized: only the main group can perform this action")

        payload = request.payload
        if request.type == "platform_post":
            content = _text(payload, "content")
            if not content:
                return IpcResult(success=False, message="platform_post requires content")
            client = self._context.platform_client
            if client is None:
                return _not_configured("Platform client")
            return _to_result(client.post(content))

        jid = _text(payload, "jid")
        name = _text(payload, "name")
        folder = _text(payload, "folder")
        if not (jid and name and folder):
            return IpcResult(success=False, message="register_group requires jid, name and folder")
        registrar = self._context.registrar
        if registrar is None:
            return _not_configured("Group registrar")
        outcome = registrar.register_group(jid, name, folder, _text(payload, "trigger"))
        if outcome.success:
            try:
                self._context.reload_registry()
            except ValueError as e:
                # 注册已生效，映射文件下次 reload 时再读
                log_event(logging.ERROR, "Registry reload after registration failed", folder=folder, error=str(e))
        return _to_result(outcome)
