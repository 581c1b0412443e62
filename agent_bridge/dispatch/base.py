"""宿主侧任务分发框架。

多个互不相关的集成共享同一个邮箱：每个 TaskDispatcher 声明自己认领的类型族，
DispatcherChain 按顺序尝试，第一个认领的负责处理，其余视为空操作。
新增集成时向链中追加一个分发器，而不是在已有分发器里加分支。

注意：分发器不会按 requestId 去重。若外部动作已执行但结果尚未写回时宿主崩溃，
调用方会超时并可能重新提交，外部动作因此可能执行两次（至少一次语义）。
只有结果的投递是至多一次的。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from agent_bridge.auth.gate import authorize
from agent_bridge.auth.registry import ResourceRegistry
from agent_bridge.config.settings import Settings
from agent_bridge.domain.exceptions import BusinessError
from agent_bridge.domain.ipc import AuthDecision, IpcRequest, IpcResult, is_valid_request_id
from agent_bridge.infrastructure.logging.logger import log_event
from agent_bridge.infrastructure.mailbox.transport import results_dir, write_result
from .ports import (
    ChannelClient,
    ChatSender,
    GroupRegistrar,
    MarketplaceClient,
    PlatformClient,
    TaskScheduler,
)


@dataclass
class HostContext:
    """宿主进程的显式上下文：登记表与外部客户端都从这里取，不使用模块级全局状态。"""

    settings: Settings
    registry: ResourceRegistry
    chat_sender: Optional[ChatSender] = None
    channel_client: Optional[ChannelClient] = None
    platform_client: Optional[PlatformClient] = None
    scheduler: Optional[TaskScheduler] = None
    registrar: Optional[GroupRegistrar] = None
    marketplace_client: Optional[MarketplaceClient] = None

    def is_privileged(self, group_folder: str) -> bool:
        if group_folder == self.settings.main_group_folder:
            return True
        # 同一群组可能有多条映射，任意一条带特权即可
        return any(m.is_privileged for m in self.registry.mappings() if m.owner_group == group_folder)

    def authorize(self, request: IpcRequest, target_external_id: str) -> AuthDecision:
        return authorize(self.registry, request.source_group, request.is_privileged, target_external_id)

    def reload_registry(self) -> int:
        return self.registry.reload()


class TaskDispatcher(ABC):
    """单个集成的分发器基类。

    子类需要实现：
    - can_handle(type): 是否认领该请求类型；
    - _dispatch(request): 执行外部动作并返回 IpcResult。

    reply_expected 为 True 的分发器要求请求带 requestId，并且总会写回一份结果；
    为 False 时只有请求自带 requestId 才写回结果，否则仅记录日志。
    """

    family: str = "task"
    reply_expected: bool = False

    def __init__(self, context: HostContext):
        self._context = context

    @abstractmethod
    def can_handle(self, request_type: str) -> bool:
        ...

    @abstractmethod
    def _dispatch(self, request: IpcRequest) -> IpcResult:
        ...

    def handle(self, request: IpcRequest, data_dir: Union[str, Path]) -> bool:
        if not self.can_handle(request.type):
            return False

        request_id = request.request_id
        if request_id is not None and not is_valid_request_id(request_id):
            # requestId 会拼进结果路径，形状不对按缺失处理
            log_event(
                logging.WARNING,
                "Ignoring malformed requestId",
                family=self.family,
                type=request.type,
                source_group=request.source_group,
            )
            request_id = None

        if self.expects_reply(request) and not request_id:
            # 没有关联键就无处回复，直接丢弃
            log_event(
                logging.WARNING,
                "Dropping request without requestId",
                family=self.family,
                type=request.type,
                source_group=request.source_group,
            )
            return True

        try:
            result = self._dispatch(request)
        except Exception as e:  # noqa: BLE001 - 外部动作的任何失败都转换为失败结果
            log_event(
                logging.ERROR,
                "External action failed",
                family=self.family,
                type=request.type,
                request_id=request_id,
                error=str(e),
            )
            result = IpcResult(success=False, message=f"{self.family.capitalize()} action failed: {e}")

        log_event(
            logging.INFO if result.success else logging.WARNING,
            "Request handled",
            family=self.family,
            type=request.type,
            request_id=request_id,
            source_group=request.source_group,
            success=result.success,
        )

        if request_id:
            try:
                write_result(results_dir(data_dir, request.source_group), request_id, result)
            except (BusinessError, OSError) as e:
                # 写回失败只影响这一条请求，等待方会超时
                log_event(
                    logging.ERROR,
                    "Failed to write result",
                    family=self.family,
                    type=request.type,
                    request_id=request_id,
                    error=str(e),
                )
        return True

    def expects_reply(self, request: IpcRequest) -> bool:
        return self.reply_expected

    def _denied(self, decision: AuthDecision) -> IpcResult:
        return IpcResult(success=False, message=f"Unauthorized: {decision.reason}")


class DispatcherChain:
    def __init__(self, dispatchers: Iterable[TaskDispatcher]):
        self._dispatchers: List[TaskDispatcher] = list(dispatchers)

    def append(self, dispatcher: TaskDispatcher) -> None:
        self._dispatchers.append(dispatcher)

    def dispatch(self, request: IpcRequest, data_dir: Union[str, Path]) -> bool:
        for dispatcher in self._dispatchers:
            if dispatcher.handle(request, data_dir):
                return True
        log_event(
            logging.WARNING,
            "Unknown request type",
            type=request.type,
            source_group=request.source_group,
        )
        return False
