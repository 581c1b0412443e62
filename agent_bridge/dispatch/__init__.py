"""宿主侧请求分发：分发器链、具体集成与邮箱轮询。"""

from agent_bridge.dispatch.base import DispatcherChain, HostContext, TaskDispatcher
from agent_bridge.dispatch.handlers import (
    AdminDispatcher,
    ChannelDispatcher,
    MessageDispatcher,
    SchedulerDispatcher,
)
from agent_bridge.dispatch.marketplace import MarketplaceDispatcher
from agent_bridge.dispatch.ports import ActionOutcome
from agent_bridge.dispatch.watcher import MailboxWatcher


def default_chain(context: HostContext) -> DispatcherChain:
    return DispatcherChain(
        [
            MessageDispatcher(context),
            SchedulerDispatcher(context),
            ChannelDispatcher(context),
            MarketplaceDispatcher(context),
            AdminDispatcher(context),
        ]
    )


__all__ = [
    "ActionOutcome",
    "AdminDispatcher",
    "ChannelDispatcher",
    "DispatcherChain",
    "HostContext",
    "MailboxWatcher",
    "MarketplaceDispatcher",
    "MessageDispatcher",
    "SchedulerDispatcher",
    "TaskDispatcher",
    "default_chain",
]
