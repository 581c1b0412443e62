"""宿主侧外部动作的接口协议。

具体的聊天平台客户端、调度器、群组注册逻辑都在本包之外实现，
这里只约定每个动作一个方法，并统一返回 ActionOutcome：
success 与 message 会原样成为 IpcResult 的字段。
MarketplaceClient 例外：它返回平台原始 JSON，由分发器压缩成摘要文本。
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class ActionOutcome:
    success: bool
    message: str


class ChatSender(Protocol):
    """向当前会话发送消息（send_message 工具的落地端）。"""

    def send_message(self, chat_jid: str, text: str) -> ActionOutcome:
        ...


class ChannelClient(Protocol):
    """向外部频道发送文本，例如 Discord 频道。"""

    def send_text(self, channel_id: str, text: str) -> ActionOutcome:
        ...


class PlatformClient(Protocol):
    """向外部公开平台发帖，仅 main 群组可用。"""

    def post(self, content: str) -> ActionOutcome:
        ...


class TaskScheduler(Protocol):
    """把 cron/interval/once 规格转为未来的调用。

    pause/resume/cancel 的归属校验由调度器完成：非特权群组只能操作自己创建的任务。
    """

    def create_task(self, spec: Dict[str, Any]) -> ActionOutcome:
        ...

    def pause_task(self, task_id: str, source_group: str, is_privileged: bool) -> ActionOutcome:
        ...

    def resume_task(self, task_id: str, source_group: str, is_privileged: bool) -> ActionOutcome:
        ...

    def cancel_task(self, task_id: str, source_group: str, is_privileged: bool) -> ActionOutcome:
        ...


class GroupRegistrar(Protocol):
    """登记新群组，写入映射文件后由调用方触发登记表 reload。"""

    def register_group(
        self,
        jid: str,
        name: str,
        folder: str,
        trigger: Optional[str] = None,
    ) -> ActionOutcome:
        ...


class MarketplaceClient(Protocol):
    """电商平台（eBay Browse / Inventory / Fulfillment）的只读查询与发货登记。

    每个方法返回平台接口的原始 JSON 对象，摘要由 MarketplaceDispatcher 生成。
    """

    def search_items(self, query: str, limit: int) -> Dict[str, Any]:
        ...

    def get_item(self, item_id: str) -> Dict[str, Any]:
        ...

    def get_orders(self) -> Dict[str, Any]:
        ...

    def get_order(self, order_id: str) -> Dict[str, Any]:
        ...

    def get_inventory_items(self, limit: Optional[int] = None, offset: Optional[int] = None) -> Dict[str, Any]:
        ...

    def get_offers(self, sku: str) -> Dict[str, Any]:
        ...

    def mark_shipped(self, order_id: str, tracking_number: str, carrier: str) -> Dict[str, Any]:
        ...
