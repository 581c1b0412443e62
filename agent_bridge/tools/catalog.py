"""暴露给模型的工具清单。

描述保持简短以节省 token；register_group 与 platform_post 只对特权群组可见。
ebay_ 工具对所有群组可见，是否可用由宿主按卖家账号的归属判定。
"""

from typing import List

from .definitions import ToolDef, ToolParam

PRIVILEGED_TOOLS = frozenset({"register_group", "platform_post"})


def _tool(name: str, description: str, *params: ToolParam) -> ToolDef:
    return ToolDef(name=name, description=description, params={p.name: p for p in params})


def _param(name: str, description: str = "", required: bool = True, **schema) -> ToolParam:
    return ToolParam(name=name, description=description, required=required, schema={"type": "string", **schema})


def _all_tool_defs() -> List[ToolDef]:
    return [
        _tool("send_message", "Send message to current chat", _param("text")),
        _tool("read_file", "Read file from group dir", _param("path", "Path relative to the group directory")),
        _tool(
            "write_file",
            "Write file to group dir (max 100KB)",
            _param("path", "Path relative to the group directory"),
            _param("content"),
        ),
        _tool("list_tasks", "List scheduled tasks"),
        _tool(
            "schedule_task",
            "Schedule a recurring or one-time task",
            _param("prompt", "What the agent should do when the task runs"),
            _param("schedule_type", enum=["cron", "interval", "once"]),
            _param("schedule_value", "Cron expression, interval in ms, or ISO timestamp"),
            _param("context_mode", "group or isolated", required=False, enum=["group", "isolated"]),
        ),
        _tool("pause_task", "Pause a scheduled task", _param("task_id")),
        _tool("resume_task", "Resume a paused task", _param("task_id")),
        _tool("cancel_task", "Cancel a scheduled task", _param("task_id")),
        _tool(
            "channel_send",
            "Send text to an external channel and wait for the outcome",
            _param("channel_id"),
            _param("text"),
        ),
        _tool(
            "register_group",
            "Register a new chat group",
            _param("jid"),
            _param("name"),
            _param("folder"),
            _param("trigger", required=False),
        ),
        _tool("platform_post", "Publish a post on the external platform", _param("content")),
        _tool("ebay_search", "Search eBay listings. Returns top 3 results.", _param("query")),
        _tool("ebay_get_item", "Get eBay item details", _param("item_id")),
        _tool("ebay_get_orders", "List recent eBay orders"),
        _tool("ebay_get_order", "Get order details", _param("order_id")),
        _tool("ebay_get_inventory", "List inventory items"),
        _tool(
            "ebay_mark_shipped",
            "Add tracking to order",
            _param("order_id"),
            _param("tracking_number"),
            _param("carrier"),
        ),
    ]


def tool_defs(is_privileged: bool) -> List[ToolDef]:
    """按调用方身份返回工具清单。"""

    defs = _all_tool_defs()
    if is_privileged:
        return defs
    return [d for d in defs if d.name not in PRIVILEGED_TOOLS]
