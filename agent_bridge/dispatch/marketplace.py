"""电商平台集成（eBay）。

认领所有 ``ebay_`` 前缀的请求，调用方总是等待结果。平台接口返回的 JSON 往往很大，
这里只挑出模型用得到的字段，压缩成一段摘要文本作为 Result 的 message。

卖家账号本身在登记表里是一个资源（``settings.marketplace_account``），
所有动作都先按这个资源过授权闸门：只有账号的所属群组与特权群组可以使用。
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from agent_bridge.domain.ipc import IpcRequest, IpcResult
from agent_bridge.infrastructure.logging.logger import log_event
from .base import TaskDispatcher
from .handlers import _not_configured, _text
from .ports import MarketplaceClient

ITEM_URL = "https://www.ebay.com/itm/{}"
SEARCH_LIMIT = 3
TITLE_CHARS = 60
DESCRIPTION_CHARS = 200

MarketplaceAction = Callable[[MarketplaceClient, Dict[str, Any]], IpcResult]


def _money(amount: Any) -> str:
    if not isinstance(amount, dict):
        return "N/A"
    return f"{amount.get('value')} {amount.get('currency')}"


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def _compact(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in obj.items() if v is not None}


def _int(payload: Dict[str, Any], key: str) -> Optional[int]:
    try:
        return int(payload[key])
    except (KeyError, TypeError, ValueError):
        return None


def _line_items(order: Dict[str, Any], detailed: bool = False) -> List[Dict[str, Any]]:
    items = []
    for li in order.get("lineItems") or []:
        entry: Dict[str, Any] = {"title": str(li.get("title") or "")[:TITLE_CHARS]}
        if detailed:
            entry["sku"] = li.get("sku")
            entry["quantity"] = li.get("quantity")
        legacy_id = li.get("legacyItemId")
        entry["url"] = ITEM_URL.format(legacy_id) if legacy_id else None
        items.append(_compact(entry))
    return items


def summarize_search_results(data: Dict[str, Any]) -> str:
    summaries = data.get("itemSummaries") or []
    if not summaries:
        return "No results found."
    items = [
        {
            "id": item.get("itemId"),
            "title": item.get("title"),
            "price": _money(item.get("price")),
            "condition": item.get("condition"),
            "url": item.get("itemWebUrl"),
        }
        for item in summaries
    ]
    total = data.get("total", len(items))
    return f"Found {total} results:\n{_dump(items)}"


def summarize_item(item: Dict[str, Any]) -> str:
    seller = item.get("seller")
    description = item.get("shortDescription")
    return _dump(
        {
            "id": item.get("itemId"),
            "title": item.get("title"),
            "price": _money(item.get("price")),
            "condition": item.get("condition"),
            "description": description[:DESCRIPTION_CHARS] if isinstance(description, str) else None,
            "seller": f"{seller.get('username')} ({seller.get('feedbackScore')})" if isinstance(seller, dict) else "N/A",
            "url": item.get("itemWebUrl"),
        }
    )


def _order_total(order: Dict[str, Any]) -> str:
    pricing = order.get("pricingSummary") or {}
    return _money(pricing.get("total"))


def summarize_orders(data: Dict[str, Any]) -> str:
    orders = data.get("orders") or []
    if not orders:
        return "No orders found."
    summary = [
        {
            "id": o.get("orderId"),
            "status": o.get("orderFulfillmentStatus"),
            "total": _order_total(o),
            "buyer": (o.get("buyer") or {}).get("username"),
            "date": o.get("creationDate"),
            "items": _line_items(o),
        }
        for o in orders
    ]
    total = data.get("total", len(summary))
    return f"{total} orders:\n{_dump(summary)}"


def summarize_order(order: Dict[str, Any]) -> str:
    instructions = order.get("fulfillmentStartInstructions") or [{}]
    ship_to = ((instructions[0] or {}).get("shippingStep") or {}).get("shipTo")
    return _dump(
        _compact(
            {
                "id": order.get("orderId"),
                "status": order.get("orderFulfillmentStatus"),
                "total": _order_total(order),
                "buyer": (order.get("buyer") or {}).get("username"),
                "date": order.get("creationDate"),
                "items": _line_items(order, detailed=True),
                "shipTo": ship_to,
            }
        )
    )


def summarize_inventory(data: Dict[str, Any], listing_urls: Dict[str, str]) -> str:
    inventory = data.get("inventoryItems") or []
    if not inventory:
        return "No inventory items found."
    items = []
    for item in inventory:
        sku = item.get("sku")
        quantity = ((item.get("availability") or {}).get("shipToLocationAvailability") or {}).get("quantity")
        items.append(
            _compact(
                {
                    "sku": sku,
                    "title": (item.get("product") or {}).get("title"),
                    "quantity": "N/A" if quantity is None else quantity,
                    "condition": item.get("condition"),
                    "url": listing_urls.get(sku),
                }
            )
        )
    total = data.get("total", len(items))
    return f"{total} items:\n{_dump(items)}"


def _missing(request_type: str, *fields: str) -> IpcResult:
    return IpcResult(success=False, message=f"{request_type} requires {' and '.join(fields)}")


class MarketplaceDispatcher(TaskDispatcher):
    family = "marketplace"
    PREFIX = "ebay_"
    reply_expected = True

    def __init__(self, context):
        super().__init__(context)
        self._actions: Dict[str, MarketplaceAction] = {
            "ebay_search": self._search,
            "ebay_get_item": self._get_item,
            "ebay_get_orders": self._get_orders,
            "ebay_get_order": self._get_order,
            "ebay_get_inventory": self._get_inventory,
            "ebay_mark_shipped": self._mark_shipped,
        }

    def can_handle(self, request_type: str) -> bool:
        return request_type.startswith(self.PREFIX)

    def _dispatch(self, request: IpcRequest) -> IpcResult:
        action = self._actions.get(request.type)
        if action is None:
            return IpcResult(success=False, message=f"Unsupported marketplace action: {request.type}")
        decision = self._context.authorize(request, self._context.settings.marketplace_account)
        if not decision.allowed:
            return self._denied(decision)
        client = self._context.marketplace_client
        if client is None:
            return _not_configured("Marketplace client")
        return action(client, request.payload)

    # --- 查询 ---

    def _search(self, client: MarketplaceClient, payload: Dict[str, Any]) -> IpcResult:
        query = _text(payload, "query")
        if not query:
            return _missing("ebay_search", "query")
        limit = min(_int(payload, "limit") or SEARCH_LIMIT, SEARCH_LIMIT)
        return IpcResult(success=True, message=summarize_search_results(client.search_items(query, limit)))

    def _get_item(self, client: MarketplaceClient, payload: Dict[str, Any]) -> IpcResult:
        item_id = _text(payload, "itemId")
        if not item_id:
            return _missing("ebay_get_item", "itemId")
        return IpcResult(success=True, message=summarize_item(client.get_item(item_id)))

    def _get_orders(self, client: MarketplaceClient, payload: Dict[str, Any]) -> IpcResult:
        return IpcResult(success=True, message=summarize_orders(client.get_orders()))

    def _get_order(self, client: MarketplaceClient, payload: Dict[str, Any]) -> IpcResult:
        order_id = _text(payload, "orderId")
        if not order_id:
            return _missing("ebay_get_order", "orderId")
        return IpcResult(success=True, message=summarize_order(client.get_order(order_id)))

    def _get_inventory(self, client: MarketplaceClient, payload: Dict[str, Any]) -> IpcResult:
        data = client.get_inventory_items(_int(payload, "limit"), _int(payload, "offset"))
        listing_urls: Dict[str, str] = {}
        for item in data.get("inventoryItems") or []:
            sku = item.get("sku")
            if not sku:
                continue
            try:
                offers = client.get_offers(sku).get("offers") or []
            except Exception as e:  # noqa: BLE001 - 未发布的商品查不到 offer，跳过即可
                log_event(logging.DEBUG, "Offer lookup failed", sku=sku, error=str(e))
                continue
            listing_id = ((offers[0] if offers else {}).get("listing") or {}).get("listingId")
            if listing_id:
                listing_urls[sku] = ITEM_URL.format(listing_id)
        return IpcResult(success=True, message=summarize_inventory(data, listing_urls))

    # --- 写操作 ---

    def _mark_shipped(self, client: MarketplaceClient, payload: Dict[str, Any]) -> IpcResult:
        order_id = _text(payload, "orderId")
        tracking_number = _text(payload, "trackingNumber")
        carrier = _text(payload, "carrier")
        if not (order_id and tracking_number and carrier):
            return _missing("ebay_mark_shipped", "orderId", "trackingNumber", "carrier")
        response = client.mark_shipped(order_id, tracking_number, carrier)
        message = f"Tracking {tracking_number} ({carrier}) added to order {order_id}"
        fulfillment_id = (response or {}).get("fulfillmentId")
        if fulfillment_id:
            message += f" (fulfillment {fulfillment_id})"
        return IpcResult(success=True, message=message)
