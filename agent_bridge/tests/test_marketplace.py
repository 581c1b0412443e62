import json
import tempfile
from pathlib import Path

from agent_bridge.auth.registry import ResourceRegistry
from agent_bridge.config.settings import Settings
from agent_bridge.dispatch import HostContext, default_chain
from agent_bridge.domain.ipc import IpcRequest
from agent_bridge.infrastructure.mailbox.transport import results_dir

MAPPINGS = """
- {externalId: ebay-seller, ownerGroup: shop}
- {externalId: chat-g, ownerGroup: team-g}
"""

SEARCH = {
    "total": 57,
    "itemSummaries": [
        {
            "itemId": "v1|111|0",
            "title": "Vintage camera",
            "price": {"value": "45.00", "currency": "USD"},
            "condition": "Used",
            "itemWebUrl": "https://www.ebay.com/itm/111",
            "image": {"imageUrl": "https://i.ebayimg.com/big.jpg"},
        }
    ],
}

ORDER = {
    "orderId": "12-345",
    "orderFulfillmentStatus": "NOT_STARTED",
    "pricingSummary": {"total": {"value": "45.00", "currency": "USD"}},
    "buyer": {"username": "buyer1"},
    "creationDate": "2024-05-01T10:00:00.000Z",
    "lineItems": [{"title": "Vintage camera " + "x" * 80, "sku": "CAM-1", "quantity": 1, "legacyItemId": "111"}],
    "fulfillmentStartInstructions": [{"shippingStep": {"shipTo": {"fullName": "Ann"}}}],
}


class FakeMarketplace:
    def __init__(self):
        self.calls = []

    def search_items(self, query, limit):
        self.calls.append(("search_items", query, limit))
        return SEARCH

    def get_item(self, item_id):
        self.calls.append(("get_item", item_id))
        return {"itemId": item_id, "title": "Vintage camera", "seller": {"username": "s1", "feedbackScore": 99}}

    def get_orders(self):
        self.calls.append(("get_orders",))
        return {"total": 1, "orders": [ORDER]}

    def get_order(self, order_id):
        self.calls.append(("get_order", order_id))
        return ORDER

    def get_inventory_items(self, limit=None, offset=None):
        self.calls.append(("get_inventory_items", limit, offset))
        return {
            "total": 2,
            "inventoryItems": [
                {"sku": "CAM-1", "product": {"title": "Camera"}, "availability": {"shipToLocationAvailability": {"quantity": 2}}},
                {"sku": "DRAFT-2", "product": {"title": "Lens"}},
            ],
        }

    def get_offers(self, sku):
        if sku == "DRAFT-2":
            raise RuntimeError("offer not found")
        return {"offers": [{"listing": {"listingId": "999"}}]}

    def mark_shipped(self, order_id, tracking_number, carrier):
        self.calls.append(("mark_shipped", order_id, tracking_number, carrier))
        return {"fulfillmentId": "F-1"}


def _context(d, client):
    reg_path = Path(d) / "mappings.yaml"
    reg_path.write_text(MAPPINGS, encoding="utf-8")
    settings = Settings(
        data_dir=str(Path(d) / "data"),
        registry_file=str(reg_path),
        main_group_folder="main",
        marketplace_account="ebay-seller",
    )
    return HostContext(settings=settings, registry=ResourceRegistry(reg_path), marketplace_client=client)


def _dispatch(d, ctx, type, group="shop", privileged=False, **payload):
    req = IpcRequest(type=type, request_id="m1", source_group=group, is_privileged=privileged, payload=payload)
    assert default_chain(ctx).dispatch(req, Path(d) / "data")
    path = results_dir(Path(d) / "data", group) / "m1.json"
    return json.loads(path.read_text(encoding="utf-8"))


def test_search_caps_results_and_summarizes():
    with tempfile.TemporaryDirectory() as d:
        client = FakeMarketplace()
        result = _dispatch(d, _context(d, client), "ebay_search", query="camera", limit="10")
        assert client.calls == [("search_items", "camera", 3)]
        assert result["success"] is True
        header, body = result["message"].split("\n", 1)
        assert header == "Found 57 results:"
        assert json.loads(body) == [
            {
                "id": "v1|111|0",
                "title": "Vintage camera",
                "price": "45.00 USD",
                "condition": "Used",
                "url": "https://www.ebay.com/itm/111",
            }
        ]


def test_account_owner_and_privileged_caller_only():
    with tempfile.TemporaryDirectory() as d:
        client = FakeMarketplace()
        ctx = _context(d, client)
        denied = _dispatch(d, ctx, "ebay_get_orders", group="team-g")
        assert denied == {"success": False, "message": "Unauthorized: not authorized for this resource"}
        assert client.calls == []

        allowed = _dispatch(d, ctx, "ebay_get_orders", group="main", privileged=True)
        assert allowed["message"].startswith("1 orders:\n")
        orders = json.loads(allowed["message"].split("\n", 1)[1])
        assert orders[0]["items"] == [{"title": ("Vintage camera " + "x" * 80)[:60], "url": "https://www.ebay.com/itm/111"}]


def test_order_detail_includes_ship_to():
    with tempfile.TemporaryDirectory() as d:
        result = _dispatch(d, _context(d, FakeMarketplace()), "ebay_get_order", orderId="12-345")
        order = json.loads(result["message"])
        assert order["total"] == "45.00 USD"
        assert order["shipTo"] == {"fullName": "Ann"}
        assert order["items"][0]["sku"] == "CAM-1"


def test_inventory_skips_failed_offer_lookup():
    with tempfile.TemporaryDirectory() as d:
        result = _dispatch(d, _context(d, FakeMarketplace()), "ebay_get_inventory")
        items = json.loads(result["message"].split("\n", 1)[1])
        assert items[0] == {"sku": "CAM-1", "title": "Camera", "quantity": 2, "url": "https://www.ebay.com/itm/999"}
        assert items[1] == {"sku": "DRAFT-2", "title": "Lens", "quantity": "N/A"}


def test_mark_shipped_requires_all_fields():
    with tempfile.TemporaryDirectory() as d:
        client = FakeMarketplace()
        ctx = _context(d, client)
        missing = _dispatch(d, ctx, "ebay_mark_shipped", orderId="12-345", carrier="USPS")
        assert missing == {"success": False, "message": "ebay_mark_shipped requires orderId and trackingNumber and carrier"}
        assert client.calls == []

        done = _dispatch(d, ctx, "ebay_mark_shipped", orderId="12-345", trackingNumber="9400", carrier="USPS")
        assert done["message"] == "Tracking 9400 (USPS) added to order 12-345 (fulfillment F-1)"
        assert client.calls == [("mark_shipped", "12-345", "9400", "USPS")]


def test_unsupported_and_unconfigured():
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d, FakeMarketplace())
        assert _dispatch(d, ctx, "ebay_create_listing")["message"] == "Unsupported marketplace action: ebay_create_listing"
        ctx.marketplace_client = None
        assert _dispatch(d, ctx, "ebay_get_orders")["message"] == "Marketplace client is not configured on this host"
