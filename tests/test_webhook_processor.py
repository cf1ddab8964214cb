import httpx
import pytest

from vendorhub.errors import ShopifyAPIError, WebhookProcessingError
from vendorhub.shopify.admin_api import ShopifyAdminClient
from vendorhub.shopify.order_normalizer import normalize_order
from vendorhub.shopify.webhook_processor import WebhookProcessor
from vendorhub.workers.types import JobKind, JobRecord, JobStatus

from conftest import SHOP, order_payload


def _job(topic, body, shop=SHOP, job_id=1):
    return JobRecord(
        id=job_id,
        kind=JobKind.WEBHOOK,
        payload={"shop_domain": shop, "topic": topic, "api_version": "2025-10", "webhook_id": "w", "body": body},
        status=JobStatus.CLAIMED,
        attempts=0,
    )


async def _seed(s, token="shpat_test"):
    await s.orders.register_shop(SHOP, token)
    return await s.orders.upsert_vendor("Acme", code="ACME")


def _snapshot(lines, shipments):
    return (
        sorted((li.shopify_line_item_id, li.quantity, li.fulfilled_quantity, li.fulfillable_quantity, li.vendor_id) for li in lines),
        sorted((sh.shopify_fulfillment_id, sh.tracking_number, sh.status) for sh in shipments),
    )


def test_normalize_rejects_bad_payload():
    with pytest.raises(WebhookProcessingError):
        normalize_order({"id": "1001", "line_items": []})
    with pytest.raises(WebhookProcessingError):
        normalize_order({"id": 1001})


def test_normalize_extracts_reference_and_address():
    norm = normalize_order(order_payload())
    assert norm.os_number == "OS-01115463"
    assert norm.order_number == "#1001"
    assert norm.customer_name == "Yamada Taro"
    assert norm.shipping.postal == "270-1432"
    assert [li.shopify_line_item_id for li in norm.items] == [11, 12]


def test_order_upsert_is_idempotent(run):
    async def scenario(s):
        vendor_id = await _seed(s)
        processor = WebhookProcessor(s.orders, s.shopify)
        await processor.process(_job("orders/create", order_payload()))
        order = await s.orders.get_order_by_shopify_id(1001)
        first = _snapshot(await s.orders.list_line_items(order.id), await s.orders.list_shipments(order.id))
        await processor.process(_job("orders/create", order_payload()))
        await processor.process(_job("orders/updated", order_payload()))
        again = await s.orders.get_order_by_shopify_id(1001)
        second = _snapshot(await s.orders.list_line_items(again.id), await s.orders.list_shipments(again.id))
        return vendor_id, order, again, first, second

    vendor_id, order, again, first, second = run(scenario)
    assert order.id == again.id
    assert order.os_number == "OS-01115463"
    assert order.vendor_id == vendor_id
    assert first == second
    assert first[0] == [(11, 2, 0, 2, vendor_id), (12, 1, 0, 1, vendor_id)]


def test_fulfillments_set_quantities_not_increment(run):
    fulfilled = order_payload(fulfillments=[{
        "id": 555,
        "status": "success",
        "tracking_number": "YT123",
        "tracking_company": "Yamato",
        "line_items": [{"id": 11, "quantity": 1}],
    }])

    async def scenario(s):
        await _seed(s)
        processor = WebhookProcessor(s.orders, s.shopify)
        for _ in range(3):
            await processor.process(_job("orders/updated", fulfilled))
        order = await s.orders.get_order_by_shopify_id(1001)
        return await s.orders.list_line_items(order.id), await s.orders.list_shipments(order.id)

    lines, shipments = run(scenario)
    by_id = {li.shopify_line_item_id: li for li in lines}
    assert by_id[11].fulfilled_quantity == 1
    assert by_id[11].fulfillable_quantity == 1
    assert by_id[12].fulfilled_quantity == 0
    assert len(shipments) == 1
    assert shipments[0].tracking_number == "YT123"


def test_cancelled_order_cancels_shipments(run):
    with_fulfillment = order_payload(fulfillments=[{
        "id": 556, "status": "success", "tracking_number": "YT9", "line_items": [{"id": 12, "quantity": 1}],
    }])
    cancelled = dict(with_fulfillment, cancelled_at="2025-10-02T10:00:00+09:00")

    async def scenario(s):
        await _seed(s)
        processor = WebhookProcessor(s.orders, s.shopify)
        await processor.process(_job("orders/create", with_fulfillment))
        await processor.process(_job("orders/cancelled", cancelled))
        order = await s.orders.get_order_by_shopify_id(1001)
        return order, await s.orders.list_line_items(order.id), await s.orders.list_shipments(order.id)

    order, lines, shipments = run(scenario)
    assert order.status == "cancelled"
    assert all(sh.status == "cancelled" for sh in shipments)
    assert all(li.fulfilled_quantity == 0 for li in lines)


def test_unregistered_shop_fails(run):
    async def scenario(s):
        await WebhookProcessor(s.orders, s.shopify).process(_job("orders/create", order_payload(), shop="other.myshopify.com"))

    with pytest.raises(WebhookProcessingError):
        run(scenario)


def test_unsupported_topic_is_a_noop(run):
    async def scenario(s):
        await WebhookProcessor(s.orders, s.shopify).process(_job("customers/create", {"id": 1}))
        return await s.orders.get_order_by_shopify_id(1)

    assert run(scenario) is None


def _mock_shopify(handler):
    return ShopifyAdminClient("2025-10", transport=httpx.MockTransport(handler))


def _fulfillment_orders_api(seen, fulfillment_orders):
    def handler(request):
        seen.append((request.url.path, request.headers.get("X-Shopify-Access-Token")))
        if request.url.path.endswith("/orders/1001/fulfillment_orders.json"):
            return httpx.Response(200, json={"fulfillment_orders": fulfillment_orders})
        return httpx.Response(200, json={"fulfillment_order": {"id": 777, "order_id": 1001}})
    return handler


def test_fulfillment_order_topic_resolves_order_and_requests_resync(run):
    seen = []
    handler = _fulfillment_orders_api(seen, [])

    async def scenario(s):
        await _seed(s)
        await WebhookProcessor(s.orders, s.shopify).process(_job("orders/create", order_payload()))
        processor = WebhookProcessor(s.orders, _mock_shopify(handler))
        await processor.process(_job("fulfillment_orders/order_routing_complete", {"fulfillment_order": {"id": 777}}))
        return await s.orders.get_order_by_shopify_id(1001)

    order = run(scenario)
    assert order.resync_requested_at is not None
    assert order.shopify_fulfillment_order_id is None
    assert seen == [
        ("/admin/api/2025-10/fulfillment_orders/777.json", "shpat_test"),
        ("/admin/api/2025-10/orders/1001/fulfillment_orders.json", "shpat_test"),
    ]


def test_fulfillment_order_metadata_is_stored(run):
    seen = []
    handler = _fulfillment_orders_api(seen, [
        {"id": 777, "status": "open", "line_items": [
            {"id": 701, "line_item_id": 11, "remaining_quantity": 2},
            {"id": 702, "line_item_id": 12, "remaining_quantity": 1},
            {"id": 703, "line_item_id": 99, "remaining_quantity": 4},
        ]},
        {"id": 778, "status": "scheduled", "line_items": []},
    ])

    async def scenario(s):
        await _seed(s)
        await WebhookProcessor(s.orders, s.shopify).process(_job("orders/create", order_payload()))
        processor = WebhookProcessor(s.orders, _mock_shopify(handler))
        for _ in range(2):
            await processor.process(_job("fulfillment_orders/hold_released", {"fulfillment_order": {"id": 777, "order_id": 1001}}))
        order = await s.orders.get_order_by_shopify_id(1001)
        return order, await s.orders.list_line_items(order.id)

    order, lines = run(scenario)
    assert order.shopify_fulfillment_order_id == 777
    assert order.fulfillment_order_status == "open"
    assert order.fulfillment_order_synced_at is not None
    assert sorted((li.shopify_line_item_id, li.shopify_fulfillment_order_line_item_id, li.fulfillment_order_remaining_quantity) for li in lines) == [
        (11, 701, 2),
        (12, 702, 1),
    ]
    # order_id was in the payload, so only the fulfillment order list is fetched
    assert [path for path, _ in seen] == ["/admin/api/2025-10/orders/1001/fulfillment_orders.json"] * 2


def test_fulfillment_order_metadata_skipped_without_token(run):
    def handler(request):
        raise AssertionError("no Admin API call expected without a token")

    async def scenario(s):
        await _seed(s, token=None)
        await WebhookProcessor(s.orders, s.shopify).process(_job("orders/create", order_payload()))
        processor = WebhookProcessor(s.orders, _mock_shopify(handler))
        await processor.process(_job("fulfillment_orders/order_routing_complete", {"fulfillment_order": {"id": 777, "order_id": 1001}}))
        return await s.orders.get_order_by_shopify_id(1001)

    order = run(scenario)
    assert order.resync_requested_at is not None
    assert order.shopify_fulfillment_order_id is None


def test_fulfillment_order_for_unknown_order_is_retryable_failure(run):
    async def scenario(s):
        await _seed(s)
        processor = WebhookProcessor(s.orders, s.shopify)
        await processor.process(_job("fulfillment_orders/hold_released", {"fulfillment_order": {"id": 1, "order_id": 4242}}))

    with pytest.raises(WebhookProcessingError):
        run(scenario)


def test_shopify_api_error_propagates(run):
    def handler(request):
        return httpx.Response(503, json={"errors": "unavailable"})

    async def scenario(s):
        await _seed(s)
        processor = WebhookProcessor(s.orders, _mock_shopify(handler))
        await processor.process(_job("fulfillment_orders/order_routing_complete", {"fulfillment_order": {"id": 9}}))

    with pytest.raises(ShopifyAPIError):
        run(scenario)
