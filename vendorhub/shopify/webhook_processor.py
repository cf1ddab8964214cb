# vendorhub/shopify/webhook_processor.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from vendorhub.errors import WebhookProcessingError
from vendorhub.shopify.admin_api import ShopifyAdminClient
from vendorhub.shopify.order_normalizer import normalize_order
from vendorhub.stores.order_store import OrderStore
from vendorhub.workers.types import JobRecord

logger = logging.getLogger("uvicorn.error")

SUPPORTED_TOPICS = frozenset({
    "orders/create",
    "orders/updated",
    "orders/cancelled",
    "orders/fulfilled",
    "fulfillment_orders/order_routing_complete",
    "fulfillment_orders/hold_released",
})

FULFILLMENT_ORDER_TOPICS = frozenset({
    "fulfillment_orders/order_routing_complete",
    "fulfillment_orders/hold_released",
})


class WebhookProcessor:
    """
    Applies one queued Shopify webhook to the order store.
    Safe to run more than once for the same delivery.
    """

    def __init__(self, orders: OrderStore, shopify: ShopifyAdminClient) -> None:
        self.orders = orders
        self.shopify = shopify

    async def process(self, job: JobRecord) -> None:
        data = job.payload or {}
        shop = data.get("shop_domain") or job.shop_domain
        topic = (data.get("topic") or job.topic or "").lower()
        body = data.get("body")
        ctx = {"job": job.id, "shop": shop, "topic": topic, "webhook_id": data.get("webhook_id")}

        if topic not in SUPPORTED_TOPICS:
            logger.warning("[SHOPIFY-HOOK] ignoring unsupported topic %s", ctx)
            return

        if not shop:
            raise WebhookProcessingError("webhook job has no shop domain")
        if not await self.orders.is_registered_shop(shop):
            raise WebhookProcessingError(f"Shop {shop} is not registered")

        if topic in FULFILLMENT_ORDER_TOPICS:
            await self._handle_fulfillment_order(shop, body, ctx)
            return

        norm = normalize_order(body)
        order_id = await self.orders.upsert_shopify_order(norm, shop)
        logger.info("[SHOPIFY-HOOK] processed %s order=%s id=%s", ctx, norm.shopify_order_id, order_id)

    async def _handle_fulfillment_order(self, shop: str, body: Any, ctx: Dict[str, Any]) -> None:
        payload = body if isinstance(body, dict) else {}
        fo = payload.get("fulfillment_order") if isinstance(payload.get("fulfillment_order"), dict) else {}

        order_id: Optional[int] = _as_int(fo.get("order_id"))
        if order_id is None:
            order_id = _as_int(payload.get("order_id"))
        if order_id is None:
            fo_id = fo.get("id") or payload.get("fulfillment_order_id")
            if isinstance(fo_id, (str, int)) and not isinstance(fo_id, bool) and str(fo_id).strip():
                token = await self.orders.get_access_token(shop)
                # ShopifyAPIError propagates: the job is retried later
                order_id = await self.shopify.resolve_order_id_from_fulfillment_order(shop, token, fo_id)

        if order_id is None:
            # fulfillment order not created yet on Shopify's side; nothing to reconcile
            logger.warning("[SHOPIFY-HOOK] fulfillment order webhook without resolvable order_id %s", ctx)
            return

        found = await self.orders.request_shipment_resync(order_id)
        if not found:
            raise WebhookProcessingError(f"order {order_id} is not imported yet")
        logger.info("[SHOPIFY-HOOK] shipment resync requested %s order=%s", ctx, order_id)
        await self._sync_fulfillment_order_metadata(shop, order_id, ctx)

    async def _sync_fulfillment_order_metadata(self, shop: str, order_id: int, ctx: Dict[str, Any]) -> None:
        token = await self.orders.get_access_token(shop)
        if not token:
            logger.warning("[SHOPIFY-HOOK] no access token for %s; fulfillment order metadata not synced %s", shop, ctx)
            return
        snapshots = await self.shopify.fetch_fulfillment_orders(shop, token, order_id)
        if not snapshots:
            logger.info("[SHOPIFY-HOOK] no fulfillment orders yet for order=%s %s", order_id, ctx)
            return
        # the first fulfillment order is the primary one
        await self.orders.apply_fulfillment_order_snapshot(order_id, snapshots[0])


def _as_int(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    return None
