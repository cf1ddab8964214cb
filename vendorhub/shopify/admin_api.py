#==========================================================================================
# vendorhub/shopify/admin_api.py
# Shopify Admin REST API interface.
# Only what the webhook pipeline needs: resolving a fulfillment order to its order
# and reading an order's fulfillment orders.
#==========================================================================================
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from vendorhub.errors import ShopifyAPIError
from vendorhub.shopify.shop_domains import normalize_shop_domain

logger = logging.getLogger("uvicorn.error")


@dataclass
class FulfillmentOrderLine:
    id: int
    line_item_id: int
    remaining_quantity: int = 0


@dataclass
class FulfillmentOrderSnapshot:
    id: int
    status: Optional[str] = None
    line_items: List[FulfillmentOrderLine] = field(default_factory=list)


def _int_or_none(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


class ShopifyAdminClient:
    def __init__(self, api_version: str, *, timeout: float = 20.0, transport: httpx.AsyncBaseTransport | None = None):
        self.api_version = api_version
        self.timeout = timeout
        # tests pass an httpx.MockTransport
        self._transport = transport

    def _base(self, shop_domain: str) -> str:
        shop = normalize_shop_domain(shop_domain)
        if not shop:
            raise ShopifyAPIError("shop domain is required")
        return f"https://{shop}/admin/api/{self.api_version}"

    async def _get(self, shop_domain: str, access_token: str, path: str) -> Optional[Dict[str, Any]]:
        url = f"{self._base(shop_domain)}{path}"
        headers = {"X-Shopify-Access-Token": access_token, "Accept": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.get(url, headers=headers)
            except httpx.HTTPError as e:
                raise ShopifyAPIError(f"Shopify request failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise ShopifyAPIError(f"Shopify responded {resp.status_code} for {path}", resp.status_code)
        data = resp.json()
        if not isinstance(data, dict):
            raise ShopifyAPIError(f"Unexpected Shopify response for {path}")
        return data

    async def resolve_order_id_from_fulfillment_order(
        self, shop_domain: str, access_token: str | None, fulfillment_order_id: int | str
    ) -> Optional[int]:
        """Return the Shopify order id owning ``fulfillment_order_id`` (None when unknown)."""
        if not access_token:
            raise ShopifyAPIError(f"no access token stored for {shop_domain}")
        fo_id = str(fulfillment_order_id).rsplit("/", 1)[-1]  # accepts gid://shopify/FulfillmentOrder/123
        data = await self._get(shop_domain, access_token, f"/fulfillment_orders/{fo_id}.json")
        if not data:
            return None
        order_id = (data.get("fulfillment_order") or {}).get("order_id")
        try:
            return int(order_id) if order_id is not None else None
        except (TypeError, ValueError):
            logger.warning("[SHOPIFY] fulfillment order %s has non-numeric order_id=%r", fo_id, order_id)
            return None

    async def fetch_fulfillment_orders(
        self, shop_domain: str, access_token: str | None, shopify_order_id: int
    ) -> List[FulfillmentOrderSnapshot]:
        """
        GET /orders/{id}/fulfillment_orders.json, reduced to ids and line mappings.
        An order Shopify has not routed yet comes back as an empty list.
        """
        if not access_token:
            raise ShopifyAPIError(f"no access token stored for {shop_domain}")
        data = await self._get(shop_domain, access_token, f"/orders/{int(shopify_order_id)}/fulfillment_orders.json")
        out: List[FulfillmentOrderSnapshot] = []
        for fo in (data or {}).get("fulfillment_orders") or []:
            fo_id = _int_or_none(fo.get("id")) if isinstance(fo, dict) else None
            if fo_id is None:
                continue
            lines = []
            for li in fo.get("line_items") or []:
                if not isinstance(li, dict):
                    continue
                line_id = _int_or_none(li.get("id"))
                line_item_id = _int_or_none(li.get("line_item_id"))
                if line_id is None or line_item_id is None:
                    continue
                lines.append(FulfillmentOrderLine(line_id, line_item_id, _int_or_none(li.get("remaining_quantity")) or 0))
            status = fo.get("status")
            out.append(FulfillmentOrderSnapshot(fo_id, status if isinstance(status, str) else None, lines))
        return out
