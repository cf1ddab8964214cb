from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from vendorhub.errors import WebhookProcessingError
from vendorhub.orders.os_number import extract_os_number_from_parts


@dataclass
class AddressBlock:
    postal: str | None = None
    prefecture: str | None = None
    city: str | None = None
    address1: str | None = None
    address2: str | None = None


@dataclass
class LineItem:
    shopify_line_item_id: int
    sku: str | None
    title: str
    variant_title: str | None
    quantity: int
    fulfillable_quantity: int | None
    product_vendor: str | None = None


@dataclass
class FulfillmentLine:
    shopify_line_item_id: int
    quantity: int


@dataclass
class Fulfillment:
    shopify_fulfillment_id: int
    status: str | None
    tracking_number: str
    tracking_company: str | None
    created_at: str | None
    lines: List[FulfillmentLine] = field(default_factory=list)


@dataclass
class NormalizedOrder:
    shopify_order_id: int
    order_number: str | None
    os_number: str | None
    customer_name: str | None
    status: str                   # cancelled / fulfilled / partial / unfulfilled
    financial_status: str | None
    created_at: str | None
    updated_at: str | None
    shipping: AddressBlock

    items: List[LineItem] = field(default_factory=list)
    fulfillments: List[Fulfillment] = field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


def _get(d: Dict[str, Any] | None, key: str, default=None):
    if not isinstance(d, dict):
        return default
    return d.get(key, default)


def _coerce_int(v: Any, default: int | None = 0) -> int | None:
    try:
        if v is None or v == "" or isinstance(v, bool):
            return default
        return int(v)
    except (TypeError, ValueError):
        return default


def _mk_address(blob: Dict[str, Any] | None) -> AddressBlock:
    return AddressBlock(
        postal=_get(blob, "zip") or _get(blob, "postal_code"),
        prefecture=_get(blob, "province") or _get(blob, "province_code"),
        city=_get(blob, "city"),
        address1=_get(blob, "address1"),
        address2=_get(blob, "address2"),
    )


def _customer_name(order_json: Dict[str, Any]) -> str | None:
    # family name first
    cust = order_json.get("customer") or {}
    first = str(_get(cust, "first_name") or "").strip()
    last = str(_get(cust, "last_name") or "").strip()
    full = " ".join(p for p in (last, first) if p).strip()
    return full or None


def derive_order_status(order_json: Dict[str, Any]) -> str:
    if order_json.get("cancelled_at"):
        return "cancelled"
    return str(order_json.get("fulfillment_status") or "unfulfilled")


def reference_candidates(order_json: Dict[str, Any]) -> List[Optional[str]]:
    """Free-text fields that may carry the OS reference, most specific first."""
    out: List[Optional[str]] = []
    for attr in order_json.get("note_attributes") or []:
        if isinstance(attr, dict):
            out.append(str(attr.get("value") or ""))
    out.append(order_json.get("note"))
    shipping = order_json.get("shipping_address") or {}
    out.append(_get(shipping, "address2"))
    out.append(_get(shipping, "address1"))
    out.append(_get(shipping, "company"))
    tags = order_json.get("tags")
    out.append(", ".join(tags) if isinstance(tags, list) else tags)
    return out


def _mk_fulfillment(blob: Dict[str, Any]) -> Fulfillment | None:
    fid = _coerce_int(blob.get("id"), None)
    if fid is None:
        return None
    tracking = blob.get("tracking_number")
    if not tracking:
        numbers = blob.get("tracking_numbers") or []
        tracking = numbers[0] if numbers else ""
    lines: List[FulfillmentLine] = []
    for li in blob.get("line_items") or []:
        lid = _coerce_int(li.get("line_item_id"), None) or _coerce_int(li.get("id"), None)
        if lid is None:
            continue
        lines.append(FulfillmentLine(shopify_line_item_id=lid, quantity=_coerce_int(li.get("quantity"), 0) or 0))
    return Fulfillment(
        shopify_fulfillment_id=fid,
        status=blob.get("status"),
        tracking_number=str(tracking or ""),
        tracking_company=blob.get("tracking_company"),
        created_at=blob.get("created_at"),
        lines=lines,
    )


def normalize_order(order_json: Dict[str, Any]) -> NormalizedOrder:
    if not isinstance(order_json, dict):
        raise WebhookProcessingError("Invalid order payload")
    order_id = order_json.get("id")
    if isinstance(order_id, bool) or not isinstance(order_id, int) or not isinstance(order_json.get("line_items"), list):
        raise WebhookProcessingError("Invalid order payload")

    items: List[LineItem] = []
    for li in order_json["line_items"]:
        lid = _coerce_int(_get(li, "id"), None)
        if lid is None:
            raise WebhookProcessingError("Invalid order payload: line item without id")
        qty = _coerce_int(li.get("quantity"), 0) or 0
        sku = (li.get("sku") or "").strip() or None
        items.append(LineItem(
            shopify_line_item_id=lid,
            sku=sku,
            title=str(li.get("title") or li.get("name") or sku or ""),
            variant_title=li.get("variant_title"),
            quantity=qty,
            fulfillable_quantity=_coerce_int(li.get("fulfillable_quantity"), None),
            product_vendor=li.get("vendor"),
        ))

    fulfillments = [f for f in (_mk_fulfillment(b) for b in order_json.get("fulfillments") or [] if isinstance(b, dict)) if f]

    return NormalizedOrder(
        shopify_order_id=order_id,
        order_number=str(order_json.get("name") or order_json.get("order_number") or "") or None,
        os_number=extract_os_number_from_parts(reference_candidates(order_json)),
        customer_name=_customer_name(order_json),
        status=derive_order_status(order_json),
        financial_status=order_json.get("financial_status"),
        created_at=order_json.get("created_at"),
        updated_at=order_json.get("updated_at"),
        shipping=_mk_address(order_json.get("shipping_address")),
        items=items,
        fulfillments=fulfillments,
    )
