# vendorhub/stores/order_store.py
"""
Orders, line items, shipments and vendors.

Every write here is an upsert keyed by a natural identifier (Shopify order /
line item / fulfillment id, or order+vendor+tracking number for imported
shipments) and quantities are *set*, never incremented, so replaying the same
event leaves the data unchanged.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendorhub.errors import ShipmentImportError
from vendorhub.models.orders import (
    LineItem,
    Order,
    Shipment,
    ShipmentLineItem,
    ShopConnection,
    Vendor,
    VendorSku,
)
from vendorhub.shopify.admin_api import FulfillmentOrderSnapshot
from vendorhub.shopify.order_normalizer import Fulfillment, NormalizedOrder
from vendorhub.shopify.shop_domains import normalize_shop_domain
from vendorhub.workers.types import utcnow

logger = logging.getLogger("uvicorn.error")

CANCELLED_SHIPMENT_STATUSES = ("cancelled", "canceled", "failure", "error")


@dataclass
class VendorResolution:
    vendor_id: Optional[int] = None
    vendor_sku_id: Optional[int] = None


@dataclass
class ShipmentSelection:
    line_item_id: int
    quantity: Optional[int] = None


@dataclass
class ShipmentResult:
    shipment_id: int
    order_id: int
    line_quantities: Dict[int, int]


class OrderStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    # ---------------------------
    # Shops
    # ---------------------------

    async def is_registered_shop(self, shop_domain: str | None) -> bool:
        normalized = normalize_shop_domain(shop_domain)
        if not normalized:
            return False
        async with self._sessionmaker() as session:
            res = await session.execute(select(ShopConnection.id).where(ShopConnection.shop == normalized))
            return res.scalar_one_or_none() is not None

    async def get_access_token(self, shop_domain: str | None) -> Optional[str]:
        normalized = normalize_shop_domain(shop_domain)
        if not normalized:
            return None
        async with self._sessionmaker() as session:
            res = await session.execute(
                select(ShopConnection.access_token).where(ShopConnection.shop == normalized)
            )
            return res.scalar_one_or_none()

    async def register_shop(self, shop_domain: str, access_token: str | None = None) -> int:
        normalized = normalize_shop_domain(shop_domain)
        if not normalized:
            raise ValueError("shop domain is required")
        async with self._sessionmaker() as session:
            res = await session.execute(select(ShopConnection).where(ShopConnection.shop == normalized))
            conn = res.scalar_one_or_none()
            if conn is None:
                conn = ShopConnection(shop=normalized, access_token=access_token)
                session.add(conn)
            elif access_token is not None:
                conn.access_token = access_token
            await session.commit()
            return conn.id

    # ---------------------------
    # Vendors
    # ---------------------------

    async def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        async with self._sessionmaker() as session:
            return await session.get(Vendor, vendor_id)

    async def upsert_vendor(self, name: str, code: str | None = None, skus: Iterable[str] = ()) -> int:
        """Create or rename a vendor (keyed by code, else name) and attach SKUs to it."""
        async with self._sessionmaker() as session:
            key = Vendor.code == code if code else Vendor.name == name
            vendor = (await session.execute(select(Vendor).where(key))).scalar_one_or_none()
            if vendor is None:
                vendor = Vendor(name=name, code=code)
                session.add(vendor)
                await session.flush()
            else:
                vendor.name = name
            for sku in {s.strip() for s in skus if s and s.strip()}:
                row = (await session.execute(select(VendorSku).where(VendorSku.sku == sku))).scalar_one_or_none()
                if row is None:
                    session.add(VendorSku(vendor_id=vendor.id, sku=sku))
                else:
                    row.vendor_id = vendor.id
            await session.commit()
            return vendor.id

    @staticmethod
    async def _resolve_vendor(session: AsyncSession, sku: str | None, product_vendor: str | None) -> VendorResolution:
        """SKU table first, then the 4-char SKU prefix as vendor code, then the Shopify vendor name."""
        sku = (sku or "").strip()
        if sku:
            res = await session.execute(select(VendorSku).where(VendorSku.sku == sku))
            vs = res.scalar_one_or_none()
            if vs is not None:
                return VendorResolution(vendor_id=vs.vendor_id, vendor_sku_id=vs.id)
            prefix = sku[:4]
            if len(prefix) == 4:
                res = await session.execute(select(Vendor.id).where(Vendor.code == prefix))
                vid = res.scalar_one_or_none()
                if vid is not None:
                    return VendorResolution(vendor_id=vid)
        if product_vendor and product_vendor.strip():
            res = await session.execute(
                select(Vendor.id).where(func.lower(Vendor.name) == product_vendor.strip().lower()).limit(1)
            )
            vid = res.scalar_one_or_none()
            if vid is not None:
                return VendorResolution(vendor_id=vid)
        if sku:
            logger.warning("[ORDERS] vendor not resolved for sku=%s", sku)
        return VendorResolution()

    # ---------------------------
    # Shopify order upsert
    # ---------------------------

    async def upsert_shopify_order(self, norm: NormalizedOrder, shop_domain: str | None) -> int:
        """Insert or update the order, its line items and fulfillments. Returns orders.id."""
        async with self._sessionmaker() as session:
            resolutions = [await self._resolve_vendor(session, li.sku, li.product_vendor) for li in norm.items]
            vendor_ids = {r.vendor_id for r in resolutions if r.vendor_id is not None}

            res = await session.execute(select(Order).where(Order.shopify_order_id == norm.shopify_order_id))
            order = res.scalar_one_or_none()
            if order is None:
                order = Order(shopify_order_id=norm.shopify_order_id)
                session.add(order)

            order.shop_domain = normalize_shop_domain(shop_domain)
            order.vendor_id = next(iter(vendor_ids)) if len(vendor_ids) == 1 else None
            order.order_number = norm.order_number
            # a later edit that drops the note must not lose the reference
            order.os_number = norm.os_number or order.os_number
            order.customer_name = norm.customer_name
            order.shipping_postal = norm.shipping.postal
            order.shipping_prefecture = norm.shipping.prefecture
            order.shipping_city = norm.shipping.city
            order.shipping_address1 = norm.shipping.address1
            order.shipping_address2 = norm.shipping.address2
            order.status = norm.status
            order.shopify_updated_at = norm.updated_at
            order.updated_at = utcnow()
            await session.flush()

            existing = await session.execute(select(LineItem).where(LineItem.order_id == order.id))
            by_shopify_id = {li.shopify_line_item_id: li for li in existing.scalars().all()}
            seen: set[int] = set()
            for item, resolution in zip(norm.items, resolutions):
                row = by_shopify_id.get(item.shopify_line_item_id)
                if row is None:
                    row = LineItem(
                        order_id=order.id,
                        shopify_line_item_id=item.shopify_line_item_id,
                        fulfilled_quantity=0,
                    )
                    session.add(row)
                row.vendor_id = resolution.vendor_id
                row.vendor_sku_id = resolution.vendor_sku_id
                row.sku = item.sku
                row.product_name = item.title
                row.variant_title = item.variant_title
                row.quantity = item.quantity
                seen.add(item.shopify_line_item_id)
            await session.flush()

            stale = [li.id for sid, li in by_shopify_id.items() if sid not in seen]
            if stale:
                await self._delete_unshipped_lines(session, stale)

            await self._apply_fulfillments(session, order, norm.fulfillments)
            if norm.is_cancelled:
                await self._cancel_shipments(session, order.id)

            line_ids = (await session.execute(select(LineItem.id).where(LineItem.order_id == order.id))).scalars().all()
            await self._recompute_fulfilled(session, line_ids)
            await session.commit()
            logger.info(
                "[ORDERS] upserted shopify order=%s id=%s lines=%d fulfillments=%d os=%s",
                norm.shopify_order_id, order.id, len(norm.items), len(norm.fulfillments), order.os_number,
            )
            return order.id

    @staticmethod
    async def _delete_unshipped_lines(session: AsyncSession, line_ids: Sequence[int]) -> None:
        shipped = await session.execute(
            select(ShipmentLineItem.line_item_id).where(ShipmentLineItem.line_item_id.in_(line_ids))
        )
        keep = set(shipped.scalars().all())
        removable = [i for i in line_ids if i not in keep]
        if removable:
            await session.execute(delete(LineItem).where(LineItem.id.in_(removable)))

    async def _apply_fulfillments(self, session: AsyncSession, order: Order, fulfillments: List[Fulfillment]) -> None:
        if not fulfillments:
            return
        res = await session.execute(select(LineItem).where(LineItem.order_id == order.id))
        lines = {li.shopify_line_item_id: li for li in res.scalars().all()}
        for f in fulfillments:
            res = await session.execute(
                select(Shipment).where(Shipment.shopify_fulfillment_id == f.shopify_fulfillment_id)
            )
            shipment = res.scalar_one_or_none()
            matched = [(lines[fl.shopify_line_item_id], fl.quantity) for fl in f.lines if fl.shopify_line_item_id in lines]
            vendor_ids = {li.vendor_id for li, _ in matched if li.vendor_id is not None}
            vendor_id = next(iter(vendor_ids)) if len(vendor_ids) == 1 else None
            if shipment is None and vendor_id is not None and f.tracking_number:
                # a vendor import may have recorded this parcel before Shopify did
                res = await session.execute(
                    select(Shipment).where(
                        Shipment.order_id == order.id,
                        Shipment.vendor_id == vendor_id,
                        Shipment.tracking_number == f.tracking_number,
                    )
                )
                shipment = res.scalar_one_or_none()
                if shipment is not None and shipment.shopify_fulfillment_id not in (None, f.shopify_fulfillment_id):
                    logger.warning(
                        "[ORDERS] fulfillment=%s reuses tracking %s of fulfillment=%s on order=%s; skipped",
                        f.shopify_fulfillment_id, f.tracking_number, shipment.shopify_fulfillment_id, order.id,
                    )
                    continue
                if shipment is not None:
                    shipment.shopify_fulfillment_id = f.shopify_fulfillment_id
            if shipment is None:
                shipment = Shipment(order_id=order.id, shopify_fulfillment_id=f.shopify_fulfillment_id)
                session.add(shipment)
            shipment.vendor_id = vendor_id if vendor_id is not None else shipment.vendor_id
            shipment.tracking_number = f.tracking_number or None
            shipment.carrier = f.tracking_company or shipment.carrier
            shipment.status = "cancelled" if (f.status or "").lower() in CANCELLED_SHIPMENT_STATUSES else "shipped"
            shipment.shipped_at = shipment.shipped_at or utcnow()
            shipment.sync_status = "synced"
            shipment.sync_error = None
            await session.flush()
            await self._set_shipment_lines(session, shipment.id, {li.id: qty for li, qty in matched})

    @staticmethod
    async def _set_shipment_lines(session: AsyncSession, shipment_id: int, quantities: Dict[int, int]) -> None:
        """Make the shipment's pivot rows equal ``quantities`` exactly."""
        res = await session.execute(select(ShipmentLineItem).where(ShipmentLineItem.shipment_id == shipment_id))
        current = {row.line_item_id: row for row in res.scalars().all()}
        for line_id, row in current.items():
            if line_id not in quantities:
                await session.delete(row)
        for line_id, qty in quantities.items():
            row = current.get(line_id)
            if row is None:
                session.add(ShipmentLineItem(shipment_id=shipment_id, line_item_id=line_id, quantity=qty))
            else:
                row.quantity = qty
        await session.flush()

    @staticmethod
    async def _recompute_fulfilled(session: AsyncSession, line_ids: Iterable[int]) -> None:
        line_ids = list(line_ids)
        if not line_ids:
            return
        res = await session.execute(
            select(ShipmentLineItem.line_item_id, func.coalesce(func.sum(ShipmentLineItem.quantity), 0))
            .join(Shipment, Shipment.id == ShipmentLineItem.shipment_id)
            .where(ShipmentLineItem.line_item_id.in_(line_ids), Shipment.status != "cancelled")
            .group_by(ShipmentLineItem.line_item_id)
        )
        totals = {lid: int(total or 0) for lid, total in res.all()}
        rows = await session.execute(select(LineItem).where(LineItem.id.in_(line_ids)))
        for li in rows.scalars().all():
            fulfilled = min(totals.get(li.id, 0), li.quantity or 0)
            li.fulfilled_quantity = fulfilled
            li.fulfillable_quantity = max((li.quantity or 0) - fulfilled, 0)
        await session.flush()

    @staticmethod
    async def _cancel_shipments(session: AsyncSession, order_id: int) -> None:
        await session.execute(
            update(Shipment)
            .where(Shipment.order_id == order_id, Shipment.status != "cancelled")
            .values(status="cancelled", updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def request_shipment_resync(self, shopify_order_id: int) -> bool:
        """Flag an order's shipments for another sync pass. False if the order is unknown."""
        async with self._sessionmaker() as session:
            res = await session.execute(select(Order).where(Order.shopify_order_id == shopify_order_id))
            order = res.scalar_one_or_none()
            if order is None:
                return False
            order.resync_requested_at = utcnow()
            await session.execute(
                update(Shipment)
                .where(Shipment.order_id == order.id, Shipment.status != "cancelled")
                .values(sync_status="pending", sync_error=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return True

    async def apply_fulfillment_order_snapshot(self, shopify_order_id: int, snapshot: FulfillmentOrderSnapshot) -> bool:
        """
        Store the fulfillment order id on the order and the fulfillment order
        line id and remaining quantity on each matching line item. Lines the
        snapshot does not mention keep their previous mapping.
        """
        async with self._sessionmaker() as session:
            res = await session.execute(select(Order).where(Order.shopify_order_id == shopify_order_id))
            order = res.scalar_one_or_none()
            if order is None:
                return False
            order.shopify_fulfillment_order_id = snapshot.id
            order.fulfillment_order_status = snapshot.status
            order.fulfillment_order_synced_at = utcnow()

            res = await session.execute(select(LineItem).where(LineItem.order_id == order.id))
            lines = {li.shopify_line_item_id: li for li in res.scalars().all()}
            matched = 0
            for fo_line in snapshot.line_items:
                li = lines.get(fo_line.line_item_id)
                if li is None:
                    continue
                li.shopify_fulfillment_order_line_item_id = fo_line.id
                li.fulfillment_order_remaining_quantity = fo_line.remaining_quantity
                matched += 1
            await session.commit()
            logger.info(
                "[ORDERS] fulfillment order=%s synced for shopify order=%s lines=%d/%d",
                snapshot.id, shopify_order_id, matched, len(snapshot.line_items),
            )
            return True

    # ---------------------------
    # Reads
    # ---------------------------

    async def get_order(self, order_id: int) -> Optional[Order]:
        async with self._sessionmaker() as session:
            return await session.get(Order, order_id)

    async def get_order_by_shopify_id(self, shopify_order_id: int) -> Optional[Order]:
        async with self._sessionmaker() as session:
            res = await session.execute(select(Order).where(Order.shopify_order_id == shopify_order_id))
            return res.scalar_one_or_none()

    async def list_line_items(self, order_id: int) -> List[LineItem]:
        async with self._sessionmaker() as session:
            res = await session.execute(select(LineItem).where(LineItem.order_id == order_id).order_by(LineItem.id))
            return list(res.scalars().all())

    async def list_shipments(self, order_id: int) -> List[Shipment]:
        async with self._sessionmaker() as session:
            res = await session.execute(select(Shipment).where(Shipment.order_id == order_id).order_by(Shipment.id))
            return list(res.scalars().all())

    async def find_order_by_reference(self, reference: str) -> Optional[Order]:
        """Match a canonical OS reference, or a literal order number ("#1001" or "1001")."""
        ref = (reference or "").strip()
        if not ref:
            return None
        candidates = {ref, ref.lstrip("#"), "#" + ref.lstrip("#")}
        async with self._sessionmaker() as session:
            res = await session.execute(
                select(Order)
                .where(or_(Order.os_number == ref, Order.order_number.in_(candidates)))
                .order_by(Order.id.desc())
                .limit(2)
            )
            found = list(res.scalars().all())
            if len(found) > 1:
                logger.warning("[ORDERS] reference %s matches several orders; using id=%s", ref, found[0].id)
            return found[0] if found else None

    # ---------------------------
    # Vendor-registered shipments
    # ---------------------------

    async def apply_vendor_shipment(
        self,
        *,
        order_id: int,
        vendor_id: int,
        tracking_number: str,
        carrier: str | None,
        selections: Sequence[ShipmentSelection],
    ) -> ShipmentResult:
        """
        Record that ``vendor_id`` shipped the selected lines under ``tracking_number``.
        Quantities are clamped to what is still unfulfilled *excluding* this
        shipment, so replaying the same request yields the same state.
        """
        if not selections:
            raise ShipmentImportError("no line items selected")
        async with self._sessionmaker() as session:
            res = await session.execute(
                select(Shipment).where(
                    Shipment.order_id == order_id,
                    Shipment.vendor_id == vendor_id,
                    Shipment.tracking_number == tracking_number,
                )
            )
            shipment = res.scalar_one_or_none()

            ids = [s.line_item_id for s in selections]
            res = await session.execute(select(LineItem).where(LineItem.id.in_(ids)))
            lines = {li.id: li for li in res.scalars().all()}
            if len(lines) != len(set(ids)):
                raise ShipmentImportError("line items not found")
            if any(li.order_id != order_id for li in lines.values()):
                raise ShipmentImportError("line items must belong to the same order")
            if any(li.vendor_id != vendor_id for li in lines.values()):
                raise ShipmentImportError("unauthorized line items included in shipment")

            other = select(
                ShipmentLineItem.line_item_id, func.coalesce(func.sum(ShipmentLineItem.quantity), 0)
            ).join(Shipment, Shipment.id == ShipmentLineItem.shipment_id).where(
                ShipmentLineItem.line_item_id.in_(ids), Shipment.status != "cancelled"
            )
            if shipment is not None:
                other = other.where(Shipment.id != shipment.id)
            res = await session.execute(other.group_by(ShipmentLineItem.line_item_id))
            shipped_elsewhere = {lid: int(total or 0) for lid, total in res.all()}

            quantities: Dict[int, int] = {}
            for sel in selections:
                li = lines[sel.line_item_id]
                available = max((li.quantity or 0) - shipped_elsewhere.get(li.id, 0), 0)
                if available <= 0:
                    continue
                requested = sel.quantity if sel.quantity and sel.quantity > 0 else available
                quantities[li.id] = max(1, min(available, int(requested)))
            if not quantities:
                raise ShipmentImportError("no shippable quantity left for the selected line items")

            if shipment is None:
                shipment = Shipment(order_id=order_id, vendor_id=vendor_id, tracking_number=tracking_number)
                session.add(shipment)
            shipment.carrier = carrier
            shipment.status = "shipped"
            shipment.shipped_at = shipment.shipped_at or utcnow()
            shipment.sync_status = "pending"
            shipment.sync_error = None
            await session.flush()
            await self._set_shipment_lines(session, shipment.id, quantities)

            all_lines = (await session.execute(select(LineItem.id).where(LineItem.order_id == order_id))).scalars().all()
            await self._recompute_fulfilled(session, all_lines)
            await self._refresh_order_status(session, order_id)
            await session.commit()
            return ShipmentResult(shipment_id=shipment.id, order_id=order_id, line_quantities=quantities)

    @staticmethod
    async def _refresh_order_status(session: AsyncSession, order_id: int) -> None:
        order = await session.get(Order, order_id)
        if order is None or order.status == "cancelled":
            return
        res = await session.execute(select(LineItem).where(LineItem.order_id == order_id))
        lines = list(res.scalars().all())
        if not lines:
            return
        shipped = sum(1 for li in lines if (li.fulfilled_quantity or 0) > 0)
        if all((li.fulfilled_quantity or 0) >= (li.quantity or 0) for li in lines):
            order.status = "fulfilled"
        elif shipped:
            order.status = "partial"
