# vendorhub/models/orders.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, BigInteger, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from vendorhub.db import Base
from vendorhub.workers.types import utcnow


class ShopConnection(Base):
    __tablename__ = "shop_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), unique=True, index=True)  # normalized domain
    access_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    code: Mapped[str | None] = mapped_column(String(16), unique=True, nullable=True)  # 4-char SKU prefix


class VendorSku(Base):
    __tablename__ = "vendor_skus"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vendor_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), index=True)
    sku: Mapped[str] = mapped_column(String(128), unique=True, index=True)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shopify_order_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    shop_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    os_number: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_postal: Mapped[str | None] = mapped_column(String(32), nullable=True)
    shipping_prefecture: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shipping_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shipping_address1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_address2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="unfulfilled")
    resync_requested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    shopify_fulfillment_order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fulfillment_order_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    fulfillment_order_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    shopify_updated_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class LineItem(Base):
    __tablename__ = "line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True, index=True)
    vendor_sku_id: Mapped[int | None] = mapped_column(ForeignKey("vendor_skus.id"), nullable=True)
    shopify_line_item_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), default="")
    variant_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    fulfilled_quantity: Mapped[int] = mapped_column(Integer, default=0)
    fulfillable_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shopify_fulfillment_order_line_item_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fulfillment_order_remaining_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("order_id", "vendor_id", "tracking_number", name="uq_shipment_tracking"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)
    shopify_fulfillment_id: Mapped[int | None] = mapped_column(BigInteger, unique=True, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(128), nullable=True)  # NULL never collides in uq_shipment_tracking
    carrier: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="shipped")
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sync_status: Mapped[str] = mapped_column(String(16), default="pending")  # pending/synced/error
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ShipmentLineItem(Base):
    __tablename__ = "shipment_line_items"
    __table_args__ = (
        UniqueConstraint("shipment_id", "line_item_id", name="uq_shipment_line"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipments.id"), index=True)
    line_item_id: Mapped[int] = mapped_column(ForeignKey("line_items.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
