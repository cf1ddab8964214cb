# vendorhub/shipments/import_rows.py
"""
Vendor shipment imports.

An uploaded sheet is split into rows; each row becomes one
``shipment_import_row`` job. Executing a row resolves the free-text order
reference to an order, picks the vendor's line items and records the shipment.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from vendorhub.errors import ShipmentImportError
from vendorhub.orders.os_number import extract_os_number_from_parts
from vendorhub.stores.order_store import OrderStore, ShipmentSelection
from vendorhub.workers.types import JobRecord

logger = logging.getLogger("uvicorn.error")

REQUIRED_COLUMNS = ("order_number", "tracking_number", "carrier")
OPTIONAL_COLUMNS = ("line_item_id", "quantity", "sku", "note")


@dataclass
class ParsedImport:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _to_int(v: Any) -> Optional[int]:
    if v is None:
        return None
    s = str(v).strip()
    if not s:
        return None
    try:
        f = float(s)
    except ValueError:
        return None
    if f != f or not f.is_integer():  # NaN / fractional
        return None
    return int(f)


def read_sheet(content: bytes, filename: str | None = None) -> pd.DataFrame:
    """CSV by default; .xlsx/.xls go through openpyxl. Every cell is read as text."""
    name = (filename or "").lower()
    if name.endswith((".xlsx", ".xlsm", ".xls")):
        df = pd.read_excel(io.BytesIO(content), engine="openpyxl", dtype=str)
    else:
        df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False, encoding="utf-8-sig")
    df = df.fillna("")
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df


def rows_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """JSON rows shaped like the sheet, so both inputs share one parser."""
    df = pd.DataFrame(list(rows)).astype(object).fillna("")
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df


def parse_shipment_rows(df: pd.DataFrame) -> ParsedImport:
    out = ParsedImport()
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        out.errors.append(f"missing column(s): {', '.join(missing)}")
        return out
    if df.empty:
        out.errors.append("no data rows")
        return out

    for idx, rec in enumerate(df.to_dict(orient="records")):
        line_no = idx + 2  # header is line 1
        row = {k: str(rec.get(k, "") or "").strip() for k in REQUIRED_COLUMNS + OPTIONAL_COLUMNS}
        blank = [k for k in REQUIRED_COLUMNS if not row[k]]
        if blank:
            out.errors.append(f"line {line_no}: required column(s) empty: {', '.join(blank)}")
            continue
        if row["line_item_id"] and _to_int(row["line_item_id"]) is None:
            out.errors.append(f"line {line_no}: line_item_id must be an integer")
            continue
        if row["quantity"] and (_to_int(row["quantity"]) or 0) <= 0:
            out.errors.append(f"line {line_no}: quantity must be a positive integer")
            continue
        row["row_number"] = line_no
        out.rows.append(row)
    return out


def build_row_job(row: Dict[str, Any], vendor_id: int) -> Tuple[Dict[str, Any], str]:
    """Job payload plus the dedupe key that makes re-uploading the same sheet a no-op."""
    line_item_id = _to_int(row.get("line_item_id"))
    payload = {
        "vendor_id": vendor_id,
        "tracking_number": row["tracking_number"],
        "carrier": row.get("carrier") or None,
        "order_reference": row["order_number"],
        "texts": [t for t in (row.get("note"),) if t],
        "line_item_id": line_item_id,
        "sku": row.get("sku") or None,
        "quantity": _to_int(row.get("quantity")),
        "row_number": row.get("row_number"),
    }
    target = line_item_id if line_item_id is not None else (row.get("sku") or "*")
    key = f"shipment:{vendor_id}:{row['tracking_number']}:{row['order_number']}:{target}"
    return payload, key[:191]


class ShipmentImportProcessor:
    def __init__(self, orders: OrderStore) -> None:
        self.orders = orders

    async def process(self, job: JobRecord) -> None:
        p = job.payload or {}
        vendor_id = _to_int(p.get("vendor_id"))
        if vendor_id is None:
            raise ShipmentImportError("vendor context is missing for this shipment row")
        tracking = str(p.get("tracking_number") or "").strip()
        if not tracking:
            raise ShipmentImportError("tracking number is required")

        raw_ref = p.get("order_reference")
        texts = [t for t in (p.get("texts") or []) if isinstance(t, str)]
        reference = extract_os_number_from_parts([raw_ref, *texts])

        order = await self.orders.find_order_by_reference(reference) if reference else None
        if order is None and raw_ref:
            order = await self.orders.find_order_by_reference(str(raw_ref))
        if order is None:
            raise ShipmentImportError(f"no order matches reference {reference or raw_ref!r}")

        selections = await self._selections(order.id, vendor_id, p)
        result = await self.orders.apply_vendor_shipment(
            order_id=order.id,
            vendor_id=vendor_id,
            tracking_number=tracking,
            carrier=p.get("carrier"),
            selections=selections,
        )
        logger.info(
            "[IMPORT] job=%s row=%s order=%s shipment=%s lines=%s",
            job.id, p.get("row_number"), order.id, result.shipment_id, result.line_quantities,
        )

    async def _selections(self, order_id: int, vendor_id: int, p: Dict[str, Any]) -> List[ShipmentSelection]:
        quantity = _to_int(p.get("quantity"))
        line_item_id = _to_int(p.get("line_item_id"))
        if line_item_id is not None:
            return [ShipmentSelection(line_item_id=line_item_id, quantity=quantity)]

        lines = [li for li in await self.orders.list_line_items(order_id) if li.vendor_id == vendor_id]
        sku = (p.get("sku") or "").strip()
        if sku:
            lines = [li for li in lines if (li.sku or "") == sku]
        if not lines:
            raise ShipmentImportError("no shippable line items found for this vendor")
        # a quantity only makes sense against a single line
        per_line_qty = quantity if len(lines) == 1 else None
        return [ShipmentSelection(line_item_id=li.id, quantity=per_line_qty) for li in lines]
