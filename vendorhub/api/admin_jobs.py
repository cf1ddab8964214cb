#=======================================================================================
# vendorhub/api/admin_jobs.py
# Admin endpoints for the job queue. Protected via Basic Auth in main_app.py and
# mounted under /admin, so final paths are /admin/jobs* and /admin/shipment-imports.
#=======================================================================================

import logging
import zipfile
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from vendorhub.models.audit_log import add_audit_entry, get_audit_log
from vendorhub.services import Services, get_services
from vendorhub.shipments.import_rows import build_row_job, parse_shipment_rows, read_sheet, rows_frame
from vendorhub.workers.types import JobKind, JobStatus

logger = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["Admin Jobs"])


class ShipmentImportRequest(BaseModel):
    vendor_id: int
    rows: List[Dict[str, Any]]


# ---------------------------
# Job inspection
# ---------------------------

@router.get("/jobs")
async def list_jobs(
    status: str | None = None,
    kind: str | None = None,
    limit: int = 50,
    services: Services = Depends(get_services),
):
    try:
        status_v = JobStatus(status) if status else None
        kind_v = JobKind(kind) if kind else None
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    jobs = await services.jobs.list_jobs(kind=kind_v, status=status_v, limit=limit)
    return {"ok": True, "jobs": [j.to_dict() for j in jobs]}


@router.get("/jobs/audit")
async def job_audit(limit: int = 200):
    return {"ok": True, "entries": get_audit_log(max(1, min(limit, 1000)))}


@router.get("/jobs/{job_id}")
async def get_job(job_id: int, services: Services = Depends(get_services)):
    job = await services.jobs.get_job(job_id)
    if job is None:
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return {"ok": True, "job": job.to_dict()}


# ---------------------------
# Shipment imports
# ---------------------------

async def _read_import(request: Request) -> tuple[int | None, Any, str | None]:
    """(vendor_id, DataFrame, error) from either a multipart upload or a JSON body."""
    ctype = (request.headers.get("content-type") or "").lower()
    if ctype.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        raw_vendor = form.get("vendor_id")
        if upload is None or not hasattr(upload, "read"):
            return None, None, "file is required"
        try:
            vendor_id = int(str(raw_vendor))
        except (TypeError, ValueError):
            return None, None, "vendor_id must be an integer"
        content = await upload.read()
        try:
            return vendor_id, read_sheet(content, upload.filename), None
        except (ValueError, zipfile.BadZipFile) as e:
            logger.warning("[IMPORT] unreadable upload %s: %s", upload.filename, e)
            return vendor_id, None, "unreadable file"

    try:
        body = ShipmentImportRequest.model_validate(await request.json())
    except ValidationError as e:
        return None, None, e.errors()[0].get("msg", "invalid request body")
    except ValueError:
        return None, None, "invalid request body"
    return body.vendor_id, rows_frame(body.rows), None


@router.post("/shipment-imports")
async def create_shipment_import(request: Request, services: Services = Depends(get_services)):
    """
    Split an import into one shipment_import_row job per valid row.
    Rows already enqueued (same vendor, tracking, order and line) are not duplicated.
    """
    vendor_id, df, error = await _read_import(request)
    if error:
        return JSONResponse(status_code=400, content={"error": error})
    if await services.orders.get_vendor(vendor_id) is None:
        return JSONResponse(status_code=404, content={"error": "unknown vendor"})

    parsed = parse_shipment_rows(df)
    job_ids: List[int] = []
    for row in parsed.rows:
        payload, dedupe_key = build_row_job(row, vendor_id)
        job = await services.jobs.create_job(JobKind.SHIPMENT_IMPORT_ROW, payload, dedupe_key=dedupe_key)
        job_ids.append(job.id)

    logger.info("[IMPORT] vendor=%s rows=%d jobs=%d errors=%d", vendor_id, len(parsed.rows), len(job_ids), len(parsed.errors))
    add_audit_entry("Shipment Import", "admin", f"vendor={vendor_id} rows={len(parsed.rows)} errors={len(parsed.errors)}")
    status_code = 202 if job_ids else 400
    return JSONResponse(
        status_code=status_code,
        content={"ok": bool(job_ids), "job_ids": job_ids, "errors": parsed.errors},
    )
