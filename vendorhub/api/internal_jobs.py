# vendorhub/api/internal_jobs.py
"""
Job triggers for cron / internal callers. Each request runs processing passes
inline and answers with the pass summary.
"""
import logging
import math

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from vendorhub.api.security import is_authorized_trigger
from vendorhub.config import clamp
from vendorhub.services import Services, get_services
from vendorhub.workers.types import JobKind

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/internal", tags=["Internal Jobs"])

MAX_SHIPMENT_PASSES = 5


def parse_limit(value: str | None, default: int, lo: int, hi: int) -> int:
    """Query-string limit: missing or non-numeric falls back to ``default``, then clamp."""
    if value is None or not str(value).strip():
        return clamp(default, lo, hi)
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return clamp(default, lo, hi)
    if not math.isfinite(parsed):
        return clamp(default, lo, hi)
    return clamp(int(parsed), lo, hi)


def _unauthorized() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


@router.api_route("/webhook-jobs/process", methods=["GET", "POST"])
async def process_webhook_jobs(request: Request, services: Services = Depends(get_services)):
    if not is_authorized_trigger(request, services):
        return _unauthorized()

    s = services.settings
    limit = parse_limit(request.query_params.get("limit"), s.WEBHOOK_JOB_LIMIT, 1, s.WEBHOOK_JOB_LIMIT_MAX)
    try:
        summary = await services.runner.run(JobKind.WEBHOOK, limit=limit)
    except Exception:
        logger.exception("[WORKER] webhook job pass failed")
        return JSONResponse(status_code=500, content={"error": "failed"})
    return {"ok": True, "summary": summary.to_dict()}


@router.api_route("/shipment-jobs/process", methods=["GET", "POST"])
async def process_shipment_jobs(request: Request, services: Services = Depends(get_services)):
    if not is_authorized_trigger(request, services, allow_cron=True):
        return _unauthorized()

    s = services.settings
    passes = parse_limit(request.query_params.get("jobs"), s.SHIPMENT_JOB_LIMIT, 1, MAX_SHIPMENT_PASSES)
    items = parse_limit(request.query_params.get("items"), s.SHIPMENT_JOB_ITEM_LIMIT, 1, s.SHIPMENT_JOB_ITEM_LIMIT_MAX)
    try:
        summary = await services.runner.run_passes(JobKind.SHIPMENT_IMPORT_ROW, passes, limit=items)
    except Exception:
        logger.exception("[WORKER] shipment job pass failed")
        return JSONResponse(status_code=500, content={"error": "failed"})
    return {"ok": True, "summary": summary.to_dict()}


@router.post("/jobs/release-stale")
async def release_stale_jobs(request: Request, services: Services = Depends(get_services)):
    if not is_authorized_trigger(request, services, allow_cron=True):
        return _unauthorized()

    s = services.settings
    older_than = parse_limit(request.query_params.get("older_than"), s.JOB_LOCK_STALE_SECONDS, 30, 3600)
    try:
        released = await services.jobs.release_stale_claims(older_than)
    except Exception:
        logger.exception("[WORKER] stale claim release failed")
        return JSONResponse(status_code=500, content={"error": "failed"})
    if released:
        logger.warning("[WORKER] released %d stale claim(s) older than %ss", released, older_than)
    return {"ok": True, "released": released}
