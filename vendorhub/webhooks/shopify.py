# vendorhub/webhooks/shopify.py
import json, logging
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from vendorhub.services import Services, get_services
from vendorhub.shopify.shop_domains import normalize_shop_domain
from vendorhub.shopify.webhook_processor import SUPPORTED_TOPICS
from vendorhub.webhooks.archive import archive_ingress
from vendorhub.webhooks.verification import HMAC_HEADER, verify_shopify_hmac
from vendorhub.workers.types import JobKind


logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/webhooks/shopify", tags=["Shopify Webhooks"])


def _redact(headers: dict[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        out[k] = "<redacted>" if k.lower() == HMAC_HEADER.lower() else v
    return out


def _get_hdr(headers, key: str) -> str | None:
    v = headers.get(key)
    if v is None:
        v = headers.get(key.lower())
    return v.strip() if isinstance(v, str) else v


@router.post("")
@router.post("/")
async def shopify_webhook(request: Request, services: Services = Depends(get_services)) -> Response:
    settings = services.settings

    # 1) Read body ONCE, as bytes; the signature covers these exact bytes
    body = await request.body()

    shop_domain = normalize_shop_domain(_get_hdr(request.headers, "X-Shopify-Shop-Domain"))
    topic = (_get_hdr(request.headers, "X-Shopify-Topic") or "").lower() or None
    api_version = _get_hdr(request.headers, "X-Shopify-API-Version")
    webhook_id = _get_hdr(request.headers, "X-Shopify-Webhook-Id") or None

    if settings.SHOPIFY_WEBHOOK_DEBUG:
        hdrs = {k: v for k, v in request.headers.items()}
        logger.info("[SHOPIFY-HOOK][DEBUG] incoming headers=%s first_256_bytes=%r", _redact(hdrs), body[:256])

    if settings.WEBHOOK_ARCHIVE_DIR:
        try:
            archive_ingress(
                settings.WEBHOOK_ARCHIVE_DIR, dict(request.headers.items()), body,
                webhook_id=webhook_id, topic=topic, shop_domain=shop_domain,
            )
        except OSError as e:
            # best-effort
            logger.warning("[SHOPIFY-HOOK] archive write failed: %s", e)

    # 2) Verify HMAC before trusting any header or byte of the payload
    if not verify_shopify_hmac(body, _get_hdr(request.headers, HMAC_HEADER), settings.SHOPIFY_WEBHOOK_SECRET):
        logger.warning("[SHOPIFY-HOOK] signature mismatch shop=%s topic=%s; returning 401", shop_domain, topic)
        return JSONResponse(status_code=401, content={"error": "invalid_signature"})

    if not shop_domain:
        return JSONResponse(status_code=400, content={"error": "missing_shop_domain"})
    if api_version and api_version != settings.SHOPIFY_API_VERSION:
        logger.warning(
            "[SHOPIFY-HOOK] unexpected API version shop=%s received=%s expected=%s",
            shop_domain, api_version, settings.SHOPIFY_API_VERSION,
        )
        return JSONResponse(status_code=400, content={"error": "unsupported_api_version"})
    if not topic:
        return JSONResponse(status_code=400, content={"error": "missing_topic"})

    ctx = {"shop": shop_domain, "topic": topic, "webhook_id": webhook_id}
    if not webhook_id:
        logger.warning("[SHOPIFY-HOOK] delivery without webhook id %s", ctx)

    if topic not in SUPPORTED_TOPICS:
        logger.warning("[SHOPIFY-HOOK] unsupported topic accepted without enqueue %s", ctx)
        return Response(status_code=202)

    # 3) Parse JSON only after the bytes were verified
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("[SHOPIFY-HOOK] invalid JSON payload %s: %s", ctx, e)
        return JSONResponse(status_code=400, content={"error": "invalid_json"})

    # 4) Enqueue and ACK fast; the heavy lifting happens in the job runner
    try:
        job = await services.jobs.create_job(
            JobKind.WEBHOOK,
            {
                "shop_domain": shop_domain,
                "topic": topic,
                "api_version": api_version,
                "webhook_id": webhook_id,
                "body": payload,
            },
            dedupe_key=f"shopify:{webhook_id}" if webhook_id else None,
            shop_domain=shop_domain,
            topic=topic,
        )
    except Exception:
        logger.exception("[SHOPIFY-HOOK] failed to enqueue webhook %s", ctx)
        return JSONResponse(status_code=500, content={"error": "failed"})

    logger.info("[SHOPIFY-HOOK] enqueued job=%s %s", job.id, ctx)
    return Response(status_code=204)
