# vendorhub/webhooks/verification.py
import base64
import hashlib
import hmac
import logging

logger = logging.getLogger("uvicorn.error")

HMAC_HEADER = "X-Shopify-Hmac-Sha256"


def compute_shopify_hmac(raw_body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the exact request bytes, as Shopify signs them."""
    mac = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode("utf-8")


def verify_shopify_hmac(raw_body: bytes, header_value: str | None, secret: str | None) -> bool:
    """
    True only when ``header_value`` is the signature of ``raw_body`` under
    ``secret``. A missing secret or header is a failure, never a pass.
    """
    if not secret:
        logger.warning("[SHOPIFY-HOOK] SHOPIFY_WEBHOOK_SECRET is not configured; rejecting webhook")
        return False
    if not header_value:
        return False
    try:
        expected = compute_shopify_hmac(raw_body, secret)
        return hmac.compare_digest(header_value.strip().encode("utf-8"), expected.encode("utf-8"))
    except Exception as e:
        logger.warning("[SHOPIFY-HOOK] signature check error: %s", e)
        return False
