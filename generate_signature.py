import os, sys

from vendorhub.webhooks.verification import compute_shopify_hmac

# Usage: SHOPIFY_WEBHOOK_SECRET=... python generate_signature.py payload.json
# Prints the X-Shopify-Hmac-Sha256 value for a local test delivery.
secret = os.getenv("SHOPIFY_WEBHOOK_SECRET", "")
if not secret:
    sys.exit("SHOPIFY_WEBHOOK_SECRET is not set")

if len(sys.argv) > 1:
    with open(sys.argv[1], "rb") as fh:
        body = fh.read()
else:
    body = b'{"id":123,"name":"#1001","note":"OS-1001","line_items":[]}'

print(compute_shopify_hmac(body, secret))
