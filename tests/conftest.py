import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from vendorhub.config import Settings
from vendorhub.db import init_db
from vendorhub.main_app import create_app
from vendorhub.services import build_services
from vendorhub.webhooks.verification import compute_shopify_hmac

WEBHOOK_SECRET = "test-webhook-secret"
WORKER_SECRET = "test-worker-secret"
SHOP = "acme-jp.myshopify.com"


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'vendorhub.db'}")
    monkeypatch.setenv("SHOPIFY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("JOB_WORKER_SECRET", WORKER_SECRET)
    monkeypatch.setenv("CRON_SECRET", "")
    monkeypatch.setenv("JOB_RETRY_DELAY_SECONDS", "0")
    monkeypatch.setenv("WEBHOOK_ARCHIVE_DIR", "")
    monkeypatch.setenv("ADMIN_USER", "admin")
    monkeypatch.setenv("ADMIN_PASS", "secret")
    return Settings()


@pytest.fixture
def run(settings):
    """
    run(fn) -> fn(services) executed in one event loop against the test
    database, with tables created and the engine disposed afterwards.
    """
    def _run(fn, cfg=None):
        async def main():
            services = build_services(cfg or settings)
            await init_db(services.engine)
            try:
                return await fn(services)
            finally:
                await services.engine.dispose()
        return asyncio.run(main())
    return _run


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


def signed_post(client, body: dict | bytes, topic: str = "orders/create", *, shop: str = SHOP,
                webhook_id: str | None = "wh-1", secret: str = WEBHOOK_SECRET, headers: dict | None = None):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    hdrs = {
        "Content-Type": "application/json",
        "X-Shopify-Hmac-Sha256": compute_shopify_hmac(raw, secret),
        "X-Shopify-Shop-Domain": shop,
        "X-Shopify-Topic": topic,
        "X-Shopify-API-Version": "2025-10",
    }
    if webhook_id:
        hdrs["X-Shopify-Webhook-Id"] = webhook_id
    hdrs.update(headers or {})
    return client.post("/webhooks/shopify", content=raw, headers=hdrs)


def order_payload(order_id: int = 1001, **overrides) -> dict:
    body = {
        "id": order_id,
        "name": "#1001",
        "note": "発注番号 （ＯＳ－０１１１５４６３）",
        "tags": ["wholesale"],
        "customer": {"first_name": "Taro", "last_name": "Yamada"},
        "shipping_address": {"zip": "270-1432", "province": "Chiba", "city": "Shiroi", "address1": "1-1"},
        "line_items": [
            {"id": 11, "sku": "ACME-001", "title": "Tea cup", "quantity": 2, "vendor": "Acme"},
            {"id": 12, "sku": "ACME-002", "title": "Tea pot", "quantity": 1, "vendor": "Acme"},
        ],
        "fulfillments": [],
    }
    body.update(overrides)
    return body
