import asyncio

from vendorhub.db import init_db
from vendorhub.services import build_services
from vendorhub.workers.types import JobKind, JobStatus

from conftest import SHOP, order_payload, signed_post


def _jobs(settings):
    async def main():
        services = build_services(settings)
        await init_db(services.engine)
        try:
            return await services.jobs.list_jobs(kind=JobKind.WEBHOOK)
        finally:
            await services.engine.dispose()
    return asyncio.run(main())


def test_signed_webhook_is_enqueued(client, settings):
    response = signed_post(client, order_payload())
    assert response.status_code == 204

    jobs = _jobs(settings)
    assert len(jobs) == 1
    job = jobs[0]
    assert job.status == JobStatus.PENDING
    assert job.shop_domain == SHOP
    assert job.topic == "orders/create"
    assert job.payload["body"]["id"] == 1001
    assert job.payload["webhook_id"] == "wh-1"


def test_redelivery_is_enqueued_once(client, settings):
    assert signed_post(client, order_payload(), webhook_id="wh-dup").status_code == 204
    assert signed_post(client, order_payload(), webhook_id="wh-dup").status_code == 204
    assert len(_jobs(settings)) == 1


def test_bad_signature_is_rejected(client, settings):
    response = signed_post(client, order_payload(), secret="wrong-secret")
    assert response.status_code == 401
    assert response.json() == {"error": "invalid_signature"}
    assert _jobs(settings) == []


def test_unsigned_webhook_is_rejected(client):
    response = client.post("/webhooks/shopify", json=order_payload(), headers={"X-Shopify-Topic": "orders/create"})
    assert response.status_code == 401


def test_unsupported_topic_is_acknowledged_without_job(client, settings):
    response = signed_post(client, {"id": 1}, topic="products/update")
    assert response.status_code == 202
    assert _jobs(settings) == []


def test_missing_shop_domain(client):
    response = signed_post(client, order_payload(), shop="")
    assert response.status_code == 400


def test_unexpected_api_version(client):
    response = signed_post(client, order_payload(), headers={"X-Shopify-API-Version": "2023-01"})
    assert response.status_code == 400


def test_invalid_json_after_valid_signature(client):
    response = signed_post(client, b"{not json", topic="orders/updated")
    assert response.status_code == 400
    assert response.json() == {"error": "invalid_json"}


def test_store_failure_returns_500(client):
    async def broken(*args, **kwargs):
        raise RuntimeError("db down")

    client.app.state.services.jobs.create_job = broken
    response = signed_post(client, order_payload())
    assert response.status_code == 500
    assert response.json() == {"error": "failed"}


def test_archive_writes_redacted_copy(tmp_path, settings):
    from fastapi.testclient import TestClient
    from vendorhub.main_app import create_app

    settings.WEBHOOK_ARCHIVE_DIR = str(tmp_path / "inbox")
    with TestClient(create_app(settings)) as c:
        assert signed_post(c, order_payload()).status_code == 204

    files = list((tmp_path / "inbox").glob("*.json"))
    assert len(files) == 1
    text = files[0].read_text(encoding="utf-8")
    assert "<redacted>" in text
    assert "orders.create" in files[0].name
