import pytest
from fastapi.testclient import TestClient

from vendorhub.api.internal_jobs import parse_limit
from vendorhub.main_app import create_app
from vendorhub.workers.types import JobKind, RunSummary

from conftest import WORKER_SECRET

AUTH = {"Authorization": f"Bearer {WORKER_SECRET}"}


class SpyRunner:
    def __init__(self):
        self.calls = []

    async def run(self, kind, *, limit=None, max_attempts=None):
        self.calls.append(("run", kind, limit))
        return RunSummary(claimed=0)

    async def run_passes(self, kind, passes, *, limit=None):
        self.calls.append(("run_passes", kind, passes, limit))
        return RunSummary(claimed=2, succeeded=1, failed=1)


@pytest.fixture
def spy(client):
    runner = SpyRunner()
    client.app.state.services.runner = runner
    return runner


@pytest.mark.parametrize("raw,expected", [
    (None, 5), ("", 5), ("abc", 5), ("nan", 5), ("inf", 5), ("0", 1), ("-4", 1), ("7", 7), ("7.9", 7), ("500", 50),
])
def test_parse_limit(raw, expected):
    assert parse_limit(raw, 5, 1, 50) == expected


def test_webhook_trigger_requires_bearer(client, spy):
    assert client.post("/api/internal/webhook-jobs/process").status_code == 401
    assert client.post("/api/internal/webhook-jobs/process", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.post("/api/internal/webhook-jobs/process", headers={"Authorization": WORKER_SECRET}).status_code == 401
    assert spy.calls == []


@pytest.mark.parametrize("method", ["get", "post"])
def test_webhook_trigger_runs_one_pass(client, spy, method):
    response = getattr(client, method)("/api/internal/webhook-jobs/process?limit=500", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "summary": {"claimed": 0, "succeeded": 0, "failed": 0}}
    assert spy.calls == [("run", JobKind.WEBHOOK, 50)]


def test_webhook_trigger_default_limit(client, spy):
    client.post("/api/internal/webhook-jobs/process", headers=AUTH)
    assert spy.calls == [("run", JobKind.WEBHOOK, 5)]


def test_shipment_trigger_clamps_passes_and_items(client, spy):
    response = client.get("/api/internal/shipment-jobs/process?jobs=9&items=1000", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["summary"] == {"claimed": 2, "succeeded": 1, "failed": 1}
    assert spy.calls == [("run_passes", JobKind.SHIPMENT_IMPORT_ROW, 5, 100)]


def test_shipment_trigger_defaults(client, spy):
    client.post("/api/internal/shipment-jobs/process", headers=AUTH)
    assert spy.calls == [("run_passes", JobKind.SHIPMENT_IMPORT_ROW, 1, 50)]


def test_store_failure_returns_500(client):
    class Down:
        async def run(self, *a, **kw):
            raise RuntimeError("db down")

    client.app.state.services.runner = Down()
    response = client.post("/api/internal/webhook-jobs/process", headers=AUTH)
    assert response.status_code == 500
    assert response.json() == {"error": "failed"}


def test_cron_secret_accepted_for_shipments_only(settings):
    settings.CRON_SECRET = "cron-token"
    with TestClient(create_app(settings)) as c:
        c.app.state.services.runner = SpyRunner()
        cron = {"Authorization": "Bearer cron-token"}
        assert c.post("/api/internal/shipment-jobs/process", headers=cron).status_code == 200
        assert c.post("/api/internal/webhook-jobs/process", headers=cron).status_code == 401


def test_no_secret_outside_production_is_allowed(settings):
    settings.JOB_WORKER_SECRET = ""
    with TestClient(create_app(settings)) as c:
        c.app.state.services.runner = SpyRunner()
        assert c.post("/api/internal/webhook-jobs/process").status_code == 200


def test_no_secret_in_production_is_rejected(settings):
    settings.JOB_WORKER_SECRET = ""
    app = create_app(settings)
    # startup validation would refuse production without secrets; flip after boot
    with TestClient(app) as c:
        c.app.state.services.runner = SpyRunner()
        settings.APP_ENV = "production"
        assert c.post("/api/internal/webhook-jobs/process").status_code == 401
        assert c.post("/api/internal/shipment-jobs/process").status_code == 401


def test_release_stale_endpoint(client):
    response = client.post("/api/internal/jobs/release-stale", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "released": 0}
