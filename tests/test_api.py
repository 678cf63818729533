import httpx
import pytest
import pytest_asyncio

from fleetcheck.config import settings
from fleetcheck.database import get_db
from fleetcheck.enums import AlertType, IssueSeverity
from fleetcheck.main import create_app
from fleetcheck.services.alert_manager import alert_manager
from fleetcheck.services.batch_runner import batch_runner
from fleetcheck.services.evaluator import HealthEvaluator
from fleetcheck.services.notifier import notifier_service

AUTH = {"Authorization": "Bearer test-token"}


@pytest_asyncio.fixture
async def client(session_factory, probes, outbox, monkeypatch):
    monkeypatch.setattr(settings, "api_tokens", "test-token:alice, ops-key:ops")
    monkeypatch.setattr(notifier_service, "session_factory", session_factory)
    monkeypatch.setattr(notifier_service, "sender_factory", outbox)
    monkeypatch.setattr(alert_manager, "session_factory", session_factory)
    monkeypatch.setattr(batch_runner, "session_factory", session_factory)
    monkeypatch.setattr(batch_runner, "evaluator", HealthEvaluator(probes))

    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await batch_runner.shutdown()


async def _register(client, *names):
    ids = []
    for name in names:
        response = await client.post("/api/domains", json={"name": name}, headers=AUTH)
        assert response.status_code == 201
        ids.append(response.json()["id"])
    return ids


@pytest.mark.asyncio
async def test_health_endpoint(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_mutations_require_a_valid_token(client) -> None:
    assert (await client.post("/api/domains", json={"name": "a.example"})).status_code == 401
    response = await client.post("/api/domains", json={"name": "a.example"}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401

    response = await client.post("/api/domains", json={"name": "A.Example"}, headers={"X-API-Key": "ops-key"})
    assert response.status_code == 201
    assert response.json()["name"] == "a.example"

    duplicate = await client.post("/api/domains", json={"name": "a.example"}, headers=AUTH)
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_no_configured_tokens_rejects_everyone(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "api_tokens", "")

    response = await client.post("/api/domains", json={"name": "a.example"}, headers=AUTH)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_batch_without_targets_is_a_client_error(client) -> None:
    response = await client.post("/api/batches", json={"domain_ids": [42]}, headers=AUTH)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["success"] is False
    assert detail["errors"] == ["No domains found matching criteria"]


@pytest.mark.asyncio
async def test_batch_rejects_invalid_configuration(client) -> None:
    ids = await _register(client, "a.example")
    no_checks = {
        "website_uptime": False,
        "ssl_certificate": False,
        "dns_resolution": False,
        "response_time": False,
        "http_status": False,
    }

    response = await client.post("/api/batches", json={"domain_ids": ids, "check_types": no_checks}, headers=AUTH)
    assert response.status_code == 422

    response = await client.post(
        "/api/batches", json={"domain_ids": ids, "configuration": {"timeout": 10}}, headers=AUTH
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_batch_lifecycle(client, probes) -> None:
    ids = await _register(client, "a.example", "b.example")
    probes.script("b.example", http=probes.http_timeout())

    response = await client.post("/api/batches", json={"domain_ids": ids}, headers=AUTH)
    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert body["target_count"] == 2

    await batch_runner.wait(body["operation_id"])

    operation = (await client.get(f"/api/batches/{body['operation_id']}")).json()
    assert operation["status"] == "COMPLETED"
    assert operation["performed_by"] == "alice"
    assert operation["results"]["summary"]["critical_count"] == 1

    listing = (await client.get("/api/batches", params={"status": "COMPLETED"})).json()
    assert listing["total"] == 1

    cancel = await client.post(f"/api/batches/{body['operation_id']}/cancel", headers=AUTH)
    assert cancel.status_code == 400

    alerts = (await client.get("/api/alerts", params={"domain": "b.example"})).json()
    assert alerts["total"] == 1
    assert alerts["items"][0]["alert_type"] == "DOWNTIME"

    stats = (await client.get("/api/stats")).json()
    assert stats["total_checks"] == 2
    assert stats["status_distribution"]["healthy"] == 1
    assert stats["uptime_percentage"] == 50.0

    domains = (await client.get("/api/domains", params={"search": "b.ex"})).json()
    assert domains[0]["last_status"] == "CRITICAL"


@pytest.mark.asyncio
async def test_schedule_endpoint(client) -> None:
    ids = await _register(client, "a.example")

    response = await client.post(
        "/api/batches/schedule",
        json={"domain_ids": ids, "schedule": {"frequency": "WEEKLY", "day_of_week": 1, "time": "06:00"}},
        headers=AUTH,
    )

    assert response.status_code == 201
    assert response.json()["next_run"] is not None

    bad = await client.post(
        "/api/batches/schedule",
        json={"domain_ids": ids, "schedule": {"frequency": "DAILY", "time": "25:00"}},
        headers=AUTH,
    )
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_alert_transitions_over_http(client) -> None:
    alert = await alert_manager.raise_alert("b.example", AlertType.DOWNTIME, IssueSeverity.CRITICAL, "down")

    response = await client.post(f"/api/alerts/{alert.id}/acknowledge", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["status"] == "ACKNOWLEDGED"
    assert response.json()["acknowledged_by"] == "alice"

    again = await client.post(f"/api/alerts/{alert.id}/acknowledge", headers=AUTH)
    assert again.status_code == 400

    resolved = await client.post(f"/api/alerts/{alert.id}/resolve", json={"note": "fixed"}, headers=AUTH)
    assert resolved.json()["status"] == "RESOLVED"
    assert resolved.json()["resolution_note"] == "fixed"

    detail = (await client.get(f"/api/alerts/{alert.id}")).json()
    assert [entry["action"] for entry in detail["history"]] == ["DETECTED", "ACKNOWLEDGED", "RESOLVED"]

    assert (await client.get("/api/alerts/9999")).status_code == 404
    assert (await client.post("/api/alerts/9999/resolve", headers=AUTH)).status_code == 404


@pytest.mark.asyncio
async def test_rules_and_channels(client, outbox) -> None:
    rule = await client.post(
        "/api/alerts/rules",
        json={"name": "all downtime", "alert_type": "DOWNTIME", "channels": ["WEBHOOK"]},
        headers=AUTH,
    )
    assert rule.status_code == 201
    assert rule.json()["created_by"] == "alice"

    channel = await client.post(
        "/api/alerts/channels",
        json={"name": "ops hook", "type": "WEBHOOK", "configuration": {"url": "https://hooks.example/ops"}},
        headers=AUTH,
    )
    assert channel.status_code == 201

    tested = await client.post(f"/api/alerts/channels/{channel.json()['id']}/test", headers=AUTH)
    assert tested.json() == {"success": True, "error": None}

    await alert_manager.raise_alert("b.example", AlertType.DOWNTIME, IssueSeverity.CRITICAL, "down")
    assert [item["message"].event for item in outbox.sent] == ["test", "alert"]

    rules = (await client.get("/api/alerts/rules")).json()
    assert rules[0]["trigger_count"] == 1


@pytest.mark.asyncio
async def test_templates(client) -> None:
    response = await client.post(
        "/api/templates",
        json={"name": "quick", "check_types": {"dns_resolution": True}, "is_default": True},
        headers=AUTH,
    )
    assert response.status_code == 201
    assert (await client.post("/api/templates", json={"name": "quick"}, headers=AUTH)).status_code == 409

    templates = (await client.get("/api/templates")).json()
    assert [t["name"] for t in templates] == ["quick"]
