"""Integration tests for the feature flag HTTP API."""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from feature_rollout.infrastructure.repositories import get_repositories

BASE = "/api/v1/features"


def _http(client):
    return AsyncClient(transport=ASGITransport(app=client.app), base_url="http://testserver")


async def _create_flag(http, name="checkout", **kwargs):
    body = {"name": name, "enabled": True, "rollout_percentage": 25}
    body.update(kwargs)
    resp = await http.post(BASE, json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _check(http, name, user_id, **headers):
    hdrs = {"X-User-Id": user_id}
    hdrs.update(headers)
    resp = await http.get(f"{BASE}/{name}/check", headers=hdrs)
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health_and_metrics(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        resp = await http.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

        resp = await http.get("/metrics")
        assert resp.status_code == 200
        assert "http_requests_total" in resp.text


@pytest.mark.asyncio
async def test_upsert_list_and_get(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        created = await _create_flag(http, description="new checkout")
        assert created["environment"] == "production"
        assert created["rollout_percentage"] == 25

        await _create_flag(http, environment="staging", rollout_percentage=90)

        resp = await http.get(BASE)
        assert resp.json()["total"] == 1
        resp = await http.get(BASE, params={"environment": "staging"})
        assert resp.json()["flags"][0]["rollout_percentage"] == 90

        resp = await http.get(f"{BASE}/checkout")
        assert resp.status_code == 200
        assert resp.json()["description"] == "new checkout"

        resp = await http.get(f"{BASE}/unknown")
        assert resp.status_code == 404


@pytest.mark.asyncio
async def test_check_percentage_rollout(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http)

        # user123 hashes to bucket 89, bob to bucket 20
        body = await _check(http, "checkout", "user123")
        assert body["enabled"] is False
        assert body["reason"] == "percentage_rollout_25"
        assert body["user_id"] == "user123"

        body = await _check(http, "checkout", "bob")
        assert body["enabled"] is True


@pytest.mark.asyncio
async def test_assignments_are_sticky(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http)
        assert (await _check(http, "checkout", "user123"))["enabled"] is False

        resp = await http.put(f"{BASE}/checkout/rollout", json={"percentage": 100})
        assert resp.status_code == 200
        assert resp.json()["rollout_percentage"] == 100

        # earlier decision stands; new users see the new percentage
        body = await _check(http, "checkout", "user123")
        assert body == {
            "feature": "checkout",
            "environment": "production",
            "enabled": False,
            "reason": "percentage_rollout_25",
            "user_id": "user123",
        }
        body = await _check(http, "checkout", "alice")
        assert body["enabled"] is True
        assert body["reason"] == "percentage_rollout_100"


@pytest.mark.asyncio
async def test_check_with_user_in_body(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http, environment="staging", rollout_percentage=100)

        resp = await http.post(
            f"{BASE}/checkout/check",
            json={"user": {"id": "carol", "role": "admin"}, "environment": "staging"},
        )
        assert resp.status_code == 200
        assert resp.json()["enabled"] is True
        assert resp.json()["environment"] == "staging"

        resp = await http.post(f"{BASE}/checkout/check", json={"user": {"id": ""}})
        assert resp.status_code == 422


@pytest.mark.asyncio
async def test_check_unknown_flag_denies(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        body = await _check(http, "nope", "bob")
        assert body["enabled"] is False
        assert body["reason"] == "not_found"


@pytest.mark.asyncio
async def test_check_requires_user(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http)
        resp = await http.get(f"{BASE}/checkout/check")
        assert resp.status_code == 400
        assert "X-User-Id" in resp.json()["detail"]

        resp = await http.get(
            f"{BASE}/checkout/check",
            headers={"X-User-Id": "bob", "X-User-Registration-Date": "yesterday"},
        )
        assert resp.status_code == 400


@pytest.mark.asyncio
async def test_rollout_percentage_validation(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http)
        resp = await http.put(f"{BASE}/checkout/rollout", json={"percentage": 150})
        assert resp.status_code == 422
        resp = await http.put(f"{BASE}/unknown/rollout", json={"percentage": 10})
        assert resp.status_code == 404


@pytest.mark.asyncio
async def test_toggle_records_history(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http, rollout_percentage=100)
        resp = await http.put(
            f"{BASE}/checkout/toggle", json={"enabled": False}, headers={"X-User-Id": "ops"}
        )
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False

        body = await _check(http, "checkout", "bob")
        assert body["enabled"] is False
        assert body["reason"] == "disabled"

    async with AsyncSessionLocal() as session:
        flag = await get_repositories(session)["feature_flags"].get_by_name(
            "checkout", "production"
        )
        assert flag.enabled is False


@pytest.mark.asyncio
async def test_kill_switch_disables_everything(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http, rollout_percentage=100)
        await _create_flag(http, name="search", environment="staging", rollout_percentage=100)
        # warm the flag cache
        assert (await _check(http, "checkout", "bob"))["enabled"] is True

        resp = await http.post(f"{BASE}/kill-switch", json={"changed_by": "oncall"})
        assert resp.status_code == 200
        assert resp.json() == {"disabled_flags": 2, "cancelled_rollouts": 0}

        body = await _check(http, "checkout", "bob")
        assert body["enabled"] is False
        assert body["reason"] == "disabled"
        # search only exists in staging
        body = await _check(http, "search", "dave")
        assert body["reason"] == "not_found"

        resp = await http.get(f"{BASE}/search", params={"environment": "staging"})
        assert resp.json()["enabled"] is False

        # flags come back one at a time
        resp = await http.put(f"{BASE}/checkout/toggle", json={"enabled": True})
        assert resp.status_code == 200
        assert (await _check(http, "checkout", "bob"))["enabled"] is True


@pytest.mark.asyncio
async def test_segment_targeting(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http, name="beta-ui", rollout_strategy="segment")

        resp = await http.post(
            f"{BASE}/segments",
            json={"name": "premium", "criteria": {"role": ["premium", "enterprise"]}},
        )
        assert resp.status_code == 200
        segment = resp.json()
        assert segment["criteria"]["role"] == ["premium", "enterprise"]

        resp = await http.post(f"{BASE}/segments", json={"name": "premium"})
        assert resp.status_code == 409

        resp = await http.post(
            f"{BASE}/segments",
            json={"name": "late", "criteria": {"registration_date_after": "someday"}},
        )
        assert resp.status_code == 400

        resp = await http.post(f"{BASE}/beta-ui/targeting", json={"segment_id": 999})
        assert resp.status_code == 404

        resp = await http.post(f"{BASE}/beta-ui/targeting", json={"segment_id": segment["id"]})
        assert resp.status_code == 200
        assert resp.json()["rollout_percentage"] == 100

        resp = await http.get(f"{BASE}/segments")
        assert [s["name"] for s in resp.json()] == ["premium"]

        allowed = await _check(http, "beta-ui", "alice", **{"X-User-Role": "premium"})
        denied = await _check(http, "beta-ui", "bob", **{"X-User-Role": "user"})
        assert allowed["enabled"] is True
        assert allowed["reason"] == "segment_based"
        assert denied["enabled"] is False


@pytest.mark.asyncio
async def test_usage_and_analytics(test_app):
    client, engine, AsyncSessionLocal = test_app

    async with _http(client) as http:
        await _create_flag(http)
        await _check(http, "checkout", "bob")
        await _check(http, "checkout", "user123")
        await _check(http, "checkout", "bob")

        resp = await http.post(
            f"{BASE}/checkout/usage", json={"data": {"clicks": 3}}, headers={"X-User-Id": "bob"}
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "recorded"}

        resp = await http.post(f"{BASE}/checkout/usage", json={})
        assert resp.status_code == 400

        resp = await http.get(f"{BASE}/checkout/analytics", params={"days": 7})
        assert resp.status_code == 200
        summary = resp.json()
        assert summary["total_users"] == 2
        assert summary["enabled_count"] == 2
        assert summary["disabled_count"] == 1
        assert summary["usage_count"] == 1
        assert len(summary["daily_breakdown"]) == 1

        resp = await http.get(f"{BASE}/checkout/analytics", params={"days": 0})
        assert resp.status_code == 422
        resp = await http.get(f"{BASE}/unknown/analytics")
        assert resp.status_code == 404


async def _blocked_sleep(seconds):
    await asyncio.Event().wait()


@pytest.fixture
async def rollout_app(database_url, cache):
    from tests.fixtures.app_factory import create_test_app

    client, eng, AsyncSessionLocal = await create_test_app(
        database_url=database_url, cache=cache, sleep=_blocked_sleep
    )
    try:
        yield client
    finally:
        await client.scheduler.shutdown()
        client.reset()
        await eng.dispose()


async def _wait_for_percentage(http, name, percentage, attempts=200):
    for _ in range(attempts):
        resp = await http.get(f"{BASE}/{name}/rollouts")
        if resp.json()["current_percentage"] == percentage:
            return resp.json()
        await asyncio.sleep(0.01)
    raise AssertionError(f"rollout of {name} never reached {percentage}%")


@pytest.mark.asyncio
async def test_staged_rollout_lifecycle(rollout_app):
    stages = [
        {"percentage": 10, "duration": 3600},
        {"percentage": 50, "duration": 3600},
        {"percentage": 100, "duration": 0},
    ]

    async with _http(rollout_app) as http:
        await _create_flag(http, rollout_percentage=0)

        resp = await http.post(f"{BASE}/checkout/rollouts", json={"stages": stages})
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "running"
        assert resp.json()["stages"] == 3

        state = await _wait_for_percentage(http, "checkout", 10)
        assert state["current_stage"] == 0
        assert state["next_transition_at"] is not None

        resp = await http.get(f"{BASE}/checkout")
        assert resp.json()["rollout_percentage"] == 10

        resp = await http.post(f"{BASE}/checkout/rollouts", json={"stages": stages})
        assert resp.status_code == 409

        resp = await http.get(f"{BASE}/rollouts")
        assert [r["feature"] for r in resp.json()] == ["checkout"]

        resp = await http.delete(f"{BASE}/checkout/rollouts")
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        resp = await http.delete(f"{BASE}/checkout/rollouts")
        assert resp.status_code == 404

        resp = await http.get(f"{BASE}/checkout")
        assert resp.json()["rollout_percentage"] == 10


@pytest.mark.asyncio
async def test_staged_rollout_validation(rollout_app):
    async with _http(rollout_app) as http:
        resp = await http.post(
            f"{BASE}/unknown/rollouts", json={"stages": [{"percentage": 10, "duration": 1}]}
        )
        assert resp.status_code == 404

        await _create_flag(http)
        resp = await http.post(f"{BASE}/checkout/rollouts", json={"stages": []})
        assert resp.status_code == 422
        resp = await http.post(
            f"{BASE}/checkout/rollouts", json={"stages": [{"percentage": 120, "duration": 1}]}
        )
        assert resp.status_code == 422

        resp = await http.get(f"{BASE}/checkout/rollouts")
        assert resp.status_code == 404


@pytest.mark.asyncio
async def test_kill_switch_cancels_staged_rollouts(rollout_app):
    async with _http(rollout_app) as http:
        await _create_flag(http, rollout_percentage=0)
        resp = await http.post(
            f"{BASE}/checkout/rollouts",
            json={"stages": [{"percentage": 30, "duration": 60}, {"percentage": 100}]},
        )
        assert resp.status_code == 200
        await _wait_for_percentage(http, "checkout", 30)

        resp = await http.post(f"{BASE}/kill-switch")
        assert resp.json() == {"disabled_flags": 1, "cancelled_rollouts": 1}

        resp = await http.get(f"{BASE}/checkout/rollouts")
        assert resp.json()["status"] == "cancelled"
        assert (await _check(http, "checkout", "bob"))["enabled"] is False
