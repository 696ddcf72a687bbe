"""Tests for the marketplace FastAPI endpoints."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from modules.marketplace.main import app
from modules.marketplace.services import set_services
from shared.auth import issue_token
from shared.config import get_settings

JWT_SECRET = "marketplace-test-secret-0123456789abcdef"


@pytest_asyncio.fixture
async def client(monkeypatch, services):
    """Async client over the app, wired to the in-memory services."""
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    get_settings.cache_clear()
    set_services(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    set_services(None)
    get_settings.cache_clear()


def auth(uid: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(uid)}"}


TASK_BODY = {
    "type": "Repair",
    "title": "Replace a kitchen tap",
    "description": "The old tap leaks and needs replacing.",
    "budget": {"amount": 1200},
    "location": {"lat": 17.385, "lng": 78.4741},
    "skills_required": ["Plumbing"],
}

APPLICATION_TERMS = {
    "proposed_budget": {"amount": 1000},
    "proposed_schedule": {"estimated_hours": 2},
    "cover_letter": "Ten years of plumbing.",
}


async def _create_task(client, uid="poster", **overrides) -> dict:
    resp = await client.post("/api/v1/tasks", json={**TASK_BODY, **overrides}, headers=auth(uid))
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _apply(client, task_id: str, uid: str) -> dict:
    resp = await client.post(
        "/api/v1/applications",
        json={"task_id": task_id, **APPLICATION_TERMS},
        headers=auth(uid),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "store_backend": "memory"}


@pytest.mark.asyncio
async def test_missing_token(client):
    resp = await client.get("/api/v1/tasks")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_bad_token(client):
    resp = await client.get("/api/v1/tasks", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_expired_token(client):
    resp = await client.get(
        "/api/v1/tasks", headers={"Authorization": f"Bearer {issue_token('poster', -1)}"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_fetch_task(client):
    created = await _create_task(client)

    assert created["status"] == "open"
    assert created["type"] == "repair"
    assert created["skills_required"] == ["plumbing"]
    assert created["creator_uid"] == "poster"

    resp = await client.get(f"/api/v1/tasks/{created['id']}", headers=auth("tasker"))
    assert resp.status_code == 200
    assert resp.json()["view_count"] == 1


@pytest.mark.asyncio
async def test_create_requires_location(client):
    resp = await client.post(
        "/api/v1/tasks",
        json={k: v for k, v in TASK_BODY.items() if k != "location"},
        headers=auth("poster"),
    )
    assert resp.status_code == 422
    assert resp.json() == {
        "error": "validation_error",
        "detail": "Task location coordinates are required",
        "retryable": False,
    }


@pytest.mark.asyncio
async def test_list_mine(client):
    await _create_task(client, "poster")
    await _create_task(client, "someone-else")

    resp = await client.get("/api/v1/tasks", params={"mine": "creator"}, headers=auth("poster"))

    data = resp.json()
    assert resp.status_code == 200
    assert [t["creator_uid"] for t in data["tasks"]] == ["poster"]
    assert data["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_list_mine_as_assignee_and_either_side(client):
    taken = await _create_task(client, "someone-else")
    await _create_task(client, "someone-else")
    own = await _create_task(client, "tasker")
    resp = await client.post(f"/api/v1/tasks/{taken['id']}/accept", headers=auth("tasker"))
    assert resp.status_code == 200

    assigned = await client.get(
        "/api/v1/tasks", params={"mine": "assignee"}, headers=auth("tasker")
    )
    either = await client.get("/api/v1/tasks", params={"mine": "all"}, headers=auth("tasker"))

    assert [t["id"] for t in assigned.json()["tasks"]] == [taken["id"]]
    assert {t["id"] for t in either.json()["tasks"]} == {taken["id"], own["id"]}

    resp = await client.get("/api/v1/tasks", params={"mine": "true"}, headers=auth("tasker"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_by_budget_range_and_sort(client):
    for amount in (500, 1500, 3000):
        await _create_task(client, budget={"amount": amount})

    resp = await client.get(
        "/api/v1/tasks",
        params={"min_budget": 1000, "max_budget": 3000, "sort_by": "budget_desc"},
        headers=auth("tasker"),
    )
    assert [t["budget"]["amount"] for t in resp.json()["tasks"]] == [3000, 1500]

    resp = await client.get(
        "/api/v1/tasks", params={"sort_by": "budget_asc"}, headers=auth("tasker")
    )
    assert [t["budget"]["amount"] for t in resp.json()["tasks"]] == [500, 1500, 3000]

    resp = await client.get(
        "/api/v1/tasks",
        params={"min_budget": 2000, "max_budget": 1000},
        headers=auth("tasker"),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_unknown_task_is_404(client):
    resp = await client.get("/api/v1/tasks/nope", headers=auth("poster"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_direct_accept_start_complete(client):
    task = await _create_task(client)
    task_id = task["id"]

    resp = await client.post(f"/api/v1/tasks/{task_id}/accept", headers=auth("tasker"))
    assert resp.status_code == 200
    assert resp.json()["assignee_uid"] == "tasker"

    resp = await client.post(f"/api/v1/tasks/{task_id}/start", headers=auth("tasker"))
    assert resp.json()["status"] == "in_progress"

    resp = await client.post(
        f"/api/v1/tasks/{task_id}/complete",
        json={"proofs": ["https://cdn.example/p1.jpg"], "comment": "Done"},
        headers=auth("tasker"),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["completion"]["proofs"] == ["https://cdn.example/p1.jpg"]


@pytest.mark.asyncio
async def test_error_mapping(client):
    task = await _create_task(client)
    task_id = task["id"]

    resp = await client.post(f"/api/v1/tasks/{task_id}/accept", headers=auth("poster"))
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"

    resp = await client.post(
        f"/api/v1/tasks/{task_id}/status", json={"status": "in_progress"}, headers=auth("poster")
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_transition"

    resp = await client.delete(f"/api/v1/tasks/{task_id}", headers=auth("poster"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = await client.post(f"/api/v1/tasks/{task_id}/accept", headers=auth("tasker"))
    assert resp.status_code == 409
    assert resp.json() == {
        "error": "invalid_state",
        "detail": "Task is not available for assignment",
        "retryable": False,
    }


@pytest.mark.asyncio
async def test_update_task(client):
    task = await _create_task(client)

    resp = await client.put(
        f"/api/v1/tasks/{task['id']}",
        json={"title": "Replace two taps", "budget": {"amount": 2000}},
        headers=auth("poster"),
    )

    assert resp.status_code == 200
    assert resp.json()["title"] == "Replace two taps"
    assert resp.json()["budget"]["amount"] == 2000


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_application_flow(client):
    task = await _create_task(client)
    alice = await _apply(client, task["id"], "alice")
    bob = await _apply(client, task["id"], "bob")

    resp = await client.post(
        "/api/v1/applications",
        json={"task_id": task["id"], **APPLICATION_TERMS},
        headers=auth("alice"),
    )
    assert resp.status_code == 409
    assert resp.json()["retryable"] is True

    resp = await client.put(
        f"/api/v1/applications/{alice['id']}",
        json={"decision": "accept", "message": "See you at 10"},
        headers=auth("poster"),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    assert resp.json()["messages"][0]["text"] == "See you at 10"

    resp = await client.get(f"/api/v1/applications/{bob['id']}", headers=auth("bob"))
    assert resp.json()["status"] == "rejected"

    resp = await client.get(f"/api/v1/tasks/{task['id']}", headers=auth("poster"))
    assert resp.json()["status"] == "assigned"
    assert resp.json()["assignee_uid"] == "alice"

    resp = await client.get(
        "/api/v1/applications", params={"task_id": task["id"]}, headers=auth("poster")
    )
    assert resp.json()["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_withdraw_and_message(client):
    task = await _create_task(client)
    application = await _apply(client, task["id"], "alice")

    resp = await client.post(
        f"/api/v1/applications/{application['id']}/messages",
        json={"message": "x" * 1001},
        headers=auth("alice"),
    )
    assert resp.status_code == 422

    resp = await client.delete(f"/api/v1/applications/{application['id']}", headers=auth("alice"))
    assert resp.json()["status"] == "withdrawn"

    resp = await client.delete(f"/api/v1/applications/{application['id']}", headers=auth("alice"))
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_state"


@pytest.mark.asyncio
async def test_list_applications_needs_filter(client):
    resp = await client.get("/api/v1/applications", headers=auth("alice"))
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Profiles and matches
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_profile_and_matching(client):
    resp = await client.put(
        "/api/v1/profiles/me",
        json={
            "name": "Ravi",
            "roles": ["tasker"],
            "skills": ["Plumbing", "Tiling"],
            "location": {"lat": 17.385, "lng": 78.4741},
        },
        headers=auth("ravi"),
    )
    assert resp.status_code == 200
    assert resp.json()["skills"] == ["plumbing", "tiling"]

    task = await _create_task(client)

    resp = await client.get(
        f"/api/v1/matches/tasks/{task['id']}/candidates", headers=auth("poster")
    )
    assert resp.status_code == 200
    candidates = resp.json()
    assert [c["uid"] for c in candidates] == ["ravi"]
    assert candidates[0]["score"] == pytest.approx(60.0)

    resp = await client.get("/api/v1/matches/recommended-tasks", headers=auth("ravi"))
    assert [m["task"]["id"] for m in resp.json()] == [task["id"]]

    resp = await client.get(
        "/api/v1/matches/recommended-tasks", params={"lat": 17.0}, headers=auth("ravi")
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_profile_update_keeps_location(client):
    await client.put(
        "/api/v1/profiles/me",
        json={"name": "Ravi", "location": {"lat": 17.385, "lng": 78.4741}},
        headers=auth("ravi"),
    )
    await client.put("/api/v1/profiles/me", json={"skills": ["painting"]}, headers=auth("ravi"))

    resp = await client.get("/api/v1/profiles/ravi", headers=auth("someone"))

    assert resp.json()["location"] == {"lat": 17.385, "lng": 78.4741}
    assert resp.json()["skills"] == ["painting"]


@pytest.mark.asyncio
async def test_services_not_ready(client):
    set_services(None)
    resp = await client.get("/api/v1/tasks", headers=auth("poster"))
    assert resp.status_code == 503
