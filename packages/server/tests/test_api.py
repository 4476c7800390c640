"""
HTTP tests: routing, actor resolution and the error envelope.
"""

from __future__ import annotations

import uuid

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlmodel import select

from taskflow.api.deps import get_context
from taskflow.core.config import get_settings
from taskflow.core.database import get_session
from taskflow.core.directory import SqlTeamDirectory
from taskflow.core.permissions import RolePermissionOracle
from taskflow.main import create_app
from taskflow.models.audit_log import AuditLog
from taskflow.models.notification import Notification
from taskflow.services.audit import SqlAuditSink
from taskflow.services.context import WorkflowContext
from taskflow.services.notifications import SqlNotificationSink

LEAD = {"X-Actor-Id": "lead-1"}
ALICE = {"X-Actor-Id": "alice"}
BOB = {"X-Actor-Id": "bob"}


@pytest.fixture
async def client(session_factory, seeded):
    app = create_app()

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _context(session=Depends(get_session)):
        return WorkflowContext(
            session=session,
            oracle=RolePermissionOracle(),
            audit_sink=SqlAuditSink(session_factory),
            notifier=SqlNotificationSink(session_factory),
            directory=SqlTeamDirectory(session),
            settings=get_settings(),
        )

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_context] = _context
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def create(client: AsyncClient, title: str = "Renew TLS certificates") -> dict:
    response = await client.post("/api/v1/tasks/", json={"title": title}, headers=LEAD)
    assert response.status_code == 201
    return response.json()


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Request-Id" in response.headers


@pytest.mark.asyncio
async def test_api_root(client: AsyncClient):
    response = await client.get("/api/v1/")
    assert response.status_code == 200
    assert response.json()["api"] == "v1"


# ---------------------------------------------------------------------------
# Actor resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_actor_header(client: AsyncClient):
    response = await client.post("/api/v1/tasks/", json={"title": "x"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_or_inactive_actor(client: AsyncClient):
    for actor_id in ("nobody", "gone"):
        response = await client.post(
            "/api/v1/tasks/", json={"title": "x"}, headers={"X-Actor-Id": actor_id}
        )
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_not_found_envelope(client: AsyncClient):
    response = await client.get(f"/api/v1/tasks/{uuid.uuid4()}", headers=LEAD)
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "NOT_FOUND"
    assert error["status"] == 404


@pytest.mark.asyncio
async def test_permission_denied_envelope(client: AsyncClient):
    response = await client.post("/api/v1/tasks/", json={"title": "mine"}, headers=ALICE)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_short_reason_and_state_conflict(client: AsyncClient):
    task = await create(client)
    base = f"/api/v1/tasks/{task['id']}/assignments"
    assignment = (await client.post(f"{base}/", json={"assigned_to": "alice"}, headers=LEAD)).json()

    short = await client.post(
        f"{base}/{assignment['id']}/reject", json={"reason": "nope"}, headers=ALICE
    )
    assert short.status_code == 422
    assert short.json()["error"]["code"] == "VALIDATION_FAILED"
    assert short.json()["error"]["details"]["min_length"] == 20

    first = await client.post(f"{base}/{assignment['id']}/accept", headers=ALICE)
    assert first.status_code == 200
    second = await client.post(f"{base}/{assignment['id']}/accept", headers=ALICE)
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "INVALID_STATE"


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_assignment_to_approval_over_http(client: AsyncClient, session_factory):
    task = await create(client)
    task_url = f"/api/v1/tasks/{task['id']}"

    assignment = (
        await client.post(f"{task_url}/assignments/", json={"assigned_to": "alice"}, headers=LEAD)
    ).json()
    assert assignment["status"] == "pending"
    accepted = await client.post(
        f"{task_url}/assignments/{assignment['id']}/accept", headers=ALICE
    )
    assert accepted.json()["status"] == "accepted"

    requested = await client.post(f"{task_url}/approval/request", headers=ALICE)
    assert requested.json()["approval_status"] == "pending"
    approved = await client.post(f"{task_url}/approval/approve", headers=LEAD)
    assert approved.status_code == 200
    body = approved.json()
    assert body["status"] == "completed"
    assert body["approval_status"] == "approved"
    assert [h["status"] for h in body["status_history"]] == ["pending", "completed"]

    listed = await client.get(f"{task_url}/assignments/", headers=LEAD)
    assert [a["id"] for a in listed.json()] == [assignment["id"]]

    async with session_factory() as session:
        audit_rows = (
            await session.execute(
                select(AuditLog)
                .where(AuditLog.entity_id == task["id"])
                .order_by(AuditLog.timestamp)
            )
        ).scalars().all()
        alice_feed = (
            await session.execute(select(Notification).where(Notification.user_id == "alice"))
        ).scalars().all()
    assert [row.action for row in audit_rows] == ["CREATE", "UPDATE", "UPDATE"]
    assert {n.kind for n in alice_feed} == {"task_assigned", "task_approval"}


@pytest.mark.asyncio
async def test_approval_rejection_without_body(client: AsyncClient):
    task = await create(client)
    task_url = f"/api/v1/tasks/{task['id']}"
    await client.post(f"{task_url}/status", json={"status": "in_progress"}, headers=LEAD)
    await client.post(f"{task_url}/assignments/", json={"assigned_to": "alice"}, headers=LEAD)

    response = await client.post(f"{task_url}/approval/reject", headers=LEAD)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_pool_claim_over_http(client: AsyncClient):
    task = await create(client)
    pool_url = f"/api/v1/tasks/{task['id']}/pool"

    pooled = await client.post(f"{pool_url}/", headers=LEAD)
    assert pooled.json()["is_in_pool"] is True
    assert (await client.post(f"{pool_url}/claims", headers=ALICE)).status_code == 201
    assert (await client.post(f"{pool_url}/claims", headers=BOB)).status_code == 201
    duplicate = await client.post(f"{pool_url}/claims", headers=BOB)
    assert duplicate.status_code == 409

    granted = await client.post(
        f"{pool_url}/claims/alice/approve", json={"keep_in_pool": True}, headers=LEAD
    )
    assert granted.status_code == 200
    assert granted.json()["status"] == "accepted"

    declined = await client.post(f"{pool_url}/claims/bob/reject", headers=LEAD)
    assert declined.json()["pool_requests"] == []

    closed = await client.delete(f"{pool_url}/", headers=LEAD)
    assert closed.json()["is_in_pool"] is False


@pytest.mark.asyncio
async def test_delete_and_idempotent_removal(client: AsyncClient):
    task = await create(client)
    task_url = f"/api/v1/tasks/{task['id']}"
    assignment = (
        await client.post(f"{task_url}/assignments/", json={"assigned_to": "alice"}, headers=LEAD)
    ).json()

    for _ in range(2):
        removed = await client.delete(f"{task_url}/assignments/{assignment['id']}", headers=LEAD)
        assert removed.status_code == 204

    archived = await client.post(f"{task_url}/archive", headers=LEAD)
    assert archived.json()["is_archived"] is True

    deleted = await client.delete(task_url, headers=LEAD)
    assert deleted.status_code == 204
    assert (await client.get(task_url, headers=LEAD)).status_code == 404
