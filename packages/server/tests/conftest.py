"""
Shared fixtures: a throwaway SQLite database per test, seeded people, and
in-memory audit/notification doubles that record what the engine sent.
"""

from __future__ import annotations

import os
import tempfile
import uuid
from typing import Any, Optional

# Must be set before taskflow.core.database builds its module-level engine
os.environ.setdefault(
    "TF_DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "taskflow-test.db"),
)

import pytest

from taskflow.core.config import Settings
from taskflow.core.database import init_db, make_engine, make_session_factory
from taskflow.core.directory import SqlTeamDirectory
from taskflow.core.errors import CollaboratorUnavailable
from taskflow.core.permissions import Actor, RolePermissionOracle
from taskflow.models.department import Department
from taskflow.models.notification import Notification
from taskflow.models.user import User
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import create_task
from taskflow_shared.schemas.common import AuditAction, EntityKind, NotificationKind, Role
from taskflow_shared.schemas.notifications import NotificationMetadata
from taskflow_shared.schemas.tasks import TaskCreate


# ---------------------------------------------------------------------------
# Sink doubles
# ---------------------------------------------------------------------------


class RecordingAudit:
    def __init__(self):
        self.entries: list[dict[str, Any]] = []

    async def record(self, action, entity_kind, entity_id, actor_id, before, after) -> None:
        self.entries.append(
            {
                "action": action,
                "entity_kind": entity_kind,
                "entity_id": entity_id,
                "actor_id": actor_id,
                "before": before,
                "after": after,
            }
        )

    def of(self, action: AuditAction, entity_kind: EntityKind) -> list[dict[str, Any]]:
        return [e for e in self.entries if e["action"] == action and e["entity_kind"] == entity_kind]


class FailingAudit:
    def __init__(self):
        self.calls = 0

    async def record(self, *args, **kwargs) -> None:
        self.calls += 1
        raise CollaboratorUnavailable("audit", RuntimeError("audit store down"))


class RecordingNotifier:
    """Keeps notifications in memory with the same matching rules as the SQL sink."""

    def __init__(self):
        self.sent: list[Notification] = []

    async def notify(
        self,
        target_id: str,
        kind: NotificationKind,
        title: str,
        body: str,
        task_id: Optional[uuid.UUID],
        metadata: Optional[NotificationMetadata] = None,
    ) -> uuid.UUID:
        notification = Notification(
            user_id=target_id,
            kind=kind.value,
            title=title,
            body=body,
            task_id=task_id,
            meta=metadata.model_dump(mode="json") if metadata is not None else None,
        )
        self.sent.append(notification)
        return notification.id

    async def find_latest(
        self,
        target_id,
        kind,
        task_id,
        *,
        action=None,
        assignment_id=None,
        unread_only=False,
    ) -> Optional[Notification]:
        for notification in reversed(self.sent):
            meta = notification.meta or {}
            if notification.user_id != target_id or notification.kind != kind.value:
                continue
            if notification.task_id != task_id:
                continue
            if unread_only and notification.read:
                continue
            if action is not None and meta.get("action") != action:
                continue
            if assignment_id is not None and meta.get("assignment_id") != assignment_id:
                continue
            return notification
        return None

    async def update(self, notification_id, *, read=None, metadata=None, title=None, body=None):
        for notification in self.sent:
            if notification.id != notification_id:
                continue
            if read is not None:
                notification.read = read
            if metadata is not None:
                notification.meta = metadata.model_dump(mode="json")
            if title is not None:
                notification.title = title
            if body is not None:
                notification.body = body

    def to(self, user_id: str) -> list[Notification]:
        return [n for n in self.sent if n.user_id == user_id]

    def actions_for(self, user_id: str) -> list[str]:
        return [(n.meta or {}).get("action") for n in self.to(user_id)]


class FailingNotifier:
    def __init__(self):
        self.calls = 0

    async def notify(self, *args, **kwargs):
        self.calls += 1
        raise CollaboratorUnavailable("notifications", RuntimeError("mail down"))

    async def find_latest(self, *args, **kwargs):
        self.calls += 1
        raise CollaboratorUnavailable("notifications", RuntimeError("mail down"))

    async def update(self, *args, **kwargs):
        self.calls += 1
        raise CollaboratorUnavailable("notifications", RuntimeError("mail down"))


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------

# lead-1 creates tasks; head-eng manages the team lead-1 belongs to
PEOPLE = [
    dict(id="admin-1", email="admin@example.com", display_name="Admin", role="admin"),
    dict(id="head-eng", email="head@example.com", display_name="Head of Eng", role="team_leader", team_ids=["eng"]),
    dict(id="lead-1", email="lead@example.com", display_name="Lead", role="team_leader", team_ids=["eng"]),
    dict(id="alice", email="alice@example.com", display_name="Alice", team_ids=["eng"]),
    dict(id="bob", email="bob@example.com", display_name="Bob", team_ids=["eng"]),
    dict(id="carol", email="carol@example.com", display_name="Carol", team_ids=["eng"]),
    dict(id="gone", email=None, display_name="Former", is_active=False),
]


@pytest.fixture
def admin() -> Actor:
    return Actor("admin-1", Role.ADMIN)


@pytest.fixture
def head() -> Actor:
    return Actor("head-eng", Role.TEAM_LEADER)


@pytest.fixture
def lead() -> Actor:
    return Actor("lead-1", Role.TEAM_LEADER)


@pytest.fixture
def alice() -> Actor:
    return Actor("alice")


@pytest.fixture
def bob() -> Actor:
    return Actor("bob")


@pytest.fixture
def carol() -> Actor:
    return Actor("carol")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskflow.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        for person in PEOPLE:
            session.add(User(**person))
        await session.flush()
        session.add(Department(id="eng", name="Engineering", manager_id="head-eng"))
        await session.commit()


@pytest.fixture
async def session(session_factory, seeded):
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskflow.db'}")


@pytest.fixture
def ctx(session, audit, notifier, settings) -> WorkflowContext:
    return WorkflowContext(
        session=session,
        oracle=RolePermissionOracle(),
        audit_sink=audit,
        notifier=notifier,
        directory=SqlTeamDirectory(session),
        settings=settings,
    )


@pytest.fixture
def make_task(ctx, lead):
    """Create a task as lead-1 through the engine."""

    async def _make(title: str = "Prepare quarterly report", **fields):
        return await create_task(ctx, TaskCreate(title=title, **fields), lead)

    return _make


@pytest.fixture
def make_ctx(session, audit, notifier, settings):
    """Build a context with some collaborators swapped for failing ones."""

    def _make(*, failing_audit: bool = False, failing_notifier: bool = False) -> WorkflowContext:
        return WorkflowContext(
            session=session,
            oracle=RolePermissionOracle(),
            audit_sink=FailingAudit() if failing_audit else audit,
            notifier=FailingNotifier() if failing_notifier else notifier,
            directory=SqlTeamDirectory(session),
            settings=settings,
        )

    return _make
