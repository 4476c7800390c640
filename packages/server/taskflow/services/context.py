"""
Unit of work for one workflow operation.

An operation validates, writes and commits its own row(s) first. Only then
does it fan out to the audit and notification collaborators, through the
guarded helpers below: a collaborator failure is logged and swallowed so
it can never roll back or fail a transition that already happened.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.config import Settings, get_settings
from taskflow.core.directory import TeamDirectory
from taskflow.core.errors import PermissionDeniedError
from taskflow.core.permissions import Actor, PermissionOracle
from taskflow.models.assignment import Assignment
from taskflow.models.notification import Notification
from taskflow.models.task import Task
from taskflow.services.audit import AuditSink
from taskflow.services.notifications import NotificationSink
from taskflow_shared.schemas.common import AuditAction, EntityKind, NotificationKind, Operation
from taskflow_shared.schemas.notifications import NotificationMetadata

log = structlog.get_logger()


@dataclass
class WorkflowContext:
    session: AsyncSession
    oracle: PermissionOracle
    audit_sink: AuditSink
    notifier: NotificationSink
    directory: TeamDirectory
    settings: Settings = field(default_factory=get_settings)

    # -----------------------------------------------------------------------
    # Guards
    # -----------------------------------------------------------------------

    def authorize(
        self,
        actor: Actor,
        task: Task,
        operation: Operation,
        assignment: Optional[Assignment] = None,
    ) -> None:
        if not self.oracle.can_perform(actor, task, operation, assignment):
            raise PermissionDeniedError(
                f"Not allowed to {operation.value.replace('_', ' ')} on this task",
                operation=operation.value,
                actor_id=actor.user_id,
            )

    async def commit(self) -> None:
        await self.session.commit()

    # -----------------------------------------------------------------------
    # Fire-and-forget side effects
    # -----------------------------------------------------------------------

    async def audit(
        self,
        action: AuditAction,
        entity_kind: EntityKind,
        entity_id: Any,
        actor_id: str,
        before: Optional[dict[str, Any]],
        after: Optional[dict[str, Any]],
    ) -> None:
        try:
            await self.audit_sink.record(
                action, entity_kind, str(entity_id), actor_id, before, after
            )
        except Exception as exc:
            # Full entry is logged so the audit trail can be reconciled later
            log.error(
                "audit.record_failed",
                action=action.value,
                entity_kind=entity_kind.value,
                entity_id=str(entity_id),
                actor_id=actor_id,
                before=before,
                after=after,
                error=repr(exc),
            )

    async def notify(
        self,
        target_id: str,
        kind: NotificationKind,
        title: str,
        body: str,
        task_id: Optional[uuid.UUID],
        metadata: Optional[NotificationMetadata] = None,
    ) -> Optional[uuid.UUID]:
        try:
            return await self.notifier.notify(target_id, kind, title, body, task_id, metadata)
        except Exception as exc:
            log.warning(
                "notification.delivery_failed",
                target_id=target_id,
                kind=kind.value,
                task_id=str(task_id) if task_id else None,
                error=repr(exc),
            )
            return None

    async def notify_unless_unread(
        self,
        target_id: str,
        kind: NotificationKind,
        title: str,
        body: str,
        task_id: uuid.UUID,
        metadata: NotificationMetadata,
    ) -> Optional[uuid.UUID]:
        """Notify, unless an unread notification with the same action is already waiting."""
        existing = await self.find_notification(
            target_id, kind, task_id, action=metadata.action, unread_only=True
        )
        if existing is not None:
            log.debug(
                "notification.suppressed_duplicate",
                target_id=target_id,
                action=metadata.action,
                task_id=str(task_id),
            )
            return None
        return await self.notify(target_id, kind, title, body, task_id, metadata)

    async def find_notification(
        self,
        target_id: str,
        kind: NotificationKind,
        task_id: uuid.UUID,
        **criteria: Any,
    ) -> Optional[Notification]:
        try:
            return await self.notifier.find_latest(target_id, kind, task_id, **criteria)
        except Exception as exc:
            log.warning("notification.lookup_failed", target_id=target_id, error=repr(exc))
            return None

    async def update_notification(self, notification_id: uuid.UUID, **changes: Any) -> None:
        try:
            await self.notifier.update(notification_id, **changes)
        except Exception as exc:
            log.warning(
                "notification.update_failed",
                notification_id=str(notification_id),
                error=repr(exc),
            )

    async def team_leads(self, task: Task) -> list[str]:
        try:
            return await self.directory.team_leads_for(task)
        except Exception as exc:
            log.warning("directory.team_leads_failed", task_id=str(task.id), error=repr(exc))
            return []

    async def all_actors(self) -> list[str]:
        try:
            return await self.directory.all_actor_ids()
        except Exception as exc:
            log.warning("directory.actors_failed", error=repr(exc))
            return []
