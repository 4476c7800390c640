"""
Task service layer: creation, lookup, status transitions and lifecycle.

Handles:
- Task creation and the initial status history entry
- Status transitions, kept consistent with the approval gate
- Cascading delete of a task and its assignments
- Archiving
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from taskflow.core.errors import InvalidStateError, NotFoundError
from taskflow.core.permissions import Actor
from taskflow.models.assignment import Assignment
from taskflow.models.base import utcnow
from taskflow.models.task import Task
from taskflow.services.context import WorkflowContext
from taskflow_shared.schemas.assignments import AssignmentRead
from taskflow_shared.schemas.common import (
    ApprovalStatus,
    AssignmentStatus,
    AuditAction,
    EntityKind,
    NotificationKind,
    Operation,
    TaskStatus,
)
from taskflow_shared.schemas.notifications import StatusChangeMetadata, TaskLifecycleMetadata
from taskflow_shared.schemas.tasks import StatusHistoryEntry, TaskCreate, TaskRead

log = structlog.get_logger()

# Fields captured in audit before/after snapshots
TASK_AUDIT_FIELDS = {
    "title",
    "created_by",
    "status",
    "approval_status",
    "approval_requested_by",
    "approved_by",
    "rejected_by",
    "rejection_reason",
    "is_in_pool",
    "pool_requests",
    "assigned_users",
    "is_archived",
}

ASSIGNMENT_AUDIT_FIELDS = {
    "task_id",
    "assigned_to",
    "assigned_by",
    "status",
    "rejection_reason",
    "rejection_approved_by",
    "rejection_rejected_by",
    "rejection_rejection_reason",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_task_or_404(
    session: AsyncSession, task_id: uuid.UUID, *, for_update: bool = False
) -> Task:
    if for_update:
        result = await session.execute(
            select(Task)
            .where(Task.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        task = result.scalars().first()
    else:
        task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task not found", task_id=str(task_id))
    return task


async def get_assignment_or_404(
    session: AsyncSession,
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Assignment:
    assignment = await find_assignment(session, task_id, assignment_id, for_update=for_update)
    if not assignment:
        raise NotFoundError("Assignment not found", assignment_id=str(assignment_id))
    return assignment


async def find_assignment(
    session: AsyncSession,
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Optional[Assignment]:
    stmt = select(Assignment).where(
        Assignment.id == assignment_id, Assignment.task_id == task_id
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_assignments(session: AsyncSession, task_id: uuid.UUID) -> Sequence[Assignment]:
    result = await session.execute(
        select(Assignment)
        .where(Assignment.task_id == task_id)
        .order_by(Assignment.assigned_at)
    )
    return result.scalars().all()


def is_live(assignment: Assignment) -> bool:
    """A rejection still awaiting arbitration keeps the actor bound to the task."""
    if assignment.status != AssignmentStatus.REJECTED.value:
        return True
    return assignment.rejection_approved_by is None


async def holds_other_live_assignment(
    session: AsyncSession, task_id: uuid.UUID, user_id: str, exclude_id: uuid.UUID
) -> bool:
    result = await session.execute(
        select(Assignment).where(
            Assignment.task_id == task_id,
            Assignment.assigned_to == user_id,
            Assignment.id != exclude_id,
        )
    )
    return any(is_live(a) for a in result.scalars().all())


def history_entry(status: TaskStatus, changed_by: str, changed_at: datetime) -> dict:
    return StatusHistoryEntry(
        status=status, changed_by=changed_by, changed_at=changed_at
    ).model_dump(mode="json")


def record_status(task: Task, status: TaskStatus, actor_id: str, at: datetime) -> None:
    """Set a new status and append exactly one history entry for it."""
    task.status = status.value
    task.status_history = [*(task.status_history or []), history_entry(status, actor_id, at)]
    task.status_updated_by = actor_id
    task.status_updated_at = at
    task.updated_at = at


def task_snapshot(task: Task) -> dict[str, Any]:
    return task.model_dump(include=TASK_AUDIT_FIELDS)


def assignment_snapshot(assignment: Assignment) -> dict[str, Any]:
    return assignment.model_dump(include=ASSIGNMENT_AUDIT_FIELDS)


def to_task_read(task: Task) -> TaskRead:
    return TaskRead.model_validate(task, from_attributes=True)


def to_assignment_read(assignment: Assignment) -> AssignmentRead:
    return AssignmentRead.model_validate(assignment, from_attributes=True)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_task(session: AsyncSession, task_id: uuid.UUID) -> Task:
    return await get_task_or_404(session, task_id)


async def list_assignments(session: AsyncSession, task_id: uuid.UUID) -> Sequence[Assignment]:
    await get_task_or_404(session, task_id)
    return await get_assignments(session, task_id)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_task(ctx: WorkflowContext, task_in: TaskCreate, actor: Actor) -> Task:
    now = utcnow()
    task = Task(
        title=task_in.title,
        description=task_in.description,
        priority=task_in.priority,
        due_date=task_in.due_date,
        created_by=actor.user_id,
        status=TaskStatus.PENDING.value,
        status_history=[history_entry(TaskStatus.PENDING, actor.user_id, now)],
        created_at=now,
        updated_at=now,
    )
    ctx.authorize(actor, task, Operation.CREATE_TASK)

    ctx.session.add(task)
    await ctx.commit()
    log.info("task.created", task_id=str(task.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.CREATE, EntityKind.TASK, task.id, actor.user_id, None, task_snapshot(task)
    )
    for lead_id in await ctx.team_leads(task):
        if lead_id == actor.user_id:
            continue
        await ctx.notify(
            lead_id,
            NotificationKind.TASK_CREATED,
            "New task created",
            f'Task "{task.title}" was created.',
            task.id,
            TaskLifecycleMetadata(action="created", task_title=task.title),
        )
    return task


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


async def _has_assignments(session: AsyncSession, task_id: uuid.UUID) -> bool:
    result = await session.execute(
        select(Assignment.id).where(Assignment.task_id == task_id).limit(1)
    )
    return result.first() is not None


def _align_approval(task: Task, new_status: TaskStatus, actor_id: str, at: datetime) -> None:
    """Keep approval_status consistent with the status being set directly."""
    if new_status == TaskStatus.COMPLETED:
        # Completing without the gate counts as the completer's own approval
        task.approval_status = ApprovalStatus.APPROVED.value
        task.approved_by = actor_id
        task.approved_at = at
    elif task.approval_status == ApprovalStatus.APPROVED.value:
        # Reopened
        task.approval_status = ApprovalStatus.NONE.value
        task.approved_by = None
        task.approved_at = None
    elif task.approval_status == ApprovalStatus.REJECTED.value and new_status != TaskStatus.IN_PROGRESS:
        task.approval_status = ApprovalStatus.NONE.value
    elif task.approval_status == ApprovalStatus.PENDING.value and new_status in (
        TaskStatus.PENDING,
        TaskStatus.CANCELLED,
    ):
        # Request withdrawn
        task.approval_status = ApprovalStatus.NONE.value
        task.approval_requested_by = None


async def update_status(
    ctx: WorkflowContext, task_id: uuid.UUID, new_status: TaskStatus, actor: Actor
) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.UPDATE_STATUS)

    old_status = TaskStatus(task.status)
    if old_status == new_status:
        await ctx.commit()
        log.debug("task.status_unchanged", task_id=str(task.id), status=new_status.value)
        return task

    if new_status == TaskStatus.COMPLETED:
        if task.approval_status == ApprovalStatus.PENDING.value:
            raise InvalidStateError(
                "Task is awaiting an approval decision", approval_status=task.approval_status
            )
        if await _has_assignments(ctx.session, task.id):
            ctx.authorize(actor, task, Operation.COMPLETE_WITHOUT_APPROVAL)

    before = task_snapshot(task)
    now = utcnow()
    record_status(task, new_status, actor.user_id, now)
    _align_approval(task, new_status, actor.user_id, now)
    ctx.session.add(task)
    await ctx.commit()
    log.info(
        "task.status_changed",
        task_id=str(task.id),
        old_status=old_status.value,
        new_status=new_status.value,
        actor_id=actor.user_id,
    )

    await ctx.audit(
        AuditAction.UPDATE, EntityKind.TASK, task.id, actor.user_id, before, task_snapshot(task)
    )
    metadata = StatusChangeMetadata(old_status=old_status, new_status=new_status)
    assignments = await get_assignments(ctx.session, task.id)
    audience = [task.created_by] + [
        a.assigned_to for a in assignments if a.status != AssignmentStatus.REJECTED.value
    ]
    notified: set[str] = {actor.user_id}
    for user_id in audience:
        if user_id in notified:
            continue
        notified.add(user_id)
        await ctx.notify(
            user_id,
            NotificationKind.TASK_UPDATED,
            "Task status updated",
            f'Task "{task.title}" moved from {old_status.value} to {new_status.value}.',
            task.id,
            metadata,
        )
    return task


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def delete_task(ctx: WorkflowContext, task_id: uuid.UUID, actor: Actor) -> None:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.DELETE_TASK)

    before = task_snapshot(task)
    assignments = await get_assignments(ctx.session, task.id)
    audience = [task.created_by] + [
        a.assigned_to for a in assignments if a.status != AssignmentStatus.REJECTED.value
    ]
    title = task.title

    for assignment in assignments:
        await ctx.session.delete(assignment)
    await ctx.session.flush()
    await ctx.session.delete(task)
    await ctx.commit()
    log.info(
        "task.deleted",
        task_id=str(task_id),
        assignments_removed=len(assignments),
        actor_id=actor.user_id,
    )

    await ctx.audit(AuditAction.DELETE, EntityKind.TASK, task_id, actor.user_id, before, None)
    notified: set[str] = {actor.user_id}
    for user_id in audience:
        if user_id in notified:
            continue
        notified.add(user_id)
        await ctx.notify(
            user_id,
            NotificationKind.TASK_DELETED,
            "Task deleted",
            f'Task "{title}" was deleted.',
            task_id,
            TaskLifecycleMetadata(action="deleted", task_title=title),
        )


async def set_archived(
    ctx: WorkflowContext, task_id: uuid.UUID, archived: bool, actor: Actor
) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.ARCHIVE_TASK)

    if task.is_archived == archived:
        await ctx.commit()
        return task

    before = task_snapshot(task)
    task.is_archived = archived
    task.updated_at = utcnow()
    ctx.session.add(task)
    await ctx.commit()
    log.info(
        "task.archived" if archived else "task.unarchived",
        task_id=str(task.id),
        actor_id=actor.user_id,
    )

    await ctx.audit(
        AuditAction.UPDATE, EntityKind.TASK, task.id, actor.user_id, before, task_snapshot(task)
    )
    return task
