"""
Approval gate: the sign-off that turns worked tasks into completed ones.

approval_status and status always move together here, so that a task is
approved exactly when it is completed.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlmodel import select

from taskflow.core.errors import InvalidStateError
from taskflow.core.permissions import Actor
from taskflow.models.assignment import Assignment
from taskflow.models.base import utcnow
from taskflow.models.task import Task
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import get_task_or_404, record_status, task_snapshot
from taskflow_shared.schemas.common import (
    WORKED_ASSIGNMENT_STATUSES,
    ApprovalStatus,
    AssignmentStatus,
    AuditAction,
    EntityKind,
    NotificationKind,
    Operation,
    TaskStatus,
)
from taskflow_shared.schemas.notifications import ApprovalMetadata

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _worked_assignments(ctx: WorkflowContext, task_id: uuid.UUID) -> list[Assignment]:
    result = await ctx.session.execute(
        select(Assignment).where(
            Assignment.task_id == task_id,
            Assignment.status.in_([s.value for s in WORKED_ASSIGNMENT_STATUSES]),
        )
    )
    return list(result.scalars().all())


async def _decision_audience(ctx: WorkflowContext, task: Task, decided_by: str) -> list[str]:
    """The requester and every assignee who took the work on, once each, never the decider."""
    audience: list[str] = []
    candidates = [task.approval_requested_by] + [
        a.assigned_to for a in await _worked_assignments(ctx, task.id)
    ]
    for user_id in candidates:
        if user_id and user_id != decided_by and user_id not in audience:
            audience.append(user_id)
    return audience


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def request_approval(ctx: WorkflowContext, task_id: uuid.UUID, actor: Actor) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)

    result = await ctx.session.execute(
        select(Assignment).where(
            Assignment.task_id == task.id, Assignment.assigned_to == actor.user_id
        )
    )
    own = result.scalars().all()
    worked = next(
        (a for a in own if AssignmentStatus(a.status) in WORKED_ASSIGNMENT_STATUSES), None
    )
    ctx.authorize(actor, task, Operation.REQUEST_APPROVAL, worked or next(iter(own), None))

    if task.approval_status == ApprovalStatus.PENDING.value:
        await ctx.commit()
        log.debug("approval.already_pending", task_id=str(task.id))
        return task
    if task.approval_status == ApprovalStatus.APPROVED.value:
        raise InvalidStateError("Task is already approved", task_id=str(task.id))
    if task.status == TaskStatus.CANCELLED.value:
        raise InvalidStateError("Task is cancelled", task_id=str(task.id))
    if task.status == TaskStatus.PENDING.value and not await _worked_assignments(ctx, task.id):
        raise InvalidStateError(
            "Nobody has taken this task on yet", task_id=str(task.id), status=task.status
        )

    before = task_snapshot(task)
    task.approval_status = ApprovalStatus.PENDING.value
    task.approval_requested_by = actor.user_id
    task.updated_at = utcnow()
    ctx.session.add(task)
    await ctx.commit()
    log.info("approval.requested", task_id=str(task.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.UPDATE, EntityKind.TASK, task.id, actor.user_id, before, task_snapshot(task)
    )
    if task.created_by != actor.user_id:
        await ctx.notify_unless_unread(
            task.created_by,
            NotificationKind.TASK_APPROVAL,
            "Approval requested",
            f'{actor.user_id} asked you to approve "{task.title}".',
            task.id,
            ApprovalMetadata(action="approval_requested"),
        )
    return task


async def approve_task(ctx: WorkflowContext, task_id: uuid.UUID, actor: Actor) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.DECIDE_APPROVAL)
    if task.approval_status != ApprovalStatus.PENDING.value:
        raise InvalidStateError(
            "Task has no pending approval request", approval_status=task.approval_status
        )

    before = task_snapshot(task)
    now = utcnow()
    task.approval_status = ApprovalStatus.APPROVED.value
    task.approved_by = actor.user_id
    task.approved_at = now
    if task.status != TaskStatus.COMPLETED.value:
        record_status(task, TaskStatus.COMPLETED, actor.user_id, now)
    task.updated_at = now
    ctx.session.add(task)
    await ctx.commit()
    log.info("approval.approved", task_id=str(task.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.UPDATE, EntityKind.TASK, task.id, actor.user_id, before, task_snapshot(task)
    )
    for user_id in await _decision_audience(ctx, task, actor.user_id):
        await ctx.notify_unless_unread(
            user_id,
            NotificationKind.TASK_APPROVAL,
            "Task approved",
            f'"{task.title}" was approved and is now completed.',
            task.id,
            ApprovalMetadata(action="approved"),
        )
    return task


async def reject_approval(
    ctx: WorkflowContext, task_id: uuid.UUID, reason: Optional[str], actor: Actor
) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.DECIDE_APPROVAL)
    if task.approval_status != ApprovalStatus.PENDING.value:
        raise InvalidStateError(
            "Task has no pending approval request", approval_status=task.approval_status
        )

    reason = reason.strip() if reason and reason.strip() else None
    before = task_snapshot(task)
    now = utcnow()
    task.approval_status = ApprovalStatus.REJECTED.value
    task.rejected_by = actor.user_id
    task.rejected_at = now
    task.rejection_reason = reason
    if task.status != TaskStatus.IN_PROGRESS.value:
        record_status(task, TaskStatus.IN_PROGRESS, actor.user_id, now)
    task.updated_at = now
    ctx.session.add(task)
    await ctx.commit()
    log.info("approval.rejected", task_id=str(task.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.UPDATE, EntityKind.TASK, task.id, actor.user_id, before, task_snapshot(task)
    )
    body = f'"{task.title}" was sent back for more work.'
    if reason:
        body = f"{body} Reason: {reason}"
    for user_id in await _decision_audience(ctx, task, actor.user_id):
        await ctx.notify(
            user_id,
            NotificationKind.TASK_APPROVAL,
            "Approval rejected",
            body,
            task.id,
            ApprovalMetadata(action="rejected", rejection_reason=reason),
        )
    return task
