"""
Assignment service layer: the lifecycle of one actor's binding to a task.

    pending --accept--> accepted --complete--> completed
       |
       +--reject--> rejected --approve_rejection--> (terminal, actor released)
                       |
                       +--dispute_rejection--> pending

Each rejection event is arbitrated at most once: once approved it can no
longer be disputed, and a dispute reopens the assignment as pending.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlmodel import select

from taskflow.core.errors import InvalidStateError, ValidationError
from taskflow.core.permissions import Actor
from taskflow.models.assignment import Assignment
from taskflow.models.base import utcnow
from taskflow.models.task import Task
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import (
    assignment_snapshot,
    get_assignment_or_404,
    find_assignment,
    get_task_or_404,
    holds_other_live_assignment,
    task_snapshot,
)
from taskflow_shared.schemas.common import (
    AssignmentStatus,
    AuditAction,
    EntityKind,
    NotificationKind,
    Operation,
    TaskStatus,
)
from taskflow_shared.schemas.notifications import AssignmentMetadata, PoolMetadata

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def validate_reason(ctx: WorkflowContext, reason: Optional[str]) -> str:
    """Return the stripped reason, or raise if it is too short to be useful."""
    cleaned = (reason or "").strip()
    min_length = ctx.settings.rejection_reason_min_length
    if len(cleaned) < min_length:
        raise ValidationError(
            f"Reason must be at least {min_length} characters",
            min_length=min_length,
            length=len(cleaned),
        )
    return cleaned


def _require_status(assignment: Assignment, *allowed: AssignmentStatus) -> None:
    if assignment.status not in {s.value for s in allowed}:
        raise InvalidStateError(
            f"Assignment is {assignment.status}",
            assignment_id=str(assignment.id),
            status=assignment.status,
        )


def _require_open_rejection(assignment: Assignment) -> None:
    _require_status(assignment, AssignmentStatus.REJECTED)
    if assignment.rejection_approved_by is not None:
        raise InvalidStateError(
            "Rejection has already been approved",
            assignment_id=str(assignment.id),
        )


def add_assignment(
    ctx: WorkflowContext,
    task: Task,
    assigned_to: str,
    assigned_by: str,
    *,
    notes: Optional[str] = None,
    status: AssignmentStatus = AssignmentStatus.PENDING,
) -> Assignment:
    """Stage a new assignment and mirror the assignee onto the task. Caller commits."""
    now = utcnow()
    assignment = Assignment(
        task_id=task.id,
        assigned_to=assigned_to,
        assigned_by=assigned_by,
        status=status.value,
        notes=notes,
        assigned_at=now,
        accepted_at=now if status == AssignmentStatus.ACCEPTED else None,
    )
    ctx.session.add(assignment)
    if assigned_to not in task.assigned_users:
        task.assigned_users = [*task.assigned_users, assigned_to]
    task.updated_at = now
    ctx.session.add(task)
    return assignment


async def release_assignee(ctx: WorkflowContext, task: Task, assignment: Assignment) -> None:
    """Drop the assignee from the task's mirror unless another live assignment binds them."""
    user_id = assignment.assigned_to
    if user_id not in task.assigned_users:
        return
    if await holds_other_live_assignment(ctx.session, task.id, user_id, assignment.id):
        return
    task.assigned_users = [u for u in task.assigned_users if u != user_id]
    task.updated_at = utcnow()
    ctx.session.add(task)


async def _mark_assignment_notification(
    ctx: WorkflowContext, assignment: Assignment, action: str
) -> None:
    """Resolve the assignee's outstanding "assigned" notification in place."""
    existing = await ctx.find_notification(
        assignment.assigned_to,
        NotificationKind.TASK_ASSIGNED,
        assignment.task_id,
        action="assigned",
        assignment_id=str(assignment.id),
    )
    if existing is None:
        return
    await ctx.update_notification(
        existing.id,
        read=True,
        metadata=AssignmentMetadata(
            action=action,
            assignment_id=str(assignment.id),
            assigned_user_id=assignment.assigned_to,
        ),
    )


async def _notify(
    ctx: WorkflowContext,
    target_id: str,
    task: Task,
    assignment: Assignment,
    action: str,
    title: str,
    body: str,
    reason: Optional[str] = None,
) -> None:
    await ctx.notify(
        target_id,
        NotificationKind.TASK_ASSIGNED,
        title,
        body,
        task.id,
        AssignmentMetadata(
            action=action,
            assignment_id=str(assignment.id),
            assigned_user_id=assignment.assigned_to,
            reason=reason,
        ),
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def assign(
    ctx: WorkflowContext,
    task_id: uuid.UUID,
    assigned_to: str,
    actor: Actor,
    notes: Optional[str] = None,
) -> Assignment:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.ASSIGN)

    assignment = add_assignment(ctx, task, assigned_to, actor.user_id, notes=notes)
    await ctx.commit()
    log.info(
        "assignment.created",
        task_id=str(task.id),
        assignment_id=str(assignment.id),
        assigned_to=assigned_to,
        actor_id=actor.user_id,
    )

    await ctx.audit(
        AuditAction.CREATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        None,
        assignment_snapshot(assignment),
    )
    await _notify(
        ctx,
        assigned_to,
        task,
        assignment,
        "assigned",
        "New task assigned",
        f'You were assigned to "{task.title}".',
    )
    return assignment


async def accept_assignment(
    ctx: WorkflowContext, task_id: uuid.UUID, assignment_id: uuid.UUID, actor: Actor
) -> Assignment:
    task = await get_task_or_404(ctx.session, task_id)
    assignment = await get_assignment_or_404(ctx.session, task_id, assignment_id, for_update=True)
    ctx.authorize(actor, task, Operation.ACCEPT_ASSIGNMENT, assignment)
    _require_status(assignment, AssignmentStatus.PENDING)

    before = assignment_snapshot(assignment)
    assignment.status = AssignmentStatus.ACCEPTED.value
    assignment.accepted_at = utcnow()
    ctx.session.add(assignment)
    await ctx.commit()
    log.info("assignment.accepted", assignment_id=str(assignment.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.UPDATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        before,
        assignment_snapshot(assignment),
    )
    await _mark_assignment_notification(ctx, assignment, "accepted")
    for lead_id in await ctx.team_leads(task):
        if lead_id == actor.user_id:
            continue
        await _notify(
            ctx,
            lead_id,
            task,
            assignment,
            "accepted",
            "Task accepted",
            f'{actor.user_id} accepted "{task.title}".',
        )
    return assignment


async def reject_assignment(
    ctx: WorkflowContext,
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    reason: Optional[str],
    actor: Actor,
) -> Assignment:
    reason = validate_reason(ctx, reason)
    task = await get_task_or_404(ctx.session, task_id)
    assignment = await get_assignment_or_404(ctx.session, task_id, assignment_id, for_update=True)
    ctx.authorize(actor, task, Operation.REJECT_ASSIGNMENT, assignment)
    _require_status(assignment, AssignmentStatus.PENDING)

    before = assignment_snapshot(assignment)
    assignment.status = AssignmentStatus.REJECTED.value
    assignment.rejection_reason = reason
    # A new rejection event starts without an arbitration outcome
    assignment.rejection_approved_by = None
    assignment.rejection_approved_at = None
    assignment.rejection_rejected_by = None
    assignment.rejection_rejected_at = None
    assignment.rejection_rejection_reason = None
    ctx.session.add(assignment)
    await ctx.commit()
    log.info("assignment.rejected", assignment_id=str(assignment.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.UPDATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        before,
        assignment_snapshot(assignment),
    )
    await _mark_assignment_notification(ctx, assignment, "rejected")

    assigner_id = assignment.assigned_by
    notified: set[str] = {actor.user_id}
    if assigner_id not in notified:
        notified.add(assigner_id)
        await _notify(
            ctx,
            assigner_id,
            task,
            assignment,
            "rejected",
            "Task rejected",
            f'{actor.user_id} rejected "{task.title}": {reason}',
            reason,
        )
    if task.created_by not in notified:
        notified.add(task.created_by)
        await _notify(
            ctx,
            task.created_by,
            task,
            assignment,
            "rejection_pending_approval",
            "Task rejection awaiting review",
            f'{actor.user_id} rejected "{task.title}" and the rejection needs review: {reason}',
            reason,
        )
    for lead_id in await ctx.team_leads(task):
        if lead_id in notified:
            continue
        notified.add(lead_id)
        await _notify(
            ctx,
            lead_id,
            task,
            assignment,
            "rejected",
            "Task rejected",
            f'{actor.user_id} rejected "{task.title}": {reason}',
            reason,
        )
    return assignment


async def complete_assignment(
    ctx: WorkflowContext, task_id: uuid.UUID, assignment_id: uuid.UUID, actor: Actor
) -> Assignment:
    task = await get_task_or_404(ctx.session, task_id)
    assignment = await get_assignment_or_404(ctx.session, task_id, assignment_id, for_update=True)
    ctx.authorize(actor, task, Operation.COMPLETE_ASSIGNMENT, assignment)
    _require_status(assignment, AssignmentStatus.ACCEPTED)

    before = assignment_snapshot(assignment)
    assignment.status = AssignmentStatus.COMPLETED.value
    assignment.completed_at = utcnow()
    ctx.session.add(assignment)
    await ctx.commit()
    log.info("assignment.completed", assignment_id=str(assignment.id), actor_id=actor.user_id)

    await ctx.audit(
        AuditAction.UPDATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        before,
        assignment_snapshot(assignment),
    )
    if assignment.assigned_by != actor.user_id:
        await _notify(
            ctx,
            assignment.assigned_by,
            task,
            assignment,
            "completed",
            "Assignment completed",
            f'{actor.user_id} finished their part of "{task.title}".',
        )
    return assignment


# ---------------------------------------------------------------------------
# Rejection arbitration
# ---------------------------------------------------------------------------


async def approve_rejection(
    ctx: WorkflowContext, task_id: uuid.UUID, assignment_id: uuid.UUID, actor: Actor
) -> Assignment:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    assignment = await get_assignment_or_404(ctx.session, task_id, assignment_id, for_update=True)
    ctx.authorize(actor, task, Operation.ARBITRATE_REJECTION, assignment)
    _require_open_rejection(assignment)

    before = assignment_snapshot(assignment)
    assignment.rejection_approved_by = actor.user_id
    assignment.rejection_approved_at = utcnow()
    ctx.session.add(assignment)
    await release_assignee(ctx, task, assignment)
    await ctx.commit()
    log.info(
        "assignment.rejection_approved",
        assignment_id=str(assignment.id),
        actor_id=actor.user_id,
    )

    await ctx.audit(
        AuditAction.UPDATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        before,
        assignment_snapshot(assignment),
    )
    if assignment.assigned_to != actor.user_id:
        await _notify(
            ctx,
            assignment.assigned_to,
            task,
            assignment,
            "rejection_approved",
            "Rejection approved",
            f'Your rejection of "{task.title}" was approved.',
        )
    return assignment


async def dispute_rejection(
    ctx: WorkflowContext,
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    reason: Optional[str],
    actor: Actor,
) -> Assignment:
    reason = validate_reason(ctx, reason)
    task = await get_task_or_404(ctx.session, task_id)
    assignment = await get_assignment_or_404(ctx.session, task_id, assignment_id, for_update=True)
    ctx.authorize(actor, task, Operation.ARBITRATE_REJECTION, assignment)
    _require_open_rejection(assignment)

    before = assignment_snapshot(assignment)
    assignment.status = AssignmentStatus.PENDING.value
    assignment.rejection_reason = None
    assignment.rejection_rejected_by = actor.user_id
    assignment.rejection_rejected_at = utcnow()
    assignment.rejection_rejection_reason = reason
    assignment.accepted_at = None
    ctx.session.add(assignment)
    await ctx.commit()
    log.info(
        "assignment.rejection_disputed",
        assignment_id=str(assignment.id),
        actor_id=actor.user_id,
    )

    await ctx.audit(
        AuditAction.UPDATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        before,
        assignment_snapshot(assignment),
    )
    if assignment.assigned_to != actor.user_id:
        await _notify(
            ctx,
            assignment.assigned_to,
            task,
            assignment,
            "rejection_rejected",
            "Rejection not accepted",
            f'Your rejection of "{task.title}" was not accepted: {reason}',
            reason,
        )
    return assignment


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


async def remove_assignment(
    ctx: WorkflowContext, task_id: uuid.UUID, assignment_id: uuid.UUID, actor: Actor
) -> Optional[Assignment]:
    """Delete an assignment. Removing one that is already gone is a no-op."""
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    assignment = await find_assignment(ctx.session, task_id, assignment_id, for_update=True)
    if assignment is None:
        await ctx.commit()
        log.info("assignment.remove_skipped", assignment_id=str(assignment_id))
        return None
    ctx.authorize(actor, task, Operation.REMOVE_ASSIGNMENT, assignment)

    before = assignment_snapshot(assignment)
    await release_assignee(ctx, task, assignment)
    await ctx.session.delete(assignment)
    await ctx.commit()
    log.info(
        "assignment.removed",
        task_id=str(task.id),
        assignment_id=str(assignment_id),
        actor_id=actor.user_id,
    )

    await ctx.audit(
        AuditAction.DELETE, EntityKind.ASSIGNMENT, assignment_id, actor.user_id, before, None
    )
    notified: set[str] = {actor.user_id}
    for user_id, body in (
        (assignment.assigned_to, f'You were removed from "{task.title}".'),
        (task.created_by, f'{assignment.assigned_to} was removed from "{task.title}".'),
    ):
        if user_id in notified:
            continue
        notified.add(user_id)
        await _notify(ctx, user_id, task, assignment, "removed", "Assignment removed", body)
    return assignment


async def remove_actor_from_all_tasks(ctx: WorkflowContext, user_id: str, actor: Actor) -> int:
    """Offboard an actor: delete every assignment they hold, one task at a time.

    Open tasks left with nobody assigned go back to the pool and their
    creator is told. Completed and cancelled tasks stay out of the pool.
    Returns the number of tasks touched.
    """
    result = await ctx.session.execute(
        select(Assignment).where(Assignment.assigned_to == user_id)
    )
    by_task: dict[uuid.UUID, list[Assignment]] = {}
    for assignment in result.scalars().all():
        by_task.setdefault(assignment.task_id, []).append(assignment)

    # Authorize every task up front so a denial leaves nothing half-done
    for task_id, held in by_task.items():
        task = await get_task_or_404(ctx.session, task_id)
        ctx.authorize(actor, task, Operation.REMOVE_ASSIGNMENT, held[0])

    for task_id in by_task:
        task = await get_task_or_404(ctx.session, task_id, for_update=True)
        held_result = await ctx.session.execute(
            select(Assignment).where(
                Assignment.task_id == task_id, Assignment.assigned_to == user_id
            )
        )
        held = held_result.scalars().all()
        before = task_snapshot(task)
        for assignment in held:
            await ctx.session.delete(assignment)
        task.assigned_users = [u for u in task.assigned_users if u != user_id]
        pooled = (
            not task.assigned_users
            and not task.is_in_pool
            and task.status not in (TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value)
        )
        if pooled:
            task.is_in_pool = True
        task.updated_at = utcnow()
        ctx.session.add(task)
        await ctx.commit()
        log.info(
            "assignment.actor_offboarded",
            task_id=str(task_id),
            user_id=user_id,
            removed=len(held),
            returned_to_pool=pooled,
        )

        await ctx.audit(
            AuditAction.UPDATE, EntityKind.TASK, task_id, actor.user_id, before, task_snapshot(task)
        )
        for assignment in held:
            await ctx.audit(
                AuditAction.DELETE,
                EntityKind.ASSIGNMENT,
                assignment.id,
                actor.user_id,
                assignment_snapshot(assignment),
                None,
            )
        if pooled and task.created_by != actor.user_id:
            await ctx.notify(
                task.created_by,
                NotificationKind.TASK_POOL_REQUEST,
                "Task returned to pool",
                f'"{task.title}" has nobody assigned after {user_id} left and is back in the pool.',
                task.id,
                PoolMetadata(action="added", actor_id=user_id),
            )

    return len(by_task)
