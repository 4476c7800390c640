"""
Pool coordinator: claim protocol for tasks nobody has committed to yet.

Actors ask for a pooled task with request_claim; the creator decides each
claim. A claim only leaves pool_requests through approve_claim,
reject_claim or remove_from_pool, and every claimant affected is told.
"""

from __future__ import annotations

import uuid

import structlog

from taskflow.core.errors import InvalidStateError
from taskflow.core.permissions import Actor
from taskflow.models.assignment import Assignment
from taskflow.models.base import utcnow
from taskflow.models.task import Task
from taskflow.services.assignments import add_assignment
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import assignment_snapshot, get_task_or_404, task_snapshot
from taskflow_shared.schemas.common import (
    AssignmentStatus,
    AuditAction,
    EntityKind,
    NotificationKind,
    Operation,
)
from taskflow_shared.schemas.notifications import AssignmentMetadata, PoolMetadata

log = structlog.get_logger()


async def _notify_dropped(ctx: WorkflowContext, task: Task, claimants: list[str]) -> None:
    for claimant_id in claimants:
        await ctx.notify(
            claimant_id,
            NotificationKind.TASK_POOL_REQUEST,
            "Claim closed",
            f'"{task.title}" is no longer available in the pool.',
            task.id,
            PoolMetadata(action="claim_dropped", actor_id=claimant_id),
        )


async def _audit_task(ctx: WorkflowContext, task: Task, actor: Actor, before: dict) -> None:
    await ctx.audit(
        AuditAction.UPDATE, EntityKind.TASK, task.id, actor.user_id, before, task_snapshot(task)
    )


# ---------------------------------------------------------------------------
# Pool membership
# ---------------------------------------------------------------------------


async def add_to_pool(ctx: WorkflowContext, task_id: uuid.UUID, actor: Actor) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.MANAGE_POOL)
    if task.is_in_pool:
        await ctx.commit()
        return task

    before = task_snapshot(task)
    task.is_in_pool = True
    task.pool_requests = []
    task.updated_at = utcnow()
    ctx.session.add(task)
    await ctx.commit()
    log.info("pool.task_added", task_id=str(task.id), actor_id=actor.user_id)

    await _audit_task(ctx, task, actor, before)
    for user_id in await ctx.all_actors():
        if user_id in (actor.user_id, task.created_by):
            continue
        await ctx.notify(
            user_id,
            NotificationKind.TASK_POOL_REQUEST,
            "Task available",
            f'"{task.title}" is open for claims.',
            task.id,
            PoolMetadata(action="added", actor_id=actor.user_id),
        )
    return task


async def remove_from_pool(ctx: WorkflowContext, task_id: uuid.UUID, actor: Actor) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.MANAGE_POOL)
    if not task.is_in_pool:
        await ctx.commit()
        return task

    before = task_snapshot(task)
    dropped = list(task.pool_requests)
    task.is_in_pool = False
    task.pool_requests = []
    task.updated_at = utcnow()
    ctx.session.add(task)
    await ctx.commit()
    log.info(
        "pool.task_removed", task_id=str(task.id), dropped=len(dropped), actor_id=actor.user_id
    )

    await _audit_task(ctx, task, actor, before)
    await _notify_dropped(ctx, task, dropped)
    return task


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


async def request_claim(ctx: WorkflowContext, task_id: uuid.UUID, actor: Actor) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.REQUEST_CLAIM)
    if not task.is_in_pool:
        raise InvalidStateError("Task is not in the pool", task_id=str(task.id))
    if actor.user_id in task.pool_requests:
        raise InvalidStateError("Claim already requested", task_id=str(task.id))
    if actor.user_id in task.assigned_users:
        raise InvalidStateError("Already assigned to this task", task_id=str(task.id))

    before = task_snapshot(task)
    task.pool_requests = [*task.pool_requests, actor.user_id]
    task.updated_at = utcnow()
    ctx.session.add(task)
    await ctx.commit()
    log.info("pool.claim_requested", task_id=str(task.id), actor_id=actor.user_id)

    await _audit_task(ctx, task, actor, before)
    await ctx.notify(
        task.created_by,
        NotificationKind.TASK_POOL_REQUEST,
        "Task claim requested",
        f'{actor.user_id} wants to take on "{task.title}".',
        task.id,
        PoolMetadata(action="claim_requested", actor_id=actor.user_id),
    )
    return task


async def approve_claim(
    ctx: WorkflowContext,
    task_id: uuid.UUID,
    claimant_id: str,
    actor: Actor,
    keep_in_pool: bool = False,
) -> Assignment:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.DECIDE_CLAIM)
    if claimant_id not in task.pool_requests:
        raise InvalidStateError(
            "No pending claim from this actor", task_id=str(task.id), claimant_id=claimant_id
        )

    before = task_snapshot(task)
    remaining = [r for r in task.pool_requests if r != claimant_id]
    # Claiming implies consent, so the assignment starts accepted
    assignment = add_assignment(
        ctx, task, claimant_id, actor.user_id, status=AssignmentStatus.ACCEPTED
    )
    if keep_in_pool:
        task.pool_requests = remaining
        dropped: list[str] = []
    else:
        task.is_in_pool = False
        task.pool_requests = []
        dropped = remaining
    await ctx.commit()
    log.info(
        "pool.claim_approved",
        task_id=str(task.id),
        claimant_id=claimant_id,
        assignment_id=str(assignment.id),
        keep_in_pool=keep_in_pool,
        dropped=len(dropped),
        actor_id=actor.user_id,
    )

    await _audit_task(ctx, task, actor, before)
    await ctx.audit(
        AuditAction.CREATE,
        EntityKind.ASSIGNMENT,
        assignment.id,
        actor.user_id,
        None,
        assignment_snapshot(assignment),
    )
    await ctx.notify(
        claimant_id,
        NotificationKind.TASK_ASSIGNED,
        "Claim approved",
        f'Your claim on "{task.title}" was approved. The task is now yours.',
        task.id,
        AssignmentMetadata(
            action="pool_request_approved",
            assignment_id=str(assignment.id),
            assigned_user_id=claimant_id,
        ),
    )
    await _notify_dropped(ctx, task, dropped)
    return assignment


async def reject_claim(
    ctx: WorkflowContext, task_id: uuid.UUID, claimant_id: str, actor: Actor
) -> Task:
    task = await get_task_or_404(ctx.session, task_id, for_update=True)
    ctx.authorize(actor, task, Operation.DECIDE_CLAIM)
    if claimant_id not in task.pool_requests:
        raise InvalidStateError(
            "No pending claim from this actor", task_id=str(task.id), claimant_id=claimant_id
        )

    before = task_snapshot(task)
    task.pool_requests = [r for r in task.pool_requests if r != claimant_id]
    task.updated_at = utcnow()
    ctx.session.add(task)
    await ctx.commit()
    log.info(
        "pool.claim_rejected", task_id=str(task.id), claimant_id=claimant_id, actor_id=actor.user_id
    )

    await _audit_task(ctx, task, actor, before)
    await ctx.notify(
        claimant_id,
        NotificationKind.TASK_POOL_REQUEST,
        "Claim declined",
        f'Your claim on "{task.title}" was declined.',
        task.id,
        PoolMetadata(action="claim_rejected", actor_id=actor.user_id),
    )
    return task
