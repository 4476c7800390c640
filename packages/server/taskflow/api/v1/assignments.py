"""
Assignment endpoints: assign, accept/reject/complete, rejection arbitration, removal.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.api.deps import get_context
from taskflow.core.auth import get_actor
from taskflow.core.database import get_session
from taskflow.core.permissions import Actor
from taskflow.services import assignments as service
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import list_assignments, to_assignment_read
from taskflow_shared.schemas.assignments import AssignmentCreate, AssignmentRead, ReasonBody

router = APIRouter()


@router.get("/", response_model=List[AssignmentRead])
async def list_assignments_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    """List every assignment of a task, oldest first."""
    return [to_assignment_read(a) for a in await list_assignments(session, task_id)]


@router.post("/", response_model=AssignmentRead, status_code=201)
async def assign_endpoint(
    task_id: uuid.UUID,
    body: AssignmentCreate,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    assignment = await service.assign(ctx, task_id, body.assigned_to, actor, notes=body.notes)
    return to_assignment_read(assignment)


@router.delete("/{assignment_id}", status_code=204)
async def remove_assignment_endpoint(
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Remove an assignment. Removing one that no longer exists also succeeds."""
    await service.remove_assignment(ctx, task_id, assignment_id, actor)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Assignee responses
# ---------------------------------------------------------------------------


@router.post("/{assignment_id}/accept", response_model=AssignmentRead)
async def accept_endpoint(
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    assignment = await service.accept_assignment(ctx, task_id, assignment_id, actor)
    return to_assignment_read(assignment)


@router.post("/{assignment_id}/reject", response_model=AssignmentRead)
async def reject_endpoint(
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    body: ReasonBody,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    assignment = await service.reject_assignment(ctx, task_id, assignment_id, body.reason, actor)
    return to_assignment_read(assignment)


@router.post("/{assignment_id}/complete", response_model=AssignmentRead)
async def complete_endpoint(
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    assignment = await service.complete_assignment(ctx, task_id, assignment_id, actor)
    return to_assignment_read(assignment)


# ---------------------------------------------------------------------------
# Rejection arbitration
# ---------------------------------------------------------------------------


@router.post("/{assignment_id}/approve-rejection", response_model=AssignmentRead)
async def approve_rejection_endpoint(
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Let the rejection stand; the assignee is released from the task."""
    assignment = await service.approve_rejection(ctx, task_id, assignment_id, actor)
    return to_assignment_read(assignment)


@router.post("/{assignment_id}/dispute-rejection", response_model=AssignmentRead)
async def dispute_rejection_endpoint(
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    body: ReasonBody,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Overrule the rejection; the assignment goes back to pending."""
    assignment = await service.dispute_rejection(ctx, task_id, assignment_id, body.reason, actor)
    return to_assignment_read(assignment)
