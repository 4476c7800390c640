"""
Pool endpoints: pooling a task and deciding claims on it.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from taskflow.api.deps import get_context
from taskflow.core.auth import get_actor
from taskflow.core.permissions import Actor
from taskflow.services import pool as service
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import to_assignment_read, to_task_read
from taskflow_shared.schemas.assignments import AssignmentRead
from taskflow_shared.schemas.pool import ClaimApproval
from taskflow_shared.schemas.tasks import TaskRead

router = APIRouter()


@router.post("/", response_model=TaskRead)
async def add_to_pool_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    return to_task_read(await service.add_to_pool(ctx, task_id, actor))


@router.delete("/", response_model=TaskRead)
async def remove_from_pool_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Take the task out of the pool; waiting claimants are told their claim is closed."""
    return to_task_read(await service.remove_from_pool(ctx, task_id, actor))


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


@router.post("/claims", response_model=TaskRead, status_code=201)
async def request_claim_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Ask to take on a pooled task."""
    return to_task_read(await service.request_claim(ctx, task_id, actor))


@router.post("/claims/{claimant_id}/approve", response_model=AssignmentRead)
async def approve_claim_endpoint(
    task_id: uuid.UUID,
    claimant_id: str,
    body: Optional[ClaimApproval] = None,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    keep_in_pool = body.keep_in_pool if body else False
    assignment = await service.approve_claim(
        ctx, task_id, claimant_id, actor, keep_in_pool=keep_in_pool
    )
    return to_assignment_read(assignment)


@router.post("/claims/{claimant_id}/reject", response_model=TaskRead)
async def reject_claim_endpoint(
    task_id: uuid.UUID,
    claimant_id: str,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    return to_task_read(await service.reject_claim(ctx, task_id, claimant_id, actor))
