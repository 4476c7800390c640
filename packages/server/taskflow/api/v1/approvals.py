"""
Approval gate endpoints.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends

from taskflow.api.deps import get_context
from taskflow.core.auth import get_actor
from taskflow.core.permissions import Actor
from taskflow.services.approvals import approve_task, reject_approval, request_approval
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import to_task_read
from taskflow_shared.schemas.tasks import ApprovalRejection, TaskRead

router = APIRouter()


@router.post("/request", response_model=TaskRead)
async def request_approval_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Ask the task creator to sign off. Repeating a pending request is a no-op."""
    return to_task_read(await request_approval(ctx, task_id, actor))


@router.post("/approve", response_model=TaskRead)
async def approve_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Approve the pending request; the task becomes completed."""
    return to_task_read(await approve_task(ctx, task_id, actor))


@router.post("/reject", response_model=TaskRead)
async def reject_endpoint(
    task_id: uuid.UUID,
    body: Optional[ApprovalRejection] = None,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Send the task back to in_progress with an optional reason."""
    reason = body.reason if body else None
    return to_task_read(await reject_approval(ctx, task_id, reason, actor))
