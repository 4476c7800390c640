"""
Task endpoints: create, read, delete, status changes and archiving.

Status changes to completed normally go through /approval; see approvals.py.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.api.deps import get_context
from taskflow.core.auth import get_actor
from taskflow.core.database import get_session
from taskflow.core.permissions import Actor
from taskflow.services.context import WorkflowContext
from taskflow.services.tasks import (
    create_task,
    delete_task,
    get_task,
    set_archived,
    to_task_read,
    update_status,
)
from taskflow_shared.schemas.tasks import StatusUpdate, TaskCreate, TaskRead

router = APIRouter()


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.post("/", response_model=TaskRead, status_code=201)
async def create_task_endpoint(
    task_in: TaskCreate,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Create a new task owned by the caller."""
    task = await create_task(ctx, task_in, actor)
    return to_task_read(task)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    """Get a single task."""
    return to_task_read(await get_task(session, task_id))


@router.delete("/{task_id}", status_code=204)
async def delete_task_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Delete a task together with all of its assignments."""
    await delete_task(ctx, task_id, actor)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/{task_id}/status", response_model=TaskRead)
async def update_status_endpoint(
    task_id: uuid.UUID,
    body: StatusUpdate,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    """Set the task status. Setting the current status is a successful no-op."""
    task = await update_status(ctx, task_id, body.status, actor)
    return to_task_read(task)


@router.post("/{task_id}/archive", response_model=TaskRead)
async def archive_task_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    task = await set_archived(ctx, task_id, True, actor)
    return to_task_read(task)


@router.post("/{task_id}/unarchive", response_model=TaskRead)
async def unarchive_task_endpoint(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ctx: WorkflowContext = Depends(get_context),
):
    task = await set_archived(ctx, task_id, False, actor)
    return to_task_read(task)
