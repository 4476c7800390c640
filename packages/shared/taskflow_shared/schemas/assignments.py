"""Assignment schemas: the binding of one actor to one task."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, UUID4

from .common import AssignmentStatus


class AssignmentCreate(BaseModel):
    """Request body for POST /tasks/{taskId}/assignments."""
    assigned_to: str = Field(min_length=1)
    notes: Optional[str] = None


class ReasonBody(BaseModel):
    """Free-text justification for a rejection or a dispute.

    Length is checked by the workflow engine so the same rule applies to
    every caller, not just HTTP clients.
    """
    reason: str


class AssignmentRead(BaseModel):
    id: UUID4
    task_id: UUID4
    assigned_to: str
    assigned_by: str
    status: AssignmentStatus
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_approved_by: Optional[str] = None
    rejection_approved_at: Optional[datetime] = None
    rejection_rejected_by: Optional[str] = None
    rejection_rejected_at: Optional[datetime] = None
    rejection_rejection_reason: Optional[str] = None
    assigned_at: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
