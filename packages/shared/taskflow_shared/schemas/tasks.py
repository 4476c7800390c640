"""Task-related Pydantic schemas for shared use across server and clients."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic import UUID4

from .common import ApprovalStatus, TaskStatus


# ---------------------------------------------------------------------------
# Status history
# ---------------------------------------------------------------------------

class StatusHistoryEntry(BaseModel):
    """One accepted status change. Appended, never rewritten."""
    status: TaskStatus
    changed_by: str
    changed_at: datetime


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    priority: int = Field(default=2, ge=1, le=5)  # 1: low .. 5: critical
    due_date: Optional[datetime] = None


class TaskRead(BaseModel):
    id: UUID4
    title: str
    description: Optional[str] = None
    priority: int
    due_date: Optional[datetime] = None
    created_by: str
    status: TaskStatus
    approval_status: ApprovalStatus = ApprovalStatus.NONE
    approval_requested_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    is_in_pool: bool = False
    pool_requests: List[str] = Field(default_factory=list)
    assigned_users: List[str] = Field(default_factory=list)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    status_updated_by: Optional[str] = None
    status_updated_at: Optional[datetime] = None
    is_archived: bool = False
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class StatusUpdate(BaseModel):
    """Request body for POST /tasks/{taskId}/status."""
    status: TaskStatus


class ApprovalRejection(BaseModel):
    """Request body for POST /tasks/{taskId}/approval/reject."""
    reason: Optional[str] = None
