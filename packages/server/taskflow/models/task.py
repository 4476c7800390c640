"""Task model. One row per task; the workflow engine is its only writer."""

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, timestamp_field


class Task(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    title: str = Field(nullable=False)
    description: Optional[str] = None
    priority: int = Field(nullable=False, default=2)  # 1 (low) .. 5 (critical)
    due_date: Optional[datetime] = timestamp_field()
    created_by: str = Field(nullable=False, index=True)

    status: str = Field(nullable=False, default="pending")  # pending | in_progress | completed | cancelled
    status_history: List[dict] = Field(default_factory=list, sa_type=sa.JSON)
    status_updated_by: Optional[str] = None
    status_updated_at: Optional[datetime] = timestamp_field()

    approval_status: str = Field(nullable=False, default="none")  # none | pending | approved | rejected
    approval_requested_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = timestamp_field()
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = timestamp_field()
    rejection_reason: Optional[str] = None

    is_in_pool: bool = Field(nullable=False, default=False)
    pool_requests: List[str] = Field(default_factory=list, sa_type=sa.JSON)
    # Mirror of actors holding a live assignment, kept for membership checks only
    assigned_users: List[str] = Field(default_factory=list, sa_type=sa.JSON)

    is_archived: bool = Field(nullable=False, default=False)
