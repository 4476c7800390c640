"""Assignment model: one actor bound to one task."""

from datetime import datetime
from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import UUIDMixin, timestamp_field


class Assignment(UUIDMixin, SQLModel, table=True):
    __tablename__ = "task_assignments"

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    assigned_to: str = Field(nullable=False, index=True)
    assigned_by: str = Field(nullable=False)
    status: str = Field(nullable=False, default="pending")  # pending | accepted | rejected | completed
    notes: Optional[str] = None

    rejection_reason: Optional[str] = None
    # Dispute outcome; at most one side is set per rejection
    rejection_approved_by: Optional[str] = None
    rejection_approved_at: Optional[datetime] = timestamp_field()
    rejection_rejected_by: Optional[str] = None
    rejection_rejected_at: Optional[datetime] = timestamp_field()
    rejection_rejection_reason: Optional[str] = None

    assigned_at: datetime = timestamp_field(required=True)
    accepted_at: Optional[datetime] = timestamp_field()
    completed_at: Optional[datetime] = timestamp_field()
