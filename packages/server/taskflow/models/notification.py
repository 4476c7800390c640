"""In-app notification feed entry."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, timestamp_field


class Notification(UUIDMixin, SQLModel, table=True):
    __tablename__ = "notifications"

    user_id: str = Field(nullable=False, index=True)
    kind: str = Field(nullable=False)  # see NotificationKind
    title: str = Field(nullable=False)
    body: str = Field(nullable=False, default="")
    read: bool = Field(nullable=False, default=False, index=True)
    # Plain reference, no FK: notifications outlive deleted tasks
    task_id: Optional[uuid.UUID] = Field(default=None, index=True)
    meta: Optional[dict] = Field(default=None, sa_type=sa.JSON)
    created_at: datetime = timestamp_field(required=True, index=True)
