"""Audit log (append-only)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, timestamp_field


class AuditLog(UUIDMixin, SQLModel, table=True):
    __tablename__ = "audit_logs"

    action: str = Field(nullable=False)  # CREATE | UPDATE | DELETE
    entity_kind: str = Field(nullable=False, index=True)
    entity_id: str = Field(nullable=False, index=True)
    actor_id: str = Field(nullable=False)
    before: Optional[dict] = Field(default=None, sa_type=sa.JSON)
    after: Optional[dict] = Field(default=None, sa_type=sa.JSON)
    timestamp: datetime = timestamp_field(required=True, index=True)
