"""Column helpers and mixins shared by the SQLModel tables."""

from datetime import datetime, timezone
from typing import Any
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def timestamp_field(*, required: bool = False, **kwargs: Any) -> Any:
    """Timezone-aware timestamp column. Required ones default to now."""
    if required:
        return Field(
            default_factory=utcnow,
            nullable=False,
            sa_type=sa.DateTime(timezone=True),
            **kwargs,
        )
    return Field(default=None, sa_type=sa.DateTime(timezone=True), **kwargs)


class UUIDMixin(SQLModel):
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )


class TimestampMixin(SQLModel):
    created_at: datetime = timestamp_field(required=True)
    updated_at: datetime = timestamp_field(required=True, sa_column_kwargs={"onupdate": utcnow})
