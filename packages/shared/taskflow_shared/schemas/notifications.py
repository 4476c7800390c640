"""
Notification schemas.

Metadata attached to a notification is one of a closed set of shapes,
discriminated by ``kind``. Each shape lists the ``action`` values it can
carry, so a consumer can match on (kind, action) exhaustively.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, UUID4

from .common import NotificationKind, TaskStatus


# ---------------------------------------------------------------------------
# Metadata variants
# ---------------------------------------------------------------------------

AssignmentAction = Literal[
    "assigned",
    "accepted",
    "rejected",
    "rejection_pending_approval",
    "rejection_approved",
    "rejection_rejected",
    "completed",
    "removed",
    "pool_request_approved",
]

ApprovalAction = Literal["approval_requested", "approved", "rejected"]

PoolAction = Literal["added", "claim_requested", "claim_rejected", "claim_dropped"]


class AssignmentMetadata(BaseModel):
    kind: Literal["assignment"] = "assignment"
    action: AssignmentAction
    assignment_id: str
    assigned_user_id: Optional[str] = None
    reason: Optional[str] = None


class StatusChangeMetadata(BaseModel):
    kind: Literal["status_change"] = "status_change"
    action: Literal["status_changed"] = "status_changed"
    old_status: TaskStatus
    new_status: TaskStatus


class ApprovalMetadata(BaseModel):
    kind: Literal["approval"] = "approval"
    action: ApprovalAction
    rejection_reason: Optional[str] = None


class PoolMetadata(BaseModel):
    kind: Literal["pool"] = "pool"
    action: PoolAction
    actor_id: Optional[str] = None


class TaskLifecycleMetadata(BaseModel):
    kind: Literal["task_lifecycle"] = "task_lifecycle"
    action: Literal["created", "deleted"]
    task_title: str


NotificationMetadata = Annotated[
    Union[
        AssignmentMetadata,
        StatusChangeMetadata,
        ApprovalMetadata,
        PoolMetadata,
        TaskLifecycleMetadata,
    ],
    Field(discriminator="kind"),
]

metadata_adapter: TypeAdapter[NotificationMetadata] = TypeAdapter(NotificationMetadata)


def parse_metadata(raw: dict | None) -> Optional[NotificationMetadata]:
    """Rehydrate stored metadata into its typed variant."""
    if not raw:
        return None
    return metadata_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------

class NotificationRead(BaseModel):
    id: UUID4
    user_id: str
    kind: NotificationKind
    title: str
    body: str
    read: bool
    task_id: Optional[UUID4] = None
    metadata: Optional[NotificationMetadata] = None
    created_at: datetime
