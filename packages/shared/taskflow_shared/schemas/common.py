from enum import Enum
from typing import Optional
from pydantic import BaseModel

class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class ApprovalStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"

# Assignments in these states still bind the actor to the task
LIVE_ASSIGNMENT_STATUSES: frozenset["AssignmentStatus"] = frozenset(
    {AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED, AssignmentStatus.COMPLETED}
)

# The assignee has taken the work on
WORKED_ASSIGNMENT_STATUSES: frozenset["AssignmentStatus"] = frozenset(
    {AssignmentStatus.ACCEPTED, AssignmentStatus.COMPLETED}
)

class Role(str, Enum):
    ADMIN = "admin"
    TEAM_LEADER = "team_leader"
    MEMBER = "member"

class Operation(str, Enum):
    CREATE_TASK = "create_task"
    UPDATE_STATUS = "update_status"
    DELETE_TASK = "delete_task"
    ARCHIVE_TASK = "archive_task"
    ASSIGN = "assign"
    ACCEPT_ASSIGNMENT = "accept_assignment"
    REJECT_ASSIGNMENT = "reject_assignment"
    COMPLETE_ASSIGNMENT = "complete_assignment"
    REMOVE_ASSIGNMENT = "remove_assignment"
    ARBITRATE_REJECTION = "arbitrate_rejection"
    REQUEST_APPROVAL = "request_approval"
    DECIDE_APPROVAL = "decide_approval"
    COMPLETE_WITHOUT_APPROVAL = "complete_without_approval"
    MANAGE_POOL = "manage_pool"
    REQUEST_CLAIM = "request_claim"
    DECIDE_CLAIM = "decide_claim"

class NotificationKind(str, Enum):
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_POOL_REQUEST = "task_pool_request"
    TASK_APPROVAL = "task_approval"

class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

class EntityKind(str, Enum):
    TASK = "tasks"
    ASSIGNMENT = "task_assignments"

class ErrorBody(BaseModel):
    code: str
    message: str
    status: int
    details: Optional[dict] = None

class ErrorResponse(BaseModel):
    error: ErrorBody
