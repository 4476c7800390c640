"""
Permission oracle: the single place that knows about roles.

The workflow engine asks ``can_perform(actor, task, operation, assignment)``
before it mutates anything and treats a False answer as PermissionDenied.
Transition logic in the services never inspects roles directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from taskflow.models.assignment import Assignment
from taskflow.models.task import Task
from taskflow_shared.schemas.common import (
    WORKED_ASSIGNMENT_STATUSES,
    AssignmentStatus,
    Operation,
    Role,
)


@dataclass(frozen=True)
class Actor:
    """The party issuing an intent to the engine."""
    user_id: str
    role: Role = Role.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_team_leader(self) -> bool:
        return self.role == Role.TEAM_LEADER


class PermissionOracle(Protocol):
    def can_perform(
        self,
        actor: Actor,
        task: Task,
        operation: Operation,
        assignment: Optional[Assignment] = None,
    ) -> bool: ...


class RolePermissionOracle:
    """Default policy: admins and team leaders manage, assignees act on their own work."""

    def can_perform(
        self,
        actor: Actor,
        task: Task,
        operation: Operation,
        assignment: Optional[Assignment] = None,
    ) -> bool:
        is_creator = task.created_by == actor.user_id
        is_manager = actor.is_admin or actor.is_team_leader
        is_assignee = assignment is not None and assignment.assigned_to == actor.user_id

        if operation == Operation.CREATE_TASK:
            return is_manager

        if operation in (
            Operation.DELETE_TASK,
            Operation.ARCHIVE_TASK,
            Operation.ASSIGN,
            Operation.MANAGE_POOL,
        ):
            return is_manager or is_creator

        if operation == Operation.UPDATE_STATUS:
            return is_manager or is_creator or actor.user_id in (task.assigned_users or [])

        if operation in (
            Operation.ACCEPT_ASSIGNMENT,
            Operation.REJECT_ASSIGNMENT,
            Operation.COMPLETE_ASSIGNMENT,
        ):
            return is_assignee

        if operation == Operation.REMOVE_ASSIGNMENT:
            is_assigner = assignment is not None and assignment.assigned_by == actor.user_id
            return is_manager or is_creator or is_assigner

        if operation == Operation.ARBITRATE_REJECTION:
            is_assigner = assignment is not None and assignment.assigned_by == actor.user_id
            return actor.is_admin or is_creator or is_assigner

        if operation == Operation.REQUEST_APPROVAL:
            return actor.is_admin or (
                is_assignee and AssignmentStatus(assignment.status) in WORKED_ASSIGNMENT_STATUSES
            )

        if operation in (Operation.DECIDE_APPROVAL, Operation.COMPLETE_WITHOUT_APPROVAL):
            return is_manager or is_creator

        if operation == Operation.REQUEST_CLAIM:
            return not is_creator

        if operation == Operation.DECIDE_CLAIM:
            # Only whoever pooled the task may hand it out; that is its creator
            return is_creator

        return False
