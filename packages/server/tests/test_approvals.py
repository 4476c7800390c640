"""
Tests for the approval gate.
"""

from __future__ import annotations

import pytest

from taskflow.core.errors import InvalidStateError, PermissionDeniedError
from taskflow.models.task import Task
from taskflow.services.approvals import approve_task, reject_approval, request_approval
from taskflow.services.assignments import accept_assignment, assign
from taskflow.services.tasks import update_status
from taskflow_shared.schemas.common import ApprovalStatus, NotificationKind, TaskStatus


def assert_coupled(task: Task) -> None:
    """approved exactly when completed."""
    assert (task.approval_status == ApprovalStatus.APPROVED.value) == (
        task.status == TaskStatus.COMPLETED.value
    )


@pytest.fixture
async def worked(ctx, make_task, lead, alice):
    """A task alice has accepted."""
    task = await make_task()
    assignment = await assign(ctx, task.id, "alice", lead)
    await accept_assignment(ctx, task.id, assignment.id, alice)
    return task


def approval_actions(notifier, user_id: str) -> list[str]:
    return [
        n.meta["action"]
        for n in notifier.to(user_id)
        if n.kind == NotificationKind.TASK_APPROVAL.value
    ]


# ---------------------------------------------------------------------------
# Scenario: assign, accept, request, approve
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_happy_path_from_assignment_to_completion(ctx, make_task, lead, alice, notifier):
    task = await make_task()
    assignment = await assign(ctx, task.id, "alice", lead)
    await accept_assignment(ctx, task.id, assignment.id, alice)
    await request_approval(ctx, task.id, alice)
    done = await approve_task(ctx, task.id, lead)

    assert done.status == TaskStatus.COMPLETED.value
    assert done.approval_status == ApprovalStatus.APPROVED.value
    assert done.approved_by == lead.user_id
    assert [h["status"] for h in done.status_history] == ["pending", "completed"]
    assert approval_actions(notifier, "alice") == ["approved"]
    assert approval_actions(notifier, "lead-1") == ["approval_requested"]


# ---------------------------------------------------------------------------
# request_approval
# ---------------------------------------------------------------------------


class TestRequestApproval:
    @pytest.mark.asyncio
    async def test_marks_pending_and_records_requester(self, ctx, worked, alice):
        task = await request_approval(ctx, worked.id, alice)
        assert task.approval_status == ApprovalStatus.PENDING.value
        assert task.approval_requested_by == alice.user_id

    @pytest.mark.asyncio
    async def test_repeat_request_is_a_no_op(self, ctx, worked, alice, notifier, audit):
        await request_approval(ctx, worked.id, alice)
        audited = len(audit.entries)
        await request_approval(ctx, worked.id, alice)
        assert len(audit.entries) == audited
        assert approval_actions(notifier, "lead-1") == ["approval_requested"]

    @pytest.mark.asyncio
    async def test_unread_request_is_not_sent_twice(self, ctx, worked, lead, alice, notifier):
        await request_approval(ctx, worked.id, alice)
        await reject_approval(ctx, worked.id, None, lead)
        await request_approval(ctx, worked.id, alice)
        assert approval_actions(notifier, "lead-1") == ["approval_requested"]

    @pytest.mark.asyncio
    async def test_already_approved_conflicts(self, ctx, worked, lead, alice):
        await request_approval(ctx, worked.id, alice)
        await approve_task(ctx, worked.id, lead)
        with pytest.raises(InvalidStateError):
            await request_approval(ctx, worked.id, alice)

    @pytest.mark.asyncio
    async def test_assignee_must_have_accepted(self, ctx, make_task, lead, bob):
        task = await make_task()
        await assign(ctx, task.id, "bob", lead)
        with pytest.raises(PermissionDeniedError):
            await request_approval(ctx, task.id, bob)

    @pytest.mark.asyncio
    async def test_never_worked_task_cannot_be_submitted(self, ctx, make_task, admin):
        task = await make_task()
        with pytest.raises(InvalidStateError):
            await request_approval(ctx, task.id, admin)

    @pytest.mark.asyncio
    async def test_admin_may_submit_work_in_progress(self, ctx, make_task, lead, admin):
        task = await make_task()
        await update_status(ctx, task.id, TaskStatus.IN_PROGRESS, lead)
        submitted = await request_approval(ctx, task.id, admin)
        assert submitted.approval_requested_by == admin.user_id


# ---------------------------------------------------------------------------
# approve / reject
# ---------------------------------------------------------------------------


class TestDecide:
    @pytest.mark.asyncio
    async def test_approve_requires_pending(self, ctx, worked, lead):
        with pytest.raises(InvalidStateError):
            await approve_task(ctx, worked.id, lead)

    @pytest.mark.asyncio
    async def test_approve_twice_conflicts(self, ctx, worked, lead, alice):
        await request_approval(ctx, worked.id, alice)
        await approve_task(ctx, worked.id, lead)
        with pytest.raises(InvalidStateError):
            await approve_task(ctx, worked.id, lead)

    @pytest.mark.asyncio
    async def test_assignee_cannot_approve_own_work(self, ctx, worked, alice):
        await request_approval(ctx, worked.id, alice)
        with pytest.raises(PermissionDeniedError):
            await approve_task(ctx, worked.id, alice)

    @pytest.mark.asyncio
    async def test_reject_requires_pending(self, ctx, worked, lead):
        with pytest.raises(InvalidStateError):
            await reject_approval(ctx, worked.id, "needs more tests", lead)

    @pytest.mark.asyncio
    async def test_reject_sends_work_back(self, ctx, worked, lead, alice, notifier):
        await request_approval(ctx, worked.id, alice)
        task = await reject_approval(ctx, worked.id, "  needs more tests  ", lead)

        assert task.approval_status == ApprovalStatus.REJECTED.value
        assert task.status == TaskStatus.IN_PROGRESS.value
        assert task.rejected_by == lead.user_id
        assert task.rejection_reason == "needs more tests"
        assert [h["status"] for h in task.status_history] == ["pending", "in_progress"]

        last = [n for n in notifier.to("alice") if n.kind == NotificationKind.TASK_APPROVAL.value][-1]
        assert last.meta == {
            "kind": "approval",
            "action": "rejected",
            "rejection_reason": "needs more tests",
        }

    @pytest.mark.asyncio
    async def test_blank_reason_is_stored_as_none(self, ctx, worked, lead, alice):
        await request_approval(ctx, worked.id, alice)
        task = await reject_approval(ctx, worked.id, "   ", lead)
        assert task.rejection_reason is None

    @pytest.mark.asyncio
    async def test_approved_notice_is_not_repeated_while_unread(
        self, ctx, worked, lead, alice, notifier
    ):
        await request_approval(ctx, worked.id, alice)
        await approve_task(ctx, worked.id, lead)
        await update_status(ctx, worked.id, TaskStatus.IN_PROGRESS, lead)
        await request_approval(ctx, worked.id, alice)
        await approve_task(ctx, worked.id, lead)
        assert approval_actions(notifier, "alice").count("approved") == 1


@pytest.mark.asyncio
async def test_approval_stays_coupled_to_completion(ctx, worked, lead, alice):
    steps = [
        lambda: request_approval(ctx, worked.id, alice),
        lambda: reject_approval(ctx, worked.id, "not yet", lead),
        lambda: request_approval(ctx, worked.id, alice),
        lambda: approve_task(ctx, worked.id, lead),
        lambda: update_status(ctx, worked.id, TaskStatus.IN_PROGRESS, lead),
        lambda: update_status(ctx, worked.id, TaskStatus.COMPLETED, lead),
        lambda: update_status(ctx, worked.id, TaskStatus.CANCELLED, lead),
    ]
    for step in steps:
        task = await step()
        assert_coupled(task)
        if task.approval_status == ApprovalStatus.REJECTED.value:
            assert task.status == TaskStatus.IN_PROGRESS.value
