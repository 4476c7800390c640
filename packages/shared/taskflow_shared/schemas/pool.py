"""Pool claim schemas."""

from __future__ import annotations

from pydantic import BaseModel


class ClaimApproval(BaseModel):
    """Request body for POST /tasks/{taskId}/pool/claims/{actorId}/approve.

    With ``keep_in_pool`` false the task leaves the pool and every other
    pending claim is dropped.
    """
    keep_in_pool: bool = False
