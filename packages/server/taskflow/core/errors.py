"""
Workflow error taxonomy and its HTTP rendering.

Every error except CollaboratorUnavailable aborts the operation before any
write and reaches the caller. CollaboratorUnavailable is raised by the
audit/notification sinks and never leaves the engine.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

log = structlog.get_logger()


class WorkflowError(Exception):
    code = "WORKFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details or None

    def to_body(self) -> dict:
        body = {"code": self.code, "message": self.message, "status": self.status_code}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class PermissionDeniedError(WorkflowError):
    code = "PERMISSION_DENIED"
    status_code = 403


class InvalidStateError(WorkflowError):
    code = "INVALID_STATE"
    status_code = 409


class ValidationError(WorkflowError):
    code = "VALIDATION_FAILED"
    status_code = 422


class CollaboratorUnavailable(Exception):
    """An audit or notification collaborator failed to accept a write."""

    def __init__(self, collaborator: str, cause: Optional[BaseException] = None):
        super().__init__(f"{collaborator} unavailable: {cause!r}")
        self.collaborator = collaborator
        self.cause = cause


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    log.info(
        "workflow.rejected",
        code=exc.code,
        message=exc.message,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)
