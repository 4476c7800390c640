"""
API v1 Router

Every workflow endpoint hangs off /tasks/{task_id}.
"""

from fastapi import APIRouter

from . import approvals, assignments, pool, tasks

router = APIRouter()

router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(assignments.router, prefix="/tasks/{task_id}/assignments", tags=["Assignments"])
router.include_router(approvals.router, prefix="/tasks/{task_id}/approval", tags=["Approval"])
router.include_router(pool.router, prefix="/tasks/{task_id}/pool", tags=["Pool"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks",
            "/tasks/{task_id}/assignments",
            "/tasks/{task_id}/approval",
            "/tasks/{task_id}/pool",
        ],
    }
