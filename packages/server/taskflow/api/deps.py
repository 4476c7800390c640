"""
Dependencies shared by the v1 routers.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.config import get_settings
from taskflow.core.database import async_session_factory, get_session
from taskflow.core.directory import SqlTeamDirectory
from taskflow.core.permissions import RolePermissionOracle
from taskflow.services.audit import SqlAuditSink
from taskflow.services.context import WorkflowContext
from taskflow.services.notifications import EmailRelay, SqlNotificationSink


@lru_cache
def get_email_relay() -> Optional[EmailRelay]:
    settings = get_settings()
    if not settings.email_relay_url:
        return None
    return EmailRelay(settings.email_relay_url, timeout=settings.email_timeout_seconds)


async def get_context(session: AsyncSession = Depends(get_session)) -> WorkflowContext:
    """Build the workflow context for one request."""
    return WorkflowContext(
        session=session,
        oracle=RolePermissionOracle(),
        audit_sink=SqlAuditSink(async_session_factory),
        notifier=SqlNotificationSink(async_session_factory, get_email_relay()),
        directory=SqlTeamDirectory(session),
        settings=get_settings(),
    )
