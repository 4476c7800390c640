"""
Audit sink: append-only record of every state transition.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.errors import CollaboratorUnavailable
from taskflow.models.audit_log import AuditLog
from taskflow_shared.schemas.common import AuditAction, EntityKind

log = structlog.get_logger()


class AuditSink(Protocol):
    async def record(
        self,
        action: AuditAction,
        entity_kind: EntityKind,
        entity_id: str,
        actor_id: str,
        before: Optional[dict[str, Any]],
        after: Optional[dict[str, Any]],
    ) -> None: ...


class SqlAuditSink:
    """Writes audit rows in a session of its own, independent of the caller's unit of work."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        action: AuditAction,
        entity_kind: EntityKind,
        entity_id: str,
        actor_id: str,
        before: Optional[dict[str, Any]],
        after: Optional[dict[str, Any]],
    ) -> None:
        entry = AuditLog(
            action=action.value,
            entity_kind=entity_kind.value,
            entity_id=entity_id,
            actor_id=actor_id,
            before=to_jsonable_python(before) if before is not None else None,
            after=to_jsonable_python(after) if after is not None else None,
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable("audit", exc) from exc
