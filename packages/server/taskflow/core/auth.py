"""
Actor resolution for the HTTP surface.

Identity is established upstream; requests arrive with the acting user's id
in ``X-Actor-Id``. The id is looked up in the users table to learn the role
the Permission Oracle decides on.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.database import get_session
from taskflow.core.permissions import Actor
from taskflow.models.user import User
from taskflow_shared.schemas.common import Role

log = structlog.get_logger()

ACTOR_HEADER = "X-Actor-Id"


async def get_actor(
    x_actor_id: Optional[str] = Header(default=None, alias=ACTOR_HEADER),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    """FastAPI dependency returning the acting user."""
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = await session.get(User, x_actor_id)
    if not user or not user.is_active:
        log.info("auth.unknown_actor", actor_id=x_actor_id)
        raise HTTPException(status_code=401, detail="Unknown actor")

    structlog.contextvars.bind_contextvars(actor_id=user.id)
    return Actor(user_id=user.id, role=Role(user.role))
