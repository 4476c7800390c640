"""
Read-only lookups about people: who leads a task's team, who can see the pool.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from taskflow.models.department import Department
from taskflow.models.task import Task
from taskflow.models.user import User


class TeamDirectory(Protocol):
    async def team_leads_for(self, task: Task) -> list[str]: ...

    async def all_actor_ids(self) -> list[str]: ...


class SqlTeamDirectory:
    """Team leads are the managers of the departments the task creator belongs to."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def team_leads_for(self, task: Task) -> list[str]:
        creator = await self._session.get(User, task.created_by)
        if not creator or not creator.team_ids:
            return []
        result = await self._session.execute(
            select(Department.manager_id).where(Department.id.in_(creator.team_ids))
        )
        leads: list[str] = []
        for (manager_id,) in result.all():
            if manager_id and manager_id not in leads:
                leads.append(manager_id)
        return leads

    async def all_actor_ids(self) -> list[str]:
        result = await self._session.execute(
            select(User.id).where(User.is_active == True)  # noqa: E712
        )
        return [row[0] for row in result.all()]
