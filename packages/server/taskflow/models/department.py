"""Department (team) model; its manager is the team lead."""

from typing import Optional

from sqlmodel import Field, SQLModel


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: str = Field(primary_key=True)
    name: str = Field(nullable=False)
    manager_id: Optional[str] = Field(default=None, foreign_key="users.id")
