"""User model. Identity is issued elsewhere; ids are opaque strings."""

from typing import List, Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, unique=True, index=True)
    display_name: str = Field(nullable=False)
    role: str = Field(nullable=False, default="member")  # admin | team_leader | member
    team_ids: List[str] = Field(default_factory=list, sa_type=sa.JSON)
    is_active: bool = Field(nullable=False, default=True)
