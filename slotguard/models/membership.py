"""User membership in an organization: exactly one slot per (user, org)."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import _utcnow


class Membership(SQLModel, table=True):
    __tablename__ = "memberships"

    user_id: uuid.UUID = Field(primary_key=True)
    org_id: uuid.UUID = Field(primary_key=True, index=True)
    slot: int = Field(nullable=False)
    assigned_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
