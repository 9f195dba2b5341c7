"""Per-organization role configuration for a slot (label, active flag, overrides)."""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class OrgRole(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "org_roles"
    __table_args__ = (sa.UniqueConstraint("org_id", "slot", name="uq_org_roles_org_slot"),)

    org_id: uuid.UUID = Field(nullable=False, index=True)
    slot: int = Field(nullable=False)
    label: str = Field(nullable=False, max_length=100)
    is_active: bool = Field(default=False, nullable=False)


class OrgRolePermission(SQLModel, table=True):
    """An allow (adds) or deny (revokes) override on top of the slot template."""

    __tablename__ = "org_role_permissions"

    org_role_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("org_roles.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    permission_key: str = Field(primary_key=True, max_length=120)
    allowed: bool = Field(default=True, nullable=False)
