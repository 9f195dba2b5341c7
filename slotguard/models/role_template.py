"""Global role templates: default permission sets per slot."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class RoleTemplate(TimestampMixin, SQLModel, table=True):
    __tablename__ = "role_templates"

    slot: int = Field(primary_key=True, ge=1, le=10)
    default_label: str = Field(nullable=False, max_length=100)


class RoleTemplatePermission(SQLModel, table=True):
    __tablename__ = "role_template_permissions"

    slot: int = Field(foreign_key="role_templates.slot", primary_key=True)
    permission_key: str = Field(primary_key=True, max_length=120)
