# SQLModel definitions, imported here so metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .role_template import RoleTemplate, RoleTemplatePermission  # noqa: F401
from .org_role import OrgRole, OrgRolePermission  # noqa: F401
from .membership import Membership  # noqa: F401
