from .memberships import (  # noqa: F401
    CallerAccessResponse,
    MembershipView,
    PermissionCheckResponse,
    SlotChangeRequest,
)
from .roles import (  # noqa: F401
    EffectiveRole,
    OrgRoleUpdate,
    OverrideEntry,
    RoleConfigResponse,
    RoleInfo,
    RoleListResponse,
    RolesPatchRequest,
    SlotConfig,
)
